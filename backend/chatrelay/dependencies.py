"""Dependency injection providers for FastAPI."""

import httpx

from chatrelay.client.completion import CompletionClient
from chatrelay.config import settings
from chatrelay.storage.base import StorageBackend
from chatrelay.storage.memory import MemoryStorage

# Global singleton instances (one event loop, no cross-thread use)
_storage: StorageBackend | None = None
_upstream_client: httpx.AsyncClient | None = None
_completion_client: CompletionClient | None = None


def get_storage() -> StorageBackend:
    """Return singleton storage backend selected by ``storage_backend``."""
    global _storage
    if _storage is None:
        if settings.storage_backend == "mongodb":
            from chatrelay.storage.mongo import MongoStorage

            _storage = MongoStorage()
        else:
            _storage = MemoryStorage()
    return _storage


def get_upstream_client() -> httpx.AsyncClient:
    """Return singleton HTTP client used by the proxy to reach the upstream."""
    global _upstream_client
    if _upstream_client is None:
        _upstream_client = httpx.AsyncClient(
            timeout=httpx.Timeout(settings.upstream_timeout, connect=30.0)
        )
    return _upstream_client


def get_completion_client() -> CompletionClient:
    """Return singleton CompletionClient (initialised in the app lifespan)."""
    global _completion_client
    if _completion_client is None:
        _completion_client = CompletionClient()
    return _completion_client


async def close_upstream_client() -> None:
    global _upstream_client
    if _upstream_client is not None:
        await _upstream_client.aclose()
        _upstream_client = None
