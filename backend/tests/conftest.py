"""Shared test fixtures for the chat relay backend."""

from collections.abc import AsyncGenerator, Callable

import httpx
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from chatrelay.chat.controller import ChatController
from chatrelay.chat.messages import MessageStore
from chatrelay.chat.sessions import SessionStore
from chatrelay.client.completion import CompletionClient
from chatrelay.config import Settings
from chatrelay.main import app
from chatrelay.storage.memory import MemoryStorage
from helpers import PROXY_URL, ScriptedUpstream


@pytest.fixture
def test_settings() -> Settings:
    return Settings(
        default_model="claude-opus-4-5-thinking",
        fallback_model="gemini-3-pro-high",
        fallback_model_label="Gemini 3 Pro High",
        chat_proxy_url=PROXY_URL,
    )


@pytest.fixture
def make_client() -> Callable[[ScriptedUpstream], CompletionClient]:
    """Completion client whose HTTP calls are answered by a scripted upstream."""

    def factory(upstream: ScriptedUpstream) -> CompletionClient:
        http = httpx.AsyncClient(transport=httpx.MockTransport(upstream))
        return CompletionClient(http_client=http, endpoint=PROXY_URL)

    return factory


@pytest.fixture
def make_controller(
    test_settings: Settings,
    make_client: Callable[[ScriptedUpstream], CompletionClient],
) -> Callable[..., ChatController]:
    """Controller with fresh in-memory stores around a scripted upstream."""

    def factory(
        upstream: ScriptedUpstream, storage: MemoryStorage | None = None
    ) -> ChatController:
        storage = storage or MemoryStorage()
        return ChatController(
            SessionStore(storage),
            MessageStore(storage),
            make_client(upstream),
            config=test_settings,
        )

    return factory


@pytest_asyncio.fixture
async def client() -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP client for testing FastAPI endpoints."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()
