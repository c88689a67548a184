"""Key/value storage contract used by the session and message stores.

Values are plain JSON-serializable structures (lists of dicts with ISO
timestamps). Writes replace the whole value: last writer wins.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

SESSIONS_KEY = "chat_sessions"
MESSAGES_KEY_PREFIX = "chat_messages_"


def messages_key(session_id: str) -> str:
    return f"{MESSAGES_KEY_PREFIX}{session_id}"


class StorageBackend(ABC):
    """Async key/value store holding JSON values."""

    async def initialize(self) -> None:
        """Open connections. Default: nothing to do."""

    async def close(self) -> None:
        """Release connections. Default: nothing to do."""

    @abstractmethod
    async def get(self, key: str) -> Any | None:
        """Return the stored value, or None when the key is absent."""

    @abstractmethod
    async def set(self, key: str, value: Any) -> None:
        """Store ``value`` under ``key``, replacing any previous value."""

    @abstractmethod
    async def delete(self, key: str) -> bool:
        """Remove ``key``. Returns True if something was deleted."""

    @abstractmethod
    async def ping(self) -> dict[str, Any]:
        """Health probe: ``{"status": "healthy"|"unhealthy", ...}``."""
