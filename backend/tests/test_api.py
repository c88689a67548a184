"""Tests for the model catalogue and session REST endpoints."""

import pytest
import pytest_asyncio
from httpx import AsyncClient

from chatrelay.config import Settings, get_settings
from chatrelay.dependencies import get_storage
from chatrelay.main import app
from chatrelay.storage.base import SESSIONS_KEY, messages_key
from chatrelay.storage.memory import MemoryStorage


@pytest_asyncio.fixture
async def storage() -> MemoryStorage:
    storage = MemoryStorage()
    await storage.set(
        SESSIONS_KEY,
        [
            {"id": "1", "title": "older", "preview": "o", "updated_at": "2025-01-01T00:00:00Z"},
            {"id": "2", "title": "newer", "preview": "n", "updated_at": "2025-01-02T00:00:00Z"},
        ],
    )
    await storage.set(
        messages_key("2"),
        [
            {"id": "10", "role": "user", "content": "hi"},
            {"id": "11", "role": "assistant", "content": "hello"},
        ],
    )
    app.dependency_overrides[get_storage] = lambda: storage
    return storage


@pytest.mark.asyncio
async def test_models_lists_catalogue(client: AsyncClient) -> None:
    app.dependency_overrides[get_settings] = lambda: Settings(
        default_model="a", fallback_model="b", available_models=["a", "b", "c"]
    )

    response = await client.get("/api/models")

    assert response.status_code == 200
    assert response.json() == {"default_model": "a", "fallback_model": "b", "models": ["a", "b", "c"]}


@pytest.mark.asyncio
async def test_list_sessions_newest_first(client: AsyncClient, storage: MemoryStorage) -> None:
    response = await client.get("/api/sessions")

    assert response.status_code == 200
    data = response.json()
    assert [s["id"] for s in data] == ["2", "1"]
    assert [s["message_count"] for s in data] == [2, 0]


@pytest.mark.asyncio
async def test_session_history(client: AsyncClient, storage: MemoryStorage) -> None:
    response = await client.get("/api/sessions/2/history")

    assert response.status_code == 200
    data = response.json()
    assert data["session_id"] == "2"
    assert [m["content"] for m in data["messages"]] == ["hi", "hello"]

    assert (await client.get("/api/sessions/1/history")).json()["messages"] == []
    assert (await client.get("/api/sessions/nope/history")).status_code == 404


@pytest.mark.asyncio
async def test_delete_session_cascades(client: AsyncClient, storage: MemoryStorage) -> None:
    response = await client.delete("/api/sessions/2")

    assert response.status_code == 200
    assert response.json() == {"status": "deleted", "session_id": "2"}
    assert [s["id"] for s in await storage.get(SESSIONS_KEY)] == ["1"]
    assert await storage.get(messages_key("2")) is None

    assert (await client.delete("/api/sessions/2")).status_code == 404
