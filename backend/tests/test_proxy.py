"""Tests for the chat-completions proxy route."""

import json

import httpx
import pytest
from httpx import AsyncClient

from chatrelay.config import Settings, get_settings
from chatrelay.dependencies import get_upstream_client
from chatrelay.main import app
from helpers import DONE_FRAME, sse_frame

UPSTREAM_BASE = "http://upstream.test/v1"


class RecordingUpstream:
    """Mock upstream that records requests and answers with a fixed response."""

    def __init__(self, response: httpx.Response) -> None:
        self.response = response
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.response


def _override(upstream) -> None:
    app.dependency_overrides[get_upstream_client] = lambda: httpx.AsyncClient(
        transport=httpx.MockTransport(upstream)
    )
    app.dependency_overrides[get_settings] = lambda: Settings(
        api_base_url=UPSTREAM_BASE, api_key="secret-key"
    )


@pytest.mark.asyncio
async def test_streaming_request_is_relayed_verbatim(client: AsyncClient) -> None:
    body = sse_frame("Hel") + sse_frame("lo") + DONE_FRAME
    upstream = RecordingUpstream(
        httpx.Response(200, headers={"content-type": "text/event-stream"}, content=body)
    )
    _override(upstream)

    response = await client.post(
        "/api/chat",
        json={"model": "m1", "messages": [{"role": "user", "content": "hi"}], "stream": True},
    )

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/event-stream")
    assert response.headers["cache-control"] == "no-cache"
    assert response.headers["x-accel-buffering"] == "no"
    assert response.content == body

    forwarded = upstream.requests[0]
    assert str(forwarded.url) == f"{UPSTREAM_BASE}/chat/completions"
    assert forwarded.headers["authorization"] == "Bearer secret-key"
    assert json.loads(forwarded.content)["model"] == "m1"


@pytest.mark.asyncio
async def test_extra_fields_are_forwarded(client: AsyncClient) -> None:
    upstream = RecordingUpstream(httpx.Response(200, json={"id": "cmpl-1"}))
    _override(upstream)

    await client.post(
        "/api/chat",
        json={"model": "m1", "messages": [], "temperature": 0.2, "max_tokens": 64},
    )

    forwarded = json.loads(upstream.requests[0].content)
    assert forwarded["temperature"] == 0.2
    assert forwarded["max_tokens"] == 64
    assert forwarded["stream"] is False


@pytest.mark.asyncio
async def test_non_streaming_returns_upstream_json(client: AsyncClient) -> None:
    completion = {"choices": [{"message": {"role": "assistant", "content": "Hello"}}]}
    _override(RecordingUpstream(httpx.Response(200, json=completion)))

    response = await client.post(
        "/api/chat", json={"model": "m1", "messages": [{"role": "user", "content": "hi"}]}
    )

    assert response.status_code == 200
    assert response.json() == completion


@pytest.mark.asyncio
async def test_upstream_error_status_is_passed_through(client: AsyncClient) -> None:
    _override(RecordingUpstream(httpx.Response(503, json={"error": "overloaded"})))

    response = await client.post(
        "/api/chat",
        json={"model": "m1", "messages": [], "stream": True},
    )

    assert response.status_code == 503
    assert response.json() == {"error": "overloaded"}


@pytest.mark.asyncio
async def test_unreachable_upstream_yields_500(client: AsyncClient) -> None:
    def refuse(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    _override(refuse)

    response = await client.post(
        "/api/chat", json={"model": "m1", "messages": [], "stream": True}
    )

    assert response.status_code == 500
    data = response.json()
    assert data["error"] == "Internal server error"
    assert "connection refused" in data["message"]


@pytest.mark.asyncio
async def test_invalid_body_yields_500(client: AsyncClient) -> None:
    upstream = RecordingUpstream(httpx.Response(200, json={}))
    _override(upstream)

    response = await client.post("/api/chat", json={"messages": []})

    assert response.status_code == 500
    assert response.json()["error"] == "Internal server error"
    assert upstream.requests == []
