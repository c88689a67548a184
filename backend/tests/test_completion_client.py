"""Tests for the streaming completion client."""

import asyncio

import httpx
import pytest

from chatrelay.client.cancellation import CancellationToken
from chatrelay.client.completion import CompletionClient, build_payload
from chatrelay.errors import GenerationCancelledError, HttpError, NetworkError
from chatrelay.models.completions import Snapshot
from chatrelay.models.messages import Attachment, AttachmentType, Message, MessageRole
from helpers import DONE_FRAME, PROXY_URL, ScriptedUpstream, sse_frame, wait_until


def _user(content: str, attachments: list[Attachment] | None = None) -> Message:
    return Message(role=MessageRole.USER, content=content, attachments=attachments)


def test_payload_plain_history_with_system_prompt() -> None:
    history = [
        _user("hi"),
        Message(role=MessageRole.ASSISTANT, content="hello"),
    ]
    payload = build_payload(history, "m1", system_prompt="Be brief.")

    assert payload["model"] == "m1"
    assert payload["stream"] is True
    assert payload["messages"] == [
        {"role": "system", "content": "Be brief."},
        {"role": "user", "content": "hi"},
        {"role": "assistant", "content": "hello"},
    ]


def test_payload_without_system_prompt() -> None:
    payload = build_payload([_user("hi")], "m1")
    assert payload["messages"] == [{"role": "user", "content": "hi"}]


def test_payload_attachments_become_content_parts() -> None:
    attachments = [
        Attachment(id="a1", type=AttachmentType.IMAGE, name="cat.png",
                   mime_type="image/png", base64="iVBOR"),
        Attachment(id="a2", type=AttachmentType.PDF, name="report.pdf",
                   mime_type="application/pdf", base64="JVBER"),
        Attachment(id="a3", type=AttachmentType.FILE, name="data.csv",
                   mime_type="text/csv", base64="YSxi"),
    ]
    payload = build_payload([_user("look", attachments)], "m1")

    assert payload["messages"][0]["content"] == [
        {"type": "text", "text": "look"},
        {
            "type": "image_url",
            "image_url": {"url": "data:image/png;base64,iVBOR", "detail": "auto"},
        },
        {"type": "text", "text": "[Uploaded PDF file: report.pdf]"},
        {"type": "text", "text": "[Uploaded file: data.csv]"},
    ]


def test_payload_attachments_without_text_have_no_text_part() -> None:
    image = Attachment(id="a1", type=AttachmentType.IMAGE, name="x.jpg",
                       mime_type="image/jpeg", base64="AAAA")
    parts = build_payload([_user("", [image])], "m1")["messages"][0]["content"]
    assert [p["type"] for p in parts] == ["image_url"]


@pytest.mark.asyncio
async def test_ask_streams_cumulative_snapshots(make_client) -> None:
    upstream = ScriptedUpstream({"m1": [sse_frame("H"), sse_frame("e"), sse_frame("llo"), DONE_FRAME]})
    client = make_client(upstream)
    seen: list[str] = []

    result = await client.ask([_user("hello")], "m1", on_chunk=lambda s: seen.append(s.content))

    assert seen == ["H", "He", "Hello"]
    assert result == Snapshot(content="Hello", reasoning="")
    assert upstream.requests[0]["stream"] is True


@pytest.mark.asyncio
async def test_ask_raises_http_error_with_status(make_client) -> None:
    client = make_client(ScriptedUpstream({"m1": 503}))

    with pytest.raises(HttpError) as exc_info:
        await client.ask([_user("hi")], "m1", on_chunk=lambda s: None)

    assert exc_info.value.status == 503
    assert "API Error 503" in str(exc_info.value)
    assert "upstream says 503" in str(exc_info.value)


@pytest.mark.asyncio
async def test_ask_raises_network_error_on_connection_failure() -> None:
    def refuse(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    http = httpx.AsyncClient(transport=httpx.MockTransport(refuse))
    client = CompletionClient(http_client=http, endpoint=PROXY_URL)

    with pytest.raises(NetworkError):
        await client.ask([_user("hi")], "m1", on_chunk=lambda s: None)


@pytest.mark.asyncio
async def test_cancel_mid_stream_raises_cancelled_and_stops_callbacks(make_client) -> None:
    gate = asyncio.Event()
    upstream = ScriptedUpstream({"m1": [sse_frame("Par"), gate, sse_frame("tial")]})
    client = make_client(upstream)
    token = CancellationToken()
    seen: list[str] = []

    task = asyncio.create_task(
        client.ask([_user("hi")], "m1", on_chunk=lambda s: seen.append(s.content), cancel_token=token)
    )
    await wait_until(lambda: seen == ["Par"])
    token.cancel()
    gate.set()

    with pytest.raises(GenerationCancelledError):
        await task
    assert seen == ["Par"]


@pytest.mark.asyncio
async def test_already_cancelled_token_never_sends(make_client) -> None:
    upstream = ScriptedUpstream({"m1": [sse_frame("x")]})
    client = make_client(upstream)
    token = CancellationToken()
    token.cancel()

    with pytest.raises(GenerationCancelledError):
        await client.ask([_user("hi")], "m1", on_chunk=lambda s: None, cancel_token=token)
    assert upstream.requests == []


@pytest.mark.asyncio
async def test_cancel_is_idempotent() -> None:
    token = CancellationToken()
    assert token.cancel() is True
    assert token.cancel() is False
    assert token.cancelled
    await asyncio.wait_for(token.wait(), timeout=1)


@pytest.mark.asyncio
async def test_uninitialized_client_raises() -> None:
    client = CompletionClient(endpoint=PROXY_URL)
    with pytest.raises(RuntimeError):
        await client.ask([_user("hi")], "m1", on_chunk=lambda s: None)
