"""Upstream doubles shared by the test modules."""

import asyncio
import json
from collections.abc import AsyncIterator
from typing import Any

import httpx

PROXY_URL = "http://proxy.test/api/chat"
DONE_FRAME = b"data: [DONE]\n\n"


def sse_frame(content: str = "", reasoning: str = "") -> bytes:
    """Encode one chat-completion chunk as an event-stream frame."""
    delta: dict[str, Any] = {}
    if content:
        delta["content"] = content
    if reasoning:
        delta["reasoning_content"] = reasoning
    payload = {"choices": [{"index": 0, "delta": delta}]}
    return f"data: {json.dumps(payload, ensure_ascii=False)}\n\n".encode()


class ScriptedUpstream:
    """``httpx.MockTransport`` handler replaying canned streams per model.

    ``script[model]`` is either a status code (error response) or a list of
    byte frames. A frame may be an ``asyncio.Event`` instead, in which case
    the stream waits for it before continuing, or a float, which pauses the
    stream for that many seconds.
    """

    def __init__(self, script: dict[str, Any]) -> None:
        self.script = script
        self.requests: list[dict[str, Any]] = []

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        self.requests.append(body)
        entry = self.script[body["model"]]
        if isinstance(entry, int):
            return httpx.Response(entry, text=f"upstream says {entry}")

        async def stream() -> AsyncIterator[bytes]:
            for frame in entry:
                if isinstance(frame, asyncio.Event):
                    await frame.wait()
                    continue
                if isinstance(frame, float):
                    await asyncio.sleep(frame)
                    continue
                yield frame

        return httpx.Response(
            200, headers={"content-type": "text/event-stream"}, content=stream()
        )

    @property
    def models(self) -> list[str]:
        return [r["model"] for r in self.requests]


async def wait_until(predicate, attempts: int = 1000) -> None:
    """Yield to the event loop until ``predicate()`` holds."""
    for _ in range(attempts):
        if predicate():
            return
        await asyncio.sleep(0)
    raise AssertionError("condition not reached")
