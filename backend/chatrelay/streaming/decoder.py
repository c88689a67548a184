"""Decode an OpenAI-style completion event stream into cumulative snapshots.

Every emitted ``Snapshot`` carries the *running totals* of ``content`` and
``reasoning`` so consumers can replace, never merge. A frame whose payload
is not valid JSON is logged and skipped; it never aborts the stream.
"""

from __future__ import annotations

import codecs
import json
import logging
from typing import AsyncIterable, AsyncIterator, Optional

from chatrelay.errors import DecodeError
from chatrelay.models.completions import Snapshot
from chatrelay.streaming.sse import SSEParser

logger = logging.getLogger(__name__)

DONE_SENTINEL = "[DONE]"


def extract_delta(data: str) -> tuple[str, str]:
    """Return ``(content, reasoning)`` from one frame's data payload.

    Missing or null fields count as empty strings.

    Raises:
        DecodeError: If the payload is not valid JSON.
    """
    try:
        payload = json.loads(data)
    except json.JSONDecodeError as exc:
        raise DecodeError(f"Malformed event payload: {exc}") from exc

    if not isinstance(payload, dict):
        return "", ""
    choices = payload.get("choices")
    if not choices or not isinstance(choices[0], dict):
        return "", ""
    delta = choices[0].get("delta") or {}
    if not isinstance(delta, dict):
        return "", ""

    content = delta.get("content") or ""
    reasoning = delta.get("reasoning_content") or ""
    return (
        content if isinstance(content, str) else "",
        reasoning if isinstance(reasoning, str) else "",
    )


class SnapshotAccumulator:
    """Running totals for one stream."""

    def __init__(self) -> None:
        self.content = ""
        self.reasoning = ""
        self.decode_errors = 0

    def feed(self, data: str) -> Optional[Snapshot]:
        """Apply one frame; return a snapshot when it added any text."""
        if data.strip() == DONE_SENTINEL:
            return None

        try:
            text_chunk, reasoning_chunk = extract_delta(data)
        except DecodeError as exc:
            self.decode_errors += 1
            logger.warning("Skipping event frame: %s", exc)
            return None

        if not text_chunk and not reasoning_chunk:
            return None

        self.content += text_chunk
        self.reasoning += reasoning_chunk
        return self.snapshot()

    def snapshot(self) -> Snapshot:
        return Snapshot(content=self.content, reasoning=self.reasoning)


async def iter_snapshots(chunks: AsyncIterable[bytes]) -> AsyncIterator[Snapshot]:
    """Yield cumulative snapshots from a raw event-stream byte iterator.

    Each call starts from empty totals. Multi-byte characters split across
    network chunks are reassembled before parsing.
    """
    utf8 = codecs.getincrementaldecoder("utf-8")(errors="replace")
    parser = SSEParser()
    accumulator = SnapshotAccumulator()

    async for chunk in chunks:
        for event in parser.feed(utf8.decode(chunk)):
            snapshot = accumulator.feed(event.data)
            if snapshot is not None:
                yield snapshot

    tail = parser.feed(utf8.decode(b"", final=True)) + parser.flush()
    for event in tail:
        snapshot = accumulator.feed(event.data)
        if snapshot is not None:
            yield snapshot

    if accumulator.decode_errors:
        logger.info(
            "Stream finished with %d malformed frame(s) skipped",
            accumulator.decode_errors,
        )
