"""Incremental parser for the ``text/event-stream`` wire format.

Follows the WHATWG event-stream rules that matter for chat-completion
streams: any of ``\\r\\n``, ``\\n`` or ``\\r`` ends a line, lines starting
with ``:`` are comments, one space after the field colon is stripped,
repeated ``data`` lines are joined with ``\\n`` and a blank line dispatches
the event.
"""

from __future__ import annotations

import logging
import re
from typing import Optional

from pydantic import BaseModel

logger = logging.getLogger(__name__)

_LINE_END = re.compile(r"\r\n|\r|\n")


class ServerSentEvent(BaseModel):
    """One dispatched event frame."""

    event: str = "message"
    data: str = ""
    id: Optional[str] = None
    retry: Optional[int] = None


class SSEParser:
    """Turns arbitrarily split text into complete ``ServerSentEvent`` frames.

    Text may be fed in pieces of any size; a frame is emitted only once its
    terminating blank line has been seen.
    """

    def __init__(self) -> None:
        self._buffer = ""
        self._event_type = ""
        self._data: list[str] = []
        self._last_event_id: Optional[str] = None
        self.retry: Optional[int] = None

    def feed(self, text: str) -> list[ServerSentEvent]:
        """Consume ``text`` and return every frame it completes."""
        self._buffer += text
        events: list[ServerSentEvent] = []
        pos = 0

        while True:
            match = _LINE_END.search(self._buffer, pos)
            if match is None:
                break
            # A trailing CR may be the first half of a CRLF split across feeds
            if match.group() == "\r" and match.end() == len(self._buffer):
                break
            event = self._process_line(self._buffer[pos : match.start()])
            if event is not None:
                events.append(event)
            pos = match.end()

        self._buffer = self._buffer[pos:]
        return events

    def flush(self) -> list[ServerSentEvent]:
        """Signal end of input.

        A held trailing CR still terminates its line. Whatever remains of an
        unterminated frame is discarded.
        """
        events: list[ServerSentEvent] = []
        if self._buffer.endswith("\r"):
            event = self._process_line(self._buffer[:-1])
            if event is not None:
                events.append(event)
            self._buffer = ""

        if self._buffer or self._data:
            logger.debug(
                "Discarding unterminated event frame at end of stream (%d chars)",
                len(self._buffer) + sum(len(d) for d in self._data),
            )
        self._buffer = ""
        self._event_type = ""
        self._data = []
        return events

    def _process_line(self, line: str) -> Optional[ServerSentEvent]:
        if not line:
            return self._dispatch()

        if line.startswith(":"):
            return None

        field, sep, value = line.partition(":")
        if sep and value.startswith(" "):
            value = value[1:]

        if field == "event":
            self._event_type = value
        elif field == "data":
            self._data.append(value)
        elif field == "id":
            if "\0" not in value:
                self._last_event_id = value
        elif field == "retry":
            if value.isdigit():
                self.retry = int(value)
        return None

    def _dispatch(self) -> Optional[ServerSentEvent]:
        if not self._data:
            self._event_type = ""
            return None

        event = ServerSentEvent(
            event=self._event_type or "message",
            data="\n".join(self._data),
            id=self._last_event_id,
            retry=self.retry,
        )
        self._event_type = ""
        self._data = []
        return event
