"""Error taxonomy for the completion pipeline.

Only ``NetworkError``, non-fallback ``HttpError`` and errors of an exhausted
fallback ever reach the user as inline message text. ``DecodeError`` and
``StaleSessionError`` are absorbed where they occur, and
``GenerationCancelledError`` marks a clean, intentional stop.
"""

from __future__ import annotations


class ChatRelayError(Exception):
    """Base class for all pipeline errors."""


class NetworkError(ChatRelayError):
    """Transport-level failure (DNS, refused connection, TLS, dropped read)."""


class HttpError(ChatRelayError):
    """The proxy or upstream answered with a non-success status."""

    def __init__(self, status: int, body: str = "") -> None:
        self.status = status
        self.body = body
        super().__init__(f"API Error {status}: {body}")


class DecodeError(ChatRelayError):
    """A single event frame could not be parsed as JSON."""


class GenerationCancelledError(ChatRelayError):
    """The generation was stopped by the user or by a session switch."""

    def __init__(self, message: str = "Generation stopped by user") -> None:
        super().__init__(message)


class StaleSessionError(ChatRelayError):
    """A submit or chunk arrived for a session that is no longer active."""
