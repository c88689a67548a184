"""Streaming module - server-sent-event parsing and completion snapshot decoding."""

from .decoder import SnapshotAccumulator, iter_snapshots
from .sse import ServerSentEvent, SSEParser

__all__ = ["SSEParser", "ServerSentEvent", "SnapshotAccumulator", "iter_snapshots"]
