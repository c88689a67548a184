"""Session models for conversation management."""

from datetime import datetime, timezone

from pydantic import BaseModel, Field

TITLE_LENGTH = 30


def make_title(preview: str) -> str:
    """Derive a session title from the first user message preview."""
    if len(preview) > TITLE_LENGTH:
        return preview[:TITLE_LENGTH] + "..."
    return preview


class ChatSession(BaseModel):
    """Conversation session metadata."""

    id: str
    title: str = ""
    preview: str = ""
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class SessionSummary(BaseModel):
    """Summary of a session for list views."""

    id: str
    title: str
    preview: str
    updated_at: datetime
    message_count: int = 0
