"""Message models for chat history and the completion wire format."""

from __future__ import annotations

import time
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field

WELCOME_MESSAGE_ID = "welcome"
WELCOME_TEXT = "Hello. I'm connected and ready."

_last_id = 0


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_message_id() -> str:
    """Return a creation-time id, strictly increasing within this process."""
    global _last_id
    _last_id = max(int(time.time() * 1000), _last_id + 1)
    return str(_last_id)


class MessageRole(str, Enum):
    """Message sender role."""

    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"


class AttachmentType(str, Enum):
    """Kind of uploaded file."""

    IMAGE = "image"
    PDF = "pdf"
    FILE = "file"


class Attachment(BaseModel):
    """A file attached to a user message, carried inline as base64."""

    id: str
    type: AttachmentType
    name: str
    mime_type: str
    size: int = 0
    base64: str
    preview_url: Optional[str] = None

    @property
    def data_url(self) -> str:
        return f"data:{self.mime_type};base64,{self.base64}"


class Message(BaseModel):
    """Persisted chat message.

    Assistant messages are created empty and their ``content`` and
    ``reasoning`` are replaced with cumulative totals while streaming.
    """

    id: str = Field(default_factory=new_message_id)
    role: MessageRole
    content: str = ""
    reasoning: Optional[str] = None
    attachments: Optional[list[Attachment]] = None
    timestamp: datetime = Field(default_factory=_utcnow)


def welcome_message() -> Message:
    """The placeholder shown for a conversation with no history."""
    return Message(
        id=WELCOME_MESSAGE_ID,
        role=MessageRole.ASSISTANT,
        content=WELCOME_TEXT,
    )


def format_message(message: Message) -> dict[str, Any]:
    """Translate a message into the OpenAI chat-completions wire shape.

    Messages without attachments carry plain string content. With
    attachments the content becomes a list of typed parts: a leading text
    part (when there is text), then one part per attachment. Images are
    sent as inline data URLs; any other file is replaced by a text part
    naming it, so the model never receives raw non-image binary.
    """
    if not message.attachments:
        return {"role": message.role.value, "content": message.content or ""}

    parts: list[dict[str, Any]] = []
    if message.content:
        parts.append({"type": "text", "text": message.content})

    for attachment in message.attachments:
        if attachment.type == AttachmentType.IMAGE:
            parts.append(
                {
                    "type": "image_url",
                    "image_url": {"url": attachment.data_url, "detail": "auto"},
                }
            )
        elif attachment.type == AttachmentType.PDF:
            parts.append(
                {"type": "text", "text": f"[Uploaded PDF file: {attachment.name}]"}
            )
        else:
            parts.append(
                {"type": "text", "text": f"[Uploaded file: {attachment.name}]"}
            )

    return {"role": message.role.value, "content": parts}
