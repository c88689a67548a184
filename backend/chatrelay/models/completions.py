"""Completion request and streaming snapshot models."""

from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, ConfigDict


class ChatCompletionRequest(BaseModel):
    """Body accepted by the proxy and forwarded to the upstream backend.

    Unknown fields (temperature, max_tokens, ...) are passed through as-is.
    """

    model_config = ConfigDict(extra="allow")

    model: str
    messages: list[dict[str, Any]]
    stream: bool = False


class Snapshot(BaseModel):
    """Cumulative text decoded so far for one generation."""

    content: str = ""
    reasoning: str = ""


class ChatSettings(BaseModel):
    """Per-client generation settings."""

    model: str
    system_prompt: Optional[str] = None
