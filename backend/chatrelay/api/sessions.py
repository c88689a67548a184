"""Session management endpoints over the persisted session list."""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, Depends, HTTPException

from chatrelay.dependencies import get_storage
from chatrelay.models.sessions import ChatSession, SessionSummary
from chatrelay.storage.base import SESSIONS_KEY, StorageBackend, messages_key

logger = logging.getLogger(__name__)
router = APIRouter()


async def _load_sessions(storage: StorageBackend) -> list[ChatSession]:
    raw = await storage.get(SESSIONS_KEY)
    if not isinstance(raw, list):
        return []
    return [ChatSession.model_validate(item) for item in raw]


@router.get("", response_model=list[SessionSummary])
async def list_sessions(
    storage: StorageBackend = Depends(get_storage),
) -> list[dict[str, Any]]:
    """Return all chat sessions, most recently updated first."""
    sessions = await _load_sessions(storage)
    sessions.sort(key=lambda s: s.updated_at, reverse=True)

    summaries = []
    for session in sessions:
        messages = await storage.get(messages_key(session.id)) or []
        summaries.append(
            {
                **session.model_dump(),
                "message_count": len(messages),
            }
        )
    return summaries


@router.get("/{session_id}/history")
async def get_session_history(
    session_id: str,
    storage: StorageBackend = Depends(get_storage),
) -> dict[str, Any]:
    """Return the persisted message list for a session."""
    sessions = await _load_sessions(storage)
    if not any(s.id == session_id for s in sessions):
        raise HTTPException(status_code=404, detail="Session not found")

    return {
        "session_id": session_id,
        "messages": await storage.get(messages_key(session_id)) or [],
    }


@router.delete("/{session_id}")
async def delete_session(
    session_id: str,
    storage: StorageBackend = Depends(get_storage),
) -> dict[str, str]:
    """Delete a chat session and its history."""
    sessions = await _load_sessions(storage)
    remaining = [s for s in sessions if s.id != session_id]
    if len(remaining) == len(sessions):
        raise HTTPException(status_code=404, detail="Session not found")

    await storage.set(SESSIONS_KEY, [s.model_dump(mode="json") for s in remaining])
    await storage.delete(messages_key(session_id))
    logger.info("Deleted session %s via API", session_id)

    return {"status": "deleted", "session_id": session_id}
