"""Session list store for one chat client.

Holds the ordered session list and the active session id. Changes to the
active session are announced to listeners *after* the current step
finishes (``loop.call_soon``), the way a UI effect runs after the state
update that caused it. Listeners always receive the latest active id, so a
burst of changes collapses into one notification.
"""

from __future__ import annotations

import asyncio
import logging
import time
from datetime import datetime, timezone
from typing import Callable, Optional

from pydantic import ValidationError

from chatrelay.models.sessions import ChatSession, make_title
from chatrelay.storage.base import SESSIONS_KEY, StorageBackend, messages_key

logger = logging.getLogger(__name__)

SessionListener = Callable[[str], None]


class SessionStore:
    """Ordered, persisted list of chat sessions plus the active selection."""

    def __init__(self, storage: StorageBackend) -> None:
        self._storage = storage
        self.sessions: list[ChatSession] = []
        self.active_session_id = ""
        self._listeners: list[SessionListener] = []
        self._notify_scheduled = False
        self._hydrated = False

    # ------------------------------------------------------------------
    # Listeners
    # ------------------------------------------------------------------

    def subscribe(self, listener: SessionListener) -> None:
        """Register a callback for active-session changes."""
        self._listeners.append(listener)

    def _schedule_notify(self) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self._notify()
            return
        if not self._notify_scheduled:
            self._notify_scheduled = True
            loop.call_soon(self._notify)

    def _notify(self) -> None:
        self._notify_scheduled = False
        active = self.active_session_id
        for listener in list(self._listeners):
            listener(active)

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    async def hydrate(self) -> None:
        """Restore the session list and select the most recent session.

        If storage cannot be read the store stays unhydrated, so ``save``
        never overwrites the stored list with a partial one.
        """
        try:
            raw = await self._storage.get(SESSIONS_KEY)
        except Exception:
            logger.exception("Failed to read sessions from storage")
            return

        try:
            if isinstance(raw, list):
                self.sessions = [ChatSession.model_validate(item) for item in raw]
        except (ValidationError, TypeError) as exc:
            logger.error("Failed to load sessions: %s", exc)
            self.sessions = []

        self._hydrated = True
        logger.info("Session store hydrated with %d session(s)", len(self.sessions))
        if self.sessions:
            self.set_active_session(self.sessions[0].id)

    @property
    def hydrated(self) -> bool:
        return self._hydrated

    async def save(self) -> None:
        """Persist the whole session list (last writer wins)."""
        if not self._hydrated:
            return
        await self._storage.set(
            SESSIONS_KEY, [s.model_dump(mode="json") for s in self.sessions]
        )

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def get(self, session_id: str) -> Optional[ChatSession]:
        for session in self.sessions:
            if session.id == session_id:
                return session
        return None

    def _new_session_id(self) -> str:
        candidate = int(time.time() * 1000)
        existing = {s.id for s in self.sessions}
        while str(candidate) in existing:
            candidate += 1
        return str(candidate)

    def create_session(self, preview: str) -> str:
        """Create a session from the first user message and make it active."""
        session = ChatSession(
            id=self._new_session_id(),
            title=make_title(preview),
            preview=preview,
        )
        self.sessions.insert(0, session)
        logger.info("Created session %s", session.id)
        self.set_active_session(session.id)
        return session.id

    def update_session_preview(self, session_id: str, preview: str) -> None:
        """Record a new user message on a session and re-sort the list."""
        session = self.get(session_id)
        if session is None:
            logger.warning("Cannot update preview of unknown session %s", session_id)
            return
        session.preview = preview
        session.updated_at = datetime.now(timezone.utc)
        # list.sort is stable, also with reverse=True
        self.sessions.sort(key=lambda s: s.updated_at, reverse=True)

    async def delete_session(self, session_id: str) -> bool:
        """Delete a session and cascade to its persisted message list."""
        before = len(self.sessions)
        self.sessions = [s for s in self.sessions if s.id != session_id]
        if self.active_session_id == session_id:
            self.set_active_session("")
        await self._storage.delete(messages_key(session_id))
        await self.save()
        deleted = len(self.sessions) < before
        logger.info("Deleted session %s (found=%s)", session_id, deleted)
        return deleted

    def clear_new_chat(self) -> None:
        """Deselect the active session so the next message starts a new one."""
        self.set_active_session("")

    def set_active_session(self, session_id: str) -> None:
        if session_id == self.active_session_id:
            return
        self.active_session_id = session_id
        self._schedule_notify()
