"""Per-session message lists for one chat client."""

from __future__ import annotations

import logging
from typing import Callable, Optional

from pydantic import ValidationError

from chatrelay.models.messages import Message, welcome_message
from chatrelay.storage.base import StorageBackend, messages_key

logger = logging.getLogger(__name__)

UpdateListener = Callable[[str, Message], None]
ResetListener = Callable[[str, list[Message]], None]


class MessageStore:
    """Message lists keyed by session id, plus which session is on display.

    ``loaded_session_id`` names the session whose messages currently
    populate the view. Mutations are synchronous; persistence is an explicit
    ``save`` of a whole list.
    """

    def __init__(self, storage: StorageBackend) -> None:
        self._storage = storage
        self._lists: dict[str, list[Message]] = {}
        self.loaded_session_id = ""
        self._update_listeners: list[UpdateListener] = []
        self._reset_listeners: list[ResetListener] = []

    def subscribe(
        self,
        on_update: UpdateListener,
        on_reset: Optional[ResetListener] = None,
    ) -> None:
        """Listen for single-message changes and whole-view replacements."""
        self._update_listeners.append(on_update)
        if on_reset is not None:
            self._reset_listeners.append(on_reset)

    # ------------------------------------------------------------------
    # Reading
    # ------------------------------------------------------------------

    @property
    def messages(self) -> list[Message]:
        """The view: loaded session's messages, or the welcome placeholder."""
        current = self._lists.get(self.loaded_session_id)
        if not current:
            return [welcome_message()]
        return list(current)

    def messages_for(self, session_id: str) -> list[Message]:
        return list(self._lists.get(session_id, []))

    def is_loaded(self, session_id: str) -> bool:
        return session_id in self._lists

    def get_message(self, session_id: str, message_id: str) -> Optional[Message]:
        for message in self._lists.get(session_id, []):
            if message.id == message_id:
                return message
        return None

    async def fetch(self, session_id: str) -> list[Message]:
        """Return a session's messages, from memory if held, else from storage."""
        if not session_id:
            return []
        if session_id in self._lists:
            return list(self._lists[session_id])

        raw = await self._storage.get(messages_key(session_id))
        if not isinstance(raw, list):
            return []
        try:
            return [Message.model_validate(item) for item in raw]
        except ValidationError as exc:
            logger.error("Failed to load messages for session %s: %s", session_id, exc)
            return []

    # ------------------------------------------------------------------
    # Writing
    # ------------------------------------------------------------------

    def install(self, session_id: str, messages: list[Message]) -> None:
        """Make ``session_id`` the displayed session with the given history."""
        if session_id:
            self._lists[session_id] = list(messages)
        self.loaded_session_id = session_id
        view = self.messages
        for listener in list(self._reset_listeners):
            listener(session_id, view)

    def show_unloaded(self, session_id: str) -> None:
        """Display ``session_id`` with the welcome view, caching nothing.

        Used when its history could not be read, so a later submit fetches
        again instead of saving over the stored list.
        """
        self._lists.pop(session_id, None)
        self.loaded_session_id = session_id
        view = self.messages
        for listener in list(self._reset_listeners):
            listener(session_id, view)

    def append(self, session_id: str, message: Message) -> None:
        self._lists.setdefault(session_id, []).append(message)
        self._emit(session_id, message)

    def apply_snapshot(
        self,
        session_id: str,
        message_id: str,
        content: str,
        reasoning: str = "",
    ) -> Optional[Message]:
        """Replace a streaming message's text with cumulative totals."""
        message = self._find_for_update(session_id, message_id)
        if message is None:
            return None
        message.content = content
        message.reasoning = reasoning or None
        self._emit(session_id, message)
        return message

    def set_content(
        self, session_id: str, message_id: str, content: str
    ) -> Optional[Message]:
        """Overwrite a message's content, leaving its reasoning untouched."""
        message = self._find_for_update(session_id, message_id)
        if message is None:
            return None
        message.content = content
        self._emit(session_id, message)
        return message

    def _find_for_update(self, session_id: str, message_id: str) -> Optional[Message]:
        message = self.get_message(session_id, message_id)
        if message is None:
            logger.warning("Message %s not found in session %s", message_id, session_id)
        return message

    def forget(self, session_id: str) -> None:
        """Drop a session's in-memory list (after the session was deleted)."""
        self._lists.pop(session_id, None)

    async def save(self, session_id: str) -> None:
        """Persist a session's whole message list (last writer wins)."""
        if not session_id or session_id not in self._lists:
            return
        await self._storage.set(
            messages_key(session_id),
            [
                m.model_dump(mode="json", exclude_none=True)
                for m in self._lists[session_id]
            ],
        )

    def _emit(self, session_id: str, message: Message) -> None:
        for listener in list(self._update_listeners):
            listener(session_id, message)
