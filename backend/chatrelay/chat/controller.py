"""Session-consistency controller: one per chat client.

Owns the mapping from a chat session to its in-flight generation and makes
sure a generation's output lands only in the session that started it, even
when the user switches sessions or starts a new one mid-stream.

States per session are ``IDLE`` and ``GENERATING``. Two pieces of global
state guard the races between session bookkeeping and generation:

* ``typing_guard_active`` is raised before any session is created or
  selected for a submit, and lowered once no generation is left. While it
  is up, a session-changed notification does not reload messages, so the
  freshly created session's history cannot clobber the assistant message
  that is already streaming into it.
* ``last_loaded_session_id`` (the message store's ``loaded_session_id``)
  names the session whose messages are on display. A chunk is applied only
  if its generation handle is still the registered one for its session and
  that session is the loaded one.

Capacity failures (HTTP 503/429) of the default model trigger exactly one
retry on the configured fallback model, into the same assistant message.
"""

from __future__ import annotations

import asyncio
import logging
from enum import Enum
from typing import Optional, Sequence

from chatrelay.chat.messages import MessageStore
from chatrelay.chat.sessions import SessionStore
from chatrelay.client.cancellation import CancellationToken
from chatrelay.client.completion import CompletionClient
from chatrelay.config import Settings, settings as default_settings
from chatrelay.errors import GenerationCancelledError, HttpError, StaleSessionError
from chatrelay.models.completions import ChatSettings, Snapshot
from chatrelay.models.messages import (
    WELCOME_MESSAGE_ID,
    Attachment,
    Message,
    MessageRole,
)

logger = logging.getLogger(__name__)

CAPACITY_STATUSES = (503, 429)


class SessionState(str, Enum):
    IDLE = "idle"
    GENERATING = "generating"


class GenerationHandle:
    """Ephemeral record of one in-flight ask."""

    def __init__(self, owner_session_id: str, assistant_message_id: str, model: str) -> None:
        self.owner_session_id = owner_session_id
        self.assistant_message_id = assistant_message_id
        self.model = model
        self.token = CancellationToken()
        self.fallback_attempted = False

    def __repr__(self) -> str:
        return (
            f"GenerationHandle(session={self.owner_session_id!r}, "
            f"message={self.assistant_message_id!r}, model={self.model!r})"
        )


def is_current_owner(
    handle: GenerationHandle,
    registered: Optional[GenerationHandle],
    loaded_session_id: str,
) -> bool:
    """True if ``handle`` may still write into its session's messages."""
    return registered is handle and handle.owner_session_id == loaded_session_id


def is_capacity_error(exc: BaseException) -> bool:
    """Recognise capacity or rate exhaustion (HTTP 503 / 429)."""
    if isinstance(exc, HttpError):
        return exc.status in CAPACITY_STATUSES
    text = str(exc)
    return any(str(status) in text for status in CAPACITY_STATUSES)


def build_preview(content: str, attachments: Optional[Sequence[Attachment]] = None) -> str:
    """Sidebar preview text for a user message."""
    if attachments:
        count = len(attachments)
        noun = "attachment" if count == 1 else "attachments"
        return f"[{count} {noun}] {content or '(attachments only)'}"
    return content


class ChatController:
    """Drives generations for one chat client and guards session ownership."""

    def __init__(
        self,
        sessions: SessionStore,
        messages: MessageStore,
        client: CompletionClient,
        config: Settings | None = None,
    ) -> None:
        self.sessions = sessions
        self.messages = messages
        self.client = client
        self._config = config or default_settings

        self.typing_guard_active = False
        self.tracked_session_id = sessions.active_session_id
        self._generations: dict[str, GenerationHandle] = {}
        self._load_task: asyncio.Task | None = None

        sessions.subscribe(self.on_session_changed)

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def last_loaded_session_id(self) -> str:
        return self.messages.loaded_session_id

    @property
    def is_generating(self) -> bool:
        return bool(self._generations)

    def state(self, session_id: str) -> SessionState:
        if session_id in self._generations:
            return SessionState.GENERATING
        return SessionState.IDLE

    def generation_for(self, session_id: str) -> Optional[GenerationHandle]:
        return self._generations.get(session_id)

    def _owns(self, handle: GenerationHandle) -> bool:
        return is_current_owner(
            handle,
            self._generations.get(handle.owner_session_id),
            self.last_loaded_session_id,
        )

    def _release_guard(self) -> None:
        if not self._generations:
            self.typing_guard_active = False

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def lock_for_sending(self) -> None:
        """Raise the typing guard ahead of session creation/selection."""
        self.typing_guard_active = True

    async def send(
        self,
        content: str,
        chat_settings: ChatSettings,
        attachments: Optional[list[Attachment]] = None,
    ) -> Optional[Message]:
        """Send a user message, creating a session first if none is active.

        Returns the final assistant message.
        """
        preview = build_preview(content, attachments)

        # Must precede create_session: its session-changed notification
        # would otherwise load the (empty) new session over our messages.
        self.lock_for_sending()

        session_id = self.sessions.active_session_id
        if not session_id:
            session_id = self.sessions.create_session(preview)
        else:
            self.sessions.update_session_preview(session_id, preview)

        try:
            return await self.submit(
                content, chat_settings, attachments, target_session_id=session_id
            )
        finally:
            await self.sessions.save()

    async def submit(
        self,
        content: str,
        chat_settings: ChatSettings,
        attachments: Optional[list[Attachment]] = None,
        target_session_id: Optional[str] = None,
    ) -> Optional[Message]:
        """Start a generation for ``target_session_id`` or the active session.

        Without an explicit target, a submit whose active session disagrees
        with the session this controller last saw selected is rejected as
        stale and has no side effects.

        Returns:
            The assistant message in its final state, or None if rejected.
        """
        self.typing_guard_active = True
        session_id = target_session_id or self.sessions.active_session_id

        if not self._accepts(session_id, explicit=target_session_id is not None):
            self._release_guard()
            return None

        if not self.messages.is_loaded(session_id):
            try:
                history = await self.messages.fetch(session_id)
            except Exception:
                self._release_guard()
                raise
            if not self._accepts(session_id, explicit=target_session_id is not None):
                self._release_guard()
                return None
            self.messages.install(session_id, history)
        elif self.last_loaded_session_id != session_id:
            self.messages.install(session_id, self.messages.messages_for(session_id))

        history = [
            m for m in self.messages.messages_for(session_id) if m.id != WELCOME_MESSAGE_ID
        ]
        user_message = Message(
            role=MessageRole.USER, content=content, attachments=attachments or None
        )
        history.append(user_message)
        self.messages.append(session_id, user_message)

        assistant_message = Message(role=MessageRole.ASSISTANT, content="")
        self.messages.append(session_id, assistant_message)

        previous = self._generations.get(session_id)
        if previous is not None:
            logger.info("Superseding %r", previous)

        handle = GenerationHandle(session_id, assistant_message.id, chat_settings.model)
        self._generations[session_id] = handle
        logger.info("Starting %r", handle)

        await self._run_generation(handle, history, chat_settings)
        return self.messages.get_message(session_id, assistant_message.id)

    def stop(self) -> bool:
        """Cancel the displayed session's generation and force it idle.

        Returns False when there was nothing to stop.
        """
        handle = self._generations.get(self.last_loaded_session_id)
        if handle is None:
            return False
        handle.token.cancel()
        del self._generations[handle.owner_session_id]
        self._release_guard()
        logger.info("Stopped %r", handle)
        return True

    def cancel_all(self) -> None:
        """Cancel every running generation (client going away)."""
        for handle in list(self._generations.values()):
            handle.token.cancel()
        self._generations.clear()
        self.typing_guard_active = False

    def on_session_changed(self, new_session_id: str) -> None:
        """React to a change of the active session.

        Only a switch between two real sessions cancels a running
        generation; going from no session to a session is the
        new-conversation path and must leave its generation alone.
        """
        previous = self.tracked_session_id
        if new_session_id == previous:
            return
        self.tracked_session_id = new_session_id

        genuine_switch = bool(previous) and bool(new_session_id)
        if genuine_switch and self._generations:
            logger.info(
                "Session switched %s -> %s during generation, cancelling",
                previous,
                new_session_id,
            )
            self.cancel_all()

        if self.typing_guard_active:
            logger.debug("Skipping message load for %s - generation in progress", new_session_id)
            return

        self._load_task = asyncio.create_task(self._load_session(new_session_id))

    async def wait_for_load(self) -> None:
        """Wait for a pending session load, if any."""
        if self._load_task is not None:
            await self._load_task

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _accepts(self, session_id: str, *, explicit: bool) -> bool:
        if not session_id:
            logger.warning("Submit without a session ignored")
            return False
        if not explicit and self.tracked_session_id != session_id:
            logger.info(
                "Dropping submit: %s",
                StaleSessionError(
                    f"active session {session_id!r} != tracked {self.tracked_session_id!r}"
                ),
            )
            return False
        return True

    async def _load_session(self, session_id: str) -> None:
        try:
            messages = await self.messages.fetch(session_id)
        except Exception:
            logger.exception("Failed to load messages for session %s", session_id)
            messages = None
        # A generation may have started or the user moved on while loading
        if self.typing_guard_active or self.tracked_session_id != session_id:
            logger.debug("Discarding stale message load for %s", session_id or "<new chat>")
            return
        if messages is None:
            self.messages.show_unloaded(session_id)
            return
        self.messages.install(session_id, messages)

    async def _run_generation(
        self,
        handle: GenerationHandle,
        history: list[Message],
        chat_settings: ChatSettings,
    ) -> None:
        try:
            await self._ask(handle, history, handle.model, chat_settings.system_prompt)
        except GenerationCancelledError:
            logger.info("Generation cancelled for session %s", handle.owner_session_id)
        except Exception as exc:
            if self._should_fall_back(handle, exc):
                await self._fall_back(handle, history, chat_settings, exc)
            else:
                logger.error("Generation failed for session %s: %s", handle.owner_session_id, exc)
                self._report_failure(handle, exc)
        finally:
            self._complete(handle)
            await self.messages.save(handle.owner_session_id)

    async def _ask(
        self,
        handle: GenerationHandle,
        history: list[Message],
        model: str,
        system_prompt: Optional[str],
    ) -> Snapshot:
        def on_chunk(snapshot: Snapshot) -> None:
            if not self._owns(handle):
                logger.debug(
                    "Dropping chunk: %s",
                    StaleSessionError(f"{handle!r} no longer owns its session"),
                )
                return
            self.messages.apply_snapshot(
                handle.owner_session_id,
                handle.assistant_message_id,
                snapshot.content,
                snapshot.reasoning,
            )

        return await self.client.ask(
            history,
            model,
            on_chunk=on_chunk,
            system_prompt=system_prompt,
            cancel_token=handle.token,
        )

    def _should_fall_back(self, handle: GenerationHandle, exc: Exception) -> bool:
        return (
            not handle.fallback_attempted
            and handle.model == self._config.default_model
            and is_capacity_error(exc)
            and self._generations.get(handle.owner_session_id) is handle
        )

    async def _fall_back(
        self,
        handle: GenerationHandle,
        history: list[Message],
        chat_settings: ChatSettings,
        primary_error: Exception,
    ) -> None:
        handle.fallback_attempted = True
        fallback_model = self._config.fallback_model
        logger.warning(
            "Model %s unavailable (%s), retrying with %s",
            handle.model,
            primary_error,
            fallback_model,
        )

        if self._owns(handle):
            self.messages.set_content(
                handle.owner_session_id,
                handle.assistant_message_id,
                f"_(Default model is busy, switching to "
                f"{self._config.fallback_model_label}...)_\n\n",
            )

        try:
            await self._ask(handle, history, fallback_model, chat_settings.system_prompt)
        except GenerationCancelledError:
            logger.info("Fallback generation cancelled for session %s", handle.owner_session_id)
        except Exception as exc:
            logger.error("Fallback model %s also failed: %s", fallback_model, exc)
            self._report_failure(handle, exc)

    def _report_failure(self, handle: GenerationHandle, exc: Exception) -> None:
        if not self._owns(handle):
            logger.debug("Not reporting failure of %r: session no longer owned", handle)
            return
        message = self.messages.get_message(
            handle.owner_session_id, handle.assistant_message_id
        )
        existing = message.content if message is not None else ""
        self.messages.set_content(
            handle.owner_session_id,
            handle.assistant_message_id,
            f"{existing}\n\n[Error: {exc}]",
        )

    def _complete(self, handle: GenerationHandle) -> None:
        if self._generations.get(handle.owner_session_id) is handle:
            del self._generations[handle.owner_session_id]
        self._release_guard()
        logger.info("Finished %r", handle)
