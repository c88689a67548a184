"""WebSocket endpoint: one chat client workspace per connection."""

import asyncio
import json
import logging
from datetime import datetime, timezone
from typing import Any

from fastapi import WebSocket, WebSocketDisconnect
from pydantic import ValidationError

from chatrelay.chat.controller import ChatController
from chatrelay.chat.messages import MessageStore
from chatrelay.chat.sessions import SessionStore
from chatrelay.config import settings
from chatrelay.dependencies import get_completion_client, get_storage
from chatrelay.models.completions import ChatSettings
from chatrelay.models.messages import Attachment, Message

logger = logging.getLogger(__name__)


def _frame(msg_type: str, content: Any, session_id: str) -> dict[str, Any]:
    return {
        "type": msg_type,
        "content": content,
        "session_id": session_id,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


async def _drain(websocket: WebSocket, outbox: "asyncio.Queue[dict[str, Any]]") -> None:
    """Send queued frames in order."""
    while True:
        payload = await outbox.get()
        await websocket.send_json(payload)


async def websocket_chat(websocket: WebSocket) -> None:
    """Handle a chat client connection.

    Protocol:
        Client sends JSON: {"type": "send", "content": "...", "attachments": [...],
                            "model": "...", "system_prompt": "..."}
        Client sends JSON: {"type": "stop"}
        Client sends JSON: {"type": "select_session", "session_id": "..."}
        Client sends JSON: {"type": "new_chat"}
        Client sends JSON: {"type": "delete_session", "session_id": "..."}
        Client sends JSON: {"type": "settings", "model": "...", "system_prompt": "..."}
        Server sends JSON: {"type": "status"|"sessions"|"messages"|"update"|"error",
                            "content": ..., "session_id": "...", "timestamp": "..."}
    """
    await websocket.accept()

    storage = get_storage()
    sessions = SessionStore(storage)
    messages = MessageStore(storage)
    controller = ChatController(sessions, messages, get_completion_client())
    chat_settings = ChatSettings(
        model=websocket.query_params.get("model", settings.default_model)
    )

    outbox: asyncio.Queue[dict[str, Any]] = asyncio.Queue()
    sender = asyncio.create_task(_drain(websocket, outbox))
    generations: set[asyncio.Task] = set()

    def push(msg_type: str, content: Any, session_id: str = "") -> None:
        outbox.put_nowait(_frame(msg_type, content, session_id))

    def push_sessions(_: str = "") -> None:
        push(
            "sessions",
            [s.model_dump(mode="json") for s in sessions.sessions],
            sessions.active_session_id,
        )

    def on_update(session_id: str, message: Message) -> None:
        push("update", message.model_dump(mode="json", exclude_none=True), session_id)

    def on_reset(session_id: str, view: list[Message]) -> None:
        push(
            "messages",
            [m.model_dump(mode="json", exclude_none=True) for m in view],
            session_id,
        )

    messages.subscribe(on_update, on_reset)
    sessions.subscribe(push_sessions)

    await sessions.hydrate()
    if not sessions.hydrated:
        push("error", "Failed to load sessions from storage")
    push_sessions()
    if not sessions.active_session_id:
        on_reset("", messages.messages)
    push("status", "Connected")
    logger.info("Chat client connected (%d stored sessions)", len(sessions.sessions))

    async def run_send(
        content: str,
        attachments: list[Attachment] | None,
        send_settings: ChatSettings,
    ) -> None:
        try:
            await controller.send(content, send_settings, attachments)
        except Exception as exc:
            logger.exception("Send failed")
            push("error", f"Processing error: {exc}", sessions.active_session_id)
        push_sessions()

    try:
        while True:
            ws_message = await websocket.receive()

            if ws_message.get("type") == "websocket.disconnect":
                logger.info("Chat client disconnect received")
                break

            raw = ws_message.get("text")
            if not raw:
                continue

            try:
                data = json.loads(raw)
            except json.JSONDecodeError:
                push("error", "Invalid JSON", sessions.active_session_id)
                continue

            msg_type = data.get("type", "send")

            if msg_type == "send":
                content = data.get("content", "")
                try:
                    attachments = [
                        Attachment.model_validate(a) for a in data.get("attachments") or []
                    ]
                except ValidationError as exc:
                    push("error", f"Invalid attachment: {exc}", sessions.active_session_id)
                    continue
                if not content.strip() and not attachments:
                    push("error", "Empty message", sessions.active_session_id)
                    continue
                # a queued send has not registered its generation yet
                if controller.is_generating or generations:
                    push("error", "A reply is still being generated", sessions.active_session_id)
                    continue
                send_settings = ChatSettings(
                    model=data.get("model") or chat_settings.model,
                    system_prompt=data.get("system_prompt", chat_settings.system_prompt),
                )
                task = asyncio.create_task(
                    run_send(content, attachments or None, send_settings)
                )
                generations.add(task)
                task.add_done_callback(generations.discard)
            elif msg_type == "stop":
                controller.stop()
            elif msg_type == "select_session":
                sessions.set_active_session(data.get("session_id", ""))
            elif msg_type == "new_chat":
                sessions.clear_new_chat()
            elif msg_type == "delete_session":
                session_id = data.get("session_id", "")
                await sessions.delete_session(session_id)
                messages.forget(session_id)
                push_sessions()
            elif msg_type == "settings":
                chat_settings = ChatSettings(
                    model=data.get("model") or chat_settings.model,
                    system_prompt=data.get("system_prompt", chat_settings.system_prompt),
                )
                push("status", f"Model set to {chat_settings.model}", sessions.active_session_id)
            else:
                push("error", "Unsupported message type", sessions.active_session_id)

    except WebSocketDisconnect:
        logger.info("Chat client disconnected")
    except Exception as exc:
        logger.exception("WebSocket error")
        try:
            await websocket.send_json(_frame("error", str(exc), sessions.active_session_id))
        except Exception:
            pass
    finally:
        controller.cancel_all()
        if generations:
            await asyncio.gather(*generations, return_exceptions=True)
        sender.cancel()
        await asyncio.gather(sender, return_exceptions=True)
