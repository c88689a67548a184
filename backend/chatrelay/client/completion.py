"""Streaming chat-completion client that talks to the local proxy route.

One ``ask`` call is one logical request to the model: it builds the wire
payload, streams the response through the snapshot decoder and hands every
cumulative snapshot to ``on_chunk`` before reading further.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Optional, Sequence

import httpx

from chatrelay.client.cancellation import CancellationToken
from chatrelay.config import settings
from chatrelay.errors import GenerationCancelledError, HttpError, NetworkError
from chatrelay.models.completions import Snapshot
from chatrelay.models.messages import Message, MessageRole, format_message
from chatrelay.streaming.decoder import iter_snapshots

logger = logging.getLogger(__name__)

ChunkCallback = Callable[[Snapshot], None]


def build_payload(
    history: Sequence[Message],
    model: str,
    system_prompt: Optional[str] = None,
) -> dict[str, Any]:
    """Build the streaming chat-completions request body."""
    messages = [format_message(m) for m in history]
    if system_prompt:
        messages.insert(0, {"role": MessageRole.SYSTEM.value, "content": system_prompt})
    return {"model": model, "messages": messages, "stream": True}


class CompletionClient:
    """Streams completions from the proxy route.

    Lifecycle:
        client = CompletionClient()
        await client.initialize()
        ...
        await client.close()

    An ``httpx.AsyncClient`` may be injected instead, in which case the
    caller owns it and ``initialize``/``close`` leave it alone.
    """

    def __init__(
        self,
        http_client: httpx.AsyncClient | None = None,
        endpoint: str | None = None,
    ) -> None:
        self._client = http_client
        self._owns_client = http_client is None
        self._endpoint = endpoint or settings.chat_proxy_url

    async def initialize(self) -> None:
        """Create the HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(settings.upstream_timeout, connect=30.0)
            )
        logger.info("CompletionClient initialized (endpoint=%s)", self._endpoint)

    async def close(self) -> None:
        """Close the HTTP client if this instance created it."""
        if self._client and self._owns_client:
            await self._client.aclose()
            self._client = None
        logger.info("CompletionClient closed")

    async def ask(
        self,
        history: Sequence[Message],
        model: str,
        *,
        on_chunk: ChunkCallback,
        system_prompt: Optional[str] = None,
        cancel_token: Optional[CancellationToken] = None,
    ) -> Snapshot:
        """Run one streaming completion and return the final totals.

        Args:
            history: Conversation so far, oldest first.
            model: Model id to request.
            on_chunk: Called synchronously with each cumulative snapshot.
            system_prompt: Optional system instruction prepended to history.
            cancel_token: Token whose cancellation aborts the pending read.

        Returns:
            The final cumulative ``Snapshot`` (empty if nothing streamed).

        Raises:
            NetworkError: The proxy could not be reached or the read failed.
            HttpError: The proxy answered with a non-success status.
            GenerationCancelledError: ``cancel_token`` was cancelled.
        """
        if self._client is None:
            raise RuntimeError("CompletionClient not initialized. Call initialize() first.")

        token = cancel_token or CancellationToken()
        if token.cancelled:
            raise GenerationCancelledError()

        payload = build_payload(history, model, system_prompt)
        logger.info(
            "Sending completion request: model=%s, messages=%d",
            model,
            len(payload["messages"]),
        )

        stream_task = asyncio.create_task(self._stream(payload, on_chunk, token))
        waiter = asyncio.create_task(token.wait())
        try:
            await asyncio.wait({stream_task, waiter}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            waiter.cancel()
            if not stream_task.done():
                stream_task.cancel()
                await asyncio.gather(stream_task, return_exceptions=True)

        if stream_task.cancelled():
            logger.info("Completion cancelled: model=%s", model)
            raise GenerationCancelledError()
        return stream_task.result()

    async def _stream(
        self,
        payload: dict[str, Any],
        on_chunk: ChunkCallback,
        token: CancellationToken,
    ) -> Snapshot:
        final = Snapshot()
        try:
            async with self._client.stream("POST", self._endpoint, json=payload) as response:
                if not response.is_success:
                    body = (await response.aread()).decode("utf-8", errors="replace")
                    logger.warning(
                        "Completion request failed with %d: %s",
                        response.status_code,
                        body[:200],
                    )
                    raise HttpError(response.status_code, body)

                async for snapshot in iter_snapshots(response.aiter_bytes()):
                    if token.cancelled:
                        raise GenerationCancelledError()
                    on_chunk(snapshot)
                    final = snapshot
        except httpx.RequestError as exc:
            raise NetworkError(f"Failed to reach chat proxy: {exc}") from exc

        logger.debug(
            "Completion stream finished: %d content chars, %d reasoning chars",
            len(final.content),
            len(final.reasoning),
        )
        return final
