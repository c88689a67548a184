"""Chat-completions proxy route.

Forwards the request body to the upstream ``/chat/completions`` endpoint
with the server-side bearer token. Streaming requests get the upstream
event stream back verbatim; others get the upstream JSON object.
"""

from __future__ import annotations

import logging
from typing import AsyncIterator

import httpx
from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse, Response, StreamingResponse

from chatrelay.config import Settings, get_settings
from chatrelay.dependencies import get_upstream_client
from chatrelay.models.completions import ChatCompletionRequest

logger = logging.getLogger(__name__)
router = APIRouter()

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}


async def _relay(upstream: httpx.Response) -> AsyncIterator[bytes]:
    try:
        async for chunk in upstream.aiter_bytes():
            yield chunk
    finally:
        await upstream.aclose()


@router.post("")
async def proxy_chat(
    request: Request,
    upstream: httpx.AsyncClient = Depends(get_upstream_client),
    settings: Settings = Depends(get_settings),
) -> Response:
    """Forward a chat-completion request to the upstream backend."""
    try:
        body = ChatCompletionRequest.model_validate(await request.json())
        headers = {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {settings.api_key}",
        }
        payload = body.model_dump()
        logger.info(
            "Proxying chat request: model=%s, messages=%d, stream=%s",
            body.model,
            len(body.messages),
            body.stream,
        )

        if body.stream:
            upstream_request = upstream.build_request(
                "POST", settings.completions_url, headers=headers, json=payload
            )
            response = await upstream.send(upstream_request, stream=True)

            # Non-2xx: drain and return the error body with its status
            if not response.is_success:
                error_bytes = await response.aread()
                await response.aclose()
                logger.warning(
                    "Upstream returned %d: %s",
                    response.status_code,
                    error_bytes[:200].decode("utf-8", errors="replace"),
                )
                return Response(
                    content=error_bytes,
                    status_code=response.status_code,
                    media_type=response.headers.get("content-type", "application/json"),
                )

            return StreamingResponse(
                _relay(response),
                status_code=response.status_code,
                media_type="text/event-stream",
                headers=SSE_HEADERS,
            )

        response = await upstream.post(
            settings.completions_url, headers=headers, json=payload
        )
        return JSONResponse(content=response.json(), status_code=response.status_code)

    except Exception as exc:
        logger.exception("Proxy request failed")
        return JSONResponse(
            content={"error": "Internal server error", "message": str(exc)},
            status_code=500,
        )
