"""Health check endpoint for infrastructure monitoring."""

from __future__ import annotations

import logging
from typing import Any

import httpx
from fastapi import APIRouter, Depends

from chatrelay.config import Settings, get_settings
from chatrelay.dependencies import get_storage, get_upstream_client
from chatrelay.storage.base import StorageBackend

logger = logging.getLogger(__name__)
router = APIRouter()


async def _check_upstream(client: httpx.AsyncClient, settings: Settings) -> dict[str, Any]:
    """List upstream models and return status."""
    try:
        response = await client.get(
            f"{settings.api_base_url.rstrip('/')}/models",
            headers={"Authorization": f"Bearer {settings.api_key}"},
            timeout=5.0,
        )
        response.raise_for_status()
        return {"status": "healthy"}
    except httpx.HTTPError as exc:
        logger.warning("Upstream health check failed: %s", exc)
        return {"status": "unhealthy", "error": str(exc)}


@router.get("")
async def health_check(
    settings: Settings = Depends(get_settings),
    client: httpx.AsyncClient = Depends(get_upstream_client),
    storage: StorageBackend = Depends(get_storage),
) -> dict[str, Any]:
    """Return aggregate health of the upstream and the storage backend."""
    services = {
        "upstream": await _check_upstream(client, settings),
        "storage": await storage.ping(),
    }

    overall = (
        "healthy"
        if all(s["status"] == "healthy" for s in services.values())
        else "degraded"
    )

    return {
        "status": overall,
        "services": services,
    }
