"""Model catalogue endpoint."""

from typing import Any

from fastapi import APIRouter, Depends

from chatrelay.config import Settings, get_settings

router = APIRouter()


@router.get("")
async def list_models(settings: Settings = Depends(get_settings)) -> dict[str, Any]:
    """Return the selectable models and the default/fallback pair."""
    return {
        "default_model": settings.default_model,
        "fallback_model": settings.fallback_model,
        "models": list(settings.available_models),
    }
