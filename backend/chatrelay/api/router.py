"""Central API router that aggregates all route modules."""

from fastapi import APIRouter

from chatrelay.api.health import router as health_router
from chatrelay.api.models import router as models_router
from chatrelay.api.proxy import router as proxy_router
from chatrelay.api.sessions import router as sessions_router

api_router = APIRouter()

api_router.include_router(health_router, prefix="/health", tags=["health"])
api_router.include_router(proxy_router, prefix="/chat", tags=["chat"])
api_router.include_router(models_router, prefix="/models", tags=["models"])
api_router.include_router(sessions_router, prefix="/sessions", tags=["sessions"])
