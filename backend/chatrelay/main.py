"""FastAPI application entry point with lifespan management."""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from chatrelay.api.chat import websocket_chat
from chatrelay.api.router import api_router
from chatrelay.config import settings
from chatrelay.dependencies import (
    close_upstream_client,
    get_completion_client,
    get_storage,
    get_upstream_client,
)

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Manage application startup and shutdown lifecycle."""
    logger.info("Starting chat relay backend...")

    storage = get_storage()
    await storage.initialize()
    logger.info("Storage backend initialized (%s)", settings.storage_backend)

    get_upstream_client()
    completion_client = get_completion_client()
    await completion_client.initialize()
    logger.info("Proxying completions to %s", settings.completions_url)

    yield

    # Cleanup
    await completion_client.close()
    await close_upstream_client()
    await storage.close()
    logger.info("Chat relay backend shut down cleanly")


app = FastAPI(
    title="Chat Relay API",
    description="Streaming chat-completion proxy with session-consistent chat clients",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS configuration
app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        settings.frontend_url,
        "http://localhost:3000",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Mount API routes
app.include_router(api_router, prefix="/api")

# Mount WebSocket endpoint (outside /api prefix to match frontend expectations)
app.websocket("/ws/chat")(websocket_chat)

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.log_level.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
