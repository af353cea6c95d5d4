"""Chatroom Backend Application.

This is the main entry point for the chatroom backend service: a real-time
chat server that keeps rooms, users and message history in memory and fans
messages out to connected WebSocket clients.

Modules:
    - chat: WebSocket protocol, session state, and the read-only HTTP mirror
    - client: Python client (state reducer, transport, persisted profile)
"""
import logging
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.chat.api_router import router as api_router
from app.chat.router import router as chat_router
from app.chat.session import ChatSession
from app.config import AppSettings, get_config

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)

# Silence verbose third-party loggers.
# websockets logs every frame at DEBUG; httpx/httpcore log every TCP
# connection made by the test client; uvicorn.access logs every request.
for _noisy in (
    "websockets",
    "httpx",
    "httpcore",
    "uvicorn.access",
):
    logging.getLogger(_noisy).setLevel(logging.WARNING)

logger = logging.getLogger(__name__)


def create_app(settings: Optional[AppSettings] = None) -> FastAPI:
    """Build the FastAPI application with its own ChatSession.

    Args:
        settings: Settings to use; defaults to the process-wide config.

    Returns:
        A FastAPI app whose ``state.chat_session`` holds all chat state.
    """
    config = settings or get_config()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Application lifespan manager for startup/shutdown events."""
        # Apply configured log level to root logger so that
        # `logging.level: "debug"` in chatroom.settings.yaml activates DEBUG output.
        configured_level = getattr(logging, config.logging.level.upper(), None)
        if configured_level is not None:
            logging.getLogger().setLevel(configured_level)
            logger.info("Root logger level set to %s", config.logging.level.upper())

        session: ChatSession = app.state.chat_session
        logger.info(
            f"Chat server ready on http://{config.server.host}:{config.server.port} "
            f"with rooms {session.rooms.default_room_ids}"
        )

        yield  # Application runs here

        # Shutdown
        logger.info(
            f"Application shutdown complete ({len(session.connections.users)} users were online)"
        )

    app = FastAPI(
        title="Chatroom API",
        description="Real-time chat rooms over WebSocket",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.chat_session = ChatSession(config.chat)
    app.state.settings = config

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.server.allowed_origins,
        allow_credentials=True,
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )

    # Register all routers
    app.include_router(chat_router)
    app.include_router(api_router)
    return app


app = create_app()


def run() -> None:
    """Console entry point: serve the app with uvicorn."""
    config = get_config()
    uvicorn.run(
        "app.main:app",
        host=config.server.host,
        port=config.server.port,
        log_level=config.logging.level,
    )
