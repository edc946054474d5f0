from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from chatrelay.api import chat as chat_api
from chatrelay.api import conversations as conversations_api
from chatrelay.api.errors import register_exception_handlers
from chatrelay.core.config import get_settings
from chatrelay.core.logging import setup_logging
from chatrelay.providers.ollama_adapter import OllamaAdapter
from chatrelay.repos.conversation_repo import JsonConversationRepo
from chatrelay.services.conversation_service import ConversationService
from chatrelay.services.relay_manager import RelayManager
from chatrelay.services.relay_session import RelayConfig


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""

    settings = get_settings()
    setup_logging(settings.log_level)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        await app.state.relay_manager.shutdown()

    app = FastAPI(title="chatrelay", lifespan=lifespan)
    app.state.conversation_service = ConversationService(
        JsonConversationRepo(settings.conversation_root())
    )
    app.state.relay_manager = RelayManager(
        OllamaAdapter(
            timeout_sec=settings.upstream_read_timeout_sec,
            connect_timeout_sec=settings.upstream_connect_timeout_sec,
        ),
        RelayConfig.from_settings(settings),
        sink_queue_size=settings.sink_queue_size,
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.parsed_cors_origins(),
        allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
        allow_headers=["Content-Type"],
    )
    register_exception_handlers(app)

    app.include_router(chat_api.router)
    app.include_router(conversations_api.router)

    @app.get("/health")
    async def health() -> dict:
        return {"success": True, "active_sessions": app.state.relay_manager.active_sessions}

    return app
