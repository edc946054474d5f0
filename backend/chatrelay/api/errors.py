from __future__ import annotations

import logging

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from chatrelay.repos.conversation_repo import (
    ConversationNotFoundError,
    InvalidConversationId,
    StoreIoError,
)
from chatrelay.schemas.common import ErrorResponse

logger = logging.getLogger(__name__)


def error_response(status_code: int, code: str, message: str) -> JSONResponse:
    """Build the standard JSON error envelope."""

    payload = ErrorResponse(code=code, message=message)
    return JSONResponse(status_code=status_code, content=payload.model_dump())


def register_exception_handlers(app: FastAPI) -> None:
    """Map domain errors onto HTTP error envelopes."""

    @app.exception_handler(RequestValidationError)
    async def _invalid_request(_: Request, exc: RequestValidationError) -> JSONResponse:
        errors = exc.errors()
        missing_messages = any(
            error.get("type") == "missing" and tuple(error.get("loc", ()))[-1:] == ("messages",)
            for error in errors
        )
        message = "No messages provided" if missing_messages else "Invalid request"
        return error_response(status.HTTP_400_BAD_REQUEST, "INVALID_REQUEST", message)

    @app.exception_handler(InvalidConversationId)
    async def _invalid_id(_: Request, exc: InvalidConversationId) -> JSONResponse:
        return error_response(status.HTTP_400_BAD_REQUEST, "INVALID_REQUEST", str(exc))

    @app.exception_handler(ConversationNotFoundError)
    async def _not_found(_: Request, exc: ConversationNotFoundError) -> JSONResponse:
        return error_response(
            status.HTTP_404_NOT_FOUND, "CONVERSATION_NOT_FOUND", "Conversation not found"
        )

    @app.exception_handler(StoreIoError)
    async def _store_failed(_: Request, exc: StoreIoError) -> JSONResponse:
        logger.error("Conversation store failure: %s", exc)
        return error_response(
            status.HTTP_500_INTERNAL_SERVER_ERROR, "STORE_IO_ERROR", "Failed to persist conversation"
        )
