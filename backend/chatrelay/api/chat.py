from __future__ import annotations

import asyncio
import logging
from typing import AsyncIterator

from fastapi import APIRouter, Depends, Request
from fastapi.responses import StreamingResponse

from chatrelay.providers.base import ProviderError
from chatrelay.schemas.chat import ChatRequest, ModelListResponse
from chatrelay.services.event_sink import QueueEventSink
from chatrelay.services.relay_manager import RelayManager, get_relay_manager
from chatrelay.services.relay_session import RelaySession

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["chat"])

SSE_HEADERS = {
    "Cache-Control": "no-cache",
    "Connection": "keep-alive",
    "X-Accel-Buffering": "no",
}
DISCONNECT_POLL_SEC = 1.0


@router.post("/chat")
async def chat(
    payload: ChatRequest,
    request: Request,
    relay: RelayManager = Depends(get_relay_manager),
) -> StreamingResponse:
    """Relay a streaming chat completion as server-sent events."""

    session, sink = relay.open_session()
    return StreamingResponse(
        _event_stream(request, session, sink, payload),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )


@router.get("/models", response_model=ModelListResponse)
async def list_models(relay: RelayManager = Depends(get_relay_manager)) -> ModelListResponse:
    """List model names offered by the upstream service."""

    try:
        models = await relay.list_models()
    except ProviderError as exc:
        logger.warning("Fetching upstream models failed: %s", exc.message)
        return ModelListResponse(success=False, models=[], message=exc.message)
    return ModelListResponse(models=models)


async def _event_stream(
    request: Request,
    session: RelaySession,
    sink: QueueEventSink,
    payload: ChatRequest,
) -> AsyncIterator[str]:
    task = session.start(payload.messages, payload.model)
    task.add_done_callback(_log_outcome)
    watcher = asyncio.create_task(_watch_disconnect(request, session, sink))
    try:
        async for frame in sink.frames():
            yield frame
    finally:
        watcher.cancel()
        if session.active:
            sink.detach()
            session.disconnect()


async def _watch_disconnect(
    request: Request, session: RelaySession, sink: QueueEventSink
) -> None:
    while True:
        if await request.is_disconnected():
            sink.detach()
            session.disconnect()
            return
        await asyncio.sleep(DISCONNECT_POLL_SEC)


def _log_outcome(task: asyncio.Task[str]) -> None:
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.warning("Relay session failed: %s", exc)
        return
    logger.info("Relay session delivered %s chars", len(task.result()))
