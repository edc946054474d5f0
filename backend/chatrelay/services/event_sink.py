from __future__ import annotations

import asyncio
import json
from typing import Any, AsyncIterator, Protocol

HEARTBEAT_FRAME = ":\n\n"

_EOF = object()


def format_event(event: str, payload: dict[str, Any]) -> str:
    """Frame one server-sent event."""

    return f"event: {event}\ndata: {json.dumps(payload, ensure_ascii=False)}\n\n"


class SinkClosedError(RuntimeError):
    """Raised when writing to a sink whose client is gone."""


class EventSink(Protocol):
    """Write side of one client event stream."""

    @property
    def closed(self) -> bool:
        """Return True once no further frames are accepted."""

    async def send(self, frame: str) -> None:
        """Append a frame; raises SinkClosedError after close."""

    async def close(self) -> None:
        """End the stream. Calling it twice is a no-op."""


class QueueEventSink:
    """Bounded queue between a relay session and a streaming response body.

    The relay writes with ``send``; the HTTP layer iterates ``frames``. A full
    queue suspends the writer until the client catches up.
    """

    def __init__(self, maxsize: int = 64) -> None:
        self._queue: asyncio.Queue[Any] = asyncio.Queue(maxsize=maxsize)
        self._closed = False
        self._detached = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def send(self, frame: str) -> None:
        if self._closed:
            raise SinkClosedError("Event sink is closed.")
        await self._queue.put(frame)

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if not self._detached:
            await self._queue.put(_EOF)

    def detach(self) -> None:
        """Mark the consumer as gone, discard queued frames and end ``frames``."""

        self._discard()
        # The queue was just emptied, so the end marker always fits.
        self._queue.put_nowait(_EOF)

    async def frames(self) -> AsyncIterator[str]:
        try:
            while True:
                frame = await self._queue.get()
                if frame is _EOF:
                    return
                yield frame
        finally:
            self._discard()

    def _discard(self) -> None:
        self._closed = True
        self._detached = True
        while True:
            try:
                self._queue.get_nowait()
            except asyncio.QueueEmpty:
                break
