from __future__ import annotations

import asyncio
import json
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Optional

from chatrelay.providers.base import (
    ChatOptions,
    ProviderError,
    ProviderRuntimeConfig,
    UpstreamStreamError,
)
from chatrelay.services.event_sink import SinkClosedError


def ndjson(*contents: str) -> bytes:
    """Encode upstream records carrying the given fragments."""

    lines = [json.dumps({"message": {"role": "assistant", "content": text}}) for text in contents]
    return ("\n".join(lines) + "\n").encode("utf-8")


def parse_sse(raw: str) -> list[tuple[str, Any]]:
    """Split an event stream into (event, data) pairs; comments become (":", None)."""

    events: list[tuple[str, Any]] = []
    for block in raw.split("\n\n"):
        if not block:
            continue
        if block.startswith(":"):
            events.append((":", None))
            continue
        name = ""
        data: Any = None
        for line in block.split("\n"):
            if line.startswith("event: "):
                name = line[len("event: "):]
            elif line.startswith("data: "):
                data = json.loads(line[len("data: "):])
        events.append((name, data))
    return events


class ScriptedAdapter:
    """Adapter stub replaying canned upstream body chunks."""

    def __init__(
        self,
        chunks: list[bytes] | None = None,
        *,
        fail_at: Optional[int] = None,
        connect_error: Optional[ProviderError] = None,
        hang_after_chunks: bool = False,
        models: list[str] | None = None,
    ) -> None:
        self.chunks = list(chunks or [])
        self.fail_at = fail_at
        self.connect_error = connect_error
        self.hang_after_chunks = hang_after_chunks
        self.models = models or ["stub-model"]
        self.requests: list[dict[str, Any]] = []
        self.chunks_sent = 0
        self.body_closed = False
        self.hanging = asyncio.Event()

    async def list_models(self, cfg: ProviderRuntimeConfig) -> list[str]:
        return list(self.models)

    @asynccontextmanager
    async def stream_chat(
        self,
        cfg: ProviderRuntimeConfig,
        messages: list[dict[str, Any]],
        options: ChatOptions,
    ) -> AsyncIterator[AsyncIterator[bytes]]:
        self.requests.append(
            {
                "model": cfg.model_name,
                "base_url": cfg.base_url,
                "messages": messages,
                "options": options.as_payload(),
            }
        )
        if self.connect_error is not None:
            raise self.connect_error
        try:
            yield self._body()
        finally:
            self.body_closed = True

    async def _body(self) -> AsyncIterator[bytes]:
        for index, chunk in enumerate(self.chunks):
            if self.fail_at is not None and index == self.fail_at:
                raise UpstreamStreamError(
                    "UPSTREAM_STREAM_ERROR", "Upstream stream failed: connection reset"
                )
            self.chunks_sent += 1
            yield chunk
            await asyncio.sleep(0)
        if self.hang_after_chunks:
            self.hanging.set()
            await asyncio.Event().wait()


class SpySink:
    """Event sink recording every frame and any write attempted after close."""

    def __init__(self, on_send=None) -> None:
        self.frames: list[str] = []
        self.writes_after_close = 0
        self.writes_after_termination = 0
        self.session = None
        self.close_calls = 0
        self._closed = False
        self._on_send = on_send

    @property
    def closed(self) -> bool:
        return self._closed

    async def send(self, frame: str) -> None:
        if self.session is not None and not self.session.active:
            self.writes_after_termination += 1
        if self._closed:
            self.writes_after_close += 1
            raise SinkClosedError("closed")
        self.frames.append(frame)
        if self._on_send is not None:
            self._on_send(self)

    async def close(self) -> None:
        self.close_calls += 1
        self._closed = True

    def events(self) -> list[tuple[str, Any]]:
        return parse_sse("".join(self.frames))

    def event_names(self) -> list[str]:
        return [name for name, _ in self.events()]
