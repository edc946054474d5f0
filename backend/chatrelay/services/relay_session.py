from __future__ import annotations

import asyncio
import enum
import logging
from contextlib import aclosing
from dataclasses import dataclass
from typing import Any, Optional

from chatrelay.core.config import Settings
from chatrelay.providers.base import (
    ChatOptions,
    ChatStreamAdapter,
    ProviderError,
    ProviderRuntimeConfig,
)
from chatrelay.services.content_filter import filter_content
from chatrelay.services.event_sink import (
    HEARTBEAT_FRAME,
    EventSink,
    SinkClosedError,
    format_event,
)
from chatrelay.services.stream_reader import extract_fragment, iter_records

logger = logging.getLogger(__name__)

SHUTDOWN_MESSAGE = "Server shutting down"
SHUTDOWN_NOTICE_TIMEOUT_SEC = 1.0


class RelayState(str, enum.Enum):
    """Lifecycle of one relay session."""

    IDLE = "idle"
    CONNECTING = "connecting"
    STREAMING = "streaming"
    COMPLETED = "completed"
    DISCONNECTED = "disconnected"
    FAILED = "failed"


@dataclass
class RelayConfig:
    """Upstream target and fixed parameters shared by all relay sessions."""

    base_url: str
    default_model: str
    temperature: float
    max_tokens: int
    heartbeat_interval_sec: float = 15.0

    @classmethod
    def from_settings(cls, settings: Settings) -> RelayConfig:
        return cls(
            base_url=settings.ollama_base_url,
            default_model=settings.ollama_model,
            temperature=settings.temperature,
            max_tokens=settings.max_tokens,
            heartbeat_interval_sec=settings.heartbeat_interval_sec,
        )

    def runtime_config(self, model: Optional[str] = None) -> ProviderRuntimeConfig:
        chosen = (model or "").strip() or self.default_model
        return ProviderRuntimeConfig(provider="ollama", model_name=chosen, base_url=self.base_url)

    def chat_options(self) -> ChatOptions:
        return ChatOptions(temperature=self.temperature, num_predict=self.max_tokens)


class SessionRegistry:
    """Track in-flight relay sessions so shutdown can reach all of them."""

    def __init__(self) -> None:
        self._sessions: set[RelaySession] = set()

    def register(self, session: RelaySession) -> None:
        self._sessions.add(session)

    def deregister(self, session: RelaySession) -> None:
        self._sessions.discard(session)

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session: object) -> bool:
        return session in self._sessions

    async def shutdown(self) -> None:
        """Notify every active session's client and wait for it to wind down."""

        sessions = list(self._sessions)
        if sessions:
            logger.info("Shutting down %s active relay session(s)", len(sessions))
        await asyncio.gather(*(session.shutdown() for session in sessions), return_exceptions=True)
        self._sessions.clear()


class RelaySession:
    """Bridge one upstream chat stream to one client event sink."""

    def __init__(
        self,
        adapter: ChatStreamAdapter,
        sink: EventSink,
        config: RelayConfig,
        registry: Optional[SessionRegistry] = None,
    ) -> None:
        self._adapter = adapter
        self._sink = sink
        self._config = config
        self._registry = registry
        self._chunks: list[str] = []
        self._heartbeat: Optional[asyncio.Task[None]] = None
        self._task: Optional[asyncio.Task[str]] = None
        self.state = RelayState.IDLE
        self.active = True

    @property
    def accumulated_text(self) -> str:
        return "".join(self._chunks)

    @property
    def heartbeat_task(self) -> Optional[asyncio.Task[None]]:
        return self._heartbeat

    def start(self, messages: list[dict[str, Any]], model: Optional[str] = None) -> asyncio.Task[str]:
        """Run the session in its own task and return the task."""

        if self._registry is not None:
            self._registry.register(self)
        self._task = asyncio.create_task(self.run(messages, model))
        return self._task

    async def run(self, messages: list[dict[str, Any]], model: Optional[str] = None) -> str:
        """Relay the upstream answer to the sink and return the filtered text.

        Upstream failures are written to the sink as an ``error`` event when the
        client is still connected, then re-raised.
        """

        if not self.active:
            await self._release()
            return self.accumulated_text
        if self.state is not RelayState.IDLE:
            raise RuntimeError("Relay session already started.")

        if self._registry is not None:
            self._registry.register(self)
        cfg = self._config.runtime_config(model)
        self.state = RelayState.CONNECTING
        self._heartbeat = asyncio.create_task(self._heartbeat_loop())
        try:
            async with self._adapter.stream_chat(
                cfg, messages, self._config.chat_options()
            ) as body:
                if not self.active:
                    return self.accumulated_text
                self.state = RelayState.STREAMING
                async with aclosing(iter_records(body)) as records:
                    async for record in records:
                        text = filter_content(extract_fragment(record))
                        if text and await self._emit("response", {"text": text}):
                            self._chunks.append(text)
                        if not self.active:
                            break
            if self.active:
                await self._emit("done", {"ok": True})
                self._terminate(RelayState.COMPLETED)
            return self.accumulated_text
        except asyncio.CancelledError:
            if self.active:
                self._terminate(RelayState.DISCONNECTED)
                raise
            return self.accumulated_text
        except Exception as exc:
            message = exc.message if isinstance(exc, ProviderError) else str(exc) or type(exc).__name__
            await self._emit("error", {"message": message})
            self._terminate(RelayState.FAILED)
            raise
        finally:
            await self._release()

    def disconnect(self) -> None:
        """Handle the client going away; safe to call any number of times."""

        if not self._terminate(RelayState.DISCONNECTED):
            return
        task = self._task
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

    async def shutdown(self) -> None:
        """Tell the client the server is stopping, then end the session."""

        if self.active:
            try:
                await asyncio.wait_for(
                    self._emit("error", {"message": SHUTDOWN_MESSAGE}),
                    SHUTDOWN_NOTICE_TIMEOUT_SEC,
                )
            except asyncio.TimeoutError:
                logger.warning("Timed out notifying client of shutdown")
            self._terminate(RelayState.FAILED)
        task = self._task
        if task is not None and not task.done():
            task.cancel()
            await asyncio.wait([task])
        else:
            await self._release()

    async def _emit(self, event: str, payload: dict[str, Any]) -> bool:
        return await self._write(format_event(event, payload))

    async def _write(self, frame: str) -> bool:
        if not self.active:
            return False
        try:
            await self._sink.send(frame)
        except SinkClosedError:
            logger.info("Client disconnected; relay stopped after %s chars", len(self.accumulated_text))
            self.disconnect()
            return False
        return True

    async def _heartbeat_loop(self) -> None:
        interval = self._config.heartbeat_interval_sec
        while self.active:
            await asyncio.sleep(interval)
            await self._write(HEARTBEAT_FRAME)

    def _terminate(self, state: RelayState) -> bool:
        # No await between the check and the flip: the event loop cannot interleave.
        if not self.active:
            return False
        self.active = False
        self.state = state
        if self._heartbeat is not None:
            self._heartbeat.cancel()
        logger.info(
            "Relay session ended: state=%s chars=%s", state.value, len(self.accumulated_text)
        )
        return True

    async def _release(self) -> None:
        if self.active:
            self._terminate(RelayState.FAILED)
        heartbeat = self._heartbeat
        if heartbeat is not None and heartbeat is not asyncio.current_task():
            heartbeat.cancel()
            await asyncio.wait([heartbeat])
        if not self._sink.closed:
            await self._sink.close()
        if self._registry is not None:
            self._registry.deregister(self)
