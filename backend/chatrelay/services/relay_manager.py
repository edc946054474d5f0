from __future__ import annotations

from typing import Optional

from fastapi import Request

from chatrelay.providers.base import ChatStreamAdapter
from chatrelay.services.event_sink import QueueEventSink
from chatrelay.services.relay_session import RelayConfig, RelaySession, SessionRegistry


class RelayManager:
    """Create relay sessions and own the registry used at shutdown."""

    def __init__(
        self,
        adapter: ChatStreamAdapter,
        config: RelayConfig,
        registry: Optional[SessionRegistry] = None,
        sink_queue_size: int = 64,
    ) -> None:
        self._adapter = adapter
        self._config = config
        self._registry = registry or SessionRegistry()
        self._sink_queue_size = sink_queue_size

    @property
    def config(self) -> RelayConfig:
        return self._config

    @property
    def active_sessions(self) -> int:
        return len(self._registry)

    def set_adapter(self, adapter: ChatStreamAdapter) -> None:
        """Override the upstream adapter (useful for tests)."""

        self._adapter = adapter

    def open_session(self) -> tuple[RelaySession, QueueEventSink]:
        sink = QueueEventSink(maxsize=self._sink_queue_size)
        session = RelaySession(self._adapter, sink, self._config, registry=self._registry)
        return session, sink

    async def list_models(self) -> list[str]:
        return await self._adapter.list_models(self._config.runtime_config())

    async def shutdown(self) -> None:
        await self._registry.shutdown()


def get_relay_manager(request: Request) -> RelayManager:
    """Dependency to access the app relay manager."""

    return request.app.state.relay_manager
