from __future__ import annotations

import logging
import socket
from typing import Optional

import uvicorn

from chatrelay.core.config import get_settings
from chatrelay.main import create_app
from chatrelay.services.relay_manager import RelayManager

logger = logging.getLogger(__name__)


class RelayServer(uvicorn.Server):
    """Uvicorn server that ends relay streams before draining connections.

    Uvicorn waits for open responses to finish before it runs the lifespan
    shutdown, and an event stream only finishes once its session ends.
    """

    def __init__(self, config: uvicorn.Config, relay_manager: RelayManager) -> None:
        super().__init__(config)
        self._relay_manager = relay_manager

    async def shutdown(self, sockets: Optional[list[socket.socket]] = None) -> None:
        if self._relay_manager.active_sessions:
            logger.info("Closing %s relay stream(s) before shutdown", self._relay_manager.active_sessions)
        await self._relay_manager.shutdown()
        await super().shutdown(sockets=sockets)


def main() -> None:
    """Serve the relay on the configured host and port."""

    settings = get_settings()
    app = create_app()
    config = uvicorn.Config(
        app,
        host=settings.app_host,
        port=settings.app_port,
        log_level=settings.log_level.lower(),
    )
    RelayServer(config, app.state.relay_manager).run()


if __name__ == "__main__":
    main()
