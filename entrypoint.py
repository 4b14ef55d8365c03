import os
import sys
import threading

import uvicorn

from constants import HOST, LOG_FILE, LOG_LEVEL, PORT, SHUTDOWN_TIMEOUT_SECONDS
from logging_config import get_logger, setup_logging

# Setup logging before importing app
setup_logging(log_level=LOG_LEVEL, log_file=LOG_FILE)

from app import app  # noqa: E402
from backend import relay_backend  # noqa: E402

logger = get_logger(__name__)


class RelayServer(uvicorn.Server):
    """uvicorn server that drains relay rooms before closing its listeners.

    Once an exit is requested a watchdog is armed; if the graceful path has
    not finished within ``shutdown_timeout`` seconds the process is killed.
    """

    def __init__(self, config: uvicorn.Config, shutdown_timeout: float = SHUTDOWN_TIMEOUT_SECONDS):
        super().__init__(config)
        self.shutdown_timeout = shutdown_timeout
        self._watchdog = None

    def handle_exit(self, sig, frame) -> None:
        self._arm_watchdog()
        super().handle_exit(sig, frame)

    def request_exit(self) -> None:
        self._arm_watchdog()
        self.should_exit = True

    async def shutdown(self, sockets=None) -> None:
        await relay_backend.shutdown()
        await super().shutdown(sockets=sockets)
        if self._watchdog is not None:
            self._watchdog.cancel()

    def _arm_watchdog(self) -> None:
        if self._watchdog is not None:
            return
        self._watchdog = threading.Timer(self.shutdown_timeout, self._abort)
        self._watchdog.daemon = True
        self._watchdog.start()

    def _abort(self) -> None:
        logger.critical(f"Graceful shutdown did not finish within {self.shutdown_timeout}s, aborting")
        os._exit(1)


def main() -> None:
    config = uvicorn.Config(app, host=HOST, port=PORT, log_config=None, lifespan="on")
    server = RelayServer(config)

    relay_backend.on_fatal = server.request_exit

    logger.info(f"Starting Room Relay on {HOST}:{PORT}")
    logger.info(f"WebSocket endpoint: ws://{HOST}:{PORT}/room/{{roomId}}")
    logger.info(f"Health check: http://{HOST}:{PORT}/health")
    try:
        server.run()
    except SystemExit:
        if not server.started:
            logger.critical(f"Room Relay failed to start on {HOST}:{PORT}")
        raise

    if not server.started:
        logger.critical(f"Room Relay failed to start on {HOST}:{PORT}")
        sys.exit(1)


if __name__ == "__main__":
    main()
