import asyncio
import time
from typing import Callable, Optional

from broadcast import BroadcastEngine
from cleanup import CleanupScheduler
from connection import ConnectionState
from constants import (
    CLEANUP_INTERVAL_SECONDS,
    CLOSE_GOING_AWAY,
    RATE_LIMIT,
    RATE_WINDOW_MS,
    ROOM_TTL_SECONDS,
)
from lifecycle import ConnectionLifecycleManager
from logging_config import get_logger
from rate_limiter import RateLimiter
from registry import RoomRegistry
from schemas.messages import ServerShutdownMessage
from stats import Stats

logger = get_logger(__name__)


class RelayBackend:
    """Owns the relay's shared state and the components operating on it."""

    def __init__(
        self,
        rate_limit: int = RATE_LIMIT,
        rate_window_ms: int = RATE_WINDOW_MS,
        room_ttl_seconds: float = ROOM_TTL_SECONDS,
        cleanup_interval_seconds: float = CLEANUP_INTERVAL_SECONDS,
        clock: Callable[[], float] = time.time,
    ):
        self.stats = Stats(clock=clock)
        self.registry = RoomRegistry(room_ttl_seconds=room_ttl_seconds, clock=clock)
        self.rate_limiter = RateLimiter(limit=rate_limit, window_ms=rate_window_ms)
        self.broadcaster = BroadcastEngine(self.registry, self.rate_limiter, self.stats, clock=clock)
        self.lifecycle = ConnectionLifecycleManager(
            self.registry, self.rate_limiter, self.broadcaster, self.stats, clock=clock
        )
        self.cleanup = CleanupScheduler(
            self.registry, self.lifecycle, self.broadcaster,
            interval_seconds=cleanup_interval_seconds, clock=clock,
        )
        # Called when an unexpected fault should bring the whole server down
        self.on_fatal: Optional[Callable[[], None]] = None
        self._shutdown_started = False
        logger.info("RelayBackend initialized")

    def start(self) -> None:
        self._shutdown_started = False
        self.lifecycle.accepting = True
        self.cleanup.start()

    async def shutdown(self, message: str = "Server shutting down") -> None:
        """Notify and close every open connection. Later calls are no-ops."""
        if self._shutdown_started:
            return
        self._shutdown_started = True
        self.lifecycle.accepting = False
        await self.cleanup.stop()

        connections = self.registry.connections()
        logger.info(f"Shutting down relay, closing {len(connections)} connection(s)")
        notice = ServerShutdownMessage(message=message)
        await asyncio.gather(*(self.broadcaster.send_to(conn, notice) for conn in connections))
        await self.lifecycle.close_many(connections, CLOSE_GOING_AWAY, message, ConnectionState.LEFT)
        logger.info("Relay shutdown complete")

    def report_fault(self, context: dict) -> None:
        """Event loop exception handler: log the fault and request a graceful shutdown."""
        exc = context.get("exception")
        logger.critical(f"Unhandled fault: {context.get('message')}", exc_info=exc)
        if self.on_fatal is not None:
            self.on_fatal()


relay_backend = RelayBackend()
