import time
from dataclasses import dataclass
from typing import Callable, Dict

from constants import RATE_LIMIT, RATE_WINDOW_MS
from logging_config import get_logger

logger = get_logger(__name__)


@dataclass
class RateState:
    count: int
    reset_at: float


class RateLimiter:
    """Fixed-window message counter keyed by connection id.

    A burst straddling a window boundary can briefly reach twice the nominal
    rate; in exchange each check is O(1) in time and memory.

    Connections must be registered before their first message and are
    rejected once unregistered, so a message racing a disconnect is never let
    through.
    """

    def __init__(
        self,
        limit: int = RATE_LIMIT,
        window_ms: int = RATE_WINDOW_MS,
        clock: Callable[[], float] = time.monotonic,
    ):
        if limit < 1 or window_ms <= 0:
            raise ValueError("rate limit and window must be positive")
        self.limit = limit
        self.window = window_ms / 1000.0
        self._clock = clock
        self._states: Dict[str, RateState] = {}
        logger.info(f"RateLimiter initialized: {limit} messages per {window_ms}ms")

    def register(self, connection_id: str) -> None:
        self._states[connection_id] = RateState(count=0, reset_at=self._clock() + self.window)

    def unregister(self, connection_id: str) -> None:
        self._states.pop(connection_id, None)

    def allow(self, connection_id: str) -> bool:
        state = self._states.get(connection_id)
        if state is None:
            logger.debug(f"Rate check for unregistered connection {connection_id}, rejecting")
            return False

        now = self._clock()
        if now > state.reset_at:
            state.count = 0
            state.reset_at = now + self.window

        if state.count >= self.limit:
            logger.debug(f"Connection {connection_id} over rate limit ({state.count}/{self.limit})")
            return False

        state.count += 1
        return True

    def __contains__(self, connection_id: str) -> bool:
        return connection_id in self._states

    def __len__(self) -> int:
        return len(self._states)
