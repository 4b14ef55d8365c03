import time
from collections import Counter
from typing import Callable


class Stats:
    """Process-wide event counters.

    Counters only ever grow. Components receive this object explicitly and
    record events through the ``record_*`` methods; everything else reads it.
    """

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock
        self.started_at = clock()
        self.messages_relayed = 0
        self.connections_accepted = 0
        self.connections_rejected = 0
        self.disconnections = 0
        self.rate_limit_rejections = 0
        self.send_failures = 0
        self.disconnections_by_cause: Counter = Counter()

    def record_message_relayed(self) -> None:
        self.messages_relayed += 1

    def record_connection_accepted(self) -> None:
        self.connections_accepted += 1

    def record_connection_rejected(self) -> None:
        self.connections_rejected += 1

    def record_disconnection(self, cause: str) -> None:
        self.disconnections += 1
        self.disconnections_by_cause[cause] += 1

    def record_rate_limited(self) -> None:
        self.rate_limit_rejections += 1

    def record_send_failure(self) -> None:
        self.send_failures += 1

    @property
    def uptime(self) -> float:
        return max(0.0, self._clock() - self.started_at)
