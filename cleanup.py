import asyncio
import time
from typing import Callable, List, Optional

from broadcast import BroadcastEngine
from connection import ConnectionState
from constants import CLEANUP_INTERVAL_SECONDS, CLOSE_ROOM_EXPIRED
from lifecycle import ConnectionLifecycleManager
from logging_config import get_logger
from registry import RoomRegistry
from schemas.messages import RoomExpiredMessage

logger = get_logger(__name__)


def describe_duration(seconds: float) -> str:
    if seconds >= 3600 and seconds % 3600 == 0:
        return f"{int(seconds // 3600)} hours"
    return f"{seconds:g} seconds"


class CleanupScheduler:
    """Periodically expires rooms that are past their deadline.

    Members of an expired room are notified and then closed through the
    lifecycle manager, so the room disappears through the same leave path as
    any other room that empties out.
    """

    def __init__(self, registry: RoomRegistry, lifecycle: ConnectionLifecycleManager,
                 broadcaster: BroadcastEngine, interval_seconds: float = CLEANUP_INTERVAL_SECONDS,
                 clock: Callable[[], float] = time.time):
        self.registry = registry
        self.lifecycle = lifecycle
        self.broadcaster = broadcaster
        self.interval = interval_seconds
        self._clock = clock
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.get_running_loop().create_task(self._run(), name="room-cleanup")
        logger.info(f"Room cleanup scheduled every {self.interval} seconds")

    async def stop(self) -> None:
        if self._task is None:
            return
        task, self._task = self._task, None
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("Room cleanup stopped")

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            try:
                await self.sweep()
            except Exception as e:
                logger.error(f"Room cleanup sweep failed: {e}", exc_info=True)

    async def sweep(self, now: Optional[float] = None) -> List[str]:
        """Expire every room whose deadline is before ``now``.

        Returns the ids of the rooms that were expired.
        """
        if now is None:
            now = self._clock()
        expired = []
        for room_id in self.registry.expired_rooms(now):
            if await self._expire_room(room_id, now):
                expired.append(room_id)
        if expired:
            logger.info(f"Cleanup sweep expired {len(expired)} room(s)")
        return expired

    async def _expire_room(self, room_id: str, now: float) -> bool:
        notice = RoomExpiredMessage(message=f"Room expired after {describe_duration(self.registry.room_ttl)}")

        # Joins landing in this room while members are being notified are
        # expired too. A room recreated under the same id after this one
        # emptied has its own deadline and is left alone.
        room = self.registry.get(room_id)
        if room is None or not room.is_expired(now):
            return False
        while self.registry.get(room_id) is room and room.members:
            members = list(room.members.values())
            await asyncio.gather(*(self.broadcaster.send_to(conn, notice) for conn in members))
            await self.lifecycle.close_many(members, CLOSE_ROOM_EXPIRED, "Room expired", ConnectionState.EXPIRED)

        logger.info(f"Expired room {room_id}")
        return True
