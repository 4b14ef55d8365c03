"""Room membership and expiry bookkeeping.

The registry is only touched from the event loop and none of its methods
await, so every call is atomic with respect to every other call: a join, a
leave and the expiry sweep of the same room can never interleave inside the
registry. Callers that need to send anything take a ``members_of`` snapshot
and send outside of it.
"""
import re
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, NamedTuple, Optional

from connection import Connection
from constants import ROOM_TTL_SECONDS
from logging_config import get_logger

logger = get_logger(__name__)

ROOM_ID_PATTERN = re.compile(r"[A-Za-z0-9_-]+")


class InvalidRoomIdError(ValueError):
    pass


def is_valid_room_id(room_id: Optional[str]) -> bool:
    return isinstance(room_id, str) and ROOM_ID_PATTERN.fullmatch(room_id) is not None


@dataclass(frozen=True)
class Room:
    room_id: str
    created_at: float
    expires_at: float
    members: Dict[str, Connection] = field(default_factory=dict, compare=False)

    def is_expired(self, now: float) -> bool:
        return now > self.expires_at


class LeaveResult(NamedTuple):
    member_count: int
    room_deleted: bool


class RoomRegistry:
    def __init__(self, room_ttl_seconds: float = ROOM_TTL_SECONDS, clock: Callable[[], float] = time.time):
        self.room_ttl = room_ttl_seconds
        self._clock = clock
        self._rooms: Dict[str, Room] = {}
        logger.info(f"RoomRegistry initialized with room TTL {room_ttl_seconds} seconds")

    def join_or_create(self, room_id: str, connection: Connection) -> int:
        """Add ``connection`` to the room, creating the room on first join.

        The expiry deadline is fixed when the room is created; later joins
        leave it alone. Returns the member count after the join.
        """
        if not is_valid_room_id(room_id):
            raise InvalidRoomIdError(f"Invalid room id: {room_id!r}")

        room = self._rooms.get(room_id)
        if room is None:
            now = self._clock()
            room = Room(room_id=room_id, created_at=now, expires_at=now + self.room_ttl)
            self._rooms[room_id] = room
            logger.info(f"Created room {room_id}, expires at {room.expires_at}")

        room.members[connection.id] = connection
        return len(room.members)

    def leave(self, room_id: str, connection: Connection) -> LeaveResult:
        room = self._rooms.get(room_id)
        if room is None:
            logger.debug(f"Leave for connection {connection.id} from unknown room {room_id}")
            return LeaveResult(member_count=0, room_deleted=False)

        room.members.pop(connection.id, None)
        if room.members:
            return LeaveResult(member_count=len(room.members), room_deleted=False)

        del self._rooms[room_id]
        logger.info(f"Cleaned up empty room {room_id}")
        return LeaveResult(member_count=0, room_deleted=True)

    def members_of(self, room_id: str) -> List[Connection]:
        """Snapshot of the room's members, safe to iterate across awaits."""
        room = self._rooms.get(room_id)
        if room is None:
            return []
        return list(room.members.values())

    def expired_rooms(self, now: Optional[float] = None) -> List[str]:
        if now is None:
            now = self._clock()
        return [room_id for room_id, room in self._rooms.items() if room.is_expired(now)]

    def get(self, room_id: str) -> Optional[Room]:
        return self._rooms.get(room_id)

    def connections(self) -> List[Connection]:
        return [conn for room in list(self._rooms.values()) for conn in room.members.values()]

    @property
    def room_count(self) -> int:
        return len(self._rooms)

    @property
    def connection_count(self) -> int:
        return sum(len(room.members) for room in self._rooms.values())

    def __contains__(self, room_id: str) -> bool:
        return room_id in self._rooms
