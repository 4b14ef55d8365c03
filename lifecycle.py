"""Join and leave handling for relay connections.

Per connection: ``connecting -> joined -> (left | expired | errored)``. The
three terminal states have the same effect on shared state and only differ
in logs and stats.
"""
import asyncio
import time
from typing import Any, Callable, Iterable, Mapping, Optional, Union
from urllib.parse import parse_qs

from broadcast import BroadcastEngine
from connection import Connection, ConnectionState, TERMINAL_STATES
from constants import CLOSE_POLICY_VIOLATION, CLOSE_TRY_AGAIN_LATER
from logging_config import get_logger
from rate_limiter import RateLimiter
from registry import RoomRegistry, is_valid_room_id
from schemas.messages import ConnectedMessage, UserJoinedMessage, UserLeftMessage
from stats import Stats

logger = get_logger(__name__)

ROOM_PATH_PREFIX = "/room/"


class JoinRejected(Exception):
    def __init__(self, code: int, reason: str):
        super().__init__(reason)
        self.code = code
        self.reason = reason


def resolve_room_id(path: str, query: Union[str, Mapping[str, str], None] = None) -> Optional[str]:
    """Find the requested room id in ``/room/{id}`` or ``?room={id}``.

    The path form wins when both are present. The value is returned
    unvalidated; None means no room was asked for at all.
    """
    if path and path.startswith(ROOM_PATH_PREFIX):
        segment = path[len(ROOM_PATH_PREFIX):]
        if segment:
            return segment

    if not query:
        return None
    if isinstance(query, str):
        values = parse_qs(query, keep_blank_values=True).get("room")
        room_id = values[0] if values else None
    else:
        room_id = query.get("room")
    return room_id or None


class ConnectionLifecycleManager:
    def __init__(self, registry: RoomRegistry, rate_limiter: RateLimiter, broadcaster: BroadcastEngine,
                 stats: Stats, clock: Callable[[], float] = time.time):
        self.registry = registry
        self.rate_limiter = rate_limiter
        self.broadcaster = broadcaster
        self.stats = stats
        self._clock = clock
        self.accepting = True

    def admit(self, path: str, query: Union[str, Mapping[str, str], None] = None) -> str:
        """Return the validated room id for a connection attempt or raise JoinRejected."""
        if not self.accepting:
            raise JoinRejected(CLOSE_TRY_AGAIN_LATER, "Server shutting down")
        room_id = resolve_room_id(path, query)
        if room_id is None:
            raise JoinRejected(CLOSE_POLICY_VIOLATION, "Room ID required")
        if not is_valid_room_id(room_id):
            raise JoinRejected(CLOSE_POLICY_VIOLATION, "Invalid room ID")
        return room_id

    async def on_connect(self, transport: Any, path: str, query: Union[str, Mapping[str, str], None] = None,
                         remote_addr: Optional[str] = None) -> Optional[Connection]:
        """Admit or refuse a new transport.

        A refused transport is accepted only to be closed with the rejection
        code and reason, and None is returned; no registry or rate state
        exists for it. An admitted one is joined to its room and greeted.
        """
        try:
            room_id = self.admit(path, query)
        except JoinRejected as e:
            self.stats.record_connection_rejected()
            logger.warning(f"Connection from {remote_addr} rejected ({path}): {e.reason}")
            # Closing before accept would refuse the handshake without a reason
            await transport.accept()
            await transport.close(code=e.code, reason=e.reason)
            return None

        await transport.accept()
        return await self.join(Connection(transport, room_id, remote_addr=remote_addr))

    async def join(self, connection: Connection) -> Connection:
        room_id = connection.room_id
        self.rate_limiter.register(connection.id)
        user_count = self.registry.join_or_create(room_id, connection)
        connection.mark_joined(self._clock())
        self.stats.record_connection_accepted()
        logger.info(f"User {connection.id} ({connection.remote_addr}) joined room {room_id} ({user_count} users)")

        await self.broadcaster.send_to(connection, ConnectedMessage(
            connectionId=connection.id,
            roomId=room_id,
            userCount=user_count,
        ))
        await self.broadcaster.broadcast(room_id, UserJoinedMessage(
            connectionId=connection.id,
            userCount=user_count,
        ), exclude=connection)
        return connection

    async def on_message(self, connection: Connection, payload) -> bool:
        return await self.broadcaster.handle_inbound(connection, payload)

    async def on_disconnect(self, connection: Connection, cause: ConnectionState = ConnectionState.LEFT) -> bool:
        """Tear down a connection's membership and rate state.

        Safe to call more than once for the same connection: only the first
        call has any effect. All shared state is updated before the first
        await, so a cancelled caller still leaves the registry consistent.
        Returns True if this call performed the teardown.
        """
        if cause not in TERMINAL_STATES:
            raise ValueError(f"Not a terminal state: {cause}")
        if connection.has_left:
            return False

        was_joined = connection.state is ConnectionState.JOINED
        connection.state = cause
        if not was_joined:
            return True

        room_id = connection.room_id
        result = self.registry.leave(room_id, connection)
        self.rate_limiter.unregister(connection.id)
        self.stats.record_disconnection(cause.value)

        if result.room_deleted:
            logger.info(f"User {connection.id} left room {room_id} ({cause.value}), room is now empty")
            return True

        logger.info(f"User {connection.id} left room {room_id} ({cause.value}, {result.member_count} remaining)")
        await self.broadcaster.broadcast(room_id, UserLeftMessage(
            connectionId=connection.id,
            userCount=result.member_count,
        ))
        return True

    async def close_many(self, connections: Iterable[Connection], code: int, reason: str,
                         cause: ConnectionState = ConnectionState.LEFT) -> None:
        """Server-initiated close that runs the regular disconnect path.

        All transports are closed first so that the departure notices sent
        while disconnecting do not reach members that are on their way out.
        """
        connections = list(connections)
        await asyncio.gather(*(conn.close(code, reason) for conn in connections))
        for conn in connections:
            await self.on_disconnect(conn, cause)
