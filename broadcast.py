import asyncio
import json
import time
from typing import Any, Callable, Dict, Optional, Union

from pydantic import BaseModel, ValidationError

from connection import Connection
from logging_config import get_logger
from rate_limiter import RateLimiter
from registry import RoomRegistry
from schemas.messages import ErrorCode, ErrorMessage, InboundEnvelope
from stats import Stats

logger = get_logger(__name__)

Message = Union[BaseModel, Dict[str, Any]]


def reject_constant(name: str):
    raise ValueError(f"Non-standard JSON constant: {name}")


def serialize(message: Message) -> str:
    if isinstance(message, BaseModel):
        message = message.model_dump(mode="json")
    return json.dumps(message)


class BroadcastEngine:
    """Validates inbound messages and fans them out to room members.

    Delivery is best effort: a member that is closed or whose send fails is
    skipped, the failure is logged and counted, and the remaining members
    still receive the message. Nothing here raises to the caller on a
    transport failure.
    """

    def __init__(self, registry: RoomRegistry, rate_limiter: RateLimiter, stats: Stats,
                 clock: Callable[[], float] = time.time):
        self.registry = registry
        self.rate_limiter = rate_limiter
        self.stats = stats
        self._clock = clock

    async def _deliver(self, connection: Connection, payload: str) -> bool:
        if not connection.is_open:
            return False
        sent = await connection.send(payload)
        if not sent:
            self.stats.record_send_failure()
        return sent

    async def send_to(self, connection: Connection, message: Message) -> bool:
        return await self._deliver(connection, serialize(message))

    async def send_error(self, connection: Connection, code: ErrorCode, message: str) -> bool:
        return await self.send_to(connection, ErrorMessage(message=message, code=code))

    async def broadcast(self, room_id: str, message: Message, exclude: Optional[Connection] = None) -> int:
        """Send ``message`` to every member of ``room_id`` except ``exclude``.

        Returns the number of members the message was written to.
        """
        payload = serialize(message)
        recipients = [conn for conn in self.registry.members_of(room_id) if conn is not exclude]
        if not recipients:
            return 0

        results = await asyncio.gather(
            *(self._deliver(conn, payload) for conn in recipients),
            return_exceptions=True,
        )
        delivered = sum(1 for result in results if result is True)
        for conn, result in zip(recipients, results):
            if isinstance(result, Exception):
                self.stats.record_send_failure()
                logger.error(f"Unexpected error delivering to {conn.id} in room {room_id}: {result}")
        logger.debug(f"Broadcast to room {room_id}: {delivered}/{len(recipients)} delivered")
        return delivered

    async def handle_inbound(self, connection: Connection, raw_payload: Union[str, bytes]) -> bool:
        """Rate-check, validate, stamp and relay one client message.

        Returns True when the message was relayed. Every rejection answers
        the sender alone with an ``error`` message.
        """
        if not self.rate_limiter.allow(connection.id):
            self.stats.record_rate_limited()
            await self.send_error(connection, ErrorCode.RATE_LIMIT_EXCEEDED, "Rate limit exceeded")
            return False

        try:
            data = json.loads(raw_payload, parse_constant=reject_constant)
        except ValueError:
            logger.debug(f"Unparseable payload from connection {connection.id}")
            await self.send_error(connection, ErrorCode.PARSE_ERROR, "Invalid message format")
            return False

        if not isinstance(data, dict):
            await self.send_error(connection, ErrorCode.INVALID_MESSAGE, "Message must be a JSON object")
            return False

        try:
            envelope = InboundEnvelope.model_validate(data)
        except ValidationError:
            await self.send_error(connection, ErrorCode.INVALID_MESSAGE, "Message type required")
            return False

        # Sender identity and time always come from the server
        message = envelope.model_dump()
        message["connectionId"] = connection.id
        message["timestamp"] = int(self._clock() * 1000)

        await self.broadcast(connection.room_id, message, exclude=connection)
        self.stats.record_message_relayed()
        logger.debug(f"Relayed '{envelope.type}' from {connection.id} in room {connection.room_id}")
        return True
