import time
import uuid
from enum import Enum
from typing import Any, Optional

from starlette.websockets import WebSocketState

from logging_config import get_logger

logger = get_logger(__name__)


class ConnectionState(str, Enum):
    CONNECTING = "connecting"
    JOINED = "joined"
    LEFT = "left"
    EXPIRED = "expired"
    ERRORED = "errored"


TERMINAL_STATES = frozenset({ConnectionState.LEFT, ConnectionState.EXPIRED, ConnectionState.ERRORED})


def generate_connection_id() -> str:
    return uuid.uuid4().hex


class Connection:
    """One client's live link to the relay.

    ``transport`` is anything shaped like a Starlette ``WebSocket``: it must
    provide ``accept()``, ``send_text()``, ``close(code, reason)`` and the
    ``client_state`` / ``application_state`` attributes.
    """

    def __init__(self, transport: Any, room_id: str, remote_addr: Optional[str] = None,
                 connection_id: Optional[str] = None):
        self.id = connection_id or generate_connection_id()
        self.room_id = room_id
        self.transport = transport
        self.remote_addr = remote_addr
        self.joined_at: Optional[float] = None
        self.state = ConnectionState.CONNECTING

    def mark_joined(self, now: Optional[float] = None) -> None:
        self.joined_at = time.time() if now is None else now
        self.state = ConnectionState.JOINED

    @property
    def has_left(self) -> bool:
        return self.state in TERMINAL_STATES

    @property
    def is_open(self) -> bool:
        return (
            self.state is ConnectionState.JOINED
            and self.transport.client_state == WebSocketState.CONNECTED
            and self.transport.application_state == WebSocketState.CONNECTED
        )

    async def send(self, payload: str) -> bool:
        try:
            await self.transport.send_text(payload)
            return True
        except Exception as e:
            logger.warning(f"Error sending to connection {self.id} in room {self.room_id}: {e}")
            return False

    async def close(self, code: int, reason: str) -> None:
        if self.transport.application_state == WebSocketState.DISCONNECTED:
            return
        try:
            await self.transport.close(code=code, reason=reason)
        except Exception as e:
            logger.debug(f"Error closing connection {self.id}: {e}")

    def __repr__(self) -> str:
        return f"Connection(id={self.id!r}, room_id={self.room_id!r}, state={self.state.value!r})"
