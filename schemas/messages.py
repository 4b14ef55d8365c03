"""Wire envelopes exchanged with relay clients.

Inbound messages only need a non-empty ``type``; every other field is passed
through untouched. Outbound server messages are small fixed-shape models
serialized with ``model_dump``.
"""
from enum import Enum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, StrictStr


class ErrorCode(str, Enum):
    RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"
    INVALID_MESSAGE = "INVALID_MESSAGE"
    PARSE_ERROR = "PARSE_ERROR"
    INTERNAL_ERROR = "INTERNAL_ERROR"


class InboundEnvelope(BaseModel):
    """A client message. Only ``type`` is interpreted by the relay."""
    model_config = ConfigDict(extra="allow")

    type: StrictStr = Field(..., min_length=1)


class ConnectedMessage(BaseModel):
    type: Literal["connected"] = "connected"
    connectionId: str
    roomId: str
    userCount: int


class UserJoinedMessage(BaseModel):
    type: Literal["user-joined"] = "user-joined"
    connectionId: str
    userCount: int


class UserLeftMessage(BaseModel):
    type: Literal["user-left"] = "user-left"
    connectionId: str
    userCount: int


class RoomExpiredMessage(BaseModel):
    type: Literal["room-expired"] = "room-expired"
    message: str


class ServerShutdownMessage(BaseModel):
    type: Literal["server-shutdown"] = "server-shutdown"
    message: str


class ErrorMessage(BaseModel):
    type: Literal["error"] = "error"
    message: str
    code: ErrorCode
