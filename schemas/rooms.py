from pydantic import BaseModel, Field


class RoomDetailsResponse(BaseModel):
    room_id: str
    online_users_count: int
    created_at: str
    expires_at: str
    expires_in_seconds: float
    is_expired: bool


class HealthResponse(BaseModel):
    status: str = "healthy"
    rooms: int
    connections: int
    uptime: float
    timestamp: str


class DisconnectionCounts(BaseModel):
    left: int = 0
    expired: int = 0
    errored: int = 0


class StatsResponse(BaseModel):
    rooms: int
    connections: int
    messagesRelayed: int
    connectionsAccepted: int
    connectionsRejected: int
    disconnections: int
    disconnectionsByCause: DisconnectionCounts = Field(default_factory=DisconnectionCounts)
    rateLimitRejections: int
    sendFailures: int
    startedAt: str
    uptime: float
