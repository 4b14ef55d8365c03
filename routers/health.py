from datetime import datetime, timezone

from fastapi import APIRouter

from backend import relay_backend
from routers.rooms import isoformat
from schemas.rooms import DisconnectionCounts, HealthResponse, StatsResponse

health_router = APIRouter(tags=["health"])


@health_router.get("/health", response_model=HealthResponse)
async def health():
    registry = relay_backend.registry
    return HealthResponse(
        rooms=registry.room_count,
        connections=registry.connection_count,
        uptime=relay_backend.stats.uptime,
        timestamp=datetime.now(tz=timezone.utc).isoformat(),
    )


@health_router.get("/stats", response_model=StatsResponse)
async def stats():
    registry = relay_backend.registry
    counters = relay_backend.stats
    by_cause = counters.disconnections_by_cause
    return StatsResponse(
        rooms=registry.room_count,
        connections=registry.connection_count,
        messagesRelayed=counters.messages_relayed,
        connectionsAccepted=counters.connections_accepted,
        connectionsRejected=counters.connections_rejected,
        disconnections=counters.disconnections,
        disconnectionsByCause=DisconnectionCounts(
            left=by_cause["left"],
            expired=by_cause["expired"],
            errored=by_cause["errored"],
        ),
        rateLimitRejections=counters.rate_limit_rejections,
        sendFailures=counters.send_failures,
        startedAt=isoformat(counters.started_at),
        uptime=counters.uptime,
    )
