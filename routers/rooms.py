from datetime import datetime, timezone

from fastapi import APIRouter, HTTPException

from backend import relay_backend
from logging_config import get_logger
from registry import is_valid_room_id
from schemas.rooms import RoomDetailsResponse

logger = get_logger(__name__)

rooms_router = APIRouter(prefix="/rooms", tags=["rooms"])


def isoformat(epoch_seconds: float) -> str:
    return datetime.fromtimestamp(epoch_seconds, tz=timezone.utc).isoformat()


@rooms_router.get("/{room_id}", response_model=RoomDetailsResponse)
async def get_room_details(room_id: str):
    """
    Get details for a live room.

    Returns:
    - room_id: Room identifier
    - online_users_count: Current number of connections in the room
    - created_at / expires_at: ISO timestamps, the deadline is fixed at creation
    - expires_in_seconds: Time left before the room is force-expired
    - is_expired: Deadline has passed but the cleanup sweep has not run yet
    """
    if not is_valid_room_id(room_id):
        raise HTTPException(status_code=400, detail="Invalid room ID")

    room = relay_backend.registry.get(room_id)
    if room is None:
        logger.debug(f"Room details failed: Room {room_id} not found")
        raise HTTPException(status_code=404, detail="Room not found")

    now = datetime.now(tz=timezone.utc).timestamp()
    return RoomDetailsResponse(
        room_id=room.room_id,
        online_users_count=len(room.members),
        created_at=isoformat(room.created_at),
        expires_at=isoformat(room.expires_at),
        expires_in_seconds=max(0.0, room.expires_at - now),
        is_expired=room.is_expired(now),
    )
