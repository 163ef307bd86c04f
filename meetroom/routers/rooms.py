"""Read-only room inspection endpoints."""
from __future__ import annotations

from fastapi import APIRouter, HTTPException, Request

from ..schemas.signaling import RoomSnapshot, RoomSummary
from ..services.registry import RoomRegistry

router = APIRouter()


def _registry(request: Request) -> RoomRegistry:
    return request.app.state.registry


@router.get("", response_model=list[RoomSummary])
async def list_rooms(request: Request) -> list[RoomSummary]:
    """Return a summary of every live room."""

    return [room.summary() for room in _registry(request).rooms()]


@router.get("/{room_id}", response_model=RoomSnapshot)
async def get_room(room_id: str, request: Request) -> RoomSnapshot:
    """Return the same snapshot a peer gets from ``getMyRoomInfo``."""

    room = _registry(request).get(room_id)
    if room is None:
        raise HTTPException(status_code=404, detail="Room does not exist")
    return RoomSnapshot.model_validate(room.to_json())
