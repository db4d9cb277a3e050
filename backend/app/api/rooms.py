"""Read-only HTTP view of the room directory."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Request

router = APIRouter(prefix="/rooms", tags=["rooms"])


@router.get("")
async def list_rooms(request: Request) -> list[dict[str, Any]]:
    """Same snapshot a ``list-rooms`` message returns; passwords are never exposed."""

    return await request.app.state.hub.snapshot()
