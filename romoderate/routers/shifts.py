from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException

from ..models import ShiftRequest
from ..services import moderation
from ..services.access import team_server
from ..services.realtime import broadcast
from ..services.sessions import require_user
from ..utils import format_duration

router = APIRouter()


async def _start(server_id: Optional[str], user: dict) -> dict:
    if not server_id:
        raise HTTPException(status_code=400, detail="server_id is required")
    await team_server(server_id, user)
    if await moderation.get_active_shift(user["id"]):
        raise HTTPException(status_code=400, detail="You already have an active shift")
    shift = await moderation.start_shift(server_id, user["id"])
    await broadcast("shift_started", {"shift": shift, "user_id": user["id"], "username": user.get("username")})
    logging.info("Shift %s started by %s on %s", shift["id"], user["id"], server_id)
    return shift


async def _end(server_id: Optional[str], user: dict) -> dict:
    shift = await moderation.get_active_shift(user["id"], server_id)
    if not shift:
        raise HTTPException(status_code=404, detail="No active shift")
    ended = await moderation.end_shift(shift) or shift
    duration = ended.get("duration_seconds") or 0
    await broadcast(
        "shift_ended",
        {"shift": ended, "user_id": user["id"], "duration_seconds": duration, "duration": format_duration(duration)},
    )
    return ended


@router.post("/api/shifts/start", status_code=201)
async def start_shift(body: ShiftRequest, user: dict = Depends(require_user)):
    return await _start(body.server_id, user)


@router.post("/api/shifts/end")
async def end_shift(user: dict = Depends(require_user)):
    return await _end(None, user)


@router.get("/api/shifts/active")
async def active_shift(user: dict = Depends(require_user)):
    return {"shift": await moderation.get_active_shift(user["id"])}


@router.get("/api/shifts")
async def my_shifts(user: dict = Depends(require_user)):
    return await moderation.list_shifts(user_id=user["id"])


@router.post("/api/servers/{server_id}/shifts/start", status_code=201)
async def start_server_shift(server_id: str, user: dict = Depends(require_user)):
    return await _start(server_id, user)


@router.post("/api/servers/{server_id}/shifts/end")
async def end_server_shift(server_id: str, user: dict = Depends(require_user)):
    await team_server(server_id, user)
    return await _end(server_id, user)


@router.get("/api/servers/{server_id}/shifts")
async def server_shifts(server_id: str, user: dict = Depends(require_user)):
    await team_server(server_id, user)
    return await moderation.list_shifts(server_id=server_id)
