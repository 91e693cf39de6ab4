from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException

from ..services import keys, moderation

router = APIRouter(prefix="/api/game")


async def require_api_key(authorization: Optional[str] = Header(default=None)) -> dict:
    if not authorization or not authorization.lower().startswith("bearer "):
        raise HTTPException(status_code=401, detail="Missing API key")
    api_key = await keys.validate_api_key(authorization.split(" ", 1)[1].strip())
    if not api_key:
        raise HTTPException(status_code=401, detail="Invalid API key")
    return api_key


@router.get("/check-ban/{roblox_user_id}")
async def check_ban(roblox_user_id: str, api_key: dict = Depends(require_api_key)):
    ban = await moderation.find_player_ban(api_key["server_id"], roblox_user_id)
    if not ban or not ban.get("active"):
        return {"banned": False}
    return {
        "banned": True,
        "ban": {
            "id": ban["id"],
            "reason": ban.get("reason"),
            "expires_at": ban.get("expires_at"),
            "created_at": ban.get("created_at"),
        },
    }


@router.get("/bans")
async def active_bans(api_key: dict = Depends(require_api_key)):
    bans = await moderation.list_bans(api_key["server_id"], active_only=True)
    return [
        {
            "roblox_user_id": ban["roblox_user_id"],
            "roblox_username": ban.get("roblox_username"),
            "reason": ban.get("reason"),
            "expires_at": ban.get("expires_at"),
        }
        for ban in bans
    ]
