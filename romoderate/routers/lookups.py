from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from ..services import accounts, bloxlink_api, moderation, roblox_api
from ..services import database as db
from ..services.access import team_server
from ..services.sessions import require_user

router = APIRouter()


@router.get("/api/lookup/bloxlink/{discord_id}")
async def bloxlink_lookup(
    discord_id: str,
    server_id: str = Query(..., alias="serverId"),
    user: dict = Depends(require_user),
):
    server = await team_server(server_id, user)
    if not bloxlink_api.is_configured():
        raise HTTPException(status_code=503, detail="Bloxlink is not configured")
    roblox_id = await bloxlink_api.get_roblox_id_from_discord_id(server["discord_server_id"], discord_id)
    if not roblox_id:
        raise HTTPException(status_code=404, detail="No linked Roblox account")
    profile = await roblox_api.get_user_by_id(roblox_id)
    return {
        "discord_id": discord_id,
        "roblox_id": roblox_id,
        "roblox_username": (profile or {}).get("name"),
    }


@router.get("/api/roblox/player/{query}")
async def roblox_player(
    query: str,
    server_id: Optional[str] = Query(default=None, alias="serverId"),
    user: dict = Depends(require_user),
):
    query = query.strip()
    if query.isdigit():
        profile = await roblox_api.get_user_by_id(query)
    else:
        profile = await roblox_api.get_user_by_username(query)
    if not profile:
        raise HTTPException(status_code=404, detail="Roblox player not found")

    roblox_id = str(profile["id"])
    if server_id:
        await team_server(server_id, user)
        server_ids = {server_id}
    else:
        server_ids = {s["id"] for s in await accounts.list_accessible_servers(user["id"])}
    history = [
        ban
        for ban in await db.select(moderation.BANS, {"roblox_user_id": roblox_id})
        if ban.get("server_id") in server_ids
    ]

    return {
        "id": roblox_id,
        "username": profile.get("name"),
        "display_name": profile.get("displayName"),
        "description": profile.get("description"),
        "created": profile.get("created"),
        "is_banned_on_roblox": bool(profile.get("isBanned")),
        "account_age_days": roblox_api.account_age_days(profile),
        "avatar_url": await roblox_api.get_avatar_headshot(roblox_id),
        "alt_detection": roblox_api.detect_alt(profile),
        "bans": history,
        "active_ban": any(b.get("active") for b in history),
    }
