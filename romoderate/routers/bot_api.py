from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException

from .. import bot
from ..services import discord_api, keys
from ..services.access import owned_server
from ..services.realtime import broadcast
from ..services.sessions import require_admin, require_user

router = APIRouter()


@router.get("/api/bot/status")
async def bot_status():
    return {
        "online": bot.is_bot_online(),
        "task": bot.task_state(),
        "latency_ms": bot.latency_ms(),
        "bot": bot.bot_identity(),
    }


@router.post("/api/bot/restart")
async def restart_bot(admin: dict = Depends(require_admin)):
    logging.info("Bot restart requested by admin %s", admin["id"])
    started = await bot.restart_bot()
    await broadcast("bot_status", {"online": False, "restarting": started})
    return {"restarted": started, "task": bot.task_state()}


@router.get("/api/servers/{server_id}/bot-status")
async def server_bot_status(server_id: str, user: dict = Depends(require_user)):
    server = await owned_server(server_id, user)
    guild_id = server.get("discord_server_id")
    return {
        "online": bot.is_bot_online(),
        "in_guild": bot.is_in_guild(guild_id),
        "bot_linked": bool(server.get("bot_linked")),
        "invite_url": discord_api.bot_invite_url(guild_id),
        "bot": keys.public_discord_bot(await keys.get_discord_bot(server_id)),
    }


@router.get("/api/servers/{server_id}/discord/channels")
async def guild_channels(server_id: str, user: dict = Depends(require_user)):
    server = await owned_server(server_id, user)
    channels = await discord_api.fetch_guild_channels(server["discord_server_id"])
    return [
        {"id": c.get("id"), "name": c.get("name"), "type": c.get("type"), "parent_id": c.get("parent_id")}
        for c in channels
    ]


@router.get("/api/servers/{server_id}/discord/roles")
async def guild_roles(server_id: str, user: dict = Depends(require_user)):
    server = await owned_server(server_id, user)
    roles = await discord_api.fetch_guild_roles(server["discord_server_id"])
    return [
        {"id": r.get("id"), "name": r.get("name"), "color": r.get("color"), "position": r.get("position")}
        for r in roles
        if not r.get("managed")
    ]


@router.get("/api/avatar/{discord_id}")
async def discord_avatar(discord_id: str):
    if not discord_id.isdigit():
        raise HTTPException(status_code=400, detail="Invalid Discord id")
    profile = await discord_api.fetch_user_by_id(discord_id)
    return {"discord_id": discord_id, "avatar_url": discord_api.avatar_url(discord_id, (profile or {}).get("avatar"))}
