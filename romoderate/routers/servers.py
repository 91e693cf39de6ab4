from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import httpx
from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import RedirectResponse

from .. import bot
from ..models import BotTokenSubmission, BrandingUpdate, ServerUpdate, SetupRequest
from ..services import accounts, discord_api, keys, roblox_api
from ..services import database as db
from ..services.access import owned_server
from ..services.realtime import broadcast
from ..services.security import enforce_ip_rate_limit
from ..services.sessions import require_user
from ..settings import REGENERATED_LINK_KEY_TTL_SECONDS
from ..utils import deep_merge, frontend_url, get_client_ip, now_iso, sha256_hex

router = APIRouter()

BRANDING = "server_branding"
PREMIUM = "premium_subscriptions"

DEFAULT_BRANDING = {
    "primary_color": "#6B21A8",
    "secondary_color": "#1E1B4B",
    "logo_url": None,
    "banner_url": None,
    "custom_css": None,
}

FREE_TIER = {"tier": "free", "status": "active", "features": ["bans", "appeals", "tickets"], "expires_at": None}


async def _branding(server_id: str) -> Dict[str, Any]:
    row = await db.select_one(BRANDING, server_id=server_id)
    if not row:
        return {"server_id": server_id, **DEFAULT_BRANDING}
    return {**DEFAULT_BRANDING, **{k: v for k, v in row.items() if v is not None}}


async def _verified_bot_identity(token: str) -> Dict[str, Any]:
    status, bot_user = await discord_api.verify_bot_token(token)
    if status != 200 or not bot_user:
        detail = discord_api.BOT_TOKEN_ERRORS.get(status, "Failed to verify bot token")
        raise HTTPException(status_code=400, detail=detail)
    return {
        "bot_user_id": bot_user.get("id"),
        "bot_username": bot_user.get("username"),
        "bot_avatar": bot_user.get("avatar"),
        "token_fingerprint": sha256_hex(token),
        "uses_custom_token": True,
        "verified_at": now_iso(),
    }


@router.get("/api/servers")
async def list_servers(user: dict = Depends(require_user)):
    return [accounts.redact_server(s) for s in await accounts.list_accessible_servers(user["id"])]


@router.get("/api/servers/{server_id}")
async def get_server(server_id: str, user: dict = Depends(require_user)):
    server = await accounts.get_server(server_id)
    if not server or server.get("owner_id") != user["id"]:
        raise HTTPException(status_code=404, detail="Server not found")
    return accounts.redact_server(server)


@router.patch("/api/servers/{server_id}")
async def update_server(server_id: str, body: ServerUpdate, user: dict = Depends(require_user)):
    server = await owned_server(server_id, user)
    changes: Dict[str, Any] = {}
    if body.name is not None:
        changes["name"] = body.name
    if body.settings is not None:
        changes["settings"] = deep_merge(server.get("settings"), body.settings)
    updated = await accounts.update_server(server_id, changes) if changes else server
    await broadcast("server_updated", {"server_id": server_id})
    return accounts.redact_server(updated)


@router.get("/api/public/servers/{vanity}")
async def public_server(vanity: str, request: Request):
    enforce_ip_rate_limit(get_client_ip(request))
    server = await accounts.find_server_by_vanity(vanity)
    if not server:
        raise HTTPException(status_code=404, detail="Server not found")
    return accounts.public_server_view(server, await _branding(server["id"]))


@router.get("/v/{vanity}")
async def vanity_redirect(vanity: str):
    server = await accounts.find_server_by_vanity(vanity)
    if not server:
        raise HTTPException(status_code=404, detail="Server not found")
    return RedirectResponse(url=frontend_url(f"/servers/{server['id']}"), status_code=302)


@router.post("/api/servers/{server_id}/complete-setup")
async def complete_setup(server_id: str, user: dict = Depends(require_user)):
    server = await owned_server(server_id, user)
    invite_url = discord_api.bot_invite_url(server.get("discord_server_id"))
    if not bot.is_bot_online():
        raise HTTPException(status_code=400, detail="Bot is offline. Try again in a moment.")
    if not bot.is_in_guild(server.get("discord_server_id")):
        raise HTTPException(status_code=400, detail=f"Bot is not in this Discord server yet. Invite it first: {invite_url}")

    bot_key = keys.generate_bot_key()
    link = keys.fresh_link_key()
    identity = bot.bot_identity() or {}
    await keys.upsert_discord_bot(
        server_id,
        {
            "bot_key_hash": sha256_hex(bot_key),
            "bot_key_preview": keys.key_preview(bot_key),
            "bot_user_id": identity.get("id"),
            "bot_username": identity.get("username"),
            "status": "pending_link",
        },
    )
    updated = await accounts.update_server(
        server_id,
        {**link, "bot_key_preview": keys.key_preview(bot_key), "onboarding_completed": True},
    )
    await accounts.mark_onboarding_complete(user["id"])
    logging.info("Server %s completed setup", server_id)
    return {
        "server": accounts.redact_server(updated or server),
        "bot_key": bot_key,
        "link_key": link["link_key"],
        "link_key_expires_at": link["link_key_expires_at"],
    }


@router.post("/api/servers/{server_id}/bot-token")
async def submit_bot_token(server_id: str, body: BotTokenSubmission, user: dict = Depends(require_user)):
    await owned_server(server_id, user)
    if body.skip_token:
        record = await keys.upsert_discord_bot(server_id, {"uses_custom_token": False, "status": "shared"})
        return {"success": True, "skipped": True, "bot": keys.public_discord_bot(record)}
    if not body.bot_token:
        raise HTTPException(status_code=400, detail="Bot token is required")
    identity = await _verified_bot_identity(body.bot_token.strip())
    record = await keys.upsert_discord_bot(server_id, {**identity, "status": "verified"})
    return {"success": True, "skipped": False, "bot": keys.public_discord_bot(record)}


@router.patch("/api/servers/{server_id}/update-bot-token")
async def update_bot_token(server_id: str, body: BotTokenSubmission, user: dict = Depends(require_user)):
    await owned_server(server_id, user)
    if not body.bot_token:
        raise HTTPException(status_code=400, detail="Bot token is required")
    identity = await _verified_bot_identity(body.bot_token.strip())
    record = await keys.upsert_discord_bot(server_id, {**identity, "status": "verified"})
    return {"success": True, "bot": keys.public_discord_bot(record)}


@router.post("/api/servers/{server_id}/generate-link-key")
async def generate_link_key(server_id: str, user: dict = Depends(require_user)):
    await owned_server(server_id, user)
    link = keys.fresh_link_key(REGENERATED_LINK_KEY_TTL_SECONDS)
    await accounts.update_server(server_id, link)
    return link


@router.post("/api/servers/{server_id}/reset-bot-key")
async def reset_bot_key(server_id: str, user: dict = Depends(require_user)):
    await owned_server(server_id, user)
    bot_key = keys.generate_bot_key()
    await keys.upsert_discord_bot(server_id, {"bot_key_hash": sha256_hex(bot_key), "bot_key_preview": keys.key_preview(bot_key)})
    await accounts.update_server(server_id, {"bot_key_preview": keys.key_preview(bot_key)})
    return {"bot_key": bot_key}


@router.get("/api/servers/{server_id}/settings")
async def get_settings(server_id: str, user: dict = Depends(require_user)):
    server = await owned_server(server_id, user)
    return accounts.redact_server(server)["settings"]


@router.patch("/api/servers/{server_id}/settings")
async def patch_settings(server_id: str, body: Dict[str, Any], user: dict = Depends(require_user)):
    server = await owned_server(server_id, user)
    updated = await accounts.update_server(server_id, {"settings": deep_merge(server.get("settings"), body)})
    await broadcast("server_updated", {"server_id": server_id})
    return accounts.redact_server(updated or server)["settings"]


@router.post("/api/servers/{server_id}/setup")
async def setup_server(server_id: str, body: SetupRequest, user: dict = Depends(require_user)):
    server = await owned_server(server_id, user)
    changes = body.model_dump(exclude_none=True)
    if changes.get("vanity_url"):
        changes["vanity_url"] = changes["vanity_url"].strip().lower()
        taken = await accounts.find_server_by_vanity(changes["vanity_url"])
        if taken and taken["id"] != server_id:
            raise HTTPException(status_code=409, detail="Vanity URL already in use")
    updated = await accounts.update_server(server_id, {"settings": deep_merge(server.get("settings"), changes)})
    return accounts.redact_server(updated or server)


@router.get("/api/servers/{server_id}/branding")
async def get_branding(server_id: str, user: dict = Depends(require_user)):
    await owned_server(server_id, user)
    return await _branding(server_id)


@router.put("/api/servers/{server_id}/branding")
async def put_branding(server_id: str, body: BrandingUpdate, user: dict = Depends(require_user)):
    await owned_server(server_id, user)
    changes = body.model_dump(exclude_none=True)
    existing = await db.select_one(BRANDING, server_id=server_id)
    if existing:
        await db.update(BRANDING, existing["id"], changes)
    else:
        await db.insert(BRANDING, {"server_id": server_id, **DEFAULT_BRANDING, **changes})
    return await _branding(server_id)


@router.get("/api/servers/{server_id}/premium")
async def get_premium(server_id: str, user: dict = Depends(require_user)):
    await owned_server(server_id, user)
    subscription = await db.select_one(PREMIUM, server_id=server_id)
    return subscription or {"server_id": server_id, **FREE_TIER}


@router.get("/api/servers/{server_id}/roblox-ban-logs")
async def roblox_ban_logs(server_id: str, robloxUserId: Optional[str] = None, user: dict = Depends(require_user)):
    server = await owned_server(server_id, user)
    settings = server.get("settings") or {}
    if not (settings.get("roblox_api_key") and settings.get("roblox_universe_id")):
        raise HTTPException(status_code=400, detail="Roblox Open Cloud is not configured for this server")
    try:
        return await roblox_api.list_ban_logs(
            str(settings["roblox_universe_id"]),
            settings["roblox_api_key"],
            roblox_id=robloxUserId,
        )
    except httpx.HTTPStatusError as exc:
        raise HTTPException(status_code=502, detail=f"Roblox API returned {exc.response.status_code}") from exc
    except httpx.HTTPError as exc:
        raise HTTPException(status_code=502, detail="Failed to reach Roblox API") from exc
