from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import urlencode

import httpx
from fastapi import HTTPException

from .. import state
from ..clients import get_http_client
from ..settings import (
    BOT_INVITE_PERMISSIONS,
    DISCORD_API_BASE,
    DISCORD_BOT_TOKEN,
    DISCORD_CDN_BASE,
    DISCORD_CLIENT_ID,
    DISCORD_CLIENT_SECRET,
    DISCORD_REDIRECT_URI,
    OAUTH_SCOPES,
)

BRAND_COLOR = 0x6B21A8

BOT_TOKEN_ERRORS = {
    401: "Invalid bot token",
    403: "Bot token lacks permissions",
    429: "Rate limited by Discord",
}


def bot_headers(token: Optional[str] = None) -> Dict[str, str]:
    return {"Authorization": f"Bot {token or state._bot_token or DISCORD_BOT_TOKEN}"}


def oauth_authorize_url(state_token: str) -> str:
    query = urlencode(
        {
            "response_type": "code",
            "client_id": DISCORD_CLIENT_ID,
            "scope": OAUTH_SCOPES,
            "redirect_uri": DISCORD_REDIRECT_URI,
            "state": state_token,
            "prompt": "consent",
        }
    )
    return f"{DISCORD_API_BASE}/oauth2/authorize?{query}"


def bot_invite_url(guild_id: Optional[str] = None) -> str:
    params = {"client_id": DISCORD_CLIENT_ID, "permissions": BOT_INVITE_PERMISSIONS, "scope": "bot applications.commands"}
    if guild_id:
        params["guild_id"] = guild_id
        params["disable_guild_select"] = "true"
    return f"https://discord.com/oauth2/authorize?{urlencode(params)}"


def avatar_url(discord_id: str, avatar_hash: Optional[str]) -> str:
    if avatar_hash:
        ext = "gif" if avatar_hash.startswith("a_") else "png"
        return f"{DISCORD_CDN_BASE}/avatars/{discord_id}/{avatar_hash}.{ext}"
    try:
        index = int(discord_id) % 6
    except (TypeError, ValueError):
        index = 0
    return f"{DISCORD_CDN_BASE}/embed/avatars/{index}.png"


async def exchange_code_for_token(code: str) -> dict:
    try:
        client = get_http_client()
        resp = await client.post(
            f"{DISCORD_API_BASE}/oauth2/token",
            data={
                "client_id": DISCORD_CLIENT_ID,
                "client_secret": DISCORD_CLIENT_SECRET,
                "grant_type": "authorization_code",
                "code": code,
                "redirect_uri": DISCORD_REDIRECT_URI,
            },
            headers={"Content-Type": "application/x-www-form-urlencoded"},
        )
        resp.raise_for_status()
        return resp.json()
    except httpx.HTTPStatusError as exc:
        logging.warning("OAuth code exchange failed: %s | body=%s", exc, exc.response.text)
        raise HTTPException(status_code=400, detail="Authentication failed. Please try logging in again.") from exc


async def fetch_discord_user(access_token: str) -> dict:
    client = get_http_client()
    resp = await client.get(
        f"{DISCORD_API_BASE}/users/@me",
        headers={"Authorization": f"Bearer {access_token}"},
    )
    resp.raise_for_status()
    return resp.json()


async def fetch_user_guilds(access_token: str) -> List[dict]:
    client = get_http_client()
    resp = await client.get(
        f"{DISCORD_API_BASE}/users/@me/guilds",
        headers={"Authorization": f"Bearer {access_token}"},
    )
    resp.raise_for_status()
    return resp.json() or []


async def verify_bot_token(token: str) -> Tuple[int, Optional[dict]]:
    """Calls ``/users/@me`` as the bot. Returns the status code and the bot user on success."""
    client = get_http_client()
    try:
        resp = await client.get(f"{DISCORD_API_BASE}/users/@me", headers=bot_headers(token), timeout=10)
    except httpx.HTTPError as exc:
        logging.warning("Bot token verification failed: %s", exc)
        return 0, None
    if resp.status_code == 200:
        return 200, resp.json()
    logging.info("Bot token rejected by Discord status=%s", resp.status_code)
    return resp.status_code, None


async def _bot_get(path: str) -> Optional[Any]:
    try:
        client = get_http_client()
        resp = await client.get(f"{DISCORD_API_BASE}{path}", headers=bot_headers(), timeout=10)
        if resp.status_code == 404:
            return None
        resp.raise_for_status()
        return resp.json()
    except httpx.HTTPStatusError as exc:
        logging.warning("Discord GET %s failed: %s %s", path, exc.response.status_code, exc.response.text[:300])
    except httpx.HTTPError as exc:
        logging.warning("Discord GET %s failed: %s", path, exc)
    return None


async def fetch_user_by_id(discord_id: str) -> Optional[dict]:
    return await _bot_get(f"/users/{discord_id}")


async def fetch_guild_channels(guild_id: str) -> List[dict]:
    channels = await _bot_get(f"/guilds/{guild_id}/channels") or []
    return sorted(channels, key=lambda c: (c.get("type", 0), c.get("position", 0)))


async def fetch_guild_roles(guild_id: str) -> List[dict]:
    roles = await _bot_get(f"/guilds/{guild_id}/roles") or []
    return sorted(roles, key=lambda r: r.get("position", 0), reverse=True)


async def post_channel_message(channel_id: str, payload: Dict[str, Any]) -> Optional[dict]:
    url = f"{DISCORD_API_BASE}/channels/{channel_id}/messages"
    try:
        client = get_http_client()
        resp = await client.post(url, headers=bot_headers(), json=payload, timeout=10)
        if resp.status_code == 429:
            retry = float(resp.headers.get("Retry-After", "1"))
            await asyncio.sleep(min(retry, 5.0))
            resp = await client.post(url, headers=bot_headers(), json=payload, timeout=10)
        resp.raise_for_status()
        return resp.json()
    except httpx.HTTPStatusError as exc:
        logging.warning("Channel post failed channel=%s status=%s body=%s", channel_id, exc.response.status_code, exc.response.text[:300])
    except httpx.HTTPError as exc:
        logging.warning("Channel post failed channel=%s error=%s", channel_id, exc)
    return None


def build_ticket_panel_message(panel: Dict[str, Any]) -> Dict[str, Any]:
    embed = {
        "title": panel.get("title") or "Support Tickets",
        "description": panel.get("description") or "Press the button below to open a ticket with the moderation team.",
        "color": int(panel.get("color") or BRAND_COLOR),
    }
    components = [
        {
            "type": 1,
            "components": [
                {
                    "type": 2,
                    "style": 1,
                    "label": panel.get("button_label") or "Open Ticket",
                    "custom_id": f"ticket_open:{panel['id']}",
                }
            ],
        }
    ]
    return {"embeds": [embed], "components": components}


async def post_webhook_embed(webhook_url: str, embed: Dict[str, Any]) -> bool:
    try:
        client = get_http_client()
        resp = await client.post(webhook_url, json={"embeds": [embed]}, timeout=10)
        resp.raise_for_status()
        return True
    except httpx.HTTPError as exc:
        logging.warning("Discord webhook post failed: %s", exc)
        return False
