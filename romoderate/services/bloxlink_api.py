from __future__ import annotations

import logging
from typing import Optional

import httpx

from ..clients import get_http_client
from ..settings import BLOXLINK_API_BASE, BLOXLINK_API_KEY

logger = logging.getLogger(__name__)


def is_configured() -> bool:
    return bool(BLOXLINK_API_KEY)


async def _lookup(guild_id: str, direction: str, source_id: str) -> Optional[dict]:
    if not BLOXLINK_API_KEY:
        logger.warning("BLOXLINK_API_KEY is not set. Cannot resolve %s.", direction)
        return None
    url = f"{BLOXLINK_API_BASE}/guilds/{guild_id}/{direction}/{source_id}"
    try:
        client = get_http_client()
        response = await client.get(url, headers={"Authorization": BLOXLINK_API_KEY}, timeout=10)
        if response.status_code == 404:
            logger.info("Bloxlink has no %s link for %s in guild %s.", direction, source_id, guild_id)
            return None
        response.raise_for_status()
        return response.json() or {}
    except httpx.HTTPStatusError as http_e:
        logger.error(
            "Bloxlink API HTTP Error for %s (%s): %s - %s",
            source_id,
            direction,
            http_e.response.status_code,
            http_e.response.text,
        )
    except httpx.HTTPError as exc:
        logger.error("Bloxlink API connection error for %s (%s): %s", source_id, direction, exc)
    return None


async def get_roblox_id_from_discord_id(guild_id: str, discord_id: str) -> Optional[str]:
    data = await _lookup(guild_id, "discord-to-roblox", discord_id)
    if data and data.get("robloxID"):
        return str(data["robloxID"])
    return None
