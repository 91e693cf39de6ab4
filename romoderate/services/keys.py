from __future__ import annotations

import logging
import secrets
from typing import Any, Dict, List, Optional, Tuple

from ..settings import LINK_KEY_TTL_SECONDS
from ..utils import iso_in, is_past, now_iso, sha256_hex
from . import database as db

logger = logging.getLogger(__name__)

API_KEYS = "api_keys"
BOT_REGISTRATIONS = "bot_registrations"
ROBLOX_API_KEYS = "roblox_api_keys"
DISCORD_BOTS = "discord_bots"

API_KEY_PREFIX = "blox_"
BOT_KEY_PREFIX = "romod_"
PREVIEW_LENGTH = 12


def generate_bot_key() -> str:
    return BOT_KEY_PREFIX + secrets.token_hex(32)


def generate_link_key() -> str:
    return secrets.token_hex(16).upper()


def generate_api_key() -> str:
    return API_KEY_PREFIX + secrets.token_hex(24)


def key_preview(raw: str) -> str:
    return raw[:PREVIEW_LENGTH]


def fresh_link_key(ttl_seconds: int = LINK_KEY_TTL_SECONDS) -> Dict[str, str]:
    return {"link_key": generate_link_key(), "link_key_expires_at": iso_in(ttl_seconds)}


# --- API keys (game servers) ---

async def create_api_key(user_id: str, server_id: str, name: str, scopes: List[str]) -> Tuple[dict, str]:
    raw = generate_api_key()
    row = await db.insert(
        API_KEYS,
        {
            "user_id": user_id,
            "server_id": server_id,
            "name": name,
            "key_hash": sha256_hex(raw),
            "key_preview": key_preview(raw),
            "scopes": scopes,
            "is_active": True,
            "last_used_at": None,
        },
    )
    return row, raw


def public_api_key(row: Dict[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in row.items() if k != "key_hash"}


async def list_api_keys(user_id: str) -> List[dict]:
    return [public_api_key(r) for r in await db.select(API_KEYS, {"user_id": user_id})]


async def validate_api_key(raw: Optional[str]) -> Optional[dict]:
    if not raw or not raw.startswith(API_KEY_PREFIX):
        return None
    row = await db.select_one(API_KEYS, key_hash=sha256_hex(raw))
    if not row or not row.get("is_active", True):
        logger.info("Rejected game API key %s", key_preview(raw))
        return None
    await db.update(API_KEYS, row["id"], {"last_used_at": now_iso()})
    return row


# --- Bot registrations ---

async def create_bot_registration(user_id: str, server_id: str, name: str) -> Tuple[dict, str]:
    secret = secrets.token_hex(32)
    row = await db.insert(
        BOT_REGISTRATIONS,
        {
            "user_id": user_id,
            "server_id": server_id,
            "name": name,
            "secret_hash": sha256_hex(secret),
            "is_active": True,
        },
    )
    return row, secret


def public_bot_registration(row: Dict[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in row.items() if k != "secret_hash"}


# --- Roblox Open Cloud key registry ---

async def register_roblox_api_key(server_id: str, user_id: str, name: str, raw: str, universe_id: Optional[str]) -> dict:
    row = await db.insert(
        ROBLOX_API_KEYS,
        {
            "server_id": server_id,
            "created_by": user_id,
            "name": name,
            "universe_id": universe_id,
            "key_hash": sha256_hex(raw),
            "key_preview": key_preview(raw),
        },
    )
    return public_api_key(row)


# --- Discord bot records ---

async def upsert_discord_bot(server_id: str, fields: Dict[str, Any]) -> dict:
    existing = await db.select_one(DISCORD_BOTS, server_id=server_id)
    if existing:
        return await db.update(DISCORD_BOTS, existing["id"], fields) or existing
    return await db.insert(DISCORD_BOTS, {"server_id": server_id, **fields})


async def get_discord_bot(server_id: str) -> Optional[dict]:
    return await db.select_one(DISCORD_BOTS, server_id=server_id)


def public_discord_bot(row: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if not row:
        return None
    return {k: v for k, v in row.items() if k not in ("token_fingerprint", "bot_key_hash")}


def link_key_valid(server: Dict[str, Any], key: str) -> bool:
    stored = server.get("link_key")
    if not stored or not secrets.compare_digest(str(stored), key.strip().upper()):
        return False
    return not is_past(server.get("link_key_expires_at"))
