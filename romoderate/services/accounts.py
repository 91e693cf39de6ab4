from __future__ import annotations

import logging
import secrets
from typing import Any, Dict, List, Optional

from ..settings import ADMIN_PASSWORD, ADMIN_USERNAME
from ..utils import iso_in, is_past, now_iso
from . import database as db
from .security import hash_password

logger = logging.getLogger(__name__)

USERS = "users"
SERVERS = "servers"
MEMBERS = "server_members"
INVITES = "server_invites"
ADMINS = "admins"
NOTIFICATIONS = "notifications"

PRIVATE_USER_FIELDS = ("access_token", "refresh_token")
PRIVATE_SERVER_SETTINGS = ("roblox_api_key", "appeal_webhook_url")


def safe_user(user: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    if not user:
        return None
    return {k: v for k, v in user.items() if k not in PRIVATE_USER_FIELDS}


def safe_admin(admin: Dict[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in admin.items() if k != "password_hash"}


# --- Users ---

async def get_user(user_id: str) -> Optional[dict]:
    return await db.get(USERS, user_id)


async def get_user_by_discord_id(discord_id: str) -> Optional[dict]:
    return await db.select_one(USERS, discord_id=str(discord_id))


async def upsert_discord_user(profile: Dict[str, Any], token_data: Dict[str, Any]) -> dict:
    fields = {
        "discord_id": str(profile["id"]),
        "username": profile.get("username"),
        "global_name": profile.get("global_name"),
        "discriminator": profile.get("discriminator"),
        "avatar": profile.get("avatar"),
        "email": profile.get("email"),
        "access_token": token_data.get("access_token"),
        "refresh_token": token_data.get("refresh_token"),
    }
    existing = await get_user_by_discord_id(fields["discord_id"])
    if existing:
        return await db.update(USERS, existing["id"], fields) or existing
    fields.update({"tos_accepted_at": None, "onboarding_completed": False})
    return await db.insert(USERS, fields)


async def accept_tos(user_id: str) -> Optional[dict]:
    return await db.update(USERS, user_id, {"tos_accepted_at": now_iso()})


async def mark_onboarding_complete(user_id: str) -> None:
    await db.update(USERS, user_id, {"onboarding_completed": True})


# --- Servers ---

async def get_server(server_id: str) -> Optional[dict]:
    return await db.get(SERVERS, server_id)


async def get_server_by_discord_id(discord_server_id: str) -> Optional[dict]:
    return await db.select_one(SERVERS, discord_server_id=str(discord_server_id))


async def list_owned_servers(user_id: str) -> List[dict]:
    return await db.select(SERVERS, {"owner_id": user_id})


async def list_accessible_servers(user_id: str) -> List[dict]:
    servers = await list_owned_servers(user_id)
    seen = {s["id"] for s in servers}
    for membership in await db.select(MEMBERS, {"user_id": user_id}):
        if membership["server_id"] in seen:
            continue
        server = await get_server(membership["server_id"])
        if server:
            server["membership"] = {"role": membership.get("role"), "permissions": membership.get("permissions")}
            servers.append(server)
            seen.add(server["id"])
    return servers


async def find_server_by_vanity(vanity: str) -> Optional[dict]:
    wanted = vanity.strip().lower()
    for server in await db.select(SERVERS, order=None):
        if str((server.get("settings") or {}).get("vanity_url") or "").lower() == wanted:
            return server
    return None


async def create_server(owner_id: str, discord_server_id: str, name: str, icon: Optional[str]) -> dict:
    return await db.insert(
        SERVERS,
        {
            "owner_id": owner_id,
            "discord_server_id": str(discord_server_id),
            "name": name,
            "icon": icon,
            "settings": {},
            "onboarding_completed": False,
            "bot_linked": False,
        },
    )


async def update_server(server_id: str, changes: Dict[str, Any]) -> Optional[dict]:
    return await db.update(SERVERS, server_id, changes)


def public_server_view(server: Dict[str, Any], branding: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    settings = server.get("settings") or {}
    return {
        "id": server["id"],
        "name": server.get("name"),
        "icon": server.get("icon"),
        "description": settings.get("description"),
        "vanity_url": settings.get("vanity_url"),
        "appeals_enabled": settings.get("appeals_enabled", True),
        "branding": branding or {},
    }


def redact_server(server: Dict[str, Any]) -> Dict[str, Any]:
    view = dict(server)
    settings = dict(view.get("settings") or {})
    for key in PRIVATE_SERVER_SETTINGS:
        if settings.get(key):
            settings[key] = "********"
    view["settings"] = settings
    return view


async def sync_guilds(user: Dict[str, Any], guilds: List[Dict[str, Any]]) -> List[dict]:
    """Create servers for guilds the user manages and refresh stale names/icons."""
    touched = []
    for guild in guilds:
        try:
            permissions = int(guild.get("permissions") or 0)
        except (TypeError, ValueError):
            permissions = 0
        if not permissions & 0x20:
            continue
        existing = await get_server_by_discord_id(guild["id"])
        if not existing:
            touched.append(await create_server(user["id"], guild["id"], guild.get("name") or "Unnamed server", guild.get("icon")))
        elif existing.get("owner_id") != user["id"]:
            refreshed = await update_server(existing["id"], {"name": guild.get("name"), "icon": guild.get("icon")})
            touched.append(refreshed or existing)
    return touched


# --- Team members ---

async def list_members(server_id: str) -> List[dict]:
    return await db.select(MEMBERS, {"server_id": server_id}, order="created_at", desc=False)


async def get_member(server_id: str, user_id: str) -> Optional[dict]:
    return await db.select_one(MEMBERS, server_id=server_id, user_id=user_id)


async def add_member(
    server_id: str,
    user_id: str,
    *,
    role: str = "moderator",
    permissions: Optional[List[str]] = None,
    invited_by: Optional[str] = None,
) -> dict:
    return await db.insert(
        MEMBERS,
        {
            "server_id": server_id,
            "user_id": user_id,
            "role": role,
            "permissions": permissions or [],
            "invited_by": invited_by,
        },
    )


async def is_owner_or_member(server: Dict[str, Any], user_id: str) -> bool:
    if server.get("owner_id") == user_id:
        return True
    return await get_member(server["id"], user_id) is not None


# --- Invites ---

async def create_invite(
    server_id: str,
    created_by: str,
    *,
    role: str = "moderator",
    permissions: Optional[List[str]] = None,
    expires_in_hours: Optional[float] = None,
    max_uses: Optional[int] = None,
) -> dict:
    return await db.insert(
        INVITES,
        {
            "server_id": server_id,
            "code": secrets.token_hex(16),
            "role": role,
            "permissions": permissions or [],
            "created_by": created_by,
            "expires_at": iso_in(expires_in_hours * 3600) if expires_in_hours else None,
            "max_uses": max_uses,
            "current_uses": 0,
        },
    )


async def get_invite_by_code(code: str) -> Optional[dict]:
    return await db.select_one(INVITES, code=code)


def invite_is_usable(invite: Optional[Dict[str, Any]]) -> bool:
    if not invite:
        return False
    if invite.get("expires_at") and is_past(invite["expires_at"]):
        return False
    max_uses = invite.get("max_uses")
    if max_uses is not None and int(invite.get("current_uses") or 0) >= int(max_uses):
        return False
    return True


async def redeem_invite(invite: Dict[str, Any], user: Dict[str, Any]) -> bool:
    """Join ``user`` to the invite's server. Returns False when the invite cannot be used."""
    if not invite_is_usable(invite):
        return False
    if not await get_member(invite["server_id"], user["id"]):
        await add_member(
            invite["server_id"],
            user["id"],
            role=invite.get("role") or "moderator",
            permissions=invite.get("permissions") or [],
            invited_by=invite.get("created_by"),
        )
    await db.update(INVITES, invite["id"], {"current_uses": int(invite.get("current_uses") or 0) + 1})
    logger.info("User %s joined server %s via invite", user["id"], invite["server_id"])
    return True


# --- Admins ---

async def get_admin_by_username(username: str) -> Optional[dict]:
    return await db.select_one(ADMINS, username=username)


async def get_admin(admin_id: str) -> Optional[dict]:
    return await db.get(ADMINS, admin_id)


async def create_admin(username: str, password: str) -> dict:
    return await db.insert(
        ADMINS,
        {"username": username, "password_hash": hash_password(password), "last_login_at": None},
    )


async def touch_admin_login(admin_id: str) -> None:
    await db.update(ADMINS, admin_id, {"last_login_at": now_iso()})


async def ensure_default_admin() -> Optional[dict]:
    if not ADMIN_PASSWORD:
        logger.info("ADMIN_PASSWORD not set; skipping default admin seed.")
        return None
    existing = await get_admin_by_username(ADMIN_USERNAME)
    if existing:
        return existing
    logger.info("Seeding default admin account %s", ADMIN_USERNAME)
    return await create_admin(ADMIN_USERNAME, ADMIN_PASSWORD)


# --- Notifications ---

async def notify(
    user_id: Optional[str],
    title: str,
    message: str,
    *,
    kind: str = "info",
    server_id: Optional[str] = None,
    link: Optional[str] = None,
) -> Optional[dict]:
    if not user_id:
        return None
    return await db.insert(
        NOTIFICATIONS,
        {
            "user_id": user_id,
            "server_id": server_id,
            "type": kind,
            "title": title,
            "message": message,
            "link": link,
            "read": False,
        },
    )


async def list_notifications(user_id: str, *, unread_only: bool = False) -> List[dict]:
    filters: Dict[str, Any] = {"user_id": user_id}
    if unread_only:
        filters["read"] = False
    return await db.select(NOTIFICATIONS, filters, limit=100)


async def mark_notification_read(notification_id: str, user_id: str) -> Optional[dict]:
    rows = await db.update_where(NOTIFICATIONS, {"id": notification_id, "user_id": user_id}, {"read": True})
    return rows[0] if rows else None


async def mark_all_notifications_read(user_id: str) -> int:
    rows = await db.update_where(NOTIFICATIONS, {"user_id": user_id, "read": False}, {"read": True})
    return len(rows)
