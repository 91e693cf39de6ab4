from __future__ import annotations

import logging
from typing import Any, Dict, Optional

import nacl.exceptions
import nacl.signing
from fastapi import Request
from fastapi.responses import JSONResponse

from ..settings import DISCORD_PUBLIC_KEY
from ..utils import now_iso
from . import accounts, keys, moderation
from . import database as db
from .realtime import broadcast

PING = 1
APPLICATION_COMMAND = 2
MESSAGE_COMPONENT = 3
EPHEMERAL = 1 << 6


def verify_signature(request: Request, body: bytes, public_key: Optional[str] = None) -> bool:
    public_key = public_key or DISCORD_PUBLIC_KEY
    if not public_key:
        logging.error("DISCORD_PUBLIC_KEY is not set; rejecting interaction.")
        return False
    signature = request.headers.get("X-Signature-Ed25519")
    timestamp = request.headers.get("X-Signature-Timestamp")
    if not signature or not timestamp:
        return False
    try:
        key = nacl.signing.VerifyKey(bytes.fromhex(public_key))
        key.verify(f"{timestamp}".encode() + body, bytes.fromhex(signature))
        return True
    except (ValueError, nacl.exceptions.BadSignatureError):
        return False


def respond_ephemeral(content: str) -> JSONResponse:
    return JSONResponse({"type": 4, "data": {"content": content, "flags": EPHEMERAL}})


def respond_ephemeral_embed(title: str, description: str, color: int = 0x6B21A8) -> JSONResponse:
    return JSONResponse(
        {
            "type": 4,
            "data": {
                "flags": EPHEMERAL,
                "embeds": [{"title": title, "description": description, "color": color}],
            },
        }
    )


def _option(payload: Dict[str, Any], name: str) -> Optional[str]:
    for option in (payload.get("data") or {}).get("options") or []:
        if option.get("name") == name:
            return str(option.get("value") or "")
    return None


def _invoker_id(payload: Dict[str, Any]) -> Optional[str]:
    member = payload.get("member") or {}
    user = member.get("user") or payload.get("user") or {}
    return user.get("id")


async def link_server(key: str, guild_id: Optional[str], discord_user_id: Optional[str]) -> Dict[str, Any]:
    """Attach the bot in ``guild_id`` to the server owning ``key``."""
    if not guild_id:
        return {"ok": False, "message": "Run this command inside your Discord server."}
    server = await db.select_one(accounts.SERVERS, link_key=key.strip().upper())
    if not server or not keys.link_key_valid(server, key):
        return {"ok": False, "message": "That link key is invalid or has expired. Generate a new one from the dashboard."}
    if str(server.get("discord_server_id")) != str(guild_id):
        return {"ok": False, "message": "This key belongs to a different Discord server."}
    updated = await accounts.update_server(
        server["id"],
        {
            "bot_linked": True,
            "linked_at": now_iso(),
            "linked_by": discord_user_id,
            "link_key": None,
            "link_key_expires_at": None,
        },
    )
    await keys.upsert_discord_bot(server["id"], {"status": "linked", "guild_id": str(guild_id)})
    await broadcast("server_linked", {"server_id": server["id"], "guild_id": str(guild_id)})
    logging.info("Server %s linked to guild %s by %s", server["id"], guild_id, discord_user_id)
    return {"ok": True, "message": f"Linked **{server.get('name')}** to RoModerate.", "server": updated}


async def handle_command(payload: Dict[str, Any]) -> JSONResponse:
    name = (payload.get("data") or {}).get("name")
    if name == "linkkey":
        result = await link_server(_option(payload, "key") or "", payload.get("guild_id"), _invoker_id(payload))
        if result["ok"]:
            return respond_ephemeral_embed("Server linked", result["message"], color=0x2ECC71)
        return respond_ephemeral_embed("Link failed", result["message"], color=0xE74C3C)
    return respond_ephemeral("Unknown command.")


async def open_panel_ticket(panel_id: str, payload: Dict[str, Any]) -> JSONResponse:
    panel = await db.get(moderation.TICKET_PANELS, panel_id)
    server = await accounts.get_server(panel["server_id"]) if panel else None
    if not server:
        return respond_ephemeral_embed("Ticket failed", "This ticket panel no longer exists.", color=0xE74C3C)
    if str(server.get("discord_server_id")) != str(payload.get("guild_id")):
        return respond_ephemeral_embed("Ticket failed", "This ticket panel belongs to a different Discord server.", color=0xE74C3C)

    discord_id = _invoker_id(payload)
    member = payload.get("member") or {}
    username = (member.get("user") or payload.get("user") or {}).get("username") or "Discord user"
    existing = None
    if discord_id:
        existing = await db.select_one(moderation.TICKETS, server_id=server["id"], discord_user_id=discord_id, status="open")
    if existing:
        return respond_ephemeral_embed("Ticket already open", f"You already have an open ticket (`{existing['id'][:8]}`).")

    known = await accounts.get_user_by_discord_id(discord_id) if discord_id else None
    ticket = await moderation.create_ticket(
        {
            "server_id": server["id"],
            "subject": f"{panel.get('title') or 'Support'}: {username}",
            "description": "Opened from the Discord ticket panel.",
            "category": "discord",
            "panel_id": panel_id,
            "discord_user_id": discord_id,
            "discord_username": username,
        },
        known["id"] if known else None,
    )
    await accounts.notify(
        server.get("owner_id"),
        "New ticket",
        ticket["subject"],
        kind="ticket",
        server_id=server["id"],
        link=f"/servers/{server['id']}/tickets",
    )
    await broadcast("ticket_created", ticket)
    logging.info("Ticket %s opened from panel %s by %s", ticket["id"], panel_id, discord_id)
    return respond_ephemeral_embed("Ticket opened", f"Your ticket `{ticket['id'][:8]}` was created. A moderator will follow up soon.", color=0x2ECC71)


COMPONENT_HANDLERS = {
    "ticket_open": open_panel_ticket,
}


async def handle_component(payload: Dict[str, Any]) -> JSONResponse:
    custom_id = (payload.get("data") or {}).get("custom_id") or ""
    action, _, target = custom_id.partition(":")
    handler = COMPONENT_HANDLERS.get(action)
    if not handler or not target:
        return respond_ephemeral_embed("Unsupported action", "This button is not configured.")
    return await handler(target, payload)
