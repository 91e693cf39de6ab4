from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Optional

from ..utils import is_past, now_iso, parse_timestamp, utcnow
from . import database as db

logger = logging.getLogger(__name__)

BANS = "bans"
APPEALS = "appeals"
TICKETS = "tickets"
TICKET_PANELS = "ticket_panels"
MODERATION_LOGS = "moderation_logs"
SHIFTS = "shifts"

APPEAL_DECISIONS = ("approved", "rejected")


# --- Bans ---

async def expire_if_due(ban: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """Deactivate a ban whose ``expires_at`` has passed. Expiry is applied lazily on read."""
    if not ban or not ban.get("active") or not ban.get("expires_at"):
        return ban
    if not is_past(ban["expires_at"]):
        return ban
    metadata = dict(ban.get("metadata") or {})
    metadata["expired"] = True
    logger.info("Ban %s for %s expired", ban["id"], ban.get("roblox_user_id"))
    return await db.update(BANS, ban["id"], {"active": False, "metadata": metadata}) or ban


async def get_ban(ban_id: str) -> Optional[dict]:
    return await db.get(BANS, ban_id)


async def list_bans(server_id: str, *, active_only: bool = False) -> List[dict]:
    filters: Dict[str, Any] = {"server_id": server_id}
    if active_only:
        filters["active"] = True
    bans = await db.select(BANS, filters)
    if not active_only:
        return bans
    current = [await expire_if_due(ban) for ban in bans]
    return [ban for ban in current if ban and ban.get("active")]


async def find_player_ban(server_id: str, roblox_user_id: str) -> Optional[dict]:
    ban = await db.select_one(BANS, server_id=server_id, roblox_user_id=str(roblox_user_id))
    return await expire_if_due(ban)


async def upsert_ban(
    server_id: str,
    roblox_user_id: str,
    *,
    roblox_username: Optional[str],
    reason: str,
    moderator_id: Optional[str],
    expires_at: Optional[str] = None,
    active: bool = True,
    metadata: Optional[Dict[str, Any]] = None,
) -> Dict[str, Any]:
    """One row per (server, player): an existing ban is overwritten and reactivated.

    Earlier warnings on the row are carried over.
    """
    fields = {
        "roblox_username": roblox_username,
        "reason": reason,
        "banned_by": moderator_id,
        "expires_at": expires_at,
        "active": active,
        "metadata": dict(metadata or {}),
    }
    existing = await db.select_one(BANS, server_id=server_id, roblox_user_id=str(roblox_user_id))
    if existing:
        warnings = (existing.get("metadata") or {}).get("warnings")
        if warnings:
            fields["metadata"].setdefault("warnings", warnings)
        return await db.update(BANS, existing["id"], fields) or existing
    return await db.insert(BANS, {"server_id": server_id, "roblox_user_id": str(roblox_user_id), **fields})


async def add_warning(
    server_id: str,
    roblox_user_id: str,
    *,
    roblox_username: Optional[str],
    reason: str,
    moderator_id: Optional[str],
) -> Dict[str, Any]:
    """Record a warning without touching the player's ban state or history."""
    entry = {"reason": reason, "by": moderator_id, "at": now_iso()}
    existing = await find_player_ban(server_id, roblox_user_id)
    if existing:
        metadata = dict(existing.get("metadata") or {})
        metadata["warnings"] = list(metadata.get("warnings") or []) + [entry]
        return await db.update(BANS, existing["id"], {"metadata": metadata}) or existing
    return await db.insert(
        BANS,
        {
            "server_id": server_id,
            "roblox_user_id": str(roblox_user_id),
            "roblox_username": roblox_username,
            "reason": reason,
            "banned_by": moderator_id,
            "expires_at": None,
            "active": False,
            "metadata": {"type": "warning", "notes": reason, "warnings": [entry]},
        },
    )


async def update_ban(ban_id: str, changes: Dict[str, Any]) -> Optional[dict]:
    return await db.update(BANS, ban_id, changes)


async def deactivate_ban(ban: Dict[str, Any], metadata: Optional[Dict[str, Any]] = None) -> Optional[dict]:
    merged = dict(ban.get("metadata") or {})
    merged.update(metadata or {})
    return await db.update(BANS, ban["id"], {"active": False, "metadata": merged})


# --- Moderation log ---

async def log_action(
    server_id: str,
    moderator_id: Optional[str],
    action: str,
    *,
    target_id: Optional[str] = None,
    target_name: Optional[str] = None,
    reason: Optional[str] = None,
    metadata: Optional[Dict[str, Any]] = None,
) -> dict:
    return await db.insert(
        MODERATION_LOGS,
        {
            "server_id": server_id,
            "moderator_id": moderator_id,
            "action": action,
            "target_id": target_id,
            "target_name": target_name,
            "reason": reason,
            "metadata": metadata or {},
        },
    )


async def list_logs(server_id: str, *, limit: int = 200) -> List[dict]:
    return await db.select(MODERATION_LOGS, {"server_id": server_id}, limit=limit)


def summarize_actions(logs: Iterable[Dict[str, Any]]) -> Dict[str, int]:
    summary = {"total": 0, "bans": 0, "tempbans": 0, "warnings": 0, "unbans": 0, "appeals_reviewed": 0, "tickets_closed": 0}
    keys = {
        "ban": "bans",
        "tempban": "tempbans",
        "warn": "warnings",
        "unban": "unbans",
        "appeal_review": "appeals_reviewed",
        "ticket_close": "tickets_closed",
    }
    for entry in logs:
        summary["total"] += 1
        bucket = keys.get(entry.get("action"))
        if bucket:
            summary[bucket] += 1
    return summary


# --- Appeals ---

async def get_appeal(appeal_id: str) -> Optional[dict]:
    return await db.get(APPEALS, appeal_id)


async def list_appeals(server_id: str) -> List[dict]:
    return await db.select(APPEALS, {"server_id": server_id})


async def create_appeal(ban: Dict[str, Any], user_id: str, appeal_text: str, contact: Optional[str] = None) -> dict:
    return await db.insert(
        APPEALS,
        {
            "ban_id": ban["id"],
            "server_id": ban["server_id"],
            "user_id": user_id,
            "appeal_text": appeal_text,
            "contact": contact,
            "status": "pending",
            "review_note": None,
            "reviewed_by": None,
            "reviewed_at": None,
        },
    )


async def record_appeal_decision(appeal: Dict[str, Any], status: str, reviewer_id: str, note: Optional[str]) -> Optional[dict]:
    return await db.update(
        APPEALS,
        appeal["id"],
        {"status": status, "review_note": note, "reviewed_by": reviewer_id, "reviewed_at": now_iso()},
    )


# --- Tickets ---

async def get_ticket(ticket_id: str) -> Optional[dict]:
    return await db.get(TICKETS, ticket_id)


async def list_tickets(server_id: str) -> List[dict]:
    return await db.select(TICKETS, {"server_id": server_id})


async def create_ticket(fields: Dict[str, Any], created_by: Optional[str]) -> dict:
    row = {
        "category": "general",
        "priority": "medium",
        **{k: v for k, v in fields.items() if v is not None},
        "created_by": created_by,
        "status": "open",
        "closed_by": None,
        "closed_at": None,
    }
    return await db.insert(TICKETS, row)


async def update_ticket(ticket: Dict[str, Any], changes: Dict[str, Any], actor_id: str) -> Optional[dict]:
    changes = dict(changes)
    if changes.get("status") == "closed" and ticket.get("status") != "closed":
        changes["closed_by"] = actor_id
        changes["closed_at"] = now_iso()
    elif changes.get("status") and changes["status"] != "closed":
        changes["closed_by"] = None
        changes["closed_at"] = None
    return await db.update(TICKETS, ticket["id"], changes)


# --- Shifts ---

async def get_active_shift(user_id: str, server_id: Optional[str] = None) -> Optional[dict]:
    filters: Dict[str, Any] = {"user_id": user_id, "status": "active"}
    if server_id:
        filters["server_id"] = server_id
    return await db.select_one(SHIFTS, **filters)


async def list_shifts(*, user_id: Optional[str] = None, server_id: Optional[str] = None, limit: int = 100) -> List[dict]:
    filters: Dict[str, Any] = {}
    if user_id:
        filters["user_id"] = user_id
    if server_id:
        filters["server_id"] = server_id
    return await db.select(SHIFTS, filters, order="started_at", limit=limit)


async def start_shift(server_id: str, user_id: str) -> dict:
    return await db.insert(
        SHIFTS,
        {
            "server_id": server_id,
            "user_id": user_id,
            "status": "active",
            "started_at": now_iso(),
            "ended_at": None,
            "duration_seconds": None,
            "metrics": {},
        },
    )


async def shift_metrics(shift: Dict[str, Any], ended_at: str) -> Dict[str, int]:
    started = parse_timestamp(shift.get("started_at"))
    ended = parse_timestamp(ended_at)
    logs = await db.select(MODERATION_LOGS, {"server_id": shift["server_id"], "moderator_id": shift["user_id"]}, order=None)
    in_window = []
    for entry in logs:
        ts = parse_timestamp(entry.get("created_at"))
        if started and ended and ts and started <= ts <= ended:
            in_window.append(entry)
    return summarize_actions(in_window)


async def end_shift(shift: Dict[str, Any]) -> Optional[dict]:
    ended_at = utcnow()
    started = parse_timestamp(shift.get("started_at")) or ended_at
    duration = int((ended_at - started).total_seconds())
    metrics = await shift_metrics(shift, ended_at.isoformat())
    return await db.update(
        SHIFTS,
        shift["id"],
        {
            "status": "completed",
            "ended_at": ended_at.isoformat(),
            "duration_seconds": max(0, duration),
            "metrics": metrics,
        },
    )


# --- Listing helpers ---

def filter_rows(
    rows: List[Dict[str, Any]],
    *,
    status: Optional[str] = None,
    search: Optional[str] = None,
    search_fields: Iterable[str] = (),
    date_from: Optional[str] = None,
    date_to: Optional[str] = None,
) -> List[Dict[str, Any]]:
    lower = parse_timestamp(date_from)
    upper = parse_timestamp(date_to)
    needle = (search or "").strip().lower()
    fields = tuple(search_fields)
    out = []
    for row in rows:
        if status is not None:
            row_status = row.get("status")
            if row_status is None and "active" in row:
                row_status = "active" if row["active"] else "inactive"
            if row_status != status:
                continue
        created = parse_timestamp(row.get("created_at"))
        if lower and (not created or created < lower):
            continue
        if upper and (not created or created > upper):
            continue
        if needle and not any(needle in str(row.get(f) or "").lower() for f in fields):
            continue
        out.append(row)
    return out
