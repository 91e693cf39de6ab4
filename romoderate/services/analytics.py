from __future__ import annotations

from collections import Counter
from datetime import timedelta
from typing import Any, Dict, Iterable, List

from ..utils import is_past, parse_timestamp, utcnow
from . import database as db
from . import moderation

TREND_DAYS = 30


def daily_trend(rows: Iterable[Dict[str, Any]], days: int = TREND_DAYS) -> List[Dict[str, Any]]:
    """Count rows per UTC day for the last ``days`` days, oldest first, zero-filled."""
    today = utcnow().date()
    start = today - timedelta(days=days - 1)
    counts: Counter = Counter()
    for row in rows:
        created = parse_timestamp(row.get("created_at"))
        if created and start <= created.date() <= today:
            counts[created.date()] += 1
    return [
        {"date": (start + timedelta(days=i)).isoformat(), "count": counts.get(start + timedelta(days=i), 0)}
        for i in range(days)
    ]


def is_warning(row: Dict[str, Any]) -> bool:
    return (row.get("metadata") or {}).get("type") == "warning"


def is_active_ban(row: Dict[str, Any]) -> bool:
    return bool(row.get("active")) and not (row.get("expires_at") and is_past(row["expires_at"]))


async def _server_rows(server_ids: List[str]) -> Dict[str, List[dict]]:
    rows: Dict[str, List[dict]] = {"bans": [], "appeals": [], "tickets": []}
    if not server_ids:
        return rows
    scope = {"server_id": server_ids}
    # Warning-only rows share the bans table but are not bans.
    rows["bans"] = [b for b in await db.select(moderation.BANS, scope) if not is_warning(b)]
    rows["appeals"] = await db.select(moderation.APPEALS, scope)
    rows["tickets"] = await db.select(moderation.TICKETS, scope)
    return rows


def _totals(rows: Dict[str, List[dict]]) -> Dict[str, int]:
    return {
        "total_bans": len(rows["bans"]),
        "active_bans": sum(1 for b in rows["bans"] if is_active_ban(b)),
        "total_appeals": len(rows["appeals"]),
        "pending_appeals": sum(1 for a in rows["appeals"] if a.get("status") == "pending"),
        "total_tickets": len(rows["tickets"]),
        "open_tickets": sum(1 for t in rows["tickets"] if t.get("status") != "closed"),
    }


async def overview(server_ids: List[str]) -> Dict[str, Any]:
    rows = await _server_rows(server_ids)
    return {
        "servers": len(server_ids),
        **_totals(rows),
        "trends": {
            "bans": daily_trend(rows["bans"]),
            "appeals": daily_trend(rows["appeals"]),
            "tickets": daily_trend(rows["tickets"]),
        },
    }


async def detailed(server_id: str) -> Dict[str, Any]:
    rows = await _server_rows([server_id])
    logs = await moderation.list_logs(server_id, limit=1000)
    moderators = Counter(entry.get("moderator_id") for entry in logs if entry.get("moderator_id"))
    reasons = Counter((ban.get("reason") or "").strip() for ban in rows["bans"] if ban.get("reason"))
    decided = [a for a in rows["appeals"] if a.get("status") in moderation.APPEAL_DECISIONS]
    approved = sum(1 for a in decided if a.get("status") == "approved")
    return {
        **_totals(rows),
        "actions": moderation.summarize_actions(logs),
        "top_moderators": [{"moderator_id": m, "actions": n} for m, n in moderators.most_common(10)],
        "top_ban_reasons": [{"reason": r, "count": n} for r, n in reasons.most_common(10)],
        "appeal_approval_rate": round(approved / len(decided), 3) if decided else None,
        "trends": {
            "bans": daily_trend(rows["bans"]),
            "appeals": daily_trend(rows["appeals"]),
            "tickets": daily_trend(rows["tickets"]),
            "actions": daily_trend(logs),
        },
    }
