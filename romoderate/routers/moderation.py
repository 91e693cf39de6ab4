from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException

from ..models import (
    AppealCreate,
    AppealReview,
    BanCreate,
    BanUpdate,
    ModerationAction,
    TicketCreate,
    TicketPanelCreate,
    TicketUpdate,
)
from ..services import accounts, discord_api, moderation, roblox_api, webhooks
from ..services import database as db
from ..services.access import owned_server, team_server
from ..services.realtime import broadcast
from ..services.sessions import require_user
from ..utils import iso_in, now_iso

router = APIRouter()

BAN_SEARCH_FIELDS = ("roblox_username", "roblox_user_id", "reason")
APPEAL_SEARCH_FIELDS = ("appeal_text", "review_note", "user_id")
TICKET_SEARCH_FIELDS = ("subject", "description", "category")


def _cloud_credentials(server: Dict[str, Any]) -> Optional[Dict[str, str]]:
    settings = server.get("settings") or {}
    if settings.get("roblox_api_key") and settings.get("roblox_universe_id"):
        return {"universe_id": str(settings["roblox_universe_id"]), "api_key": settings["roblox_api_key"]}
    return None


async def _alt_detection(roblox_user_id: str) -> Optional[Dict[str, Any]]:
    profile = await roblox_api.get_user_by_id(roblox_user_id)
    if not profile:
        return None
    return {**roblox_api.detect_alt(profile), "account_age_days": roblox_api.account_age_days(profile)}


# --- Bans ---

@router.get("/api/bans")
async def list_bans(serverId: str, user: dict = Depends(require_user)):
    await team_server(serverId, user)
    return await moderation.list_bans(serverId)


@router.post("/api/bans", status_code=201)
async def create_ban(body: BanCreate, user: dict = Depends(require_user)):
    await team_server(body.server_id, user)
    ban = await moderation.upsert_ban(
        body.server_id,
        body.roblox_user_id,
        roblox_username=body.roblox_username,
        reason=body.reason,
        moderator_id=user["id"],
        expires_at=body.expires_at,
        metadata=body.metadata,
    )
    await moderation.log_action(
        body.server_id,
        user["id"],
        "ban",
        target_id=body.roblox_user_id,
        target_name=body.roblox_username,
        reason=body.reason,
    )
    await broadcast("ban_created", ban)
    return ban


@router.patch("/api/bans/{ban_id}")
async def update_ban(ban_id: str, body: BanUpdate, user: dict = Depends(require_user)):
    ban = await moderation.get_ban(ban_id)
    if not ban:
        raise HTTPException(status_code=404, detail="Ban not found")
    await owned_server(ban["server_id"], user)
    changes = body.model_dump(exclude_unset=True)
    updated = await moderation.update_ban(ban_id, changes)
    if changes.get("active") is False and ban.get("active"):
        await moderation.log_action(
            ban["server_id"],
            user["id"],
            "unban",
            target_id=ban["roblox_user_id"],
            target_name=ban.get("roblox_username"),
        )
    await broadcast("ban_updated", updated)
    return updated


# --- Appeals ---

@router.get("/api/appeals")
async def list_appeals(serverId: str, user: dict = Depends(require_user)):
    await team_server(serverId, user)
    return await moderation.list_appeals(serverId)


@router.post("/api/appeals", status_code=201)
async def create_appeal(body: AppealCreate, background: BackgroundTasks, user: dict = Depends(require_user)):
    ban = await moderation.get_ban(body.ban_id)
    if not ban or ban["server_id"] != body.server_id:
        raise HTTPException(status_code=404, detail="Ban not found")
    server = await accounts.get_server(body.server_id)
    if not server:
        raise HTTPException(status_code=404, detail="Server not found")
    pending = await db.select_one(moderation.APPEALS, ban_id=ban["id"], status="pending")
    if pending:
        raise HTTPException(status_code=409, detail="An appeal for this ban is already pending")

    appeal = await moderation.create_appeal(ban, user["id"], body.appeal_text, body.contact)
    await accounts.notify(
        server.get("owner_id"),
        "New appeal",
        f"{ban.get('roblox_username') or ban['roblox_user_id']} appealed their ban.",
        kind="appeal",
        server_id=server["id"],
        link=f"/servers/{server['id']}/appeals",
    )
    await broadcast("appeal_created", appeal)
    background.add_task(webhooks.send_appeal_webhook, server, appeal, ban, "created")
    return appeal


@router.patch("/api/appeals/{appeal_id}")
async def review_appeal(appeal_id: str, body: AppealReview, background: BackgroundTasks, user: dict = Depends(require_user)):
    appeal = await moderation.get_appeal(appeal_id)
    if not appeal:
        raise HTTPException(status_code=404, detail="Appeal not found")
    server = await owned_server(appeal["server_id"], user)
    if body.status not in moderation.APPEAL_DECISIONS:
        raise HTTPException(status_code=400, detail="Status must be 'approved' or 'rejected'")
    if appeal.get("status") != "pending":
        raise HTTPException(status_code=409, detail=f"Appeal already {appeal.get('status')}")

    ban = await moderation.get_ban(appeal["ban_id"])
    ban_updated = False
    roblox_unbanned = False
    if body.status == "approved" and ban:
        unban_result = None
        credentials = _cloud_credentials(server)
        if credentials:
            unban_result = await roblox_api.unban_user(credentials["universe_id"], credentials["api_key"], ban["roblox_user_id"])
            roblox_unbanned = bool(unban_result["success"])
        ban = await moderation.deactivate_ban(
            ban,
            {"unbanned_via_appeal": True, "appeal_id": appeal_id, "roblox_unban_result": unban_result},
        ) or ban
        ban_updated = True
        await broadcast("ban_removed", ban)

    reviewed = await moderation.record_appeal_decision(appeal, body.status, user["id"], body.review_note)
    await moderation.log_action(
        appeal["server_id"],
        user["id"],
        "appeal_review",
        target_id=(ban or {}).get("roblox_user_id"),
        target_name=(ban or {}).get("roblox_username"),
        reason=body.review_note,
        metadata={"appeal_id": appeal_id, "decision": body.status},
    )
    await accounts.notify(
        appeal.get("user_id"),
        f"Appeal {body.status}",
        body.review_note or f"Your appeal was {body.status}.",
        kind="appeal",
        server_id=appeal["server_id"],
    )
    await broadcast("appeal_updated", reviewed)
    background.add_task(webhooks.send_appeal_webhook, server, reviewed, ban, "updated")
    logging.info("Appeal %s %s by %s", appeal_id, body.status, user["id"])
    return {"appeal": reviewed, "ban_updated": ban_updated, "roblox_unbanned": roblox_unbanned}


# --- Tickets ---

@router.get("/api/tickets")
async def list_tickets(serverId: str, user: dict = Depends(require_user)):
    await team_server(serverId, user)
    return await moderation.list_tickets(serverId)


@router.post("/api/tickets", status_code=201)
async def create_ticket(body: TicketCreate, user: dict = Depends(require_user)):
    server = await accounts.get_server(body.server_id)
    if not server:
        raise HTTPException(status_code=404, detail="Server not found")
    ticket = await moderation.create_ticket(body.model_dump(), user["id"])
    await accounts.notify(
        server.get("owner_id"),
        "New ticket",
        body.subject,
        kind="ticket",
        server_id=server["id"],
        link=f"/servers/{server['id']}/tickets",
    )
    await broadcast("ticket_created", ticket)
    return ticket


@router.patch("/api/tickets/{ticket_id}")
async def update_ticket(ticket_id: str, body: TicketUpdate, user: dict = Depends(require_user)):
    ticket = await moderation.get_ticket(ticket_id)
    if not ticket:
        raise HTTPException(status_code=404, detail="Ticket not found")
    await owned_server(ticket["server_id"], user)
    updated = await moderation.update_ticket(ticket, body.model_dump(exclude_unset=True), user["id"])
    if body.status == "closed" and ticket.get("status") != "closed":
        await moderation.log_action(ticket["server_id"], user["id"], "ticket_close", metadata={"ticket_id": ticket_id})
    await broadcast("ticket_updated", updated)
    return updated


@router.get("/api/servers/{server_id}/ticket-panels")
async def list_ticket_panels(server_id: str, user: dict = Depends(require_user)):
    await owned_server(server_id, user)
    return await db.select(moderation.TICKET_PANELS, {"server_id": server_id})


@router.post("/api/servers/{server_id}/ticket-panels", status_code=201)
async def create_ticket_panel(server_id: str, body: TicketPanelCreate, user: dict = Depends(require_user)):
    await owned_server(server_id, user)
    return await db.insert(moderation.TICKET_PANELS, {"server_id": server_id, **body.model_dump(), "message_id": None})


@router.post("/api/servers/{server_id}/ticket-panels/{panel_id}/deploy")
async def deploy_ticket_panel(server_id: str, panel_id: str, user: dict = Depends(require_user)):
    await owned_server(server_id, user)
    panel = await db.get(moderation.TICKET_PANELS, panel_id)
    if not panel or panel["server_id"] != server_id:
        raise HTTPException(status_code=404, detail="Ticket panel not found")
    message = await discord_api.post_channel_message(panel["channel_id"], discord_api.build_ticket_panel_message(panel))
    if not message:
        raise HTTPException(status_code=502, detail="Failed to post ticket panel to Discord")
    return await db.update(moderation.TICKET_PANELS, panel_id, {"message_id": message.get("id")})


# --- Moderation actions ---

@router.post("/api/moderation/action")
async def moderation_action(body: ModerationAction, user: dict = Depends(require_user)):
    server = await team_server(body.server_id, user)
    credentials = _cloud_credentials(server)
    roblox_result = None

    if body.action in ("ban", "tempban"):
        duration_seconds = None
        expires_at = None
        if body.action == "tempban":
            if not body.duration_days:
                raise HTTPException(status_code=400, detail="duration_days is required for tempban")
            duration_seconds = int(body.duration_days * 86400)
            expires_at = iso_in(duration_seconds)
        metadata: Dict[str, Any] = {"alt_detection": await _alt_detection(body.roblox_user_id)}
        if credentials:
            roblox_result = await roblox_api.ban_user(
                credentials["universe_id"],
                credentials["api_key"],
                body.roblox_user_id,
                private_reason=body.reason,
                display_reason=body.reason,
                duration_seconds=duration_seconds,
                exclude_alt_accounts=True,
            )
            metadata["roblox_enforced"] = bool(roblox_result["success"])
            metadata["roblox_response"] = {**roblox_result, "timestamp": now_iso()}
            if not roblox_result["success"]:
                logging.warning("Roblox ban enforcement failed for %s: %s", body.roblox_user_id, roblox_result["error"])
        ban = await moderation.upsert_ban(
            body.server_id,
            body.roblox_user_id,
            roblox_username=body.roblox_username,
            reason=body.reason,
            moderator_id=user["id"],
            expires_at=expires_at,
            metadata=metadata,
        )
        await broadcast("ban_created", {**ban, "action": body.action, "roblox_enforced": metadata.get("roblox_enforced", False)})
        result: Dict[str, Any] = {"ban": ban}

    elif body.action == "warn":
        warning = await moderation.add_warning(
            body.server_id,
            body.roblox_user_id,
            roblox_username=body.roblox_username,
            reason=body.reason,
            moderator_id=user["id"],
        )
        await broadcast(
            "warning_issued",
            {"server_id": body.server_id, "roblox_user_id": body.roblox_user_id, "roblox_username": body.roblox_username},
        )
        result = {"warning": warning}

    else:
        ban = await moderation.find_player_ban(body.server_id, body.roblox_user_id)
        if not ban or not ban.get("active"):
            raise HTTPException(status_code=404, detail="No active ban found for this player")
        if credentials:
            roblox_result = await roblox_api.unban_user(credentials["universe_id"], credentials["api_key"], body.roblox_user_id)
        ban = await moderation.deactivate_ban(ban, {"unbanned_by": user["id"]}) or ban
        await broadcast("ban_removed", ban)
        result = {"ban": ban}

    await moderation.log_action(
        body.server_id,
        user["id"],
        body.action,
        target_id=body.roblox_user_id,
        target_name=body.roblox_username,
        reason=body.reason,
        metadata={"duration_days": body.duration_days, "roblox": roblox_result},
    )
    return {"success": True, "action": body.action, "roblox": roblox_result, **result}


@router.get("/api/servers/{server_id}/moderation-logs")
async def moderation_logs(server_id: str, limit: int = 200, user: dict = Depends(require_user)):
    await team_server(server_id, user)
    return await moderation.list_logs(server_id, limit=min(max(limit, 1), 1000))


@router.get("/api/servers/{server_id}/moderation-stats")
async def moderation_stats(server_id: str, user: dict = Depends(require_user)):
    await team_server(server_id, user)
    logs = await moderation.list_logs(server_id, limit=10000)
    per_moderator: Dict[str, Dict[str, int]] = {}
    for entry in logs:
        bucket = per_moderator.setdefault(entry.get("moderator_id") or "system", {"total": 0})
        bucket["total"] += 1
        bucket[entry.get("action") or "other"] = bucket.get(entry.get("action") or "other", 0) + 1
    return {"summary": moderation.summarize_actions(logs), "moderators": per_moderator}


# --- Filtered listings ---

@router.get("/api/servers/{server_id}/bans")
async def filtered_bans(
    server_id: str,
    status: Optional[str] = None,
    search: Optional[str] = None,
    dateFrom: Optional[str] = None,
    dateTo: Optional[str] = None,
    user: dict = Depends(require_user),
):
    await team_server(server_id, user)
    bans = [await moderation.expire_if_due(b) for b in await moderation.list_bans(server_id)]
    return moderation.filter_rows(bans, status=status, search=search, search_fields=BAN_SEARCH_FIELDS, date_from=dateFrom, date_to=dateTo)


@router.get("/api/servers/{server_id}/appeals")
async def filtered_appeals(
    server_id: str,
    status: Optional[str] = None,
    search: Optional[str] = None,
    dateFrom: Optional[str] = None,
    dateTo: Optional[str] = None,
    user: dict = Depends(require_user),
):
    await team_server(server_id, user)
    appeals = await moderation.list_appeals(server_id)
    return moderation.filter_rows(appeals, status=status, search=search, search_fields=APPEAL_SEARCH_FIELDS, date_from=dateFrom, date_to=dateTo)


@router.get("/api/servers/{server_id}/tickets")
async def filtered_tickets(
    server_id: str,
    status: Optional[str] = None,
    search: Optional[str] = None,
    dateFrom: Optional[str] = None,
    dateTo: Optional[str] = None,
    user: dict = Depends(require_user),
):
    await team_server(server_id, user)
    tickets = await moderation.list_tickets(server_id)
    return moderation.filter_rows(tickets, status=status, search=search, search_fields=TICKET_SEARCH_FIELDS, date_from=dateFrom, date_to=dateTo)
