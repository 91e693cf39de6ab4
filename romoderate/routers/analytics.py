from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException

from ..models import ChangelogCreate, ExportCreate
from ..services import accounts, analytics, discord_api
from ..services import database as db
from ..services.access import owned_server, team_server
from ..services.sessions import require_user
from ..settings import DISCORD_CHANGELOG_WEBHOOK
from ..utils import now_iso

router = APIRouter()

EXPORTS = "exports"
CHANGELOGS = "changelogs"


@router.get("/api/analytics")
async def analytics_overview(user: dict = Depends(require_user)):
    servers = await accounts.list_owned_servers(user["id"])
    return await analytics.overview([s["id"] for s in servers])


@router.get("/api/servers/{server_id}/analytics")
async def server_analytics(server_id: str, user: dict = Depends(require_user)):
    await team_server(server_id, user)
    return await analytics.overview([server_id])


@router.get("/api/servers/{server_id}/analytics/detailed")
async def server_analytics_detailed(server_id: str, user: dict = Depends(require_user)):
    await owned_server(server_id, user)
    return await analytics.detailed(server_id)


# --- Notifications ---

@router.get("/api/notifications")
async def list_notifications(unread: bool = False, user: dict = Depends(require_user)):
    return await accounts.list_notifications(user["id"], unread_only=unread)


@router.patch("/api/notifications/{notification_id}/read")
async def read_notification(notification_id: str, user: dict = Depends(require_user)):
    row = await accounts.mark_notification_read(notification_id, user["id"])
    if not row:
        raise HTTPException(status_code=404, detail="Notification not found")
    return row


@router.post("/api/notifications/read-all")
async def read_all_notifications(user: dict = Depends(require_user)):
    return {"updated": await accounts.mark_all_notifications_read(user["id"])}


# --- Exports ---

@router.get("/api/servers/{server_id}/exports")
async def list_exports(server_id: str, user: dict = Depends(require_user)):
    await owned_server(server_id, user)
    return await db.select(EXPORTS, {"server_id": server_id})


@router.post("/api/servers/{server_id}/exports", status_code=201)
async def request_export(server_id: str, body: ExportCreate, user: dict = Depends(require_user)):
    await owned_server(server_id, user)
    row = await db.insert(
        EXPORTS,
        {
            "server_id": server_id,
            "requested_by": user["id"],
            "export_type": body.export_type,
            "format": body.format,
            "status": "pending",
            "file_url": None,
        },
    )
    logging.info("Export %s (%s/%s) requested for server %s", row["id"], body.export_type, body.format, server_id)
    return row


# --- Changelogs ---

@router.get("/api/servers/{server_id}/changelogs")
async def list_changelogs(server_id: str, user: dict = Depends(require_user)):
    await owned_server(server_id, user)
    return await db.select(CHANGELOGS, {"server_id": server_id})


@router.post("/api/servers/{server_id}/changelogs", status_code=201)
async def create_changelog(server_id: str, body: ChangelogCreate, user: dict = Depends(require_user)):
    server = await owned_server(server_id, user)
    row = await db.insert(
        CHANGELOGS,
        {
            "server_id": server_id,
            "author_id": user["id"],
            "title": body.title,
            "content": body.content,
            "version": body.version,
            "posted_to_discord": False,
        },
    )
    if DISCORD_CHANGELOG_WEBHOOK:
        title = f"{body.title} ({body.version})" if body.version else body.title
        embed = {
            "title": title,
            "description": body.content[:4000],
            "color": discord_api.BRAND_COLOR,
            "footer": {"text": server.get("name") or "RoModerate"},
            "timestamp": now_iso(),
        }
        if await discord_api.post_webhook_embed(DISCORD_CHANGELOG_WEBHOOK, embed):
            row = await db.update(CHANGELOGS, row["id"], {"posted_to_discord": True}) or row
    return row
