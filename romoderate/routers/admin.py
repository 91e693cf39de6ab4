from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse, Response

from ..models import AdminLogin
from ..services import accounts, marketplace, moderation
from ..services import database as db
from ..services.security import enforce_ip_rate_limit, verify_password
from ..services.sessions import end_admin_session, persist_admin_session, require_admin
from ..utils import get_client_ip

router = APIRouter(prefix="/api/admin")

STAT_TABLES = {
    "users": accounts.USERS,
    "servers": accounts.SERVERS,
    "bans": moderation.BANS,
    "appeals": moderation.APPEALS,
    "tickets": moderation.TICKETS,
    "listings": marketplace.LISTINGS,
    "transactions": marketplace.TRANSACTIONS,
}


@router.post("/login")
async def admin_login(body: AdminLogin, request: Request):
    enforce_ip_rate_limit(get_client_ip(request))
    admin = await accounts.get_admin_by_username(body.username)
    if not admin or not verify_password(body.password, admin.get("password_hash")):
        logging.warning("Failed admin login for %s from %s", body.username, get_client_ip(request))
        raise HTTPException(status_code=401, detail="Invalid credentials")
    await accounts.touch_admin_login(admin["id"])
    response = JSONResponse(accounts.safe_admin(admin))
    persist_admin_session(response, admin["id"])
    return response


@router.get("/me")
async def admin_me(admin: dict = Depends(require_admin)):
    return accounts.safe_admin(admin)


@router.post("/logout")
async def admin_logout(request: Request):
    response = Response(status_code=204)
    end_admin_session(request, response)
    return response


@router.get("/stats")
async def admin_stats(admin: dict = Depends(require_admin)):
    stats = {name: await db.count(table) for name, table in STAT_TABLES.items()}
    stats["active_bans"] = await db.count(moderation.BANS, {"active": True})
    stats["pending_appeals"] = await db.count(moderation.APPEALS, {"status": "pending"})
    stats["open_tickets"] = await db.count(moderation.TICKETS, {"status": "open"})
    return stats
