from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import Response

from ..models import ApiKeyCreate, BotRegistrationCreate, RobloxApiKeyCreate
from ..services import database as db
from ..services import keys
from ..services.access import owned_server
from ..services.sessions import require_user

router = APIRouter()
logger = logging.getLogger(__name__)


async def _own_row(table: str, row_id: str, user: dict, label: str) -> dict:
    row = await db.get(table, row_id)
    if not row or row.get("user_id") != user["id"]:
        raise HTTPException(status_code=404, detail=f"{label} not found")
    return row


# --- Bot registrations ---

@router.get("/api/bot-registrations")
async def list_bot_registrations(user: dict = Depends(require_user)):
    rows = await db.select(keys.BOT_REGISTRATIONS, {"user_id": user["id"]})
    return [keys.public_bot_registration(r) for r in rows]


@router.post("/api/bot-registrations", status_code=201)
async def create_bot_registration(body: BotRegistrationCreate, user: dict = Depends(require_user)):
    await owned_server(body.server_id, user)
    row, secret = await keys.create_bot_registration(user["id"], body.server_id, body.name)
    return {**keys.public_bot_registration(row), "secret": secret}


@router.delete("/api/bot-registrations/{registration_id}", status_code=204)
async def delete_bot_registration(registration_id: str, user: dict = Depends(require_user)):
    await _own_row(keys.BOT_REGISTRATIONS, registration_id, user, "Bot registration")
    await db.delete(keys.BOT_REGISTRATIONS, registration_id)
    return Response(status_code=204)


# --- Game API keys ---

@router.get("/api/api-keys")
async def list_api_keys(user: dict = Depends(require_user)):
    return await keys.list_api_keys(user["id"])


@router.post("/api/api-keys", status_code=201)
async def create_api_key(body: ApiKeyCreate, user: dict = Depends(require_user)):
    if not body.scopes:
        raise HTTPException(status_code=400, detail="At least one scope is required")
    await owned_server(body.server_id, user)
    row, raw = await keys.create_api_key(user["id"], body.server_id, body.name, body.scopes)
    logger.info("API key %s created for server %s", row["key_preview"], body.server_id)
    # The raw key is only ever returned here.
    return {**keys.public_api_key(row), "key": raw}


@router.delete("/api/api-keys/{key_id}", status_code=204)
async def delete_api_key(key_id: str, user: dict = Depends(require_user)):
    await _own_row(keys.API_KEYS, key_id, user, "API key")
    await db.delete(keys.API_KEYS, key_id)
    return Response(status_code=204)


# --- Roblox Open Cloud keys ---

@router.get("/api/servers/{server_id}/roblox-api-keys")
async def list_roblox_api_keys(server_id: str, user: dict = Depends(require_user)):
    await owned_server(server_id, user)
    rows = await db.select(keys.ROBLOX_API_KEYS, {"server_id": server_id})
    return [keys.public_api_key(r) for r in rows]


@router.post("/api/servers/{server_id}/roblox-api-keys", status_code=201)
async def add_roblox_api_key(server_id: str, body: RobloxApiKeyCreate, user: dict = Depends(require_user)):
    await owned_server(server_id, user)
    if not body.api_key.strip():
        raise HTTPException(status_code=400, detail="api_key is required")
    return await keys.register_roblox_api_key(server_id, user["id"], body.name, body.api_key.strip(), body.universe_id)


@router.delete("/api/servers/{server_id}/roblox-api-keys/{key_id}", status_code=204)
async def delete_roblox_api_key(server_id: str, key_id: str, user: dict = Depends(require_user)):
    await owned_server(server_id, user)
    row = await db.get(keys.ROBLOX_API_KEYS, key_id)
    if not row or row.get("server_id") != server_id:
        raise HTTPException(status_code=404, detail="Roblox API key not found")
    await db.delete(keys.ROBLOX_API_KEYS, key_id)
    return Response(status_code=204)
