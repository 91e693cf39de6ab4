from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import Response

from ..models import (
    AutoActionCreate,
    AutoActionUpdate,
    InviteCreate,
    MemberCreate,
    MemberUpdate,
    NoteCreate,
    NoteUpdate,
)
from ..services import accounts, discord_api
from ..services import database as db
from ..services.access import owned_server, team_server
from ..services.sessions import require_user

router = APIRouter()

AUTO_ACTIONS = "auto_actions"
NOTES = "notes"


async def _row_in_server(table: str, row_id: str, server_id: str, label: str) -> dict:
    row = await db.get(table, row_id)
    if not row or row.get("server_id") != server_id:
        raise HTTPException(status_code=404, detail=f"{label} not found")
    return row


# --- Members ---

@router.get("/api/servers/{server_id}/members")
async def list_members(server_id: str, user: dict = Depends(require_user)):
    await team_server(server_id, user)
    members = []
    for member in await accounts.list_members(server_id):
        profile = accounts.safe_user(await accounts.get_user(member["user_id"]))
        members.append({**member, "user": profile})
    return members


@router.post("/api/servers/{server_id}/members", status_code=201)
async def add_member(server_id: str, body: MemberCreate, user: dict = Depends(require_user)):
    await owned_server(server_id, user)
    if not await accounts.get_user(body.user_id):
        raise HTTPException(status_code=404, detail="User not found")
    if await accounts.get_member(server_id, body.user_id):
        raise HTTPException(status_code=409, detail="User is already a member")
    return await accounts.add_member(server_id, body.user_id, role=body.role, permissions=body.permissions, invited_by=user["id"])


@router.patch("/api/servers/{server_id}/members/{member_id}")
async def update_member(server_id: str, member_id: str, body: MemberUpdate, user: dict = Depends(require_user)):
    await owned_server(server_id, user)
    await _row_in_server(accounts.MEMBERS, member_id, server_id, "Member")
    return await db.update(accounts.MEMBERS, member_id, body.model_dump(exclude_none=True))


@router.delete("/api/servers/{server_id}/members/{member_id}", status_code=204)
async def remove_member(server_id: str, member_id: str, user: dict = Depends(require_user)):
    await owned_server(server_id, user)
    await _row_in_server(accounts.MEMBERS, member_id, server_id, "Member")
    await db.delete(accounts.MEMBERS, member_id)
    return Response(status_code=204)


# --- Invites ---

@router.get("/api/servers/{server_id}/invites")
async def list_invites(server_id: str, user: dict = Depends(require_user)):
    await owned_server(server_id, user)
    invites = await db.select(accounts.INVITES, {"server_id": server_id})
    return [{**invite, "usable": accounts.invite_is_usable(invite)} for invite in invites]


@router.post("/api/servers/{server_id}/invites", status_code=201)
async def create_invite(server_id: str, body: InviteCreate, user: dict = Depends(require_user)):
    await owned_server(server_id, user)
    return await accounts.create_invite(
        server_id,
        user["id"],
        role=body.role,
        permissions=body.permissions,
        expires_in_hours=body.expires_in,
        max_uses=body.max_uses,
    )


@router.delete("/api/servers/{server_id}/invites/{invite_id}", status_code=204)
async def delete_invite(server_id: str, invite_id: str, user: dict = Depends(require_user)):
    await owned_server(server_id, user)
    await _row_in_server(accounts.INVITES, invite_id, server_id, "Invite")
    await db.delete(accounts.INVITES, invite_id)
    return Response(status_code=204)


@router.get("/api/discord/users/{discord_id}")
async def lookup_discord_user(discord_id: str, user: dict = Depends(require_user)):
    profile = await discord_api.fetch_user_by_id(discord_id)
    if not profile:
        raise HTTPException(status_code=404, detail="Discord user not found")
    known = await accounts.get_user_by_discord_id(discord_id)
    return {
        "id": profile.get("id"),
        "username": profile.get("username"),
        "global_name": profile.get("global_name"),
        "avatar_url": discord_api.avatar_url(discord_id, profile.get("avatar")),
        "registered_user_id": known["id"] if known else None,
    }


# --- Auto-actions ---

@router.get("/api/servers/{server_id}/auto-actions")
async def list_auto_actions(server_id: str, user: dict = Depends(require_user)):
    await team_server(server_id, user)
    return await db.select(AUTO_ACTIONS, {"server_id": server_id})


@router.post("/api/servers/{server_id}/auto-actions", status_code=201)
async def create_auto_action(server_id: str, body: AutoActionCreate, user: dict = Depends(require_user)):
    await owned_server(server_id, user)
    return await db.insert(AUTO_ACTIONS, {"server_id": server_id, "created_by": user["id"], **body.model_dump()})


@router.patch("/api/servers/{server_id}/auto-actions/{action_id}")
async def update_auto_action(server_id: str, action_id: str, body: AutoActionUpdate, user: dict = Depends(require_user)):
    await owned_server(server_id, user)
    await _row_in_server(AUTO_ACTIONS, action_id, server_id, "Auto-action")
    return await db.update(AUTO_ACTIONS, action_id, body.model_dump(exclude_none=True))


@router.delete("/api/servers/{server_id}/auto-actions/{action_id}", status_code=204)
async def delete_auto_action(server_id: str, action_id: str, user: dict = Depends(require_user)):
    await owned_server(server_id, user)
    await _row_in_server(AUTO_ACTIONS, action_id, server_id, "Auto-action")
    await db.delete(AUTO_ACTIONS, action_id)
    return Response(status_code=204)


# --- Notes ---

@router.get("/api/servers/{server_id}/notes")
async def list_notes(server_id: str, user: dict = Depends(require_user)):
    await team_server(server_id, user)
    return await db.select(NOTES, {"server_id": server_id})


@router.post("/api/servers/{server_id}/notes", status_code=201)
async def create_note(server_id: str, body: NoteCreate, user: dict = Depends(require_user)):
    await team_server(server_id, user)
    return await db.insert(NOTES, {"server_id": server_id, "author_id": user["id"], **body.model_dump()})


@router.patch("/api/servers/{server_id}/notes/{note_id}")
async def update_note(server_id: str, note_id: str, body: NoteUpdate, user: dict = Depends(require_user)):
    server = await team_server(server_id, user)
    note = await _row_in_server(NOTES, note_id, server_id, "Note")
    if note.get("author_id") != user["id"] and server.get("owner_id") != user["id"]:
        raise HTTPException(status_code=403, detail="Not authorized")
    return await db.update(NOTES, note_id, {"content": body.content})


@router.delete("/api/servers/{server_id}/notes/{note_id}", status_code=204)
async def delete_note(server_id: str, note_id: str, user: dict = Depends(require_user)):
    server = await team_server(server_id, user)
    note = await _row_in_server(NOTES, note_id, server_id, "Note")
    if note.get("author_id") != user["id"] and server.get("owner_id") != user["id"]:
        raise HTTPException(status_code=403, detail="Not authorized")
    await db.delete(NOTES, note_id)
    return Response(status_code=204)
