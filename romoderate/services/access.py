from __future__ import annotations

from typing import Any, Dict

from fastapi import HTTPException

from . import accounts


async def load_server(server_id: str) -> Dict[str, Any]:
    server = await accounts.get_server(server_id)
    if not server:
        raise HTTPException(status_code=404, detail="Server not found")
    return server


async def owned_server(server_id: str, user: Dict[str, Any]) -> Dict[str, Any]:
    server = await load_server(server_id)
    if server.get("owner_id") != user["id"]:
        raise HTTPException(status_code=403, detail="Not authorized")
    return server


async def team_server(server_id: str, user: Dict[str, Any]) -> Dict[str, Any]:
    """Server the user owns or moderates as a team member."""
    server = await load_server(server_id)
    if not await accounts.is_owner_or_member(server, user["id"]):
        raise HTTPException(status_code=403, detail="Not authorized")
    return server
