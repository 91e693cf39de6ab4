from __future__ import annotations

import logging

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from ..services.interactions import (
    APPLICATION_COMMAND,
    MESSAGE_COMPONENT,
    PING,
    handle_command,
    handle_component,
    verify_signature,
)

router = APIRouter()


@router.post("/interactions")
async def interactions(request: Request):
    body = await request.body()
    if not verify_signature(request, body):
        return JSONResponse({"error": "invalid request signature"}, status_code=401)

    payload = await request.json()
    interaction_type = payload.get("type")
    if interaction_type == PING:
        return JSONResponse({"type": 1})
    if interaction_type == APPLICATION_COMMAND:
        return await handle_command(payload)
    if interaction_type == MESSAGE_COMPONENT:
        return await handle_component(payload)
    logging.info("Ignoring interaction type %s", interaction_type)
    return JSONResponse({"error": "Unsupported interaction type"}, status_code=400)
