from __future__ import annotations

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from ..services.realtime import hub

router = APIRouter()


@router.websocket("/ws")
async def realtime_socket(websocket: WebSocket):
    await hub.connect(websocket)
    try:
        while True:
            # Clients only listen; inbound frames keep the socket alive.
            await websocket.receive_text()
    except WebSocketDisconnect:
        pass
    finally:
        await hub.disconnect(websocket)
