from __future__ import annotations

import asyncio
import json
import logging
from contextlib import suppress
from typing import Any, Dict, Optional, Set

from fastapi import WebSocket

from ..utils import now_iso

logger = logging.getLogger(__name__)


class BroadcastHub:
    """Tracks dashboard sockets and fans every event out to all of them."""

    def __init__(self):
        self.sockets: Set[WebSocket] = set()
        self.lock = asyncio.Lock()

    async def connect(self, ws: WebSocket) -> None:
        await ws.accept()
        async with self.lock:
            self.sockets.add(ws)
        await ws.send_text(json.dumps({"type": "connected", "timestamp": now_iso()}))
        logger.debug("BroadcastHub.connect | sockets=%d", len(self.sockets))

    async def disconnect(self, ws: WebSocket) -> None:
        async with self.lock:
            self.sockets.discard(ws)
        logger.debug("BroadcastHub.disconnect | sockets=%d", len(self.sockets))

    async def _send(self, ws: WebSocket, text: str) -> Optional[WebSocket]:
        try:
            await ws.send_text(text)
        except Exception as exc:
            logger.debug("BroadcastHub.send | dropping socket: %s", exc)
            return ws
        return None

    async def broadcast(self, event_type: str, data: Optional[Dict[str, Any]] = None) -> int:
        text = json.dumps({"type": event_type, "data": data or {}, "timestamp": now_iso()}, default=str)
        async with self.lock:
            targets = list(self.sockets)
        results = await asyncio.gather(*(self._send(ws, text) for ws in targets))
        dead = [ws for ws in results if ws is not None]
        for ws in dead:
            with suppress(Exception):
                await ws.close()
        if dead:
            async with self.lock:
                self.sockets.difference_update(dead)
            logger.debug("BroadcastHub.broadcast | cleaned_dead=%d remaining=%d", len(dead), len(self.sockets))
        return len(self.sockets)


hub = BroadcastHub()


async def broadcast(event_type: str, data: Optional[Dict[str, Any]] = None) -> None:
    await hub.broadcast(event_type, data)
