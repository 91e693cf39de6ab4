from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Optional

import httpx

from ..clients import get_http_client
from ..settings import APPEAL_WEBHOOK_URL, WEBHOOK_RETRY_DELAY_SECONDS, WEBHOOK_TIMEOUT_SECONDS
from ..utils import now_iso

logger = logging.getLogger(__name__)


def appeal_webhook_url(server: Optional[Dict[str, Any]]) -> Optional[str]:
    settings = (server or {}).get("settings") or {}
    return settings.get("appeal_webhook_url") or APPEAL_WEBHOOK_URL


def build_appeal_payload(appeal: Dict[str, Any], ban: Optional[Dict[str, Any]], action: str) -> Dict[str, Any]:
    ban = ban or {}
    return {
        "appeal_id": appeal["id"],
        "action": action,
        "status": appeal.get("status"),
        "user_id": appeal.get("user_id"),
        "user_roblox_id": ban.get("roblox_user_id"),
        "roblox_username": ban.get("roblox_username"),
        "reason": ban.get("reason"),
        "appeal_text": appeal.get("appeal_text"),
        "review_note": appeal.get("review_note"),
        "timestamp": now_iso(),
    }


async def deliver(url: str, payload: Dict[str, Any]) -> bool:
    """POST ``payload`` to ``url``; a failed first attempt is retried once after a fixed delay."""
    client = get_http_client()
    for attempt in (1, 2):
        try:
            resp = await client.post(url, json=payload, timeout=WEBHOOK_TIMEOUT_SECONDS)
            if resp.is_success:
                return True
            logger.warning("Webhook %s returned %s on attempt %s", url, resp.status_code, attempt)
        except httpx.HTTPError as exc:
            logger.warning("Webhook %s failed on attempt %s: %s", url, attempt, exc)
        if attempt == 1:
            await asyncio.sleep(WEBHOOK_RETRY_DELAY_SECONDS)
    logger.error("Webhook delivery to %s abandoned after retry", url)
    return False


async def send_appeal_webhook(
    server: Optional[Dict[str, Any]],
    appeal: Dict[str, Any],
    ban: Optional[Dict[str, Any]],
    action: str,
) -> bool:
    url = appeal_webhook_url(server)
    if not url:
        return False
    return await deliver(url, build_appeal_payload(appeal, ban, action))
