from __future__ import annotations

import logging
from typing import Any, Optional

import httpx

from ..clients import get_http_client
from ..settings import SUPABASE_KEY, SUPABASE_URL


def is_supabase_ready() -> bool:
    return bool(SUPABASE_URL and SUPABASE_KEY)


def eq_filter(value: Any) -> str:
    if value is None:
        return "is.null"
    if isinstance(value, bool):
        return f"eq.{str(value).lower()}"
    if isinstance(value, (list, tuple, set)):
        return f"in.({','.join(str(v) for v in value)})"
    return f"eq.{value}"


async def supabase_request(
    method: str,
    table: str,
    *,
    params: Optional[dict] = None,
    payload: Optional[Any] = None,
    prefer: Optional[str] = None,
) -> Optional[Any]:
    if not is_supabase_ready():
        return None
    headers = {
        "apikey": SUPABASE_KEY,
        "Authorization": f"Bearer {SUPABASE_KEY}",
        "Content-Type": "application/json",
        "Prefer": prefer or "return=representation",
    }
    url = f"{SUPABASE_URL.rstrip('/')}/rest/v1/{table}"
    try:
        client = get_http_client()
        resp = await client.request(method, url, params=params, headers=headers, json=payload, timeout=10)
        resp.raise_for_status()
        if not resp.content:
            return True
        return resp.json()
    except httpx.HTTPStatusError as exc:
        body = exc.response.text or ""
        logging.warning(
            "Supabase request failed table=%s method=%s status=%s body=%s",
            table,
            method,
            exc.response.status_code,
            (body[:800] + "...") if len(body) > 800 else body,
        )
    except httpx.HTTPError as exc:
        logging.warning("Supabase request failed table=%s method=%s error=%s", table, method, exc)
    return None


async def ping() -> bool:
    result = await supabase_request("get", "users", params={"select": "id", "limit": 1})
    return result is not None
