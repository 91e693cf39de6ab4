from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

import httpx

from ..clients import get_http_client
from ..settings import ROBLOX_API_BASE, ROBLOX_THUMBNAILS_API, ROBLOX_USERS_API
from ..utils import parse_timestamp, utcnow

logger = logging.getLogger(__name__)

DEFAULT_AVATAR_URL = "https://tr.rbxcdn.com/30DAY-AvatarHeadshot-Placeholder/150/150/AvatarHeadshot/Png/noFilter"
MAX_LOG_PAGES = 5


def restrictions_url(universe_id: str, user_id: Optional[str] = None) -> str:
    base = f"{ROBLOX_API_BASE}/cloud/v2/universes/{universe_id}/user-restrictions"
    return f"{base}/{user_id}" if user_id else base


def _result(success: bool, status_code: Optional[int] = None, error: Optional[str] = None) -> Dict[str, Any]:
    return {"success": success, "status_code": status_code, "error": error}


async def get_live_ban_status(universe_id: str, api_key: str, roblox_id: str) -> Optional[Dict[str, Any]]:
    """Fetches the live game join restriction for a Roblox user, or None when not banned."""
    try:
        client = get_http_client()
        response = await client.get(restrictions_url(universe_id, roblox_id), headers={"x-api-key": api_key}, timeout=10)
        if response.status_code == 404:
            return None
        response.raise_for_status()
        restriction = response.json().get("gameJoinRestriction")
        if restriction and restriction.get("active"):
            return restriction
        return None
    except httpx.HTTPStatusError as http_e:
        logger.error(
            "RobloxAPI (get_live_ban_status) HTTP Error for %s: %s - %s",
            roblox_id,
            http_e.response.status_code,
            http_e.response.text,
        )
    except httpx.HTTPError as exc:
        logger.error("RobloxAPI (get_live_ban_status) connection error for %s: %s", roblox_id, exc)
    return None


async def _patch_restriction(universe_id: str, api_key: str, roblox_id: str, restriction: Dict[str, Any]) -> Dict[str, Any]:
    try:
        client = get_http_client()
        response = await client.patch(
            restrictions_url(universe_id, roblox_id),
            params={"updateMask": "gameJoinRestriction"},
            json={"gameJoinRestriction": restriction},
            headers={"x-api-key": api_key, "Content-Type": "application/json"},
            timeout=15,
        )
    except httpx.HTTPError as exc:
        logger.error("RobloxAPI restriction update failed for %s: %s", roblox_id, exc)
        return _result(False, None, str(exc))
    if response.status_code == 200:
        return _result(True, 200)
    logger.error(
        "RobloxAPI restriction update HTTP Error for %s: %s - %s",
        roblox_id,
        response.status_code,
        response.text[:500],
    )
    return _result(False, response.status_code, response.text[:500] or f"HTTP {response.status_code}")


async def ban_user(
    universe_id: str,
    api_key: str,
    roblox_id: str,
    *,
    private_reason: str,
    display_reason: Optional[str] = None,
    duration_seconds: Optional[int] = None,
    exclude_alt_accounts: bool = False,
) -> Dict[str, Any]:
    logger.info("Banning Roblox ID %s in universe %s", roblox_id, universe_id)
    restriction: Dict[str, Any] = {
        "active": True,
        "privateReason": private_reason[:1000],
        "displayReason": (display_reason or private_reason)[:400],
        "excludeAltAccounts": exclude_alt_accounts,
    }
    if duration_seconds:
        restriction["duration"] = f"{int(duration_seconds)}s"
    return await _patch_restriction(universe_id, api_key, roblox_id, restriction)


async def unban_user(universe_id: str, api_key: str, roblox_id: str) -> Dict[str, Any]:
    """
    Deactivates a user's game join restriction.
    A 404 means no restriction existed, which counts as success.
    """
    logger.info("Attempting to unban Roblox ID %s in universe %s", roblox_id, universe_id)
    result = await _patch_restriction(universe_id, api_key, roblox_id, {"active": False})
    if not result["success"] and result["status_code"] == 404:
        logger.info("No restriction found for Roblox ID %s; treating as unbanned.", roblox_id)
        return _result(True, 404)
    return result


def shorten_public_ban_reason(reason: str) -> str:
    rl = (reason or "").lower()
    if "you created or used an account" in rl or "alt" in rl.split():
        return "Alt Account"
    if any(k in rl for k in ("cheat", "exploit", "automatic")):
        return "Exploiting"
    if any(k in rl for k in ("scam", "economy", "cross-trading", "dupe")):
        return "Economy"
    return "Other"


def _tail_id(path: str) -> str:
    return path.split("/")[-1] if path else ""


def map_log_entry(entry: dict) -> dict:
    public_reason = entry.get("displayReason") or entry.get("privateReason") or ""
    return {
        "user_id": _tail_id(entry.get("user", "")),
        "moderator_id": _tail_id((entry.get("moderator") or {}).get("robloxUser", "")),
        "place": entry.get("place", ""),
        "create_time": entry.get("createTime"),
        "start_time": entry.get("startTime"),
        "duration": entry.get("duration"),
        "active": entry.get("active", False),
        "exclude_alt_accounts": entry.get("excludeAltAccounts", False),
        "private_reason": entry.get("privateReason", ""),
        "display_reason": entry.get("displayReason", ""),
        "short_reason": shorten_public_ban_reason(public_reason),
    }


async def list_ban_logs(
    universe_id: str,
    api_key: str,
    *,
    roblox_id: Optional[str] = None,
    max_pages: int = MAX_LOG_PAGES,
) -> Dict[str, Any]:
    """Walks ``user-restrictions:listLogs`` pages. Raises httpx errors so callers can report 502."""
    params: Dict[str, Any] = {"maxPageSize": 100}
    if roblox_id:
        params["filter"] = f"user=='users/{roblox_id}'"
    client = get_http_client()
    collected: List[dict] = []
    page_token = None
    pages = 0
    while pages < max_pages:
        if page_token:
            params["pageToken"] = page_token
        resp = await client.get(f"{restrictions_url(universe_id)}:listLogs", headers={"x-api-key": api_key}, params=params, timeout=15)
        resp.raise_for_status()
        data = resp.json() or {}
        collected.extend(map_log_entry(log) for log in data.get("logs", []))
        page_token = data.get("nextPageToken")
        pages += 1
        if not page_token:
            break
    return {"logs": collected, "next_page_token": page_token, "pages_fetched": pages}


async def get_user_by_id(roblox_id: str) -> Optional[dict]:
    try:
        client = get_http_client()
        resp = await client.get(f"{ROBLOX_USERS_API}/v1/users/{roblox_id}", timeout=10)
        if resp.status_code in (400, 404):
            return None
        resp.raise_for_status()
        return resp.json()
    except httpx.HTTPError as exc:
        logger.warning("Roblox user lookup failed for %s: %s", roblox_id, exc)
        return None


async def get_user_by_username(username: str) -> Optional[dict]:
    try:
        client = get_http_client()
        resp = await client.post(
            f"{ROBLOX_USERS_API}/v1/usernames/users",
            json={"usernames": [username], "excludeBannedUsers": False},
            timeout=10,
        )
        resp.raise_for_status()
        matches = (resp.json() or {}).get("data") or []
    except httpx.HTTPError as exc:
        logger.warning("Roblox username lookup failed for %s: %s", username, exc)
        return None
    if not matches:
        return None
    # The username endpoint omits profile fields like "created"; fetch the full profile.
    return await get_user_by_id(str(matches[0]["id"])) or matches[0]


async def get_avatar_headshot(roblox_id: str) -> str:
    try:
        client = get_http_client()
        resp = await client.get(
            f"{ROBLOX_THUMBNAILS_API}/v1/users/avatar-headshot",
            params={"userIds": roblox_id, "size": "150x150", "format": "Png", "isCircular": "false"},
            timeout=10,
        )
        resp.raise_for_status()
        data = (resp.json() or {}).get("data") or []
        if data and data[0].get("imageUrl"):
            return data[0]["imageUrl"]
    except httpx.HTTPError as exc:
        logger.debug("Roblox headshot lookup failed for %s: %s", roblox_id, exc)
    return DEFAULT_AVATAR_URL


def account_age_days(profile: Dict[str, Any]) -> Optional[int]:
    created = parse_timestamp(profile.get("created"))
    if not created:
        return None
    return max(0, (utcnow() - created).days)


def detect_alt(profile: Dict[str, Any]) -> Dict[str, Any]:
    """Scores how likely an account is a throwaway based on public profile signals."""
    reasons = []
    score = 0
    age = account_age_days(profile)
    if age is not None and age < 7:
        score += 50
        reasons.append("Account is less than a week old")
    elif age is not None and age < 30:
        score += 25
        reasons.append("Account is less than a month old")
    if not (profile.get("description") or "").strip():
        score += 15
        reasons.append("Empty profile description")
    if profile.get("displayName") and profile.get("displayName") == profile.get("name"):
        score += 5
    if profile.get("hasVerifiedBadge"):
        score = 0
        reasons = []
    return {"is_likely_alt": score >= 50, "confidence": min(score, 100), "reasons": reasons}
