from __future__ import annotations

import logging
import secrets
import time
from typing import Optional

import bcrypt
from fastapi import HTTPException
from itsdangerous import BadSignature, URLSafeSerializer

from ..settings import OAUTH_STATE_TTL_SECONDS, PUBLIC_IP_MAX_REQUESTS, PUBLIC_IP_WINDOW_SECONDS, SECRET_KEY
from ..state import _ip_requests, _oauth_states

state_serializer = URLSafeSerializer(SECRET_KEY, salt="romoderate-oauth-state")


def issue_oauth_state(invite: Optional[str] = None, return_to: Optional[str] = None) -> str:
    nonce = secrets.token_urlsafe(16)
    now = time.time()
    _oauth_states[nonce] = now + OAUTH_STATE_TTL_SECONDS
    for n, expires_at in list(_oauth_states.items()):
        if expires_at < now:
            _oauth_states.pop(n, None)
    return state_serializer.dumps({"nonce": nonce, "invite": invite, "return_to": return_to})


def consume_oauth_state(raw: Optional[str]) -> Optional[dict]:
    """Decode a callback ``state`` and burn its nonce. Returns None when forged, replayed or expired."""
    if not raw:
        return None
    try:
        data = state_serializer.loads(raw)
    except BadSignature:
        logging.warning("OAuth state failed signature check.")
        return None
    if not isinstance(data, dict):
        return None
    expires_at = _oauth_states.pop(str(data.get("nonce")), None)
    if expires_at is None or expires_at < time.time():
        return None
    return data


def enforce_ip_rate_limit(ip: str) -> None:
    now = time.time()
    window_start = now - PUBLIC_IP_WINDOW_SECONDS
    if len(_ip_requests) > 10000:
        _ip_requests.clear()
    bucket = [t for t in _ip_requests.get(ip, []) if t >= window_start]
    if len(bucket) >= PUBLIC_IP_MAX_REQUESTS:
        raise HTTPException(status_code=429, detail="Too many requests. Please slow down and try again.")
    bucket.append(now)
    _ip_requests[ip] = bucket


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(password: str, hashed: Optional[str]) -> bool:
    if not hashed:
        return False
    try:
        return bcrypt.checkpw(password.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        logging.warning("Stored admin password hash is malformed.")
        return False
