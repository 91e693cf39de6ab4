from __future__ import annotations

import logging
import secrets
import time
from typing import Dict, Optional, Tuple

from fastapi import HTTPException, Request
from itsdangerous import BadSignature, URLSafeSerializer
from starlette.responses import Response

from ..settings import (
    ADMIN_SESSION_COOKIE_NAME,
    ADMIN_SESSION_TTL_SECONDS,
    SECRET_KEY,
    SESSION_COOKIE_NAME,
    SESSION_COOKIE_SECURE,
    SESSION_TTL_SECONDS,
)
from ..state import _admin_sessions, _sessions
from . import accounts

serializer = URLSafeSerializer(SECRET_KEY, salt="romoderate-session")


def _issue(store: Dict[str, Tuple[str, float]], subject_id: str, ttl: int) -> str:
    token = secrets.token_urlsafe(32)
    store[token] = (subject_id, time.time() + ttl)
    return token


def _set_cookie(response: Response, name: str, token: str, ttl: int) -> None:
    response.set_cookie(
        key=name,
        value=serializer.dumps({"sid": token}),
        max_age=ttl,
        secure=SESSION_COOKIE_SECURE,
        httponly=True,
        samesite="Lax",
    )


def _read_token(request: Request, name: str) -> Optional[str]:
    raw = request.cookies.get(name)
    if not raw:
        return None
    try:
        data = serializer.loads(raw)
    except BadSignature:
        logging.warning("Invalid session cookie signature. Session potentially tampered with or corrupt.")
        return None
    if not isinstance(data, dict):
        return None
    return data.get("sid")


def _resolve(store: Dict[str, Tuple[str, float]], token: Optional[str]) -> Optional[str]:
    if not token:
        return None
    record = store.get(token)
    if not record:
        return None
    subject_id, expires_at = record
    if expires_at < time.time():
        store.pop(token, None)
        return None
    return subject_id


def create_session(user_id: str) -> str:
    return _issue(_sessions, user_id, SESSION_TTL_SECONDS)


def persist_session(response: Response, user_id: str) -> str:
    token = create_session(user_id)
    _set_cookie(response, SESSION_COOKIE_NAME, token, SESSION_TTL_SECONDS)
    return token


def session_cookie_value(token: str) -> str:
    return serializer.dumps({"sid": token})


def read_session_user_id(request: Request) -> Optional[str]:
    return _resolve(_sessions, _read_token(request, SESSION_COOKIE_NAME))


def end_session(request: Request, response: Response) -> None:
    token = _read_token(request, SESSION_COOKIE_NAME)
    if token:
        _sessions.pop(token, None)
    response.delete_cookie(SESSION_COOKIE_NAME)


def persist_admin_session(response: Response, admin_id: str) -> str:
    token = _issue(_admin_sessions, admin_id, ADMIN_SESSION_TTL_SECONDS)
    _set_cookie(response, ADMIN_SESSION_COOKIE_NAME, token, ADMIN_SESSION_TTL_SECONDS)
    return token


def read_admin_id(request: Request) -> Optional[str]:
    return _resolve(_admin_sessions, _read_token(request, ADMIN_SESSION_COOKIE_NAME))


def end_admin_session(request: Request, response: Response) -> None:
    token = _read_token(request, ADMIN_SESSION_COOKIE_NAME)
    if token:
        _admin_sessions.pop(token, None)
    response.delete_cookie(ADMIN_SESSION_COOKIE_NAME)


# --- Route dependencies ---

async def optional_user(request: Request) -> Optional[dict]:
    user_id = read_session_user_id(request)
    if not user_id:
        return None
    return await accounts.get_user(user_id)


async def require_user(request: Request) -> dict:
    user = await optional_user(request)
    if not user:
        raise HTTPException(status_code=401, detail="Not authenticated")
    return user


async def require_admin(request: Request) -> dict:
    admin_id = read_admin_id(request)
    admin = await accounts.get_admin(admin_id) if admin_id else None
    if not admin:
        raise HTTPException(status_code=401, detail="Admin authentication required")
    return admin
