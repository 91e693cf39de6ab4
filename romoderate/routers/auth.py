from __future__ import annotations

import logging
from typing import Optional

import httpx
from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import RedirectResponse, Response

from ..services import accounts, discord_api
from ..services.database import StorageError
from ..services.security import consume_oauth_state, issue_oauth_state
from ..services.sessions import end_session, persist_session, require_user
from ..utils import frontend_url, is_safe_return_path

router = APIRouter()


def _error_redirect(code: str) -> RedirectResponse:
    return RedirectResponse(url=frontend_url(f"/?error={code}"), status_code=302)


@router.get("/api/auth/discord")
async def discord_login(invite: Optional[str] = None, returnTo: Optional[str] = None):
    state_token = issue_oauth_state(invite=invite, return_to=returnTo if is_safe_return_path(returnTo) else None)
    return RedirectResponse(url=discord_api.oauth_authorize_url(state_token), status_code=302)


@router.get("/api/auth/discord/callback")
async def discord_callback(code: Optional[str] = None, state: Optional[str] = None, error: Optional[str] = None):
    if error:
        return _error_redirect("access_denied")
    if not code:
        return _error_redirect("no_code")
    oauth_state = consume_oauth_state(state)
    if not oauth_state:
        return _error_redirect("invalid_state")

    try:
        token_data = await discord_api.exchange_code_for_token(code)
        access_token = token_data["access_token"]
        profile = await discord_api.fetch_discord_user(access_token)
        guilds = await discord_api.fetch_user_guilds(access_token)
    except (HTTPException, httpx.HTTPError, KeyError) as exc:
        logging.warning("Discord OAuth callback failed: %s", exc)
        return _error_redirect("auth_failed")

    try:
        user = await accounts.upsert_discord_user(profile, token_data)

        joined_via_invite = False
        invite_code = oauth_state.get("invite")
        if invite_code:
            invite = await accounts.get_invite_by_code(invite_code)
            joined_via_invite = await accounts.redeem_invite(invite, user) if invite else False
            if not joined_via_invite:
                logging.info("Invite %s unusable for user %s; falling back to guild sync", invite_code, user["id"])

        if not joined_via_invite:
            await accounts.sync_guilds(user, guilds)
    except StorageError as exc:
        logging.error("Storage failure during Discord login: %s", exc)
        return _error_redirect("auth_failed")

    return_to = oauth_state.get("return_to")
    if is_safe_return_path(return_to):
        target = return_to
    elif joined_via_invite or user.get("onboarding_completed"):
        target = "/dashboard"
    else:
        target = "/onboarding"

    response = RedirectResponse(url=frontend_url(target), status_code=302)
    persist_session(response, user["id"])
    logging.info("Discord login for user %s (%s)", user["id"], user.get("username"))
    return response


@router.get("/api/auth/me")
async def auth_me(user: dict = Depends(require_user)):
    return accounts.safe_user(user)


@router.post("/api/auth/logout")
async def logout(request: Request):
    response = Response(status_code=204)
    end_session(request, response)
    return response


@router.post("/api/user/accept-tos")
async def accept_tos(user: dict = Depends(require_user)):
    updated = await accounts.accept_tos(user["id"])
    return accounts.safe_user(updated or user)
