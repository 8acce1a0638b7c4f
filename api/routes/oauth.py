"""
api/routes/oauth.py -- Google sign-in for the end-user realm.

Routes:
  GET /api/auth/user/signin/google    -- redirect to Google
  GET /api/auth/user/callback/google  -- exchange code, resolve end user, set user_session

Registered before the generic /api/auth/{realm}/... routes in api/main.py so
"google" is never captured by a path parameter.
"""

from __future__ import annotations

import logging

from authlib.integrations.starlette_client import OAuthError
from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import RedirectResponse

from api.routes.auth import flow_error_redirect
from auth.errors import NotAuthorized, TransientStoreError
from auth.oauth import get_google_email, google_enabled
from auth.realms import USER
from auth.tokens import create_session_token, set_session_cookie
from core.config import get_settings

logger = logging.getLogger("dealroom.api.oauth")

router = APIRouter()


def _google_client(request: Request):
    if not google_enabled():
        raise HTTPException(status_code=404, detail={"code": "not_found", "message": "Google sign-in is disabled."})
    return request.app.state.oauth.create_client("google")


@router.get("/auth/user/signin/google")
async def google_signin(request: Request):
    client = _google_client(request)
    redirect_uri = f"{get_settings().base_url}/api/auth/user/callback/google"
    return await client.authorize_redirect(request, redirect_uri)


@router.get("/auth/user/callback/google")
async def google_callback(request: Request) -> RedirectResponse:
    client = _google_client(request)
    try:
        token = await client.authorize_access_token(request)
        email = get_google_email(token)
    except (OAuthError, ValueError) as exc:
        logger.warning("Google sign-in failed: %s", exc)
        return flow_error_redirect(USER, NotAuthorized())

    try:
        identity = request.app.state.providers[USER.name].find_active(email)
    except TransientStoreError as exc:
        return flow_error_redirect(USER, exc)
    if identity is None:
        return flow_error_redirect(USER, NotAuthorized())

    resp = RedirectResponse(USER.home_path, status_code=302)
    set_session_cookie(resp, USER, create_session_token(identity, USER))
    logger.info("Session started for user id=%s via google", identity.id)
    return resp
