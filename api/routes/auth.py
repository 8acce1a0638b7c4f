"""
api/routes/auth.py -- Magic-link sign-in endpoints, one set per realm.

Routes ({realm} is user | admin | supervisor):
  GET       /api/auth/{realm}/csrf            -- issue CSRF token + <realm>_csrf cookie
  POST      /api/auth/{realm}/signin/email    -- form post; email a sign-in link
  GET/POST  /api/auth/{realm}/callback/email  -- redeem link; set <realm>_session
  GET       /api/auth/{realm}/session         -- current session claims (JSON)
  POST      /api/auth/{realm}/signout         -- clear session + 2FA assertion

Browser-facing flows answer with redirects to the realm's pages
(<realm>/verify-request, <realm>/error?error=<Code>), never raw 4xx/5xx for
expected conditions.

Security:
  [H2] POST signin/email is rate-limited per IP (SIGNIN_RATE_LIMIT).
  Sign-in for an unknown or inactive email redirects exactly like success.
  callbackUrl is accepted only as a relative path inside the same realm.
  A fresh session always starts without a 2FA assertion.
"""

from __future__ import annotations

import logging
from urllib.parse import urlparse

from fastapi import APIRouter, Depends, Form, Request
from fastapi.responses import JSONResponse, RedirectResponse

from api.limiter import limiter
from api.models import CsrfResponse, SessionResponse
from auth.dependencies import realm_from_path, require_session
from auth.errors import AuthError, DeliveryFailure, NotAuthorized, TokenInvalid, TransientStoreError
from auth.magic_link import MagicLinkAuth
from auth.realms import Realm, realm_for_path
from auth.routing import is_public_path
from auth.tokens import (
    clear_session_cookies,
    clear_two_factor_cookie,
    create_csrf_token,
    create_session_token,
    delete_auth_cookie,
    set_flow_cookie,
    set_session_cookie,
    verify_csrf,
)
from core.config import get_settings

logger = logging.getLogger("dealroom.api.auth")

_settings = get_settings()

# Auth policy: every route here is public -- they ARE the sign-in flow.
# /session is the exception and requires a valid <realm>_session.
router = APIRouter()

# Error codes understood by the realm error page (web/routes.py).
_FLOW_ERROR_CODES: dict[type[AuthError], str] = {
    TokenInvalid: "Verification",
    NotAuthorized: "AccessDenied",
    DeliveryFailure: "EmailSignin",
    TransientStoreError: "ServiceUnavailable",
}


def flow_error_redirect(realm: Realm, exc: AuthError) -> RedirectResponse:
    """Redirect a browser flow failure to <realm>/error with a whitelisted code."""
    code = _FLOW_ERROR_CODES.get(type(exc), "Default")
    return RedirectResponse(realm.error_url(code), status_code=302)


def safe_callback(realm: Realm, callback_url: str | None) -> str:
    """Validate a post-sign-in redirect target. [C2]

    Only relative paths that belong to the same realm's pages are accepted;
    anything else (absolute URLs, //host, another realm, /api/...) falls back
    to the realm landing page.
    """
    if callback_url and callback_url.startswith("/") and not callback_url.startswith("//") and "\\" not in callback_url:
        path = urlparse(callback_url).path
        if not is_public_path(path) and realm_for_path(path) is realm:
            return callback_url
    return realm.home_path


# ---------------------------------------------------------------------------
# CSRF
# ---------------------------------------------------------------------------


@router.get("/auth/{realm}/csrf", response_model=CsrfResponse)
async def csrf(target_realm: Realm = Depends(realm_from_path)) -> JSONResponse:
    """Issue a CSRF token and store its signed counterpart in <realm>_csrf."""
    token, cookie_value = create_csrf_token()
    resp = JSONResponse(content=CsrfResponse(csrf_token=token).model_dump(by_alias=True))
    set_flow_cookie(resp, target_realm.csrf_cookie, cookie_value)
    resp.headers["Cache-Control"] = "no-store"
    return resp


# ---------------------------------------------------------------------------
# Magic link
# ---------------------------------------------------------------------------


@limiter.limit(_settings.signin_rate_limit)  # [H2] must be ABOVE @router to preserve FastAPI introspection
@router.post("/auth/{realm}/signin/email")
def signin_email(
    request: Request,
    target_realm: Realm = Depends(realm_from_path),
    email: str = Form(..., max_length=320),
    csrf_token: str = Form("", alias="csrfToken"),
    callback_url: str = Form("", alias="callbackUrl"),
) -> RedirectResponse:
    """Request a sign-in link. Always lands on verify-request unless delivery fails."""
    if not verify_csrf(request.cookies.get(target_realm.csrf_cookie), csrf_token):
        logger.warning("CSRF check failed on %s sign-in", target_realm.name)
        return RedirectResponse(target_realm.error_url("CsrfMismatch"), status_code=302)

    flow: MagicLinkAuth = request.app.state.magic_link
    try:
        flow.request_link(target_realm, email)
    except (DeliveryFailure, TransientStoreError) as exc:
        return flow_error_redirect(target_realm, exc)

    resp = RedirectResponse(target_realm.verify_request_path, status_code=302)
    delete_auth_cookie(resp, target_realm.csrf_cookie)
    set_flow_cookie(resp, target_realm.callback_cookie, safe_callback(target_realm, callback_url))
    return resp


@router.api_route("/auth/{realm}/callback/email", methods=["GET", "POST"])
def callback_email(
    request: Request,
    target_realm: Realm = Depends(realm_from_path),
    token: str = "",
    email: str = "",
) -> RedirectResponse:
    """Redeem a magic link and start a realm session."""
    flow: MagicLinkAuth = request.app.state.magic_link
    try:
        identity = flow.complete(target_realm, email, token)
    except (TokenInvalid, NotAuthorized, TransientStoreError) as exc:
        return flow_error_redirect(target_realm, exc)

    destination = safe_callback(target_realm, request.cookies.get(target_realm.callback_cookie))
    resp = RedirectResponse(destination, status_code=302)
    set_session_cookie(resp, target_realm, create_session_token(identity, target_realm))
    if target_realm.requires_two_factor:
        clear_two_factor_cookie(resp, target_realm)
    delete_auth_cookie(resp, target_realm.callback_cookie)
    logger.info("Session started for %s id=%s", target_realm.name, identity.id)
    return resp


# ---------------------------------------------------------------------------
# Session
# ---------------------------------------------------------------------------


@router.get("/auth/{realm}/session", response_model=SessionResponse)
async def session(request: Request, target_realm: Realm = Depends(realm_from_path)) -> SessionResponse:
    """Return the verified session claims for this realm. 401 without a session."""
    claims = require_session(request, target_realm)
    return SessionResponse(realm=claims.realm, email=claims.email, expires=claims.expires_at.isoformat())


@router.post("/auth/{realm}/signout")
async def signout(target_realm: Realm = Depends(realm_from_path)) -> RedirectResponse:
    """Clear the realm's session and second-factor assertion, then go to sign-in."""
    resp = RedirectResponse(target_realm.sign_in_path, status_code=303)
    clear_session_cookies(resp, target_realm)
    return resp
