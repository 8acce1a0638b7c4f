"""
web/routes.py -- Jinja2 template routes for the Deal Room auth-flow pages.

These routes serve server-rendered HTML. They share app.state with the API
routes (same gate, same stores) but return HTML instead of JSON.

Every realm gets the same set of pages under its own prefix ("" for end
users, /admin, /supervise). They are registered in a loop over REALMS so
the three realms cannot drift apart.

Routes (shown for the admin realm; user pages drop the prefix):
  GET  /admin                  -- realm landing page (session + 2FA required)
  GET  /admin/sign-in          -- email form (+ Google button for end users)
  GET  /admin/verify-request   -- "check your email"
  GET  /admin/verify           -- 2FA setup QR / code prompt (admin, supervisor)
  POST /admin/verify           -- form post of the 6-digit code
  GET  /admin/error            -- whitelisted error message

The realm_access middleware in api/main.py runs before every one of these.
sign-in, verify-request, verify and error are auth-exception paths there;
the landing page is only reached with a valid session (and assertion).
"""

import logging
from pathlib import Path

from fastapi import APIRouter, Form, Request
from fastapi.responses import HTMLResponse, RedirectResponse
from fastapi.templating import Jinja2Templates

from auth.dependencies import try_get_session
from auth.errors import NotAuthorized, TransientStoreError, TwoFactorInvalid, Unauthenticated
from auth.gate import SecondFactorGate, TwoFactorState
from auth.oauth import google_enabled
from auth.realms import REALMS, USER, Realm
from auth.tokens import clear_session_cookies, create_csrf_token, set_flow_cookie
from core.config import get_settings

logger = logging.getLogger("dealroom.web")

templates = Jinja2Templates(directory=str(Path(__file__).parent / "templates"))
templates.env.globals["app_name"] = get_settings().app_name
router = APIRouter()

# ---------------------------------------------------------------------------
# Error page messages
# ---------------------------------------------------------------------------

# Whitelist mapping for ?error= on <realm>/error [M3].
# The raw query param is NEVER passed to templates -- only the message from
# this dict is. AccessDenied shares the Default text so an inactive or
# unknown account cannot be told apart from any other failure.
_GENERIC_ERROR = "Unable to sign in. Please try again or contact your administrator."

_ERROR_MESSAGES: dict[str, str] = {
    "Verification": "This sign-in link is no longer valid. It may have been used already or it may have expired.",
    "EmailSignin": "The sign-in email could not be sent. Please try again.",
    "CsrfMismatch": "Your sign-in form expired. Please try again.",
    "ServiceUnavailable": "The service is temporarily unavailable. Please try again in a moment.",
    "AccessDenied": _GENERIC_ERROR,
    "Default": _GENERIC_ERROR,
}


def _no_store(resp):
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


# ---------------------------------------------------------------------------
# Page factories
#
# Each factory closes over one Realm and returns the handler for that realm's
# page. FastAPI introspects the returned function's signature as usual.
# ---------------------------------------------------------------------------


def _home_page(realm: Realm):
    def home(request: Request) -> HTMLResponse:
        """Realm landing page. The middleware has already checked session and 2FA."""
        claims = try_get_session(request, realm)
        if claims is None:
            return RedirectResponse(realm.sign_in_path, status_code=302)
        return _no_store(
            templates.TemplateResponse(
                request,
                "home.html",
                {"request": request, "realm": realm, "email": claims.email},
            )
        )

    return home


def _sign_in_page(realm: Realm):
    def sign_in(request: Request) -> HTMLResponse:
        """Render the email form with a fresh CSRF token."""
        token, cookie_value = create_csrf_token()
        resp = templates.TemplateResponse(
            request,
            "sign_in.html",
            {
                "request": request,
                "realm": realm,
                "csrf_token": token,
                "callback_url": request.query_params.get("callbackUrl", ""),
                "google_enabled": realm is USER and google_enabled(),
            },
        )
        set_flow_cookie(resp, realm.csrf_cookie, cookie_value)
        return _no_store(resp)

    return sign_in


def _verify_request_page(realm: Realm):
    def verify_request(request: Request) -> HTMLResponse:
        return templates.TemplateResponse(request, "verify_request.html", {"request": request, "realm": realm})

    return verify_request


def _render_verify(request: Request, realm: Realm, error_msg: str | None = None, status_code: int = 200):
    """Render the 2FA page for the current gate state, or redirect out of it."""
    gate: SecondFactorGate = request.app.state.gate
    try:
        status = gate.status(realm, request.cookies)
    except NotAuthorized:
        resp = RedirectResponse(realm.error_url("AccessDenied"), status_code=302)
        clear_session_cookies(resp, realm)
        return resp
    except TransientStoreError:
        return RedirectResponse(realm.error_url("ServiceUnavailable"), status_code=302)

    if status.state is TwoFactorState.NO_SESSION:
        return RedirectResponse(realm.sign_in_path, status_code=302)
    if status.state is TwoFactorState.SESSION_2FA_VERIFIED:
        return RedirectResponse(realm.home_path, status_code=302)

    resp = templates.TemplateResponse(
        request,
        "verify.html",
        {
            "request": request,
            "realm": realm,
            "status": status,
            "error_msg": error_msg,
        },
        status_code=status_code,
    )
    return _no_store(resp)


def _verify_page(realm: Realm):
    def verify(request: Request) -> HTMLResponse:
        """Show the QR code on first setup, otherwise just the code prompt."""
        return _render_verify(request, realm)

    return verify


def _verify_submit(realm: Realm):
    def verify_submit(request: Request, code: str = Form("", max_length=32)) -> HTMLResponse:
        """Check the submitted code; on success continue to the landing page."""
        gate: SecondFactorGate = request.app.state.gate
        resp = RedirectResponse(realm.home_path, status_code=303)
        try:
            gate.verify(realm, request.cookies, code.strip(), resp)
        except Unauthenticated:
            return RedirectResponse(realm.sign_in_path, status_code=303)
        except NotAuthorized:
            denied = RedirectResponse(realm.error_url("AccessDenied"), status_code=303)
            clear_session_cookies(denied, realm)
            return denied
        except TransientStoreError:
            return RedirectResponse(realm.error_url("ServiceUnavailable"), status_code=303)
        except TwoFactorInvalid as exc:
            return _render_verify(request, realm, error_msg=exc.message, status_code=400)
        return _no_store(resp)

    return verify_submit


def _error_page(realm: Realm):
    def error(request: Request) -> HTMLResponse:
        # Map ?error= query param through whitelist [M3]
        code = request.query_params.get("error", "Default")
        error_msg = _ERROR_MESSAGES.get(code, _ERROR_MESSAGES["Default"])
        return templates.TemplateResponse(
            request,
            "error.html",
            {"request": request, "realm": realm, "error_msg": error_msg},
        )

    return error


# ---------------------------------------------------------------------------
# Registration
# ---------------------------------------------------------------------------

for _realm in REALMS.values():
    router.add_api_route(_realm.home_path, _home_page(_realm), methods=["GET"], response_class=HTMLResponse)
    router.add_api_route(_realm.sign_in_path, _sign_in_page(_realm), methods=["GET"], response_class=HTMLResponse)
    router.add_api_route(
        _realm.verify_request_path, _verify_request_page(_realm), methods=["GET"], response_class=HTMLResponse
    )
    router.add_api_route(_realm.error_path, _error_page(_realm), methods=["GET"], response_class=HTMLResponse)
    if _realm.requires_two_factor:
        router.add_api_route(_realm.verify_path, _verify_page(_realm), methods=["GET"], response_class=HTMLResponse)
        router.add_api_route(_realm.verify_path, _verify_submit(_realm), methods=["POST"], response_class=HTMLResponse)
