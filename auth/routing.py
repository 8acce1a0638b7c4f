"""
auth/routing.py -- Realm router: the two-stage access check for page requests.

evaluate_request() is a pure function of (path, cookies). It is evaluated
on every page request before any handler runs; nothing is cached between
requests.

  1. Pick the realm by path prefix (/admin, /supervise, else end user).
  2. Auth-flow pages (sign-in, verify-request, verify, error) always pass.
  3. No valid <realm>_session       -> redirect <realm>/sign-in
  4. Admin/supervisor only: no <realm>_2fa_verified == "true"
                                    -> redirect <realm>/verify
  5. Otherwise allow.

/api/ and /static/ are outside the page router: API routes authenticate
themselves and answer 401 JSON instead of redirecting.

Layer rule: no imports from api/ or web/.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass

from auth.gate import TwoFactorState, resolve_state
from auth.realms import Realm, realm_for_path
from auth.tokens import decode_session_token, has_two_factor_assertion

PUBLIC_PREFIXES = ("/api/", "/static/")
PUBLIC_PATHS = frozenset({"/api", "/favicon.ico"})


@dataclass(frozen=True)
class AccessDecision:
    realm: Realm
    redirect_to: str | None = None
    # Cookies the response should delete (e.g. a stale or forged session).
    clear_cookies: tuple[str, ...] = ()

    @property
    def allowed(self) -> bool:
        return self.redirect_to is None


def is_public_path(path: str) -> bool:
    return path in PUBLIC_PATHS or path.startswith(PUBLIC_PREFIXES)


def evaluate_request(path: str, cookies: Mapping[str, str]) -> AccessDecision:
    """Decide whether a page request may proceed, or where to send it."""
    realm = realm_for_path(path)
    if is_public_path(path):
        return AccessDecision(realm=realm)

    normalized = path.rstrip("/") or "/"
    if normalized in realm.auth_exception_paths:
        return AccessDecision(realm=realm)

    raw_session = cookies.get(realm.session_cookie)
    claims = decode_session_token(raw_session, realm)
    state = resolve_state(claims, has_two_factor_assertion(cookies, realm))

    if state is TwoFactorState.NO_SESSION:
        stale = (realm.session_cookie,) if raw_session else ()
        return AccessDecision(realm=realm, redirect_to=realm.sign_in_path, clear_cookies=stale)

    if realm.requires_two_factor and state is not TwoFactorState.SESSION_2FA_VERIFIED:
        return AccessDecision(realm=realm, redirect_to=realm.verify_path)

    return AccessDecision(realm=realm)
