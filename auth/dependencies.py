"""
auth/dependencies.py -- FastAPI Depends() helpers for realm-scoped authentication.

realm_from_path() turns the {realm} path parameter into a Realm (404 for
unknown names). two_factor_realm_from_path() additionally rejects the
end-user realm, which has no second factor.

try_get_session() is the soft variant (returns None on failure).
require_session() wraps it and raises Unauthenticated.

Layer rule: no imports from web/. auth/dependencies.py may import from
fastapi because this module is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

from fastapi import HTTPException, Request

from auth.errors import Unauthenticated
from auth.models import SessionClaims
from auth.realms import Realm, get_realm
from auth.tokens import decode_session_token


def realm_from_path(realm: str) -> Realm:
    """Resolve the {realm} path parameter. Raises HTTP 404 for unknown realms."""
    found = get_realm(realm)
    if found is None:
        raise HTTPException(
            status_code=404,
            detail={"code": "not_found", "message": "Unknown realm."},
        )
    return found


def two_factor_realm_from_path(realm: str) -> Realm:
    """Like realm_from_path, but only for realms that enforce a second factor."""
    found = realm_from_path(realm)
    if not found.requires_two_factor:
        raise HTTPException(
            status_code=404,
            detail={"code": "not_found", "message": "Unknown realm."},
        )
    return found


def try_get_session(request: Request, realm: Realm) -> SessionClaims | None:
    """Return verified claims from <realm>_session, or None. Never raises."""
    return decode_session_token(request.cookies.get(realm.session_cookie), realm)


def require_session(request: Request, realm: Realm) -> SessionClaims:
    claims = try_get_session(request, realm)
    if claims is None:
        raise Unauthenticated()
    return claims
