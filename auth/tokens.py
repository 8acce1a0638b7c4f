"""
auth/tokens.py -- Session issuer, auth cookies, CSRF and verification-token utilities.

Security design decisions:
  Sessions: python-jose with HS256. Each realm signs with its own key,
       HMAC-SHA256(SECRET_KEY, "dealroom-session:<realm>"), and the token
       carries the realm both as a claim and as the audience. A token minted
       for one realm therefore fails signature verification in every other
       realm even if its cookie were renamed. Verification returns None on
       any failure -- callers treat that as "no session" (fail closed).

  Cookies: every auth cookie is httpOnly + SameSite=Lax, Secure when
       SECURE_COOKIES=true, and named "<realm>_..." (see auth/realms.py).

  Verification tokens: secrets.token_urlsafe(32) gives 256 bits of entropy.
       Only HMAC-SHA256(SECRET_KEY, raw) is stored, so a copy of the table is
       useless without the key.

  CSRF: double-submit. The <realm>_csrf cookie holds "token|HMAC(token)"; the
       sign-in form must echo the token. The HMAC stops an attacker who can
       plant a cookie from choosing a matching pair.

  SECRET_KEY: sourced from core.config.get_settings(), which validates it at
       startup [M6].

Layer rule: no imports from api/ or web/. Import from core/ is allowed.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

from jose import JWTError, jwt

from auth.models import SessionClaims
from core.config import get_settings

if TYPE_CHECKING:
    from auth.models import Identity
    from auth.realms import Realm

logger = logging.getLogger("dealroom.auth")

# ---------------------------------------------------------------------------
# Config -- read once at module load via the lru_cache singleton [M6]
# ---------------------------------------------------------------------------

_settings = get_settings()

_ALGORITHM = "HS256"
_ASSERTION_VALUE = "true"


def _hmac_hex(message: str) -> str:
    return hmac.new(_settings.secret_key.encode(), message.encode(), hashlib.sha256).hexdigest()


def _realm_signing_key(realm_name: str) -> str:
    return _hmac_hex(f"dealroom-session:{realm_name}")


# ---------------------------------------------------------------------------
# Session JWT encode / decode
# ---------------------------------------------------------------------------


def create_session_token(
    identity: Identity,
    realm: Realm,
    expire_seconds: int = 0,
    issued_at: datetime | None = None,
) -> str:
    """Encode a realm-scoped session JWT for an authenticated identity.

    Args:
        identity:       The identity that completed primary authentication.
        realm:          The realm the session is valid in. Must match identity.realm.
        expire_seconds: Session duration. 0 (default) uses SESSION_MAX_AGE_SECONDS.
        issued_at:      Override the issue time (tests).
    """
    if identity.realm != realm.name:
        raise ValueError(f"identity belongs to realm {identity.realm!r}, not {realm.name!r}")
    duration = expire_seconds if expire_seconds > 0 else _settings.session_max_age_seconds
    iat = issued_at or datetime.now(timezone.utc)
    payload = {
        "sub": str(identity.id),
        "email": identity.email,
        "realm": realm.name,
        "aud": realm.name,
        "iat": iat,
        "exp": iat + timedelta(seconds=duration),
    }
    return jwt.encode(payload, _realm_signing_key(realm.name), algorithm=_ALGORITHM)


def decode_session_token(token: str | None, realm: Realm) -> SessionClaims | None:
    """Verify a session JWT against one realm. Returns claims or None on any failure.

    Returning None (rather than raising) keeps the caller simple: any invalid,
    expired, or foreign-realm token is treated as unauthenticated.
    """
    if not token:
        return None
    try:
        payload = jwt.decode(token, _realm_signing_key(realm.name), algorithms=[_ALGORITHM], audience=realm.name)
    except JWTError:
        return None
    except Exception:
        # Crypto/library failure: fail closed.
        logger.exception("Session verification failed unexpectedly (realm=%s)", realm.name)
        return None
    if payload.get("realm") != realm.name:
        return None
    try:
        return SessionClaims(
            subject_id=int(payload["sub"]),
            email=str(payload["email"]),
            realm=realm.name,
            issued_at=datetime.fromtimestamp(payload["iat"], tz=timezone.utc),
            expires_at=datetime.fromtimestamp(payload["exp"], tz=timezone.utc),
        )
    except (KeyError, TypeError, ValueError):
        return None


# ---------------------------------------------------------------------------
# Cookie helpers
# ---------------------------------------------------------------------------


def _set_cookie(response, name: str, value: str, max_age: int) -> None:
    """httponly: JS cannot read the cookie (XSS mitigation).
    samesite="lax": not sent on cross-site POST -- CSRF mitigation for most cases.
    secure: only sent over HTTPS when SECURE_COOKIES=true (production).
    """
    response.set_cookie(
        name,
        value=value,
        httponly=True,
        samesite="lax",
        secure=_settings.secure_cookies,
        max_age=max_age,
        path="/",
    )


def delete_auth_cookie(response, name: str) -> None:
    """Expire an auth cookie with the same attributes it was set with."""
    response.delete_cookie(name, path="/", httponly=True, samesite="lax", secure=_settings.secure_cookies)


def set_session_cookie(response, realm: Realm, token: str) -> None:
    """Write the session JWT as <realm>_session, max_age matching the JWT expiry."""
    _set_cookie(response, realm.session_cookie, token, _settings.session_max_age_seconds)


def clear_session_cookies(response, realm: Realm) -> None:
    """Sign-out: drop the session and any second-factor assertion for the realm."""
    delete_auth_cookie(response, realm.session_cookie)
    if realm.requires_two_factor:
        delete_auth_cookie(response, realm.two_factor_cookie)


def set_two_factor_cookie(response, realm: Realm) -> None:
    """Write the <realm>_2fa_verified assertion (4 hours by default).

    Only auth/gate.py calls this, after checking session and code.
    """
    _set_cookie(response, realm.two_factor_cookie, _ASSERTION_VALUE, _settings.two_factor_max_age_seconds)


def clear_two_factor_cookie(response, realm: Realm) -> None:
    delete_auth_cookie(response, realm.two_factor_cookie)


def has_two_factor_assertion(cookies, realm: Realm) -> bool:
    return cookies.get(realm.two_factor_cookie) == _ASSERTION_VALUE


def set_flow_cookie(response, name: str, value: str) -> None:
    """Short-lived cookie for the duration of a sign-in (CSRF, callback url)."""
    _set_cookie(response, name, value, _settings.flow_cookie_max_age_seconds)


# ---------------------------------------------------------------------------
# Magic-link verification tokens
# ---------------------------------------------------------------------------


def generate_verification_token() -> str:
    """256 bits of URL-safe randomness for the emailed link."""
    return secrets.token_urlsafe(32)


def hash_verification_token(raw_token: str) -> str:
    """Return HMAC-SHA256(SECRET_KEY, raw_token) as hex -- the value stored in the ledger."""
    return _hmac_hex(f"verification:{raw_token}")


# ---------------------------------------------------------------------------
# CSRF double-submit
# ---------------------------------------------------------------------------


def create_csrf_token() -> tuple[str, str]:
    """Return (token for the form, value for the <realm>_csrf cookie)."""
    token = secrets.token_hex(32)
    return token, f"{token}|{_hmac_hex(f'csrf:{token}')}"


def verify_csrf(cookie_value: str | None, submitted: str | None) -> bool:
    """True if the cookie is self-consistent and the submitted token matches it."""
    if not cookie_value or not submitted or "|" not in cookie_value:
        return False
    token, signature = cookie_value.split("|", 1)
    expected = _hmac_hex(f"csrf:{token}")
    # compare_digest refuses non-ASCII str; bytes compare never raises.
    signature_ok = hmac.compare_digest(signature.encode(), expected.encode())
    token_ok = hmac.compare_digest(token.encode(), submitted.encode())
    return signature_ok and token_ok
