"""
auth/oauth.py -- Authlib Google sign-in for the end-user realm.

Google is a pass-through provider: it only proves control of an email
address. The address must still belong to an active end user in the
Credential Store -- the callback in api/routes/oauth.py resolves it there and
then issues the ordinary user_session cookie. Admin and supervisor realms
never accept OAuth.

Security notes:
  [H1] Email verification is mandatory. get_google_email() raises ValueError
       if Google does not confirm the email is verified.

  OAuth state parameter (CSRF protection) is handled by authlib automatically
  via Starlette SessionMiddleware.

Layer rule: no imports from api/ or web/. Import from core/ is allowed.
"""

from __future__ import annotations

import logging

from authlib.integrations.starlette_client import OAuth

from core.config import get_settings

logger = logging.getLogger("dealroom.auth.oauth")

oauth = OAuth()

_cfg = get_settings()

if _cfg.google_client_id and _cfg.google_client_secret:
    oauth.register(
        name="google",
        client_id=_cfg.google_client_id,
        client_secret=_cfg.google_client_secret,
        server_metadata_url="https://accounts.google.com/.well-known/openid-configuration",
        client_kwargs={"scope": "openid email profile"},
    )
    logger.info("Google OAuth provider registered")


def google_enabled() -> bool:
    cfg = get_settings()
    return bool(cfg.google_client_id and cfg.google_client_secret)


def get_google_email(token: dict) -> str:
    """Extract the verified email from a Google id_token response.

    [H1] The email claim is only accepted when email_verified is True. A
    missing email_verified claim is treated as unverified.

    Raises:
        ValueError: If a verified email cannot be confirmed.
    """
    userinfo = token.get("userinfo")
    if not userinfo:
        raise ValueError("google OAuth: no userinfo in token response")

    if not userinfo.get("email_verified", False):
        raise ValueError("google OAuth: email is not verified")

    email = userinfo.get("email")
    if not email:
        raise ValueError("google OAuth: missing email claim in userinfo")
    return email
