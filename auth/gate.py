"""
auth/gate.py -- Second-factor gate for the admin and supervisor realms.

Per identity and realm the gate is in exactly one of four states:

  NO_SESSION              no valid <realm>_session cookie
  SESSION_NO_2FA_SETUP    valid session, no TwoFactorSecret row yet
  SESSION_2FA_PENDING     secret exists but is unverified, or is verified but
                          this browser holds no <realm>_2fa_verified cookie
  SESSION_2FA_VERIFIED    assertion cookie present (4 hour TTL)

resolve_state() is the only place these conditions are evaluated. The
request router (auth/routing.py) calls it with cookies only; the gate calls
it with the secret row loaded as well.

Transitions with side effects:
  status() in SESSION_NO_2FA_SETUP creates the secret and returns the
      provisioning material (QR code + manual secret).
  verify() PENDING -> VERIFIED on a valid code: flips secret.verified on
      first success and writes the assertion cookie. It refuses to run
      without a valid session for the same realm, so an assertion can never
      exist without a matching session.

Layer rule: no imports from api/ or web/.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from enum import Enum

from auth.errors import NotAuthorized, TwoFactorInvalid, Unauthenticated
from auth.identity import IdentityProvider
from auth.models import Identity, SessionClaims, TwoFactorSecret
from auth.realms import Realm
from auth.store import TwoFactorSecretStore
from auth.tokens import (
    clear_two_factor_cookie,
    decode_session_token,
    has_two_factor_assertion,
    set_two_factor_cookie,
)
from auth.totp import generate_secret, is_well_formed_code, provisioning_uri, render_png_data_uri, validate

logger = logging.getLogger("dealroom.auth.gate")


class TwoFactorState(str, Enum):
    NO_SESSION = "NO_SESSION"
    SESSION_NO_2FA_SETUP = "SESSION_NO_2FA_SETUP"
    SESSION_2FA_PENDING = "SESSION_2FA_PENDING"
    SESSION_2FA_VERIFIED = "SESSION_2FA_VERIFIED"


class _NotLoaded:
    def __repr__(self) -> str:
        return "NOT_LOADED"


# Sentinel: the caller did not look up the secret row (cookie-only check).
NOT_LOADED = _NotLoaded()


def resolve_state(
    claims: SessionClaims | None,
    assertion_present: bool,
    secret: TwoFactorSecret | None | _NotLoaded = NOT_LOADED,
) -> TwoFactorState:
    """Map the observable facts for one realm onto the four-state machine."""
    if claims is None:
        return TwoFactorState.NO_SESSION
    if isinstance(secret, _NotLoaded):
        return TwoFactorState.SESSION_2FA_VERIFIED if assertion_present else TwoFactorState.SESSION_2FA_PENDING
    if secret is None:
        return TwoFactorState.SESSION_NO_2FA_SETUP
    if assertion_present and secret.verified:
        return TwoFactorState.SESSION_2FA_VERIFIED
    return TwoFactorState.SESSION_2FA_PENDING


@dataclass
class TwoFactorStatus:
    """What the verify page needs to render. Provisioning fields are set only while unverified."""

    state: TwoFactorState
    is_setup: bool = False
    qr_code: str | None = None
    secret: str | None = None
    otpauth_uri: str | None = None


class SecondFactorGate:
    """Drives the state machine for the realms that require a second factor.

    Usage:
        gate = SecondFactorGate(providers, TwoFactorSecretStore(db), app_name="Deal Room")
        status = gate.status(ADMIN, request.cookies)
        gate.verify(ADMIN, request.cookies, "123456", response)
    """

    def __init__(
        self,
        providers: Mapping[str, IdentityProvider],
        secrets: TwoFactorSecretStore,
        app_name: str,
        qr_renderer: Callable[[str], str] = render_png_data_uri,
    ) -> None:
        self.providers = providers
        self.secrets = secrets
        self.app_name = app_name
        self.qr_renderer = qr_renderer

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _require_two_factor_realm(self, realm: Realm) -> None:
        if not realm.requires_two_factor:
            raise ValueError(f"realm {realm.name!r} has no second factor")

    def _identity_for(self, claims: SessionClaims, realm: Realm) -> Identity:
        """The active identity behind a session, or NotAuthorized.

        Re-checked on every call so deactivating an account takes effect
        before the session cookie expires.
        """
        identity = self.providers[realm.name].get_by_id(claims.subject_id)
        if identity is None or not identity.is_active or identity.email != claims.email:
            raise NotAuthorized()
        return identity

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def status(self, realm: Realm, cookies: Mapping[str, str]) -> TwoFactorStatus:
        """Report the current state; enrolls a new secret when none exists yet."""
        self._require_two_factor_realm(realm)
        claims = decode_session_token(cookies.get(realm.session_cookie), realm)
        if claims is None:
            return TwoFactorStatus(state=TwoFactorState.NO_SESSION)
        identity = self._identity_for(claims, realm)
        secret = self.secrets.get(realm.name, identity.id)
        state = resolve_state(claims, has_two_factor_assertion(cookies, realm), secret)

        if state is TwoFactorState.SESSION_NO_2FA_SETUP:
            secret = self.secrets.create(realm.name, identity.id, generate_secret())
            logger.info("Created 2FA secret for %s id=%s", realm.name, identity.id)

        if secret is None or secret.verified:
            return TwoFactorStatus(state=state, is_setup=secret is not None)

        uri = provisioning_uri(secret.secret, realm.issuer_label(self.app_name), identity.email)
        return TwoFactorStatus(
            state=state,
            is_setup=False,
            qr_code=self.qr_renderer(uri),
            secret=secret.secret,
            otpauth_uri=uri,
        )

    def verify(
        self,
        realm: Realm,
        cookies: Mapping[str, str],
        code: str,
        response,
        for_time: float | None = None,
    ) -> TwoFactorState:
        """Check a TOTP code and, if valid, write the assertion cookie on response.

        Raises:
            Unauthenticated:  no valid session for this realm.
            NotAuthorized:    the session's identity is gone or inactive.
            TwoFactorInvalid: malformed code, no enrolled secret, or wrong code.
        """
        self._require_two_factor_realm(realm)
        claims = decode_session_token(cookies.get(realm.session_cookie), realm)
        if claims is None:
            raise Unauthenticated()
        identity = self._identity_for(claims, realm)

        if not is_well_formed_code(code):
            raise TwoFactorInvalid("Enter the 6-digit code from your authenticator app.")

        secret = self.secrets.get(realm.name, identity.id)
        if secret is None:
            raise TwoFactorInvalid("Two-factor authentication is not set up yet.")

        if not validate(secret.secret, code, for_time=for_time):
            logger.warning("Rejected 2FA code for %s id=%s", realm.name, identity.id)
            raise TwoFactorInvalid()

        if not secret.verified and self.secrets.mark_verified(realm.name, identity.id):
            logger.info("2FA enrollment completed for %s id=%s", realm.name, identity.id)

        set_two_factor_cookie(response, realm)
        return TwoFactorState.SESSION_2FA_VERIFIED

    def clear(self, realm: Realm, response) -> None:
        """Drop the assertion; the session itself stays valid."""
        self._require_two_factor_realm(realm)
        clear_two_factor_cookie(response, realm)
