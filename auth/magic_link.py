"""
auth/magic_link.py -- Passwordless primary authentication for all three realms.

request_link():  Credential Store lookup -> Token Ledger issue -> email.
complete():      Token Ledger consume -> Credential Store re-check -> Identity.

Non-disclosure: a sign-in request for an unknown or inactive email returns
exactly like a successful one (the requester is sent to verify-request) but
issues no token and sends no email. The difference only shows in the log.

Layer rule: no imports from api/ or web/.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Mapping
from datetime import timedelta

from auth.errors import NotAuthorized, TokenInvalid
from auth.identity import IdentityProvider, normalize_email
from auth.ledger import TokenLedger, ledger_identifier
from auth.mailer import Mailer, magic_link_email, magic_link_url, redact_email
from auth.models import Identity
from auth.realms import Realm

logger = logging.getLogger("dealroom.auth.magic_link")

EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


class MagicLinkAuth:
    """Usage:
    flow = MagicLinkAuth(providers, ledger, mailer, base_url="https://app.example", app_name="Deal Room")
    flow.request_link(ADMIN, "ops@example.com")
    identity = flow.complete(ADMIN, "ops@example.com", raw_token_from_link)
    """

    def __init__(
        self,
        providers: Mapping[str, IdentityProvider],
        ledger: TokenLedger,
        mailer: Mailer,
        base_url: str,
        app_name: str,
        token_ttl: timedelta = timedelta(hours=24),
    ) -> None:
        self.providers = providers
        self.ledger = ledger
        self.mailer = mailer
        self.base_url = base_url.rstrip("/")
        self.app_name = app_name
        self.token_ttl = token_ttl

    def request_link(self, realm: Realm, email: str) -> bool:
        """Email a sign-in link if email is an active identity in realm.

        Returns True if a link was sent. Callers must NOT expose the return
        value to the requester.

        Raises:
            DeliveryFailure: the mail transport failed.
            TransientStoreError: the store is unavailable.
        """
        email = normalize_email(email)
        if not EMAIL_RE.match(email):
            logger.info("Sign-in requested with malformed email for realm=%s", realm.name)
            return False
        identity = self.providers[realm.name].find_active(email)
        if identity is None:
            logger.info("Sign-in requested for unknown or inactive %s account %s", realm.name, redact_email(email))
            return False

        raw_token = self.ledger.issue(ledger_identifier(realm, email), self.token_ttl)
        url = magic_link_url(self.base_url, realm, raw_token, email)
        subject, body = magic_link_email(realm, url, self.app_name)
        self.mailer.send(email, subject, body)
        logger.info("Sign-in link sent for realm=%s to %s", realm.name, redact_email(email))
        return True

    def complete(self, realm: Realm, email: str, raw_token: str) -> Identity:
        """Redeem a link. The token is consumed whether or not the rest succeeds.

        Raises:
            TokenInvalid: unknown, used, expired, or malformed token.
            NotAuthorized: token valid but the account is gone or deactivated.
        """
        if not email or not raw_token:
            raise TokenInvalid()
        consumed = self.ledger.consume(ledger_identifier(realm, email), raw_token)
        if consumed is None:
            raise TokenInvalid()
        identity = self.providers[realm.name].find_active(email)
        if identity is None:
            logger.warning("Valid link for inactive %s account %s", realm.name, redact_email(normalize_email(email)))
            raise NotAuthorized()
        return identity
