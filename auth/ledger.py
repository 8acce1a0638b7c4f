"""
auth/ledger.py -- Token Ledger: single-use magic-link token issuance and consumption.

issue() stores only the HMAC of a fresh random token and returns the raw
value for the email. consume() is one DELETE ... RETURNING statement keyed on
(identifier, token hash): the database guarantees exactly one concurrent
caller gets the row back, every other caller sees nothing. No application
lock is involved.

An expired row is still deleted by consume() (so it cannot be replayed) and
then reported as a miss. Callers only ever see "token or None"; the
expired/unknown distinction is logged, never returned.

Identifiers are "<realm>:<email>", so the same email in two realms has two
disjoint token namespaces.

Layer rule: no imports from api/ or web/.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone

from auth.identity import normalize_email
from auth.models import VerificationToken
from auth.realms import Realm
from auth.store import AuthDatabase, verification_tokens
from auth.tokens import generate_verification_token, hash_verification_token

logger = logging.getLogger("dealroom.auth.ledger")


def ledger_identifier(realm: Realm, email: str) -> str:
    return f"{realm.name}:{normalize_email(email)}"


class TokenLedger:
    """Repository for VerificationToken rows.

    Usage:
        ledger = TokenLedger(db)
        raw = ledger.issue(ledger_identifier(ADMIN, email), timedelta(hours=24))
        ...
        row = ledger.consume(ledger_identifier(ADMIN, email), raw)   # VerificationToken or None
    """

    def __init__(self, db: AuthDatabase) -> None:
        self.db = db

    def issue(self, identifier: str, ttl: timedelta, now: datetime | None = None) -> str:
        """Create a token for identifier valid for ttl. Returns the RAW token.

        Multiple outstanding tokens per identifier are allowed; each is
        independently single-use.
        """
        raw = generate_verification_token()
        expires = (now or datetime.now(timezone.utc)) + ttl
        with self.db.begin() as conn:
            conn.execute(
                verification_tokens.insert().values(
                    identifier=identifier,
                    token=hash_verification_token(raw),
                    expires=expires.isoformat(timespec="microseconds"),
                )
            )
        return raw

    def consume(self, identifier: str, raw_token: str, now: datetime | None = None) -> VerificationToken | None:
        """Atomically delete and return the token row; None if missing or expired.

        A second call with the same arguments always returns None.
        """
        if not raw_token:
            return None
        token_hash = hash_verification_token(raw_token)
        stmt = (
            verification_tokens.delete()
            .where((verification_tokens.c.identifier == identifier) & (verification_tokens.c.token == token_hash))
            .returning(verification_tokens.c.expires)
        )
        with self.db.begin() as conn:
            row = conn.execute(stmt).fetchone()
        if row is None:
            logger.info("Verification token miss (unknown or already used)")
            return None
        expires = datetime.fromisoformat(row.expires)
        if expires <= (now or datetime.now(timezone.utc)):
            # Internal-only abuse signal: the link existed but was stale.
            logger.warning("Expired verification token presented and discarded")
            return None
        return VerificationToken(identifier=identifier, token=token_hash, expires=expires)

    def purge_expired(self, now: datetime | None = None) -> int:
        """Delete every expired row. Returns the number removed.

        ISO 8601 UTC strings sort chronologically, so a string comparison is
        a time comparison here.
        """
        cutoff = (now or datetime.now(timezone.utc)).isoformat(timespec="microseconds")
        with self.db.begin() as conn:
            result = conn.execute(verification_tokens.delete().where(verification_tokens.c.expires <= cutoff))
        return result.rowcount
