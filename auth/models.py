"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Dataclasses own domain
shape; stores, the session issuer and the gate do the work.

Layer rule: no imports from api/ or web/.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime


@dataclass
class Identity:
    """A registered account in one realm (end user, platform admin, supervisor).

    Identities are provisioned out-of-band (main.py CLI or the business
    application). This package only reads them and toggles is_active; it
    never deletes them. email is stored lowercased and is unique per realm.
    """

    email: str
    realm: str  # "user", "admin", "supervisor"
    id: int | None = None
    name: str | None = None
    is_active: bool = True
    created_at: str | None = None


@dataclass
class VerificationToken:
    """A single-use magic-link token row.

    identifier is "<realm>:<email>" so a token minted for one realm can never
    be redeemed against another. token holds the HMAC of the raw value; the
    raw token only travels inside the emailed link.
    """

    identifier: str
    token: str
    expires: datetime


@dataclass
class TwoFactorSecret:
    """A TOTP shared secret for one identity in one realm.

    verified flips False -> True exactly once, on the first successful code
    check. The secret is never rotated by this package.
    """

    owner_id: int
    realm: str
    secret: str  # base32
    verified: bool = False
    created_at: str | None = None


@dataclass(frozen=True)
class SessionClaims:
    """Decoded, verified contents of a realm session cookie. Never persisted."""

    subject_id: int
    email: str
    realm: str
    issued_at: datetime
    expires_at: datetime
