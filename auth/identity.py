"""
auth/identity.py -- Credential Store: one IdentityProvider per realm.

IdentityProvider is the single interface the rest of the subsystem talks to.
The three realms differ only in which table they read, so the concrete
providers are one-line subclasses that bind a realm name and a table. There
is no per-realm adapter code to drift out of sync.

find_active() is the only lookup used during authentication. It returns None
both for unknown emails and for inactive accounts; callers must not be able
to tell the two apart, and must not pass the distinction on to the requester.

Layer rule: no imports from api/ or web/.
"""

from __future__ import annotations

import logging

from sqlalchemy import Table

from auth.errors import TransientStoreError
from auth.models import Identity
from auth.realms import ADMIN, SUPERVISOR, USER
from auth.store import AuthDatabase, end_users, now_iso, platform_admins, supervisors

logger = logging.getLogger("dealroom.auth.identity")


def normalize_email(email: str) -> str:
    """Canonical form used for every lookup and every stored row."""
    return email.strip().lower()


class IdentityProvider:
    """Repository for the identities of one realm.

    Usage:
        admins = PlatformAdminProvider(db)
        admins.create("ops@example.com", name="Ops")
        admin = admins.find_active("OPS@example.com")
    """

    realm: str
    table: Table

    def __init__(self, db: AuthDatabase) -> None:
        self.db = db

    # ------------------------------------------------------------------
    # Authentication lookups
    # ------------------------------------------------------------------

    def find_active(self, email: str) -> Identity | None:
        """Case-insensitive lookup. Returns None for unknown OR inactive identities."""
        identity = self.get_by_email(email)
        if identity is None or not identity.is_active:
            return None
        return identity

    def get_by_email(self, email: str) -> Identity | None:
        with self.db.begin() as conn:
            row = conn.execute(self.table.select().where(self.table.c.email == normalize_email(email))).fetchone()
        return self._row_to_identity(row) if row is not None else None

    def get_by_id(self, identity_id: int) -> Identity | None:
        with self.db.begin() as conn:
            row = conn.execute(self.table.select().where(self.table.c.id == identity_id)).fetchone()
        return self._row_to_identity(row) if row is not None else None

    # ------------------------------------------------------------------
    # Provisioning (out-of-band: CLI / business application)
    # ------------------------------------------------------------------

    def create(self, email: str, name: str | None = None, is_active: bool = True) -> Identity:
        """Insert a new identity and return it.

        Raises sqlalchemy.exc.IntegrityError if the email already exists in
        this realm. The same email may exist independently in other realms.
        """
        with self.db.begin() as conn:
            result = conn.execute(
                self.table.insert().values(
                    email=normalize_email(email),
                    name=name or None,
                    is_active=1 if is_active else 0,
                    created_at=now_iso(),
                )
            )
            new_id = result.inserted_primary_key[0]
        logger.info("Provisioned %s identity id=%s", self.realm, new_id)
        created = self.get_by_id(new_id)
        if created is None:
            raise TransientStoreError()
        return created

    def set_active(self, email: str, is_active: bool) -> bool:
        """Activation toggle. Returns True if a row was updated, False if the email is unknown."""
        with self.db.begin() as conn:
            result = conn.execute(
                self.table.update()
                .where(self.table.c.email == normalize_email(email))
                .values(is_active=1 if is_active else 0)
            )
        return result.rowcount > 0

    def _row_to_identity(self, row) -> Identity:
        return Identity(
            id=row.id,
            email=row.email,
            realm=self.realm,
            name=row.name,
            is_active=bool(row.is_active),
            created_at=row.created_at,
        )


class EndUserProvider(IdentityProvider):
    realm = USER.name
    table = end_users


class PlatformAdminProvider(IdentityProvider):
    realm = ADMIN.name
    table = platform_admins


class SupervisorProvider(IdentityProvider):
    realm = SUPERVISOR.name
    table = supervisors


def build_providers(db: AuthDatabase) -> dict[str, IdentityProvider]:
    """Return {realm name: provider} sharing one database handle."""
    return {cls.realm: cls(db) for cls in (EndUserProvider, PlatformAdminProvider, SupervisorProvider)}
