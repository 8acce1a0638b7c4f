"""
auth/store.py -- SQLAlchemy Core persistence layer for auth entities.

Pattern: Repository + Data Mapper. AuthDatabase owns the engine and schema;
the repositories (identity providers in auth/identity.py, TokenLedger in
auth/ledger.py, TwoFactorSecretStore below) receive it by injection. Route and
dependency code never touches SQL directly.

Lifecycle: one AuthDatabase per process. api/main.py creates it in the
lifespan startup, hands it to every repository, and disposes it at shutdown.
Nothing in auth/ creates a module-level engine.

Timeouts and failures:
  Every connection carries store_timeout_seconds (SQLite busy timeout, pool
  checkout timeout elsewhere). Any driver/operational error is translated to
  TransientStoreError at this boundary so callers see one retryable error
  type. IntegrityError passes through untranslated -- repositories use it as
  a "row already exists" signal.

Security:
  All queries use bound parameters. No f-strings in SQL.

Layer rule: no imports from api/ or web/.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timezone

from sqlalchemy import (
    Column,
    Integer,
    MetaData,
    PrimaryKeyConstraint,
    String,
    Table,
    Text,
    UniqueConstraint,
    create_engine,
    event,
    text,
)
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError

from auth.errors import TransientStoreError
from auth.models import TwoFactorSecret
from core.config import get_settings

logger = logging.getLogger("dealroom.auth.store")

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

metadata = MetaData()


def _identity_table(name: str) -> Table:
    # One credential table per realm, identical shape.
    return Table(
        name,
        metadata,
        Column("id", Integer, primary_key=True, autoincrement=True),
        Column("email", String(320), nullable=False, unique=True),  # stored lowercased
        Column("name", Text),
        Column("is_active", Integer, nullable=False, server_default="1"),
        Column("created_at", String(32), nullable=False),
    )


end_users = _identity_table("end_users")
platform_admins = _identity_table("platform_admins")
supervisors = _identity_table("supervisors")

verification_tokens = Table(
    "verification_tokens",
    metadata,
    Column("identifier", String(340), nullable=False),  # "<realm>:<email>"
    Column("token", String(64), nullable=False),  # HMAC-SHA256 hex of the raw token
    Column("expires", String(32), nullable=False),  # ISO 8601 UTC
    PrimaryKeyConstraint("identifier", "token"),
)

two_factor_secrets = Table(
    "two_factor_secrets",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("realm", String(20), nullable=False),
    Column("owner_id", Integer, nullable=False),
    Column("secret", String(64), nullable=False),  # base32
    Column("verified", Integer, nullable=False, server_default="0"),
    Column("created_at", String(32), nullable=False),
    UniqueConstraint("realm", "owner_id"),
)


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# ---------------------------------------------------------------------------
# Database handle
# ---------------------------------------------------------------------------


class AuthDatabase:
    """Process-wide engine with explicit lifecycle.

    Usage:
        db = AuthDatabase()            # startup
        providers = build_providers(db)
        ...
        db.close()                     # shutdown
    """

    def __init__(self, db_url: str | None = None, timeout_seconds: float | None = None) -> None:
        settings = get_settings()
        db_url = db_url or settings.database_url
        timeout = timeout_seconds if timeout_seconds is not None else settings.store_timeout_seconds
        if db_url.startswith("sqlite"):
            self.engine: Engine = create_engine(
                db_url, connect_args={"check_same_thread": False, "timeout": timeout}
            )
            event.listen(self.engine, "connect", _set_wal_mode)
        else:
            self.engine = create_engine(db_url, pool_timeout=timeout, pool_pre_ping=True)
        metadata.create_all(self.engine)

    @contextmanager
    def begin(self) -> Iterator[Connection]:
        """Open a transaction; commit on success, roll back on error.

        Driver-level failures surface as TransientStoreError.
        """
        try:
            with self.engine.begin() as conn:
                yield conn
        except IntegrityError:
            raise
        except (DBAPIError, PoolTimeoutError) as exc:
            logger.error("Auth store unavailable: %s", exc.__class__.__name__)
            raise TransientStoreError() from exc

    def ping(self) -> bool:
        """Return True if the database answers a trivial query."""
        try:
            with self.begin() as conn:
                conn.execute(text("SELECT 1"))
        except TransientStoreError:
            return False
        return True

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Two-factor secrets
# ---------------------------------------------------------------------------


class TwoFactorSecretStore:
    """Repository for TwoFactorSecret rows, partitioned by (realm, owner_id)."""

    def __init__(self, db: AuthDatabase) -> None:
        self.db = db

    def get(self, realm: str, owner_id: int) -> TwoFactorSecret | None:
        with self.db.begin() as conn:
            row = conn.execute(
                two_factor_secrets.select().where(
                    (two_factor_secrets.c.realm == realm) & (two_factor_secrets.c.owner_id == owner_id)
                )
            ).fetchone()
        return _row_to_secret(row) if row is not None else None

    def create(self, realm: str, owner_id: int, secret: str) -> TwoFactorSecret:
        """Insert an unverified secret, or return the row a concurrent request already inserted.

        UNIQUE(realm, owner_id) makes the insert race-safe: the loser of the
        race gets IntegrityError and reads back the winner's secret, so both
        requests show the same QR code.
        """
        try:
            with self.db.begin() as conn:
                conn.execute(
                    two_factor_secrets.insert().values(
                        realm=realm,
                        owner_id=owner_id,
                        secret=secret,
                        verified=0,
                        created_at=now_iso(),
                    )
                )
        except IntegrityError:
            existing = self.get(realm, owner_id)
            if existing is not None:
                return existing
            raise
        created = self.get(realm, owner_id)
        if created is None:
            raise TransientStoreError()
        return created

    def mark_verified(self, realm: str, owner_id: int) -> bool:
        """Flip verified to true. Returns True only for the call that performed the flip."""
        with self.db.begin() as conn:
            result = conn.execute(
                two_factor_secrets.update()
                .where(
                    (two_factor_secrets.c.realm == realm)
                    & (two_factor_secrets.c.owner_id == owner_id)
                    & (two_factor_secrets.c.verified == 0)
                )
                .values(verified=1)
            )
        return result.rowcount > 0


def _row_to_secret(row) -> TwoFactorSecret:
    return TwoFactorSecret(
        owner_id=row.owner_id,
        realm=row.realm,
        secret=row.secret,
        verified=bool(row.verified),
        created_at=row.created_at,
    )
