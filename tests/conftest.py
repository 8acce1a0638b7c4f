"""
tests/conftest.py -- Shared test fixtures for Deal Room auth tests.

This module provides:
  - _make_test_db(): creates an isolated named shared-memory auth database
  - RecordingMailer: captures outgoing mail instead of sending it
  - _patch_lifespan(): wires test collaborators into app.state, bypassing real startup
  - db / providers: per-test database for unit tests
  - web_client: module-scoped TestClient with follow_redirects=False
  - sign_in: drives the full magic-link flow through the real ASGI stack

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs route handlers in a thread pool. Plain :memory: DBs
are per-connection and would present a blank schema to each worker thread.
The named URI format (file:name?mode=memory&cache=shared&uri=true) shares
one in-memory instance across all connections in the same process.

The DEBUG env var must be set before any auth module import so get_settings()
auto-generates SECRET_KEY in dev mode rather than raising ValueError.
"""

from __future__ import annotations

import html
import os
import re
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager
from dataclasses import dataclass
from urllib.parse import urlsplit

# CRITICAL: Set DEBUG before any auth/core import so get_settings() can
# auto-generate SECRET_KEY in dev mode instead of raising ValueError.
os.environ.setdefault("DEBUG", "true")

import pytest
from fastapi.testclient import TestClient

from api.limiter import limiter
from api.main import attach_auth_services
from asgi import app
from auth.errors import DeliveryFailure
from auth.identity import IdentityProvider, build_providers
from auth.mailer import Mailer
from auth.realms import Realm
from auth.store import AuthDatabase

# Rate limits are exercised by slowapi itself; the flow tests below make many
# sign-in requests from the same client address within one minute.
limiter.enabled = False

_LINK_RE = re.compile(r"Or copy this link: (\S+)</p>")


# ---------------------------------------------------------------------------
# Test collaborators
# ---------------------------------------------------------------------------


@dataclass
class SentEmail:
    to: str
    subject: str
    html_body: str

    @property
    def link(self) -> str:
        """The magic link as a server-relative path + query string."""
        match = _LINK_RE.search(self.html_body)
        assert match, "no sign-in link in email body"
        parts = urlsplit(html.unescape(match.group(1)))
        return f"{parts.path}?{parts.query}"


class RecordingMailer(Mailer):
    """Mailer that records messages. Set fail=True to simulate a transport outage."""

    def __init__(self) -> None:
        self.sent: list[SentEmail] = []
        self.fail = False

    def send(self, to: str, subject: str, html_body: str) -> None:
        if self.fail:
            raise DeliveryFailure()
        self.sent.append(SentEmail(to, subject, html_body))

    def reset(self) -> None:
        self.sent.clear()
        self.fail = False


# ---------------------------------------------------------------------------
# Store helpers
# ---------------------------------------------------------------------------


def _make_test_db(db_suffix: str) -> AuthDatabase:
    """Create an isolated named shared-memory SQLite database.

    Args:
        db_suffix: Unique string appended to the DB name so test modules
                   don't share state (e.g. 'flow', 'health').
    """
    return AuthDatabase(db_url=f"sqlite:///file:test_auth_{db_suffix}?mode=memory&cache=shared&uri=true")


def _patch_lifespan(db: AuthDatabase, mailer: Mailer):
    """Return an async context manager that replaces the real lifespan.

    Wires the test database and recording mailer into app.state so TestClient
    routes never touch the on-disk database or the Resend API.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        attach_auth_services(app, db, mailer)
        yield

    return test_lifespan


# ---------------------------------------------------------------------------
# Unit-test fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def db() -> Generator[AuthDatabase, None, None]:
    database = _make_test_db(f"unit_{uuid.uuid4().hex}")
    yield database
    database.close()


@pytest.fixture
def providers(db: AuthDatabase) -> dict[str, IdentityProvider]:
    return build_providers(db)


# ---------------------------------------------------------------------------
# Module-scoped fixtures -- one TestClient per test module for speed
# ---------------------------------------------------------------------------


@pytest.fixture(scope="module")
def web_client(request) -> Generator[tuple[TestClient, AuthDatabase, RecordingMailer], None, None]:
    """Yield (client, db, mailer) for integration tests through the full ASGI stack.

    follow_redirects=False is essential: the auth flow is a chain of
    redirects and the tests assert on each Location header, which is
    invisible once the client follows the redirect.
    """
    db = _make_test_db(request.module.__name__.rsplit(".", 1)[-1])
    mailer = RecordingMailer()
    app.router.lifespan_context = _patch_lifespan(db, mailer)

    with TestClient(app, follow_redirects=False, raise_server_exceptions=True) as client:
        yield client, db, mailer

    db.close()


@pytest.fixture(autouse=True)
def _fresh_browser(request) -> None:
    """Every integration test starts with an empty cookie jar and mailbox."""
    if "web_client" in request.fixturenames:
        client, _, mailer = request.getfixturevalue("web_client")
        client.cookies.clear()
        mailer.reset()


@pytest.fixture
def sign_in(web_client):
    """Return sign_in(realm, email, callback_url="") -> callback response.

    Walks csrf -> signin/email -> emailed link exactly as a browser would,
    leaving the realm session cookie in the client's jar.
    """
    client, _, mailer = web_client

    def _sign_in(realm: Realm, email: str, callback_url: str = ""):
        csrf_token = client.get(f"{realm.api_prefix}/csrf").json()["csrfToken"]
        resp = client.post(
            f"{realm.api_prefix}/signin/email",
            data={"email": email, "csrfToken": csrf_token, "callbackUrl": callback_url},
        )
        assert resp.status_code == 302
        assert resp.headers["location"] == realm.verify_request_path
        assert mailer.sent, f"no sign-in email sent to {email}"
        return client.get(mailer.sent[-1].link)

    return _sign_in
