"""
tests/test_store_outage.py -- Behaviour while the auth database is unreachable.

The shared database handle keeps its schema; each test swaps its engine for
one pointing at a SQLite file inside a directory that does not exist, so
every connect attempt fails at the driver level. monkeypatch restores the
working engine afterwards.

Covers:
  - AuthDatabase.begin() turns driver errors into TransientStoreError
  - JSON API: 503 + Retry-After + no-store, never a raw 500
  - browser flow: sign-in, callback and verify page redirect to
    ?error=ServiceUnavailable
  - health reports the database component as 'error'
"""

from __future__ import annotations

from datetime import timedelta

import pytest
from sqlalchemy import create_engine, text

from auth.errors import TransientStoreError
from auth.identity import build_providers
from auth.ledger import TokenLedger, ledger_identifier
from auth.realms import ADMIN, SUPERVISOR
from auth.store import AuthDatabase


@pytest.fixture
def take_store_down(monkeypatch, tmp_path):
    """Return take_down(db): point db at a database file that cannot be opened."""

    def _take_down(db: AuthDatabase) -> None:
        unreachable = create_engine(f"sqlite:///{tmp_path / 'missing' / 'auth.db'}")
        monkeypatch.setattr(db, "engine", unreachable)

    return _take_down


class TestAuthDatabase:
    def test_driver_error_becomes_transient(self, tmp_path, take_store_down) -> None:
        db = AuthDatabase(db_url=f"sqlite:///{tmp_path / 'auth.db'}")
        take_store_down(db)

        with pytest.raises(TransientStoreError):
            with db.begin() as conn:
                conn.execute(text("SELECT 1"))
        assert db.ping() is False

    def test_repositories_surface_transient_error(self, db: AuthDatabase, take_store_down) -> None:
        take_store_down(db)
        with pytest.raises(TransientStoreError):
            build_providers(db)[ADMIN.name].get_by_email("ops@example.com")
        with pytest.raises(TransientStoreError):
            TokenLedger(db).issue(ledger_identifier(ADMIN, "ops@example.com"), timedelta(hours=24))


class TestApiOutage:
    def test_two_factor_status_is_503_with_retry_after(self, web_client, sign_in, take_store_down) -> None:
        client, db, _ = web_client
        build_providers(db)[ADMIN.name].create("outage@example.com")
        sign_in(ADMIN, "outage@example.com")
        take_store_down(db)

        resp = client.get("/api/admin-2fa-status")
        assert resp.status_code == 503
        assert resp.headers["retry-after"] == "5"
        assert resp.headers["cache-control"] == "no-store"
        assert resp.json()["error"]["code"] == "service_unavailable"

    def test_two_factor_verify_is_503(self, web_client, sign_in, take_store_down) -> None:
        client, db, _ = web_client
        build_providers(db)[SUPERVISOR.name].create("outage@example.com")
        sign_in(SUPERVISOR, "outage@example.com")
        take_store_down(db)

        resp = client.post("/api/supervisor-2fa-verify", json={"code": "123456"})
        assert resp.status_code == 503
        assert resp.headers["retry-after"] == "5"
        assert "supervisor_2fa_verified" not in client.cookies

    def test_health_reports_database_error(self, web_client, take_store_down) -> None:
        client, db, _ = web_client
        take_store_down(db)
        resp = client.get("/api/health")
        assert resp.status_code == 200
        assert resp.json()["components"]["database"] == "error"


class TestBrowserOutage:
    def test_sign_in_request_redirects_to_service_unavailable(self, web_client, take_store_down) -> None:
        client, db, mailer = web_client
        csrf = client.get("/api/auth/admin/csrf").json()["csrfToken"]
        take_store_down(db)

        resp = client.post("/api/auth/admin/signin/email", data={"email": "ops@example.com", "csrfToken": csrf})
        assert resp.status_code == 302
        assert resp.headers["location"] == "/admin/error?error=ServiceUnavailable"
        assert mailer.sent == []

    def test_callback_redirects_to_service_unavailable(self, web_client, take_store_down) -> None:
        client, db, mailer = web_client
        build_providers(db)[ADMIN.name].create("link@example.com")
        csrf = client.get("/api/auth/admin/csrf").json()["csrfToken"]
        client.post("/api/auth/admin/signin/email", data={"email": "link@example.com", "csrfToken": csrf})
        link = mailer.sent[-1].link
        take_store_down(db)

        resp = client.get(link)
        assert resp.headers["location"] == "/admin/error?error=ServiceUnavailable"
        assert "admin_session" not in client.cookies

    def test_verify_page_redirects_to_service_unavailable(self, web_client, sign_in, take_store_down) -> None:
        client, db, _ = web_client
        build_providers(db)[ADMIN.name].create("page-outage@example.com")
        sign_in(ADMIN, "page-outage@example.com")
        take_store_down(db)

        page = client.get("/admin/verify")
        assert page.status_code == 302
        assert page.headers["location"] == "/admin/error?error=ServiceUnavailable"

        submit = client.post("/admin/verify", data={"code": "123456"})
        assert submit.status_code == 303
        assert submit.headers["location"] == "/admin/error?error=ServiceUnavailable"

    def test_service_unavailable_page_says_try_again(self, web_client) -> None:
        client, _, _ = web_client
        resp = client.get("/admin/error?error=ServiceUnavailable")
        assert resp.status_code == 200
        assert "temporarily unavailable" in resp.text
