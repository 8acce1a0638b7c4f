"""
tests/test_two_factor_flow.py -- Integration tests for the second-factor gate over HTTP.

Scenario under test (admin first login):
  no TwoFactorSecret -> status returns QR + manual secret
  -> correct code flips verified and sets admin_2fa_verified (4h)
  -> protected pages open without further codes
  -> once the assertion lapses, a new code is required although the
     session cookie is still valid
"""

from __future__ import annotations

import pyotp

from auth.identity import build_providers
from auth.realms import ADMIN, SUPERVISOR
from auth.store import TwoFactorSecretStore


def _new_admin(db, email: str) -> int:
    return build_providers(db)[ADMIN.name].create(email).id


class TestFirstLogin:
    def test_first_login_scenario(self, web_client, sign_in) -> None:
        client, db, _ = web_client
        admin_id = _new_admin(db, "first@example.com")
        sign_in(ADMIN, "first@example.com")

        # Session but no second factor yet: every admin page goes to /admin/verify.
        assert client.get("/admin").headers["location"] == "/admin/verify"

        status = client.get("/api/admin-2fa-status")
        assert status.status_code == 200
        assert status.headers["cache-control"] == "no-store"
        body = status.json()
        assert body["state"] == "SESSION_NO_2FA_SETUP"
        assert body["isSetup"] is False
        assert body["qrCode"].startswith("data:image/png;base64,")
        secret = body["secret"]
        assert len(secret) == 32

        verify = client.post("/api/admin-2fa-verify", json={"code": pyotp.TOTP(secret).now()})
        assert verify.status_code == 200
        assert verify.json() == {"success": True}
        set_cookie = verify.headers["set-cookie"]
        assert set_cookie.startswith("admin_2fa_verified=true")
        assert "Max-Age=14400" in set_cookie
        assert TwoFactorSecretStore(db).get(ADMIN.name, admin_id).verified is True

        # Within the assertion's lifetime no further code is needed.
        assert client.get("/admin").status_code == 200
        assert client.get("/admin/verify").headers["location"] == "/admin"
        later = client.get("/api/admin-2fa-status").json()
        assert later == {"state": "SESSION_2FA_VERIFIED", "isSetup": True, "qrCode": None, "secret": None}

        # Assertion lapses (4h TTL) while the 30-day session is still valid.
        client.cookies.delete("admin_2fa_verified")
        assert client.get("/admin").headers["location"] == "/admin/verify"
        pending = client.get("/api/admin-2fa-status").json()
        assert pending["state"] == "SESSION_2FA_PENDING"
        assert pending["isSetup"] is True
        assert pending["qrCode"] is None

        again = client.post("/api/admin-2fa-verify", json={"code": pyotp.TOTP(secret).now()})
        assert again.status_code == 200
        assert client.get("/admin").status_code == 200

    def test_status_twice_keeps_the_same_secret(self, web_client, sign_in) -> None:
        client, db, _ = web_client
        _new_admin(db, "twice@example.com")
        sign_in(ADMIN, "twice@example.com")
        first = client.get("/api/admin-2fa-status").json()
        second = client.get("/api/admin-2fa-status").json()
        assert second["state"] == "SESSION_2FA_PENDING"
        assert second["secret"] == first["secret"]


class TestVerifyErrors:
    def test_wrong_code_is_400(self, web_client, sign_in) -> None:
        client, db, _ = web_client
        _new_admin(db, "wrong@example.com")
        sign_in(ADMIN, "wrong@example.com")
        secret = client.get("/api/admin-2fa-status").json()["secret"]
        stale = pyotp.TOTP(secret).at(0)

        resp = client.post("/api/admin-2fa-verify", json={"code": stale})
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "two_factor_invalid"
        assert "admin_2fa_verified" not in client.cookies

    def test_malformed_code_is_400(self, web_client, sign_in) -> None:
        client, db, _ = web_client
        _new_admin(db, "malformed@example.com")
        sign_in(ADMIN, "malformed@example.com")
        client.get("/api/admin-2fa-status")
        resp = client.post("/api/admin-2fa-verify", json={"code": "12345a"})
        assert resp.status_code == 400

    def test_status_without_session_is_401(self, web_client) -> None:
        client, _, _ = web_client
        resp = client.get("/api/supervisor-2fa-status")
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "unauthorized"

    def test_verify_without_session_is_401(self, web_client) -> None:
        client, _, _ = web_client
        resp = client.post("/api/admin-2fa-verify", json={"code": "123456"})
        assert resp.status_code == 401
        assert "admin_2fa_verified" not in client.cookies

    def test_end_user_realm_has_no_2fa_endpoints(self, web_client) -> None:
        client, _, _ = web_client
        assert client.get("/api/user-2fa-status").status_code == 404

    def test_assertion_is_per_realm(self, web_client, sign_in) -> None:
        client, db, _ = web_client
        build_providers(db)[SUPERVISOR.name].create("lead@example.com")
        sign_in(SUPERVISOR, "lead@example.com")
        secret = client.get("/api/supervisor-2fa-status").json()["secret"]
        client.post("/api/supervisor-2fa-verify", json={"code": pyotp.TOTP(secret).now()})
        assert client.get("/supervise").status_code == 200

        # A supervisor assertion never satisfies the admin realm.
        assert client.get("/admin").headers["location"] == "/admin/sign-in"

    def test_clear_endpoint_drops_assertion(self, web_client, sign_in) -> None:
        client, db, _ = web_client
        build_providers(db)[SUPERVISOR.name].create("clear@example.com")
        sign_in(SUPERVISOR, "clear@example.com")
        secret = client.get("/api/supervisor-2fa-status").json()["secret"]
        client.post("/api/supervisor-2fa-verify", json={"code": pyotp.TOTP(secret).now()})

        resp = client.delete("/api/supervisor-2fa-verify")
        assert resp.status_code == 200
        assert client.get("/supervise").headers["location"] == "/supervise/verify"


class TestVerifyPage:
    def test_page_shows_qr_then_accepts_code(self, web_client, sign_in) -> None:
        client, db, _ = web_client
        _new_admin(db, "page@example.com")
        sign_in(ADMIN, "page@example.com")

        page = client.get("/admin/verify")
        assert page.status_code == 200
        assert 'src="data:image/png;base64,' in page.text
        assert 'href="otpauth://totp/' in page.text
        secret = client.get("/api/admin-2fa-status").json()["secret"]
        assert secret in page.text

        bad = client.post("/admin/verify", data={"code": pyotp.TOTP(secret).at(0)})
        assert bad.status_code == 400
        assert "Invalid verification code." in bad.text

        good = client.post("/admin/verify", data={"code": pyotp.TOTP(secret).now()})
        assert good.status_code == 303
        assert good.headers["location"] == "/admin"
        assert client.get("/admin").status_code == 200

    def test_page_without_session_goes_to_sign_in(self, web_client) -> None:
        client, _, _ = web_client
        assert client.get("/supervise/verify").headers["location"] == "/supervise/sign-in"

    def test_deactivated_admin_is_sent_to_error_page(self, web_client, sign_in) -> None:
        client, db, _ = web_client
        admins = build_providers(db)[ADMIN.name]
        admins.create("revoked@example.com")
        sign_in(ADMIN, "revoked@example.com")
        admins.set_active("revoked@example.com", False)

        resp = client.get("/admin/verify")
        assert resp.headers["location"] == "/admin/error?error=AccessDenied"
        assert "admin_session" not in client.cookies


class TestClearAssertion:
    def test_clear_needs_no_session(self, web_client) -> None:
        client, _, _ = web_client
        client.cookies.set("admin_2fa_verified", "true")
        resp = client.delete("/api/admin-2fa-verify")
        assert resp.status_code == 200
        assert any(h.startswith("admin_2fa_verified=") and "Max-Age=0" in h for h in resp.headers.get_list("set-cookie"))
