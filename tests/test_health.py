"""
tests/test_health.py -- Integration tests for GET /api/health.

Covers:
  - 200 response with status, version, and components fields
  - components.database reports 'ok' against the test database
  - No authentication required, and the realm middleware never intercepts it
  - Untrusted Host headers are refused before any realm redirect
"""

from __future__ import annotations


def test_health_returns_200_with_components(web_client):
    """Health endpoint returns 200 with status, version, and components."""
    client, _, _ = web_client
    resp = client.get("/api/health")
    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "healthy"
    assert "version" in data
    assert data["components"]["app"] == "ok"
    assert data["components"]["database"] == "ok"


def test_health_no_auth_required(web_client):
    """Health endpoint is accessible without any session cookie in any realm."""
    client, _, _ = web_client
    resp = client.get("/api/health", headers={})
    assert resp.status_code == 200
    assert "location" not in resp.headers


def test_unknown_host_rejected(web_client):
    """TrustedHostMiddleware answers 400 for Host headers outside ALLOWED_HOSTS."""
    client, _, _ = web_client
    resp = client.get("/api/health", headers={"host": "evil.example"})
    assert resp.status_code == 400


def test_unknown_host_rejected_before_realm_redirect(web_client):
    """Host check runs ahead of the realm gate, so a protected page answers 400, not 302."""
    client, _, _ = web_client
    resp = client.get("/admin/deals", headers={"host": "evil.example"})
    assert resp.status_code == 400
    assert "location" not in resp.headers
