"""
tests/test_health.py -- Integration tests for GET /api/v1/health.

Covers:
  - 200 response with status and version
  - No authentication required
  - Security headers on success and error responses
  - Requests for hosts outside the allow-list are rejected
"""

from __future__ import annotations

import pytest

from api.main import API_VERSION


def test_health_returns_200_with_version(api_client):
    """Health endpoint returns 200 with status and version."""
    resp = api_client.client.get("/api/v1/health")
    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "ok"
    assert data["version"] == API_VERSION


def test_health_no_auth_required(api_client):
    """Health endpoint is accessible without any authentication headers."""
    resp = api_client.client.get("/api/v1/health", headers={})
    assert resp.status_code == 200


def test_security_headers_present(api_client):
    """Every response carries nosniff, frame DENY and HSTS."""
    resp = api_client.client.get("/api/v1/health")
    assert resp.headers["X-Content-Type-Options"] == "nosniff"
    assert resp.headers["X-Frame-Options"] == "DENY"
    assert resp.headers["Strict-Transport-Security"].startswith("max-age=")


def test_security_headers_on_error_responses(api_client):
    """Error responses get the same headers as successful ones."""
    resp = api_client.client.put("/api/v1/identity/users/me", json={})
    assert resp.status_code == 401
    assert resp.headers["X-Frame-Options"] == "DENY"


@pytest.mark.parametrize("host", ["testserver", "evil.example"])
def test_unlisted_host_rejected(api_client, host):
    """Only the configured hosts are served; TestClient's default host is not among them."""
    resp = api_client.client.get("/api/v1/health", headers={"host": host})
    assert resp.status_code == 400
