"""
tests/test_health.py -- Integration tests for GET /api/v1/health.

Covers:
  - 200 response with status, version, and components fields
  - components.database reports 'ok', or 'error' when the engine fails
  - No authentication required
"""

from __future__ import annotations

from unittest.mock import MagicMock

from api.main import __version__


def test_health_returns_200_with_components(api_client):
    """Health endpoint returns 200 with status, version, and components."""
    client, _, _ = api_client
    resp = client.get("/api/v1/health")
    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "healthy"
    assert data["version"] == __version__
    assert data["components"] == {"app": "ok", "database": "ok"}


def test_health_reports_database_error(api_client, monkeypatch):
    """An unreachable database is reported, not raised."""
    client, store, _ = api_client
    broken = MagicMock()
    broken.connect.side_effect = RuntimeError("database is locked")
    monkeypatch.setattr(store, "engine", broken)

    resp = client.get("/api/v1/health")

    assert resp.status_code == 200
    assert resp.json()["components"]["database"] == "error"


def test_health_no_auth_required(api_client):
    """Health endpoint is accessible without cookies or auth headers."""
    client, _, _ = api_client
    client.cookies.clear()
    resp = client.get("/api/v1/health", headers={})
    assert resp.status_code == 200
