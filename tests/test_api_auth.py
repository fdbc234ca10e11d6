"""
tests/test_api_auth.py -- Integration tests for the /api/v1/auth endpoints.

Covers:
  - signup status codes (201 / 400 with rule / 409) and response shape
  - signin sets httpOnly token + refreshToken cookies, no-store header
  - /auth/me via cookie and via Bearer header; 401 codes without or with bad token
  - signout clears cookies
  - refresh via body and via cookie
  - email-check, forgot-password and reset-password over HTTP
  - OAuth callback with a mocked authlib client; failures map to 401 oauth_failed
  - passwords reach bcrypt unstripped; GET /auth/session never 401s
"""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest
from authlib.integrations.starlette_client import OAuthError

from api.main import app

STRONG = "Strong1!"


def _signup(client, email: str, name: str = "Api User", password: str = STRONG):
    return client.post("/api/v1/auth/signup", json={"name": name, "email": email, "password": password})


def _signin(client, email: str, password: str = STRONG):
    return client.post("/api/v1/auth/signin", json={"email": email, "password": password})


@pytest.fixture
def client(api_client):
    c, _, _ = api_client
    c.cookies.clear()
    yield c
    c.cookies.clear()


# ---------------------------------------------------------------------------
# Signup / signin
# ---------------------------------------------------------------------------


def test_signup_returns_201_without_secrets(client):
    resp = _signup(client, "signup-ok@x.com")
    assert resp.status_code == 201
    data = resp.json()
    assert data["email"] == "signup-ok@x.com"
    assert data["name"] == "Api User"
    assert "password_hash" not in data
    assert "password" not in data


def test_signup_weak_password_400_names_rule(client):
    resp = _signup(client, "signup-weak@x.com", password="Weak1")
    assert resp.status_code == 400
    assert resp.json()["error"]["code"] == "validation_error"


def test_signup_duplicate_email_409(client):
    _signup(client, "signup-dup@x.com")
    resp = _signup(client, "SIGNUP-DUP@x.com")
    assert resp.status_code == 409
    assert resp.json()["error"]["code"] == "email_taken"


def test_signup_missing_field_422(client):
    resp = client.post("/api/v1/auth/signup", json={"email": "x@x.com", "password": STRONG})
    assert resp.status_code == 422
    error = resp.json()["error"]
    assert error["code"] == "validation_error"
    assert STRONG not in (error["detail"] or "")


def test_signin_sets_cookies(client):
    _signup(client, "signin-ok@x.com")
    resp = _signin(client, "signin-ok@x.com")

    assert resp.status_code == 200
    assert resp.headers["cache-control"] == "no-store"
    data = resp.json()
    assert data["token"]
    assert data["refresh_token"]
    assert data["expires_in"] == 3600
    set_cookie = resp.headers.get_list("set-cookie")
    assert any(c.startswith("token=") and "HttpOnly" in c for c in set_cookie)
    assert any(c.startswith("refreshToken=") and "HttpOnly" in c for c in set_cookie)


def test_signin_unknown_user_404(client):
    resp = _signin(client, "ghost@x.com")
    assert resp.status_code == 404
    assert resp.json()["error"]["code"] == "user_not_found"
    assert "token" not in resp.cookies


def test_signin_wrong_password_400(client):
    _signup(client, "signin-bad@x.com")
    resp = _signin(client, "signin-bad@x.com", "Wrong1!!")
    assert resp.status_code == 400
    assert resp.json()["error"]["code"] == "wrong_password"


# ---------------------------------------------------------------------------
# Current user / signout / refresh
# ---------------------------------------------------------------------------


def test_me_with_cookie(client):
    _signup(client, "me-cookie@x.com")
    _signin(client, "me-cookie@x.com")
    resp = client.get("/api/v1/auth/me")
    assert resp.status_code == 200
    assert resp.json()["email"] == "me-cookie@x.com"


def test_me_with_bearer_header(client):
    _signup(client, "me-bearer@x.com")
    token = _signin(client, "me-bearer@x.com").json()["token"]
    client.cookies.clear()

    resp = client.get("/api/v1/auth/me", headers={"Authorization": f"Bearer {token}"})
    assert resp.status_code == 200
    assert resp.json()["email"] == "me-bearer@x.com"


def test_me_without_token_401(client):
    resp = client.get("/api/v1/auth/me")
    assert resp.status_code == 401
    assert resp.json()["error"]["code"] == "unauthorized"


def test_me_with_bad_token_401(client):
    resp = client.get("/api/v1/auth/me", headers={"Authorization": "Bearer nope"})
    assert resp.status_code == 401
    assert resp.json()["error"]["code"] == "token_invalid"


def test_signout_clears_cookies(client):
    _signup(client, "signout@x.com")
    _signin(client, "signout@x.com")

    resp = client.post("/api/v1/auth/signout")

    assert resp.status_code == 200
    assert resp.json()["success"] is True
    set_cookie = " ".join(resp.headers.get_list("set-cookie"))
    assert 'token=""' in set_cookie or "token=;" in set_cookie
    assert client.get("/api/v1/auth/me").status_code == 401


def test_refresh_with_body(client):
    _signup(client, "refresh-body@x.com")
    refresh_token = _signin(client, "refresh-body@x.com").json()["refresh_token"]
    client.cookies.clear()

    resp = client.post("/api/v1/auth/refresh", json={"refresh_token": refresh_token})
    assert resp.status_code == 200
    token = resp.json()["token"]
    assert client.get("/api/v1/auth/me", headers={"Authorization": f"Bearer {token}"}).status_code == 200


def test_refresh_with_cookie(client):
    _signup(client, "refresh-cookie@x.com")
    _signin(client, "refresh-cookie@x.com")
    resp = client.post("/api/v1/auth/refresh")
    assert resp.status_code == 200
    assert resp.json()["message"] == "Session refreshed"


def test_refresh_rejects_access_token(client):
    _signup(client, "refresh-wrong@x.com")
    access = _signin(client, "refresh-wrong@x.com").json()["token"]
    client.cookies.clear()
    resp = client.post("/api/v1/auth/refresh", json={"refresh_token": access})
    assert resp.status_code == 401
    assert resp.json()["error"]["code"] == "token_invalid"


def test_refresh_without_token_401(client):
    assert client.post("/api/v1/auth/refresh").status_code == 401


# ---------------------------------------------------------------------------
# Email check / password reset
# ---------------------------------------------------------------------------


def test_email_check(client):
    _signup(client, "exists@x.com")
    assert client.post("/api/v1/auth/email-check", json={"email": "EXISTS@x.com"}).json() == {"exists": True}
    assert client.post("/api/v1/auth/email-check", json={"email": "nope@x.com"}).json() == {"exists": False}


def test_forgot_password_unknown_email_400(client, api_client):
    _, _, notifier = api_client
    before = len(notifier.sent)
    resp = client.post("/api/v1/auth/forgot-password", json={"email": "ghost-reset@x.com"})
    assert resp.status_code == 400
    assert resp.json()["error"]["code"] == "email_not_found"
    assert len(notifier.sent) == before


def test_password_reset_round_trip(client, api_client):
    _, store, notifier = api_client
    _signup(client, "reset@x.com")

    resp = client.post("/api/v1/auth/forgot-password", json={"email": "reset@x.com"})
    assert resp.status_code == 200
    to_email, _, body = notifier.sent[-1]
    assert to_email == "reset@x.com"
    assert "http://testserver/resetpassword/" in body
    token = body.rsplit("/resetpassword/", 1)[1]

    weak = client.post(f"/api/v1/auth/reset-password/{token}", json={"password": "weak"})
    assert weak.status_code == 400
    assert weak.json()["error"]["code"] == "validation_error"

    ok = client.post(f"/api/v1/auth/reset-password/{token}", json={"password": "Newpass1!"})
    assert ok.status_code == 200
    assert store.get_by_email("reset@x.com").reset_token_hash is None

    reused = client.post(f"/api/v1/auth/reset-password/{token}", json={"password": "Another1!"})
    assert reused.status_code == 400
    assert reused.json()["error"]["code"] == "invalid_or_expired_token"

    assert _signin(client, "reset@x.com", "Newpass1!").status_code == 200
    assert _signin(client, "reset@x.com", STRONG).status_code == 400


# ---------------------------------------------------------------------------
# OAuth
# ---------------------------------------------------------------------------


@pytest.fixture
def google_enabled(monkeypatch):
    """Enable the google provider in settings and install a mocked authlib client."""
    settings = app.state.settings.model_copy(
        update={"google_client_id": "test-client", "google_client_secret": "test-secret"}
    )
    monkeypatch.setattr(app.state, "settings", settings)
    oauth_client = MagicMock()
    registry = MagicMock()
    registry.create_client.return_value = oauth_client
    monkeypatch.setattr(app.state, "oauth", registry)
    return oauth_client


def test_providers_empty_by_default(client):
    assert client.get("/api/v1/auth/providers").json() == []


def test_providers_lists_google(client, google_enabled):
    assert client.get("/api/v1/auth/providers").json() == [{"name": "google", "label": "Google"}]


def test_oauth_callback_creates_session(client, api_client, google_enabled):
    _, store, _ = api_client
    google_enabled.authorize_access_token = AsyncMock(
        return_value={
            "access_token": "ya29.test",
            "refresh_token": "1//test",
            "userinfo": {"sub": "g-api-1", "email": "g-api@gmail.com", "name": "Gee Api", "email_verified": True},
        }
    )

    resp = client.get("/api/v1/auth/oauth/google/callback?code=abc&state=xyz")

    assert resp.status_code == 200
    assert "token" in resp.json()
    user = store.get_by_external_id("google", "g-api-1")
    assert user.email == "g-api@gmail.com"
    assert user.external_access_token == "ya29.test"
    assert client.get("/api/v1/auth/me").json()["id"] == user.id


def test_oauth_callback_exchange_failure_401(client, google_enabled):
    google_enabled.authorize_access_token = AsyncMock(side_effect=OAuthError(error="access_denied"))
    resp = client.get("/api/v1/auth/oauth/google/callback?error=access_denied")
    assert resp.status_code == 401
    assert resp.json()["error"]["code"] == "oauth_failed"


def test_oauth_callback_missing_userinfo_401(client, google_enabled):
    google_enabled.authorize_access_token = AsyncMock(return_value={"access_token": "ya29.test"})
    resp = client.get("/api/v1/auth/oauth/google/callback?code=abc")
    assert resp.status_code == 401


def test_oauth_unknown_provider_401(client):
    assert client.get("/api/v1/auth/oauth/github/callback").status_code == 401
    assert client.get("/api/v1/auth/oauth/github").status_code == 401


# ---------------------------------------------------------------------------
# Password bytes survive the round trip
# ---------------------------------------------------------------------------


def test_signup_rejects_trailing_newline_password(client):
    resp = _signup(client, "newline@x.com", password="Strong1!\n")
    assert resp.status_code == 400
    assert resp.json()["error"]["code"] == "validation_error"


def test_signin_does_not_strip_password(client):
    _signup(client, "nostrip@x.com")
    assert _signin(client, "nostrip@x.com", " Strong1! ").status_code == 400
    assert _signin(client, " nostrip@x.com ").status_code == 200


# ---------------------------------------------------------------------------
# Optional session status
# ---------------------------------------------------------------------------


def test_session_status_signed_out(client):
    resp = client.get("/api/v1/auth/session")
    assert resp.status_code == 200
    assert resp.json() == {"authenticated": False, "user": None}


def test_session_status_bad_token_reads_signed_out(client):
    resp = client.get("/api/v1/auth/session", headers={"Authorization": "Bearer nope"})
    assert resp.status_code == 200
    assert resp.json()["authenticated"] is False


def test_session_status_signed_in(client):
    _signup(client, "status@x.com")
    _signin(client, "status@x.com")
    data = client.get("/api/v1/auth/session").json()
    assert data["authenticated"] is True
    assert data["user"]["email"] == "status@x.com"
