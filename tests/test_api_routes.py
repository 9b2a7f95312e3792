"""
tests/test_api_routes.py -- Integration tests for the /api/v1/auth routes.

These tests exercise the full stack: FastAPI routing -> AuthSessionManager ->
UserStore/SessionStore -> response model serialization -> cookies and the
AuthError exception handler. Unit testing individual route functions would miss
middleware, dependency injection, and error mapping -- integration tests are
the right tool here.

Coverage:
  - register: 201 with token pair, auth cookies and Cache-Control: no-store; 409 on duplicate
  - login: 200; wrong password and unknown email give byte-identical 401 bodies
  - me: via Bearer header and via cookie; 401 without a token
  - refresh: via body and via cookie; replay -> 401; access token presented -> 401
  - logout: retires the session so a later refresh is 401; always 200
  - validation: malformed email -> 422
  - persistence failure during rotation -> generic 500

Fixtures used (from conftest.py):
  - api_client: function-scoped TestClient with its own shared-memory database.
"""

from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from auth.tokens import ACCESS_COOKIE, REFRESH_COOKIE

CREDS = {"email": "alice@example.com", "password": "correct horse"}
UNAUTHORIZED_BODY = {"error": {"code": "unauthorized", "message": "Authentication required.", "detail": None}}


def _register(client: TestClient, creds: dict = CREDS) -> dict:
    resp = client.post("/api/v1/auth/register", json=creds)
    assert resp.status_code == 201, resp.text
    return resp.json()


class TestRegister:
    def test_register_returns_pair(self, api_client: TestClient) -> None:
        resp = api_client.post("/api/v1/auth/register", json=CREDS)
        assert resp.status_code == 201, resp.text
        data = resp.json()
        assert data["access_token"]
        assert data["refresh_token"]
        assert data["access_token"] != data["refresh_token"]
        assert data["token_type"] == "bearer"
        assert data["access_token_expires_at"] < data["refresh_token_expires_at"]

    def test_register_sets_cookies_and_no_store(self, api_client: TestClient) -> None:
        resp = api_client.post("/api/v1/auth/register", json=CREDS)
        data = resp.json()
        assert resp.cookies.get(ACCESS_COOKIE) == data["access_token"]
        assert resp.cookies.get(REFRESH_COOKIE) == data["refresh_token"]
        assert resp.headers["cache-control"] == "no-store"

    def test_cookies_are_http_only(self, api_client: TestClient) -> None:
        resp = api_client.post("/api/v1/auth/register", json=CREDS)
        set_cookie = resp.headers.get_list("set-cookie")
        assert len(set_cookie) == 2
        assert all("httponly" in header.lower() for header in set_cookie)
        refresh_header = next(h for h in set_cookie if h.startswith(f"{REFRESH_COOKIE}="))
        assert "Path=/api/v1/auth" in refresh_header

    def test_duplicate_email_conflict(self, api_client: TestClient) -> None:
        _register(api_client)
        resp = api_client.post("/api/v1/auth/register", json={**CREDS, "email": "ALICE@example.com"})
        assert resp.status_code == 409
        assert resp.json()["error"]["code"] == "conflict"

    @pytest.mark.parametrize(
        "body",
        [
            {"email": "not-an-email", "password": "x"},
            {"email": "alice@example.com", "password": ""},
            {"email": "alice@example.com"},
        ],
    )
    def test_invalid_body_is_422(self, api_client: TestClient, body: dict) -> None:
        resp = api_client.post("/api/v1/auth/register", json=body)
        assert resp.status_code == 422
        assert resp.json()["error"]["code"] == "validation_error"


class TestLogin:
    def test_login_valid(self, api_client: TestClient) -> None:
        _register(api_client)
        api_client.cookies.clear()
        resp = api_client.post("/api/v1/auth/login", json=CREDS)
        assert resp.status_code == 200, resp.text
        assert resp.json()["access_token"]
        assert resp.cookies.get(ACCESS_COOKIE)
        assert resp.headers["cache-control"] == "no-store"

    def test_failures_are_indistinguishable(self, api_client: TestClient) -> None:
        """Wrong password and unknown email must return the same status, body and headers."""
        _register(api_client)
        api_client.cookies.clear()
        wrong_password = api_client.post("/api/v1/auth/login", json={**CREDS, "password": "wrong"})
        unknown_email = api_client.post("/api/v1/auth/login", json={**CREDS, "email": "bob@example.com"})

        assert wrong_password.status_code == unknown_email.status_code == 401
        assert wrong_password.json() == unknown_email.json() == UNAUTHORIZED_BODY
        assert wrong_password.headers["www-authenticate"] == unknown_email.headers["www-authenticate"]


class TestMe:
    def test_me_with_bearer(self, api_client: TestClient) -> None:
        data = _register(api_client)
        api_client.cookies.clear()
        resp = api_client.get("/api/v1/auth/me", headers={"Authorization": f"Bearer {data['access_token']}"})
        assert resp.status_code == 200, resp.text
        assert resp.json()["email"] == CREDS["email"]
        assert resp.json()["user_id"]

    def test_me_with_cookie(self, api_client: TestClient) -> None:
        _register(api_client)
        resp = api_client.get("/api/v1/auth/me")
        assert resp.status_code == 200, resp.text
        assert resp.json()["email"] == CREDS["email"]

    def test_me_unauthenticated(self, api_client: TestClient) -> None:
        resp = api_client.get("/api/v1/auth/me")
        assert resp.status_code == 401
        assert resp.json() == UNAUTHORIZED_BODY
        assert resp.headers["www-authenticate"] == "Bearer"

    def test_me_rejects_refresh_token(self, api_client: TestClient) -> None:
        data = _register(api_client)
        api_client.cookies.clear()
        resp = api_client.get("/api/v1/auth/me", headers={"Authorization": f"Bearer {data['refresh_token']}"})
        assert resp.status_code == 401


class TestRefresh:
    def test_refresh_with_body(self, api_client: TestClient) -> None:
        data = _register(api_client)
        api_client.cookies.clear()
        resp = api_client.post("/api/v1/auth/refresh", json={"refresh_token": data["refresh_token"]})
        assert resp.status_code == 200, resp.text
        rotated = resp.json()
        assert rotated["refresh_token"] != data["refresh_token"]
        assert resp.cookies.get(REFRESH_COOKIE) == rotated["refresh_token"]
        assert resp.headers["cache-control"] == "no-store"

    def test_refresh_with_cookie(self, api_client: TestClient) -> None:
        data = _register(api_client)
        resp = api_client.post("/api/v1/auth/refresh")
        assert resp.status_code == 200, resp.text
        assert resp.json()["refresh_token"] != data["refresh_token"]

    def test_replay_is_unauthorized(self, api_client: TestClient) -> None:
        data = _register(api_client)
        api_client.cookies.clear()
        first = api_client.post("/api/v1/auth/refresh", json={"refresh_token": data["refresh_token"]})
        assert first.status_code == 200
        replay = api_client.post("/api/v1/auth/refresh", json={"refresh_token": data["refresh_token"]})
        assert replay.status_code == 401
        assert replay.json() == UNAUTHORIZED_BODY

    def test_rotated_token_still_works(self, api_client: TestClient) -> None:
        data = _register(api_client)
        api_client.cookies.clear()
        first = api_client.post("/api/v1/auth/refresh", json={"refresh_token": data["refresh_token"]}).json()
        second = api_client.post("/api/v1/auth/refresh", json={"refresh_token": first["refresh_token"]})
        assert second.status_code == 200

    def test_access_token_is_not_a_refresh_token(self, api_client: TestClient) -> None:
        data = _register(api_client)
        api_client.cookies.clear()
        resp = api_client.post("/api/v1/auth/refresh", json={"refresh_token": data["access_token"]})
        assert resp.status_code == 401

    def test_no_token_at_all(self, api_client: TestClient) -> None:
        resp = api_client.post("/api/v1/auth/refresh")
        assert resp.status_code == 401
        assert resp.json() == UNAUTHORIZED_BODY

    def test_persistence_failure_is_generic_500(self, api_client: TestClient, monkeypatch) -> None:
        data = _register(api_client)
        api_client.cookies.clear()
        sessions = api_client.app.state.session_manager.sessions

        def broken(*args, **kwargs):
            raise RuntimeError("disk full")

        monkeypatch.setattr(sessions, "create", broken)
        resp = api_client.post("/api/v1/auth/refresh", json={"refresh_token": data["refresh_token"]})
        assert resp.status_code == 500
        assert resp.json()["error"]["code"] == "internal_error"
        assert "disk full" not in resp.text

        monkeypatch.undo()
        retry = api_client.post("/api/v1/auth/refresh", json={"refresh_token": data["refresh_token"]})
        assert retry.status_code == 401


class TestLogout:
    def test_logout_then_refresh_fails(self, api_client: TestClient) -> None:
        data = _register(api_client)
        resp = api_client.post("/api/v1/auth/logout")
        assert resp.status_code == 200
        assert resp.json() == {"message": "Logged out."}

        api_client.cookies.clear()
        again = api_client.post("/api/v1/auth/refresh", json={"refresh_token": data["refresh_token"]})
        assert again.status_code == 401

    def test_logout_clears_cookies(self, api_client: TestClient) -> None:
        _register(api_client)
        api_client.post("/api/v1/auth/logout")
        assert api_client.cookies.get(ACCESS_COOKIE) is None
        assert api_client.get("/api/v1/auth/me").status_code == 401

    def test_logout_without_session_is_ok(self, api_client: TestClient) -> None:
        resp = api_client.post("/api/v1/auth/logout")
        assert resp.status_code == 200
