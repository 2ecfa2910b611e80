"""
tests/test_api_auth.py -- Integration tests for the /api/v1/auth routes.

These tests exercise the full stack: FastAPI routing -> request model
validation -> SessionManager -> UserStore -> exception handler -> cookies.

Coverage:
  - register: 201, duplicate 409, validation 422
  - login: cookies set with the right flags, body has user + tokens, no hash
  - login failures: unknown account and wrong password look identical
  - refresh: cookie source, body fallback, reuse -> 401 token_reused + cookies cleared
  - logout: requires auth, clears cookies, kills the refresh token
  - change-password: new password logs in, old does not
  - me: cookie and Bearer header
  - error mapping: 503 + Retry-After, 500 catch-all, unknown_user clears cookies,
    router 404/405 in the error envelope

Fixture used (from conftest.py):
  - api_client: TestClient with a fresh store holding "alice" / ALICE_PASSWORD.
"""

from __future__ import annotations

from fastapi.testclient import TestClient
from sqlalchemy.exc import OperationalError
from starlette.responses import Response

from api.cookies import clear_session_cookies, set_session_cookies
from auth.models import TokenPair
from auth.tokens import get_token_codec
from core.config import get_settings

ALICE_PASSWORD = "p@ss1word"


def _set_cookie_headers(resp) -> list[str]:
    # httpx responses expose get_list(); Starlette responses expose getlist().
    headers = resp.headers
    if hasattr(headers, "get_list"):
        return headers.get_list("set-cookie")
    return headers.getlist("set-cookie")


def _login(client: TestClient, **identity) -> dict:
    identity = identity or {"username": "alice"}
    resp = client.post("/api/v1/auth/login", json={**identity, "password": ALICE_PASSWORD})
    assert resp.status_code == 200, resp.text
    return resp.json()


class TestRegister:
    def test_register_created(self, api_client: TestClient) -> None:
        resp = api_client.post(
            "/api/v1/auth/register",
            json={"username": "Bob", "email": "Bob@Example.com", "password": "hunter2hunter2", "full_name": "Bob"},
        )
        assert resp.status_code == 201
        data = resp.json()
        assert data["username"] == "bob"
        assert data["email"] == "bob@example.com"
        assert "hashed_password" not in data
        assert "refresh_token" not in data

    def test_register_duplicate(self, api_client: TestClient) -> None:
        resp = api_client.post(
            "/api/v1/auth/register",
            json={"username": "alice", "email": "new@example.com", "password": "hunter2hunter2"},
        )
        assert resp.status_code == 409
        assert resp.json()["error"]["code"] == "user_exists"

    def test_register_validation(self, api_client: TestClient) -> None:
        resp = api_client.post(
            "/api/v1/auth/register",
            json={"username": "x", "email": "not-an-email", "password": "Zq9x"},
        )
        assert resp.status_code == 422
        body = resp.json()
        assert body["error"]["code"] == "validation_error"
        assert "Zq9x" not in resp.text

    def test_register_username_shaped_like_email(self, api_client: TestClient) -> None:
        resp = api_client.post(
            "/api/v1/auth/register",
            json={"username": "alice@example.com", "email": "new@example.com", "password": "hunter2hunter2"},
        )
        assert resp.status_code == 422


class TestLogin:
    def test_login_sets_cookies_and_returns_tokens(self, api_client: TestClient) -> None:
        resp = api_client.post("/api/v1/auth/login", json={"username": "alice", "password": ALICE_PASSWORD})
        assert resp.status_code == 200
        assert resp.headers["Cache-Control"] == "no-store"

        data = resp.json()
        assert data["user"]["username"] == "alice"
        assert "hashed_password" not in data["user"]
        assert data["tokens"]["token_type"] == "bearer"
        assert data["tokens"]["expires_in"] == get_settings().access_token_expire_seconds

        cookies = _set_cookie_headers(resp)
        access = next(c for c in cookies if c.startswith("accessToken="))
        refresh = next(c for c in cookies if c.startswith("refreshToken="))
        for cookie in (access, refresh):
            assert "httponly" in cookie.lower()
            assert "samesite=lax" in cookie.lower()
        assert data["tokens"]["access_token"] in access
        assert data["tokens"]["refresh_token"] in refresh

    def test_login_by_email(self, api_client: TestClient) -> None:
        data = _login(api_client, email="ALICE@example.com")
        assert data["user"]["email"] == "alice@example.com"

    def test_login_requires_identifier(self, api_client: TestClient) -> None:
        resp = api_client.post("/api/v1/auth/login", json={"password": ALICE_PASSWORD})
        assert resp.status_code == 422

    def test_unknown_user_and_wrong_password_are_indistinguishable(self, api_client: TestClient) -> None:
        unknown = api_client.post("/api/v1/auth/login", json={"username": "mallory", "password": ALICE_PASSWORD})
        wrong = api_client.post("/api/v1/auth/login", json={"username": "alice", "password": "nope"})
        assert unknown.status_code == wrong.status_code == 401
        assert unknown.json() == wrong.json()
        assert unknown.json()["error"]["code"] == "bad_credentials"


class TestRefresh:
    def test_refresh_from_cookie(self, api_client: TestClient) -> None:
        first = _login(api_client)["tokens"]
        resp = api_client.post("/api/v1/auth/refresh")
        assert resp.status_code == 200
        assert resp.headers["Cache-Control"] == "no-store"
        assert resp.json()["refresh_token"] != first["refresh_token"]
        assert api_client.cookies.get("refreshToken") == resp.json()["refresh_token"]

    def test_refresh_from_body(self, api_client: TestClient) -> None:
        first = _login(api_client)["tokens"]
        api_client.cookies.clear()
        resp = api_client.post("/api/v1/auth/refresh", json={"refresh_token": first["refresh_token"]})
        assert resp.status_code == 200

    def test_reuse_rejected_and_cookies_cleared(self, api_client: TestClient) -> None:
        r1 = _login(api_client)["tokens"]["refresh_token"]
        assert api_client.post("/api/v1/auth/refresh").status_code == 200
        api_client.cookies.clear()

        resp = api_client.post("/api/v1/auth/refresh", json={"refresh_token": r1})
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "token_reused"
        cleared = _set_cookie_headers(resp)
        assert any(c.startswith("refreshToken=") and "max-age=0" in c.lower() for c in cleared)
        assert any(c.startswith("accessToken=") and "max-age=0" in c.lower() for c in cleared)

    def test_missing_token(self, api_client: TestClient) -> None:
        resp = api_client.post("/api/v1/auth/refresh")
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "missing_token"

    def test_invalid_token(self, api_client: TestClient) -> None:
        resp = api_client.post("/api/v1/auth/refresh", json={"refresh_token": "garbage"})
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "invalid_token"


class TestLogout:
    def test_logout_requires_auth(self, api_client: TestClient) -> None:
        resp = api_client.post("/api/v1/auth/logout")
        assert resp.status_code == 401

    def test_logout_clears_session(self, api_client: TestClient) -> None:
        tokens = _login(api_client)["tokens"]
        resp = api_client.post("/api/v1/auth/logout")
        assert resp.status_code == 200
        cleared = _set_cookie_headers(resp)
        assert any(c.startswith("accessToken=") for c in cleared)
        assert any(c.startswith("refreshToken=") for c in cleared)

        api_client.cookies.clear()
        resp = api_client.post("/api/v1/auth/refresh", json={"refresh_token": tokens["refresh_token"]})
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "token_reused"

    def test_logout_twice(self, api_client: TestClient) -> None:
        access = _login(api_client)["tokens"]["access_token"]
        headers = {"Authorization": f"Bearer {access}"}
        api_client.cookies.clear()
        assert api_client.post("/api/v1/auth/logout", headers=headers).status_code == 200
        assert api_client.post("/api/v1/auth/logout", headers=headers).status_code == 200


class TestChangePassword:
    def test_change_password(self, api_client: TestClient) -> None:
        _login(api_client)
        resp = api_client.post(
            "/api/v1/auth/change-password",
            json={"old_password": ALICE_PASSWORD, "new_password": "brand-new-pass"},
        )
        assert resp.status_code == 200

        api_client.cookies.clear()
        old = api_client.post("/api/v1/auth/login", json={"username": "alice", "password": ALICE_PASSWORD})
        assert old.status_code == 401
        new = api_client.post("/api/v1/auth/login", json={"username": "alice", "password": "brand-new-pass"})
        assert new.status_code == 200

    def test_wrong_old_password(self, api_client: TestClient) -> None:
        _login(api_client)
        resp = api_client.post(
            "/api/v1/auth/change-password",
            json={"old_password": "wrong", "new_password": "brand-new-pass"},
        )
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "bad_credentials"

    def test_requires_auth(self, api_client: TestClient) -> None:
        resp = api_client.post(
            "/api/v1/auth/change-password",
            json={"old_password": ALICE_PASSWORD, "new_password": "brand-new-pass"},
        )
        assert resp.status_code == 401


class TestMe:
    def test_me_with_cookie(self, api_client: TestClient) -> None:
        _login(api_client)
        resp = api_client.get("/api/v1/auth/me")
        assert resp.status_code == 200
        assert resp.json()["username"] == "alice"

    def test_me_with_bearer(self, api_client: TestClient) -> None:
        access = _login(api_client)["tokens"]["access_token"]
        api_client.cookies.clear()
        resp = api_client.get("/api/v1/auth/me", headers={"Authorization": f"Bearer {access}"})
        assert resp.status_code == 200

    def test_refresh_token_is_not_an_access_token(self, api_client: TestClient) -> None:
        refresh = _login(api_client)["tokens"]["refresh_token"]
        api_client.cookies.clear()
        resp = api_client.get("/api/v1/auth/me", headers={"Authorization": f"Bearer {refresh}"})
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "invalid_token"


class TestCookieFlags:
    def test_secure_flag_follows_settings(self, monkeypatch) -> None:
        monkeypatch.setattr(get_settings(), "secure_cookies", True)
        resp = Response()
        set_session_cookies(resp, TokenPair(access_token="a", refresh_token="r"))
        cookies = _set_cookie_headers(resp)
        assert len(cookies) == 2
        assert all("secure" in c.lower() and "httponly" in c.lower() for c in cookies)

    def test_clear_expires_immediately(self) -> None:
        resp = Response()
        clear_session_cookies(resp)
        cookies = _set_cookie_headers(resp)
        assert {c.split("=", 1)[0] for c in cookies} == {"accessToken", "refreshToken"}
        assert all("max-age=0" in c.lower() for c in cookies)


class _BrokenEngine:
    def connect(self):
        raise OperationalError("SELECT 1", {}, Exception("database is locked"))

    def dispose(self) -> None:
        pass


class TestErrorMapping:
    def test_store_unavailable_is_503_with_retry_after(self, api_client: TestClient, monkeypatch) -> None:
        monkeypatch.setattr(api_client.app.state.user_store, "engine", _BrokenEngine())
        resp = api_client.post("/api/v1/auth/login", json={"username": "alice", "password": ALICE_PASSWORD})
        assert resp.status_code == 503
        assert resp.headers["Retry-After"] == "1"
        assert resp.json()["error"]["code"] == "store_unavailable"
        assert "locked" not in resp.text

    def test_unknown_user_clears_cookies(self, api_client: TestClient) -> None:
        orphan = get_token_codec().issue_refresh_token(9999)
        resp = api_client.post("/api/v1/auth/refresh", json={"refresh_token": orphan})
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "unknown_user"
        cleared = _set_cookie_headers(resp)
        assert any(c.startswith("refreshToken=") and "max-age=0" in c.lower() for c in cleared)
        assert any(c.startswith("accessToken=") and "max-age=0" in c.lower() for c in cleared)

    def test_unexpected_exception_is_500_without_details(self, api_client: TestClient, monkeypatch) -> None:
        def boom(*args, **kwargs):
            raise RuntimeError("secret internals")

        monkeypatch.setattr(api_client.app.state.sessions, "login", boom)
        client = TestClient(api_client.app, raise_server_exceptions=False)
        resp = client.post("/api/v1/auth/login", json={"username": "alice", "password": ALICE_PASSWORD})
        assert resp.status_code == 500
        assert resp.json()["error"]["code"] == "internal_error"
        assert "secret internals" not in resp.text

    def test_unknown_route_uses_error_envelope(self, api_client: TestClient) -> None:
        resp = api_client.get("/api/v1/nope")
        assert resp.status_code == 404
        assert resp.json()["error"]["code"] == "http_404"

    def test_wrong_method_uses_error_envelope(self, api_client: TestClient) -> None:
        resp = api_client.get("/api/v1/auth/login")
        assert resp.status_code == 405
        assert resp.json()["error"]["code"] == "http_405"
        assert "POST" in resp.headers["Allow"]
