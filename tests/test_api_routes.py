"""
tests/test_api_routes.py -- Integration tests for the /api/v1/auth routes.

These tests exercise the full stack: FastAPI routing -> dependency injection
-> AuthService -> AccountStore -> response model serialization.

Coverage:
  - Auth failures: 401 on /me, /logout, /logout/all without a bearer token
  - Signup -> verify-otp -> me happy path, with OTPs read from the recording sink
  - Login: identical 401 envelope for wrong password and unknown email
  - Refresh / logout / logout-all status codes and revocation
  - Password forgot/reset
  - Cache-Control: no-store on token-bearing responses
  - Identity provider: providers list, unconfigured redirect, mocked callback

Fixtures used (from conftest.py):
  - api_client: (client, token, uid) -- TestClient with an admin access token.
    The admin is "testadmin" / admin@example.com / testpass123.
"""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

from fastapi.testclient import TestClient

PASSWORD = "route-test-pass"


def _sink(client: TestClient):
    return client.app.state.auth_service.sink


def _auth(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


def _signup_and_verify(client: TestClient, username: str, email: str) -> dict:
    """Create and verify an account over HTTP; return the verify-otp JSON body."""
    resp = client.post("/api/v1/auth/signup", json={"username": username, "email": email, "password": PASSWORD})
    assert resp.status_code == 201, resp.text
    code = _sink(client).last_code(email)
    resp = client.post("/api/v1/auth/verify-otp", json={"email": email, "otp": code})
    assert resp.status_code == 200, resp.text
    return resp.json()


class TestApiAuthFailure:
    """Unauthenticated requests to protected routes must return 401 with the error envelope."""

    def test_get_me_unauthenticated(self, api_client: tuple[TestClient, str, int]) -> None:
        client, _token, _uid = api_client
        resp = client.get("/api/v1/auth/me")
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "unauthorized"
        assert resp.headers["WWW-Authenticate"] == "Bearer"

    def test_get_me_with_garbage_token(self, api_client: tuple[TestClient, str, int]) -> None:
        client, _token, _uid = api_client
        resp = client.get("/api/v1/auth/me", headers=_auth("garbage"))
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "invalid_token"

    def test_logout_unauthenticated(self, api_client: tuple[TestClient, str, int]) -> None:
        client, _token, _uid = api_client
        resp = client.post("/api/v1/auth/logout", json={"refresh_token": "x"})
        assert resp.status_code == 401

    def test_logout_all_unauthenticated(self, api_client: tuple[TestClient, str, int]) -> None:
        client, _token, _uid = api_client
        assert client.post("/api/v1/auth/logout/all").status_code == 401


class TestSignupRoutes:
    def test_signup_verify_me(self, api_client: tuple[TestClient, str, int]) -> None:
        client, _token, _uid = api_client
        resp = client.post(
            "/api/v1/auth/signup",
            json={"username": "henry", "email": "henry@example.com", "password": PASSWORD},
        )
        assert resp.status_code == 201, resp.text
        body = resp.json()
        assert body["account"]["is_verified"] is False
        assert body["account"]["role"] == "user"
        assert "tokens" not in body

        code = _sink(client).last_code("henry@example.com")
        resp = client.post("/api/v1/auth/verify-otp", json={"email": "henry@example.com", "otp": code})
        assert resp.status_code == 200, resp.text
        assert resp.headers["Cache-Control"] == "no-store"
        session = resp.json()
        assert session["tokens"]["token_type"] == "bearer"
        assert session["account"]["is_verified"] is True

        resp = client.get("/api/v1/auth/me", headers=_auth(session["tokens"]["access_token"]))
        assert resp.status_code == 200
        assert resp.json()["email"] == "henry@example.com"
        assert "password_hash" not in resp.json()

    def test_signup_duplicate_returns_409(self, api_client: tuple[TestClient, str, int]) -> None:
        client, _token, _uid = api_client
        resp = client.post(
            "/api/v1/auth/signup",
            json={"username": "dup-admin", "email": "admin@example.com", "password": PASSWORD},
        )
        assert resp.status_code == 409
        assert resp.json()["error"]["code"] == "conflict"

    def test_signup_invalid_body_returns_422(self, api_client: tuple[TestClient, str, int]) -> None:
        client, _token, _uid = api_client
        resp = client.post(
            "/api/v1/auth/signup",
            json={"username": "ivan", "email": "not-an-email", "password": "short"},
        )
        assert resp.status_code == 422
        assert resp.json()["error"]["code"] == "validation_error"

    def test_signup_multibyte_password_over_bcrypt_limit_returns_422(self, api_client: tuple[TestClient, str, int]) -> None:
        client, _token, _uid = api_client
        resp = client.post(
            "/api/v1/auth/signup",
            json={"username": "ines", "email": "ines@example.com", "password": "\u00e9" * 40},
        )
        assert resp.status_code == 422
        assert resp.json()["error"]["code"] == "validation_error"

    def test_verify_wrong_code_returns_400(self, api_client: tuple[TestClient, str, int]) -> None:
        client, _token, _uid = api_client
        client.post(
            "/api/v1/auth/signup",
            json={"username": "judy", "email": "judy@example.com", "password": PASSWORD},
        )
        code = _sink(client).last_code("judy@example.com")
        wrong = "111111" if code != "111111" else "222222"
        resp = client.post("/api/v1/auth/verify-otp", json={"email": "judy@example.com", "otp": wrong})
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "invalid_otp"

    def test_resend_otp_always_200(self, api_client: tuple[TestClient, str, int]) -> None:
        client, _token, _uid = api_client
        known = client.post("/api/v1/auth/resend-otp", json={"email": "judy@example.com"})
        unknown = client.post("/api/v1/auth/resend-otp", json={"email": "nobody@example.com"})
        assert known.status_code == unknown.status_code == 200
        assert known.json() == unknown.json()


class TestLoginRoutes:
    def test_login_valid_credentials(self, api_client: tuple[TestClient, str, int]) -> None:
        client, _token, uid = api_client
        resp = client.post("/api/v1/auth/login", json={"email": "admin@example.com", "password": "testpass123"})
        assert resp.status_code == 200, resp.text
        assert resp.headers["Cache-Control"] == "no-store"
        data = resp.json()
        assert data["account"]["id"] == uid
        assert data["account"]["role"] == "admin"
        assert data["tokens"]["expires_in"] > 0

    def test_wrong_password_and_unknown_email_identical(self, api_client: tuple[TestClient, str, int]) -> None:
        client, _token, _uid = api_client
        wrong = client.post("/api/v1/auth/login", json={"email": "admin@example.com", "password": "wrong-pass"})
        unknown = client.post("/api/v1/auth/login", json={"email": "ghost@example.com", "password": "wrong-pass"})
        assert wrong.status_code == unknown.status_code == 401
        assert wrong.json() == unknown.json()

    def test_unverified_login_returns_403(self, api_client: tuple[TestClient, str, int]) -> None:
        client, _token, _uid = api_client
        client.post(
            "/api/v1/auth/signup",
            json={"username": "kate", "email": "kate@example.com", "password": PASSWORD},
        )
        resp = client.post("/api/v1/auth/login", json={"email": "kate@example.com", "password": PASSWORD})
        assert resp.status_code == 403
        assert resp.json()["error"]["code"] == "email_not_verified"


class TestSessionRoutes:
    def test_refresh_then_logout_then_refresh_revoked(self, api_client: tuple[TestClient, str, int]) -> None:
        client, _token, _uid = api_client
        tokens = _signup_and_verify(client, "liam", "liam@example.com")["tokens"]

        resp = client.post("/api/v1/auth/refresh", json={"refresh_token": tokens["refresh_token"]})
        assert resp.status_code == 200, resp.text
        assert resp.headers["Cache-Control"] == "no-store"
        assert resp.json()["tokens"]["access_token"]

        resp = client.post(
            "/api/v1/auth/logout",
            json={"refresh_token": tokens["refresh_token"]},
            headers=_auth(tokens["access_token"]),
        )
        assert resp.status_code == 200, resp.text

        resp = client.post("/api/v1/auth/refresh", json={"refresh_token": tokens["refresh_token"]})
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "token_revoked"

    def test_refresh_with_access_token_rejected(self, api_client: tuple[TestClient, str, int]) -> None:
        client, token, _uid = api_client
        resp = client.post("/api/v1/auth/refresh", json={"refresh_token": token})
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "invalid_token"

    def test_logout_with_invalid_refresh_token_returns_400(self, api_client: tuple[TestClient, str, int]) -> None:
        client, token, _uid = api_client
        resp = client.post("/api/v1/auth/logout", json={"refresh_token": "garbage"}, headers=_auth(token))
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "invalid_refresh_token"

    def test_logout_all_revokes_every_refresh_token(self, api_client: tuple[TestClient, str, int]) -> None:
        client, _token, _uid = api_client
        first = _signup_and_verify(client, "mona", "mona@example.com")["tokens"]
        second = client.post(
            "/api/v1/auth/login", json={"email": "mona@example.com", "password": PASSWORD}
        ).json()["tokens"]

        resp = client.post("/api/v1/auth/logout/all", headers=_auth(first["access_token"]))
        assert resp.status_code == 200

        for tokens in (first, second):
            resp = client.post("/api/v1/auth/refresh", json={"refresh_token": tokens["refresh_token"]})
            assert resp.status_code == 401


class TestPasswordRoutes:
    def test_forgot_and_reset(self, api_client: tuple[TestClient, str, int]) -> None:
        client, _token, _uid = api_client
        _signup_and_verify(client, "nina", "nina@example.com")

        resp = client.post("/api/v1/auth/password/forgot", json={"email": "nina@example.com"})
        assert resp.status_code == 200
        code = _sink(client).last_code("nina@example.com")

        resp = client.post(
            "/api/v1/auth/password/reset",
            json={"email": "nina@example.com", "otp": code, "new_password": "nina-new-pass"},
        )
        assert resp.status_code == 200, resp.text
        assert "tokens" not in resp.json()

        old = client.post("/api/v1/auth/login", json={"email": "nina@example.com", "password": PASSWORD})
        new = client.post("/api/v1/auth/login", json={"email": "nina@example.com", "password": "nina-new-pass"})
        assert old.status_code == 401
        assert new.status_code == 200

    def test_forgot_unknown_email_same_response(self, api_client: tuple[TestClient, str, int]) -> None:
        client, _token, _uid = api_client
        known = client.post("/api/v1/auth/password/forgot", json={"email": "admin@example.com"})
        unknown = client.post("/api/v1/auth/password/forgot", json={"email": "ghost@example.com"})
        assert known.status_code == unknown.status_code == 200
        assert known.json() == unknown.json()

    def test_reset_with_bad_code(self, api_client: tuple[TestClient, str, int]) -> None:
        client, _token, _uid = api_client
        resp = client.post(
            "/api/v1/auth/password/reset",
            json={"email": "ghost@example.com", "otp": "123456", "new_password": "whatever-pass"},
        )
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "invalid_otp"


class TestIdentityProviderRoutes:
    def test_providers_public_and_empty_when_unconfigured(self, api_client: tuple[TestClient, str, int]) -> None:
        client, _token, _uid = api_client
        resp = client.get("/api/v1/auth/providers")
        assert resp.status_code == 200
        assert resp.json() == []

    def test_google_redirect_unconfigured_returns_404(self, api_client: tuple[TestClient, str, int]) -> None:
        client, _token, _uid = api_client
        resp = client.get("/api/v1/auth/google", follow_redirects=False)
        assert resp.status_code == 404

    def test_google_callback_provisions_account(self, api_client: tuple[TestClient, str, int]) -> None:
        client, _token, _uid = api_client
        google = MagicMock()
        google.authorize_access_token = AsyncMock(
            return_value={
                "userinfo": {
                    "email": "olga@example.com",
                    "email_verified": True,
                    "name": "Olga",
                    "picture": "https://img.example.com/olga.png",
                }
            }
        )
        registry = MagicMock()
        registry.create_client.return_value = google

        original = client.app.state.oauth
        client.app.state.oauth = registry
        try:
            resp = client.get("/api/v1/auth/google/callback?code=abc&state=xyz")
        finally:
            client.app.state.oauth = original

        assert resp.status_code == 200, resp.text
        assert resp.headers["Cache-Control"] == "no-store"
        account = resp.json()["account"]
        assert account["email"] == "olga@example.com"
        assert account["is_verified"] is True
        assert account["display_name"] == "Olga"

    def test_google_callback_rejects_unverified_email(self, api_client: tuple[TestClient, str, int]) -> None:
        client, _token, _uid = api_client
        google = MagicMock()
        google.authorize_access_token = AsyncMock(
            return_value={"userinfo": {"email": "pete@example.com", "email_verified": False}}
        )
        registry = MagicMock()
        registry.create_client.return_value = google

        original = client.app.state.oauth
        client.app.state.oauth = registry
        try:
            resp = client.get("/api/v1/auth/google/callback?code=abc&state=xyz")
        finally:
            client.app.state.oauth = original

        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "oauth_failed"


class TestErrorEnvelope:
    def test_unknown_route_uses_error_envelope(self, api_client: tuple[TestClient, str, int]) -> None:
        client, _token, _uid = api_client
        resp = client.get("/api/v1/does-not-exist")
        assert resp.status_code == 404
        assert resp.json()["error"]["code"] == "http_404"
