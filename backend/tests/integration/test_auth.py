"""
tests/integration/test_auth.py — Integration tests for user authentication endpoints.

Endpoints covered:
  POST /auth/register         → 200  (inactive until a register code is verified)
  POST /auth/login            → 200
  POST /auth/login/verify     → 200
  POST /auth/refresh          → 200
  POST /auth/logout           → 200
  POST /auth/forgot-password  → 200
  POST /auth/reset-password   → 200
  GET  /auth/profile          → 200

Error cases:
  EMAIL_EXISTS          400 — email already registered
  INVALID_CREDENTIALS   400 — unknown email or wrong password
  USER_INACTIVE         400 — account not activated
  INVALID_CODE          400 — wrong / used / expired code
  REFRESH_TOKEN_INVALID 401 — revoked refresh token
  TOKEN_MISSING         401 — no Authorization header
  TOKEN_INVALID         401 — malformed token
  FORBIDDEN             403 — admin token on a user route
"""

from __future__ import annotations

from sqlalchemy import select

from backend.app.extensions import db
from backend.app.models.login_session import UserLoginSession
from backend.app.models.user import User

from .conftest import TEST_IP, auth_headers, latest_code, login_admin, login_user, seed_admin, seed_user


def _user(app, email: str) -> User:
    with app.app_context():
        user = db.session.execute(select(User).where(User.email == email)).scalar_one()
        db.session.expunge(user)
        return user


def _journal_statuses(app) -> list[str]:
    with app.app_context():
        return list(db.session.execute(
            select(UserLoginSession.status).order_by(UserLoginSession.id)
        ).scalars())


# ═══════════════════════════════════════════════════════════════════════════
# POST /auth/register
# ═══════════════════════════════════════════════════════════════════════════

class TestRegister:

    def test_register_creates_inactive_user(self, client, app):
        resp = client.post("/api/v1/auth/register", json={
            "email": "alice@example.com", "password": "secret1", "name": "Alice",
        })

        assert resp.status_code == 200
        user = resp.get_json()["data"]["user"]
        assert user["email"] == "alice@example.com"
        assert user["status"] == "inactive"
        assert user["email_verified"] is False
        assert user["role"] == "user"
        # password_hash must NEVER appear in the response
        assert "password" not in user
        assert "password_hash" not in user

    def test_duplicate_email(self, client):
        client.post("/api/v1/auth/register", json={"email": "dup@example.com", "password": "secret1"})
        resp = client.post("/api/v1/auth/register", json={"email": "dup@example.com", "password": "secret1"})

        assert resp.status_code == 400
        body = resp.get_json()
        assert body["error"] == "EMAIL_EXISTS"
        assert body["field"] == "email"

    def test_duplicate_phone(self, client):
        client.post("/api/v1/auth/register", json={"email": "a@example.com", "password": "secret1", "phone": "555"})
        resp = client.post("/api/v1/auth/register", json={"email": "b@example.com", "password": "secret1", "phone": "555"})

        assert resp.status_code == 400
        assert resp.get_json()["error"] == "PHONE_EXISTS"

    def test_short_password(self, client):
        resp = client.post("/api/v1/auth/register", json={"email": "a@example.com", "password": "123"})

        assert resp.status_code == 400
        assert resp.get_json()["error"] == "INVALID_FIELD"
        assert resp.get_json()["field"] == "password"

    def test_register_then_activate_then_login(self, client, app):
        client.post("/api/v1/auth/register", json={"email": "new@example.com", "password": "secret1"})

        blocked = client.post("/api/v1/auth/login", json={"email": "new@example.com", "password": "secret1"})
        assert blocked.status_code == 400
        assert blocked.get_json()["error"] == "USER_INACTIVE"

        sent = client.post("/api/v1/verification/send", json={"target": "new@example.com", "type": "register"})
        assert sent.status_code == 200
        code = latest_code(app, "new@example.com", "register")
        verified = client.post("/api/v1/verification/verify", json={
            "target": "new@example.com", "type": "register", "code": code,
        })
        assert verified.status_code == 200
        assert _user(app, "new@example.com").status == "active"

        tokens = login_user(client, app, email="new@example.com", password="secret1")
        assert tokens["user"]["email_verified"] is True


# ═══════════════════════════════════════════════════════════════════════════
# Login
# ═══════════════════════════════════════════════════════════════════════════

class TestUserLogin:

    def test_two_step_login(self, client, app):
        user_id = seed_user(app)

        tokens = login_user(client, app)

        assert tokens["token_type"] == "Bearer"
        assert tokens["user"]["id"] == user_id
        assert tokens["login_session"]["device_type"] == "desktop"
        assert _journal_statuses(app) == ["success"]
        assert _user(app, "alice@example.com").last_login_at is not None

    def test_unknown_email_is_invalid_credentials(self, client, app):
        resp = client.post("/api/v1/auth/login", json={"email": "ghost@example.com", "password": "password123"})

        assert resp.status_code == 400
        assert resp.get_json()["error"] == "INVALID_CREDENTIALS"
        assert _journal_statuses(app) == ["failed"]

    def test_wrong_password_is_invalid_credentials(self, client, app):
        seed_user(app)

        resp = client.post("/api/v1/auth/login", json={"email": "alice@example.com", "password": "wrong-one"})

        assert resp.status_code == 400
        assert resp.get_json()["error"] == "INVALID_CREDENTIALS"

    def test_every_login_call_journals_once_except_step_one_success(self, client, app):
        seed_user(app)

        client.post("/api/v1/auth/login", json={"email": "alice@example.com", "password": "wrong-one"})
        client.post("/api/v1/auth/login", json={"email": "alice@example.com", "password": "password123"})
        real = latest_code(app, "alice@example.com", "user_login")
        wrong = "000000" if real != "000000" else "111111"
        client.post("/api/v1/auth/login/verify", json={"email": "alice@example.com", "code": wrong})
        client.post("/api/v1/auth/login/verify", json={"email": "alice@example.com", "code": real})

        assert _journal_statuses(app) == ["failed", "failed", "success"]

    def test_spoofed_forwarded_for_does_not_reach_the_journal(self, client, app):
        seed_user(app)

        client.post(
            "/api/v1/auth/login",
            json={"email": "alice@example.com", "password": "wrong-one"},
            headers={"X-Forwarded-For": "6.6.6.6"},
        )

        with app.app_context():
            ips = list(db.session.execute(select(UserLoginSession.ip_address)).scalars())
        assert ips == [TEST_IP]

    def test_login_rejects_inline_code(self, client, app):
        seed_user(app)

        resp = client.post(
            "/api/v1/auth/login",
            json={"email": "alice@example.com", "password": "password123", "code": "123456"},
        )

        assert resp.status_code == 400
        assert resp.get_json()["error"] == "INVALID_FIELD"
        assert resp.get_json()["field"] == "code"
        assert _journal_statuses(app) == []

    def test_admin_code_does_not_log_in_a_user(self, client, app):
        seed_admin(app, email="alice@example.com")
        seed_user(app, email="alice@example.com")
        client.post("/api/v1/admin/auth/login", json={"email": "alice@example.com", "password": "password123"})
        admin_code = latest_code(app, "alice@example.com", "admin_login")

        resp = client.post("/api/v1/auth/login/verify", json={"email": "alice@example.com", "code": admin_code})

        assert resp.status_code == 400
        assert resp.get_json()["error"] == "INVALID_CODE"


# ═══════════════════════════════════════════════════════════════════════════
# Refresh / logout / profile
# ═══════════════════════════════════════════════════════════════════════════

class TestSessionEndpoints:

    def test_refresh_returns_same_refresh_token(self, client, app):
        seed_user(app)
        tokens = login_user(client, app)

        resp = client.post("/api/v1/auth/refresh", json={"refresh_token": tokens["refresh_token"]})

        assert resp.status_code == 200
        assert resp.get_json()["data"]["refresh_token"] == tokens["refresh_token"]

    def test_refresh_with_garbage(self, client):
        resp = client.post("/api/v1/auth/refresh", json={"refresh_token": "not.a.jwt"})
        assert resp.status_code == 401
        assert resp.get_json()["error"] == "TOKEN_INVALID"

    def test_logout_then_refresh_fails(self, client, app):
        seed_user(app)
        tokens = login_user(client, app)

        resp = client.post(
            "/api/v1/auth/logout",
            json={"refresh_token": tokens["refresh_token"]},
            headers=auth_headers(tokens["access_token"]),
        )
        assert resp.status_code == 200

        refreshed = client.post("/api/v1/auth/refresh", json={"refresh_token": tokens["refresh_token"]})
        assert refreshed.status_code == 401
        assert refreshed.get_json()["error"] == "REFRESH_TOKEN_INVALID"

    def test_logout_requires_token(self, client):
        resp = client.post("/api/v1/auth/logout", json={"refresh_token": "x"})
        assert resp.status_code == 401
        assert resp.get_json()["error"] == "TOKEN_MISSING"

    def test_profile(self, client, app):
        user_id = seed_user(app)
        tokens = login_user(client, app)

        resp = client.get("/api/v1/auth/profile", headers=auth_headers(tokens["access_token"]))

        assert resp.status_code == 200
        assert resp.get_json()["data"]["user"]["id"] == user_id

    def test_profile_with_malformed_token(self, client):
        resp = client.get("/api/v1/auth/profile", headers=auth_headers("abc.def.ghi"))
        assert resp.status_code == 401
        assert resp.get_json()["error"] == "TOKEN_INVALID"

    def test_admin_token_is_forbidden_on_user_route(self, client, app):
        seed_admin(app)
        tokens = login_admin(client, app)

        resp = client.get("/api/v1/auth/profile", headers=auth_headers(tokens["access_token"]))

        assert resp.status_code == 403
        assert resp.get_json()["error"] == "FORBIDDEN"


# ═══════════════════════════════════════════════════════════════════════════
# Password reset
# ═══════════════════════════════════════════════════════════════════════════

def test_user_password_reset_uses_forgot_password_codes(client, app):
    seed_user(app)
    tokens = login_user(client, app)

    resp = client.post("/api/v1/auth/forgot-password", json={"email": "alice@example.com"})
    assert resp.status_code == 200
    code = latest_code(app, "alice@example.com", "forgot_password")

    resp = client.post("/api/v1/auth/reset-password", json={
        "email": "alice@example.com", "code": code, "password": "another-pass",
    })
    assert resp.status_code == 200

    refreshed = client.post("/api/v1/auth/refresh", json={"refresh_token": tokens["refresh_token"]})
    assert refreshed.status_code == 401
    login_user(client, app, password="another-pass")


def test_health(client):
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.get_json() == {"status": "ok"}


def test_unknown_route_uses_error_envelope(client):
    resp = client.get("/api/v1/nope")
    assert resp.status_code == 404
    assert resp.get_json()["error"] == "NOT_FOUND"
