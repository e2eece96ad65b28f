"""
tests/integration/test_admin_auth.py — Admin login pipeline and user management.

Endpoints covered:
  POST /admin/auth/login           → 200  (step 1: code emailed)
  POST /admin/auth/login/verify    → 200  (step 2: token pair)
  POST /admin/auth/refresh         → 200  (same refresh token returned)
  POST /admin/auth/logout          → 200
  POST /admin/auth/forgot-password → 200
  POST /admin/auth/reset-password  → 200  (revokes every refresh token)
  GET  /admin/profile, /admin/users, /admin/users/stats, /admin/users/<id>

Every login step except a successful step 1 writes exactly one journal row.
"""

from __future__ import annotations

from flask import Blueprint, jsonify
from sqlalchemy import func, select, update

from backend.app import create_app
from backend.app.extensions import db, get_auth_context
from backend.app.middleware.auth_middleware import require_auth
from backend.app.models.admin import Admin
from backend.app.models.login_session import AdminLoginSession
from backend.app.models.refresh_token import AdminRefreshToken
from backend.app.models.verification import Verification

from .conftest import (
    TEST_IP,
    auth_headers,
    latest_code,
    login_admin,
    login_user,
    seed_admin,
    seed_user,
)


def _journal(app) -> list[AdminLoginSession]:
    with app.app_context():
        rows = db.session.execute(
            select(AdminLoginSession).order_by(AdminLoginSession.id)
        ).scalars().all()
        db.session.expunge_all()
        return rows


def _count(app, model) -> int:
    with app.app_context():
        return db.session.execute(select(func.count()).select_from(model)).scalar_one()


# ═══════════════════════════════════════════════════════════════════════════
# Two-step login
# ═══════════════════════════════════════════════════════════════════════════

class TestAdminLogin:

    def test_successful_login_issues_code_then_tokens(self, client, app):
        admin_id = seed_admin(app)

        resp = client.post("/api/v1/admin/auth/login", json={
            "email": "admin@example.com", "password": "password123",
        })
        assert resp.status_code == 200
        body = resp.get_json()
        assert body["code"] == 200
        assert body["message"] == "success"
        assert body["data"]["expires_in"] == 600

        with app.app_context():
            codes = db.session.execute(select(Verification)).scalars().all()
            assert len(codes) == 1
            assert codes[0].type == "admin_login"
            assert len(codes[0].code) == 6 and codes[0].code.isdigit()
            code = codes[0].code
        assert _journal(app) == []

        resp = client.post("/api/v1/admin/auth/login/verify", json={
            "email": "admin@example.com", "code": code,
        })
        assert resp.status_code == 200
        data = resp.get_json()["data"]
        assert data["token_type"] == "Bearer"
        assert data["expires_in"] == 7200
        assert data["access_token"] and data["refresh_token"]
        assert data["admin"]["id"] == admin_id
        assert data["admin"]["email_verified"] is True
        assert "password_hash" not in data["admin"]
        assert data["login_session"]["ip"] == TEST_IP

        with app.app_context():
            tokens = db.session.execute(select(AdminRefreshToken)).scalars().all()
            assert len(tokens) == 1
            assert tokens[0].is_valid is True
            assert tokens[0].admin_id == admin_id
            assert db.session.get(Admin, admin_id).last_login_at is not None

        [row] = _journal(app)
        assert row.status == "success"
        assert row.admin_id == admin_id
        assert row.ip_address == TEST_IP
        assert row.user_agent == "UA-test"

    def test_wrong_password_is_journaled(self, client, app):
        admin_id = seed_admin(app)

        resp = client.post("/api/v1/admin/auth/login", json={
            "email": "admin@example.com", "password": "nope",
        })

        assert resp.status_code == 400
        assert resp.get_json()["error"] == "INVALID_ADMIN_CREDENTIALS"
        [row] = _journal(app)
        assert row.status == "failed"
        assert row.reason == "密码错误"
        assert row.admin_id == admin_id
        assert _count(app, Verification) == 0

    def test_unknown_email_is_admin_not_found_with_owner_zero(self, client, app):
        resp = client.post("/api/v1/admin/auth/login", json={
            "email": "ghost@example.com", "password": "password123",
        })

        assert resp.status_code == 400
        assert resp.get_json()["error"] == "ADMIN_NOT_FOUND"
        [row] = _journal(app)
        assert row.admin_id == 0

    def test_inactive_admin_is_rejected(self, client, app):
        seed_admin(app, status="inactive")

        resp = client.post("/api/v1/admin/auth/login", json={
            "email": "admin@example.com", "password": "password123",
        })

        assert resp.status_code == 400
        assert resp.get_json()["error"] == "ADMIN_INACTIVE"
        assert len(_journal(app)) == 1

    def test_invalid_code_leaves_real_code_consumable(self, client, app):
        seed_admin(app)
        client.post("/api/v1/admin/auth/login", json={
            "email": "admin@example.com", "password": "password123",
        })
        real = latest_code(app, "admin@example.com", "admin_login")
        wrong = "000000" if real != "000000" else "111111"

        resp = client.post("/api/v1/admin/auth/login/verify", json={
            "email": "admin@example.com", "code": wrong,
        })
        assert resp.status_code == 400
        assert resp.get_json()["error"] == "INVALID_CODE"
        [failed] = _journal(app)
        assert failed.status == "failed"

        resp = client.post("/api/v1/admin/auth/login/verify", json={
            "email": "admin@example.com", "code": real,
        })
        assert resp.status_code == 200
        assert [row.status for row in _journal(app)] == ["failed", "success"]

    def test_code_is_single_use(self, client, app):
        seed_admin(app)
        client.post("/api/v1/admin/auth/login", json={
            "email": "admin@example.com", "password": "password123",
        })
        code = latest_code(app, "admin@example.com", "admin_login")

        first = client.post("/api/v1/admin/auth/login/verify", json={"email": "admin@example.com", "code": code})
        second = client.post("/api/v1/admin/auth/login/verify", json={"email": "admin@example.com", "code": code})

        assert first.status_code == 200
        assert second.status_code == 400
        assert second.get_json()["error"] == "INVALID_CODE"

    def test_malformed_code_is_schema_error(self, client, app):
        resp = client.post("/api/v1/admin/auth/login/verify", json={
            "email": "admin@example.com", "code": "12ab",
        })
        assert resp.status_code == 400
        body = resp.get_json()
        assert body["error"] == "INVALID_FIELD"
        assert body["field"] == "code"

    def test_missing_field_is_missing_field(self, client):
        resp = client.post("/api/v1/admin/auth/login", json={"email": "admin@example.com"})
        assert resp.status_code == 400
        assert resp.get_json()["error"] == "MISSING_FIELD"
        assert resp.get_json()["field"] == "password"


# ═══════════════════════════════════════════════════════════════════════════
# Refresh / logout
# ═══════════════════════════════════════════════════════════════════════════

class TestAdminRefresh:

    def test_refresh_reuses_refresh_token_until_revoked(self, client, app):
        seed_admin(app)
        tokens = login_admin(client, app)

        resp = client.post("/api/v1/admin/auth/refresh", json={"refresh_token": tokens["refresh_token"]})
        assert resp.status_code == 200
        data = resp.get_json()["data"]
        assert data["refresh_token"] == tokens["refresh_token"]
        assert data["access_token"] != tokens["access_token"]

        with app.app_context():
            [row] = db.session.execute(select(AdminRefreshToken)).scalars().all()
            assert row.is_valid is True
            db.session.execute(update(AdminRefreshToken).values(is_valid=False))
            db.session.commit()

        resp = client.post("/api/v1/admin/auth/refresh", json={"refresh_token": tokens["refresh_token"]})
        assert resp.status_code == 401
        assert resp.get_json()["error"] == "REFRESH_TOKEN_INVALID"

    def test_access_token_is_not_a_refresh_token(self, client, app):
        seed_admin(app)
        tokens = login_admin(client, app)

        resp = client.post("/api/v1/admin/auth/refresh", json={"refresh_token": tokens["access_token"]})

        assert resp.status_code == 401
        assert resp.get_json()["error"] == "TOKEN_INVALID"

    def test_user_refresh_token_is_rejected_on_admin_endpoint(self, client, app):
        seed_user(app)
        tokens = login_user(client, app)

        resp = client.post("/api/v1/admin/auth/refresh", json={"refresh_token": tokens["refresh_token"]})

        assert resp.status_code == 401
        assert resp.get_json()["error"] == "REFRESH_TOKEN_INVALID"

    def test_logout_revokes_once(self, client, app):
        seed_admin(app)
        tokens = login_admin(client, app)
        headers = auth_headers(tokens["access_token"])

        resp = client.post("/api/v1/admin/auth/logout", json={"refresh_token": tokens["refresh_token"]}, headers=headers)
        assert resp.status_code == 200

        again = client.post("/api/v1/admin/auth/logout", json={"refresh_token": tokens["refresh_token"]}, headers=headers)
        assert again.status_code == 401

        refreshed = client.post("/api/v1/admin/auth/refresh", json={"refresh_token": tokens["refresh_token"]})
        assert refreshed.status_code == 401


# ═══════════════════════════════════════════════════════════════════════════
# Password reset
# ═══════════════════════════════════════════════════════════════════════════

class TestAdminPasswordReset:

    def test_reset_revokes_every_refresh_token(self, client, app):
        seed_admin(app)
        first = login_admin(client, app)
        second = login_admin(client, app)

        resp = client.post("/api/v1/admin/auth/forgot-password", json={"email": "admin@example.com"})
        assert resp.status_code == 200
        code = latest_code(app, "admin@example.com", "reset_password")

        resp = client.post("/api/v1/admin/auth/reset-password", json={
            "email": "admin@example.com", "code": code, "password": "brand-new-pass",
        })
        assert resp.status_code == 200

        for tokens in (first, second):
            refreshed = client.post("/api/v1/admin/auth/refresh", json={"refresh_token": tokens["refresh_token"]})
            assert refreshed.status_code == 401

        old = client.post("/api/v1/admin/auth/login", json={"email": "admin@example.com", "password": "password123"})
        assert old.status_code == 400
        new = client.post("/api/v1/admin/auth/login", json={"email": "admin@example.com", "password": "brand-new-pass"})
        assert new.status_code == 200

    def test_forgot_password_is_uniform_for_unknown_email(self, client, app):
        seed_admin(app)

        known = client.post("/api/v1/admin/auth/forgot-password", json={"email": "admin@example.com"})
        unknown = client.post("/api/v1/admin/auth/forgot-password", json={"email": "ghost@example.com"})

        assert known.status_code == unknown.status_code == 200
        assert known.get_json() == unknown.get_json()
        assert _count(app, Verification) == 1

    def test_reset_with_wrong_code(self, client, app):
        seed_admin(app)
        client.post("/api/v1/admin/auth/forgot-password", json={"email": "admin@example.com"})
        real = latest_code(app, "admin@example.com", "reset_password")
        wrong = "000000" if real != "000000" else "111111"

        resp = client.post("/api/v1/admin/auth/reset-password", json={
            "email": "admin@example.com", "code": wrong, "password": "brand-new-pass",
        })

        assert resp.status_code == 400
        assert resp.get_json()["error"] == "INVALID_CODE"


# ═══════════════════════════════════════════════════════════════════════════
# Profile / user management
# ═══════════════════════════════════════════════════════════════════════════

class TestAdminUserManagement:

    def test_profile(self, client, app):
        admin_id = seed_admin(app)
        tokens = login_admin(client, app)

        resp = client.get("/api/v1/admin/profile", headers=auth_headers(tokens["access_token"]))

        assert resp.status_code == 200
        assert resp.get_json()["data"]["admin"]["id"] == admin_id

    def test_list_users_with_filters(self, client, app):
        seed_admin(app)
        seed_user(app, email="alice@example.com", phone="13800000001")
        seed_user(app, email="bob@example.com", status="inactive", phone="13900000002")
        seed_user(app, email="carol@example.com")
        headers = auth_headers(login_admin(client, app)["access_token"])

        everyone = client.get("/api/v1/admin/users", headers=headers).get_json()["data"]
        assert everyone["total"] == 3
        assert everyone["page"] == 1
        assert everyone["size"] == 20
        assert {u["email"] for u in everyone["users"]} == {
            "alice@example.com", "bob@example.com", "carol@example.com",
        }

        inactive = client.get("/api/v1/admin/users?status=inactive", headers=headers).get_json()["data"]
        assert [u["email"] for u in inactive["users"]] == ["bob@example.com"]

        by_email = client.get("/api/v1/admin/users?email=car", headers=headers).get_json()["data"]
        assert by_email["total"] == 1

        by_phone = client.get("/api/v1/admin/users?phone=1380", headers=headers).get_json()["data"]
        assert [u["email"] for u in by_phone["users"]] == ["alice@example.com"]

        paged = client.get("/api/v1/admin/users?page=2&page_size=2", headers=headers).get_json()["data"]
        assert paged["total"] == 3
        assert len(paged["users"]) == 1

    def test_user_stats(self, client, app):
        seed_admin(app)
        seed_user(app, email="alice@example.com")
        seed_user(app, email="bob@example.com", status="inactive")
        headers = auth_headers(login_admin(client, app)["access_token"])

        stats = client.get("/api/v1/admin/users/stats", headers=headers).get_json()["data"]

        assert stats["total_users"] == 2
        assert stats["active_users"] == 1
        assert stats["inactive_users"] == 1
        assert stats["registered_today"] == 2
        assert stats["registered_this_week"] == 2
        assert stats["registered_this_month"] == 2

    def test_get_user(self, client, app):
        seed_admin(app)
        user_id = seed_user(app)
        headers = auth_headers(login_admin(client, app)["access_token"])

        found = client.get(f"/api/v1/admin/users/{user_id}", headers=headers)
        assert found.status_code == 200
        assert found.get_json()["data"]["email"] == "alice@example.com"

        missing = client.get("/api/v1/admin/users/999999", headers=headers)
        assert missing.status_code == 404
        assert missing.get_json()["error"] == "USER_NOT_FOUND"

    def test_user_token_is_forbidden_on_admin_routes(self, client, app):
        seed_user(app)
        tokens = login_user(client, app)

        resp = client.get("/api/v1/admin/users", headers=auth_headers(tokens["access_token"]))

        assert resp.status_code == 403
        assert resp.get_json()["error"] == "FORBIDDEN"

    def test_missing_token(self, client):
        resp = client.get("/api/v1/admin/users")
        assert resp.status_code == 401
        assert resp.get_json()["error"] == "TOKEN_MISSING"

    def test_malformed_authorization_header(self, client):
        resp = client.get("/api/v1/admin/users", headers={"Authorization": "Token abc"})
        assert resp.status_code == 401
        assert resp.get_json()["error"] == "TOKEN_INVALID"


# ═══════════════════════════════════════════════════════════════════════════
# Super-admin guard
# ═══════════════════════════════════════════════════════════════════════════

def _guarded_app():
    """Separate app instance with one super-admin-only route."""
    guarded = create_app("testing")
    bp = Blueprint("super_only", __name__)

    @bp.route("/super-only", methods=["GET"])
    @require_auth("admin", super_only=True)
    def super_only():
        return jsonify({"ok": True})

    guarded.register_blueprint(bp)
    with guarded.app_context():
        db.create_all()
    return guarded


def _seed_and_token(guarded, email: str, role: str, is_super: bool) -> str:
    with guarded.app_context():
        admin = Admin(email=email, password_hash="x", role=role, is_super=is_super, status="active")
        db.session.add(admin)
        db.session.commit()
        return get_auth_context().codec.encode_access(admin.id, email, role, "admin")


def test_super_admin_guard():
    guarded = _guarded_app()
    client = guarded.test_client()

    plain = _seed_and_token(guarded, "plain@example.com", "admin", False)
    flagged = _seed_and_token(guarded, "flagged@example.com", "admin", True)
    by_role = _seed_and_token(guarded, "role@example.com", "super_admin", False)

    denied = client.get("/super-only", headers=auth_headers(plain))
    assert denied.status_code == 403
    assert denied.get_json()["error"] == "INSUFFICIENT_PERMISSIONS"

    assert client.get("/super-only", headers=auth_headers(flagged)).status_code == 200
    assert client.get("/super-only", headers=auth_headers(by_role)).status_code == 200

    with guarded.app_context():
        db.drop_all()
