"""
routes/admin_auth.py — Admin authentication and user-management handlers.

Same login pipeline as routes/auth.py with the ADMIN principal kind: admin
tables, admin_login / reset_password purpose tags, admin error codes.

Endpoints (url_prefix=/api/v1/admin):
  POST   /auth/login            → 200
  POST   /auth/login/verify     → 200
  POST   /auth/refresh          → 200
  POST   /auth/logout           → 200  (admin token)
  POST   /auth/forgot-password  → 200
  POST   /auth/reset-password   → 200
  GET    /profile               → 200  (admin token)
  GET    /users                 → 200  (admin token)
  GET    /users/stats           → 200  (admin token)
  GET    /users/<id>            → 200  (admin token)
"""

from __future__ import annotations

from flask import Blueprint, g, request

from backend.app.extensions import db, get_auth_context
from backend.app.middleware.auth_middleware import require_auth
from backend.app.responses import client_info, json_body, success
from backend.app.schemas.auth_schema import (
    ForgotPasswordSchema,
    LoginSchema,
    LoginVerifySchema,
    RefreshTokenSchema,
    ResetPasswordSchema,
    UserListQuerySchema,
)
from backend.app.services import auth_service, user_management_service
from backend.app.services.principals import ADMIN

admin_bp = Blueprint("admin", __name__)


# ── Authentication ─────────────────────────────────────────────────────────

@admin_bp.route("/auth/login", methods=["POST"])
def login():
    data = LoginSchema().load(json_body())
    try:
        result = auth_service.login(
            ADMIN,
            email=data["email"],
            password=data["password"],
            client=client_info(),
            session=db.session,
            ctx=get_auth_context(),
        )
    finally:
        db.session.commit()
    return success(result)


@admin_bp.route("/auth/login/verify", methods=["POST"])
def login_verify():
    data = LoginVerifySchema().load(json_body())
    try:
        result = auth_service.login_verify(
            ADMIN,
            email=data["email"],
            code=data["code"],
            client=client_info(),
            session=db.session,
            ctx=get_auth_context(),
        )
    finally:
        db.session.commit()
    return success(result)


@admin_bp.route("/auth/refresh", methods=["POST"])
def refresh():
    data = RefreshTokenSchema().load(json_body())
    result = auth_service.refresh(
        ADMIN,
        raw_refresh_token=data["refresh_token"],
        session=db.session,
        ctx=get_auth_context(),
    )
    return success(result)


@admin_bp.route("/auth/logout", methods=["POST"])
@require_auth("admin")
def logout():
    data = RefreshTokenSchema().load(json_body())
    auth_service.logout(
        ADMIN,
        principal_id=g.user_id,
        raw_refresh_token=data["refresh_token"],
        session=db.session,
    )
    db.session.commit()
    return success({"message": "Logged out successfully."})


@admin_bp.route("/auth/forgot-password", methods=["POST"])
def forgot_password():
    data = ForgotPasswordSchema().load(json_body())
    result = auth_service.forgot_password(
        ADMIN,
        email=data["email"],
        session=db.session,
        ctx=get_auth_context(),
    )
    db.session.commit()
    return success(result)


@admin_bp.route("/auth/reset-password", methods=["POST"])
def reset_password():
    data = ResetPasswordSchema().load(json_body())
    result = auth_service.reset_password(
        ADMIN,
        email=data["email"],
        code=data["code"],
        new_password=data["password"],
        session=db.session,
        ctx=get_auth_context(),
    )
    db.session.commit()
    return success(result)


@admin_bp.route("/profile", methods=["GET"])
@require_auth("admin")
def profile():
    result = auth_service.get_profile(ADMIN, principal_id=g.user_id, session=db.session)
    return success(result)


# ── User management ────────────────────────────────────────────────────────

@admin_bp.route("/users", methods=["GET"])
@require_auth("admin")
def list_users():
    """GET /admin/users — Paginated users with optional status/email/phone filters."""
    query = UserListQuerySchema().load(request.args)
    result = user_management_service.list_users(
        db.session,
        page=query["page"],
        page_size=query["page_size"],
        status=query["status"],
        email=query["email"],
        phone=query["phone"],
    )
    return success(result)


@admin_bp.route("/users/stats", methods=["GET"])
@require_auth("admin")
def user_stats():
    return success(user_management_service.user_stats(db.session))


@admin_bp.route("/users/<int:user_id>", methods=["GET"])
@require_auth("admin")
def get_user(user_id: int):
    return success(user_management_service.get_user(user_id, db.session))
