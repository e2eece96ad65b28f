"""
routes/auth.py — User authentication route handlers.

Layer rules:
  - Parse request body
  - Validate with the appropriate schema (raises ValidationError on bad input)
  - Call exactly ONE service function
  - Commit the DB session
  - Return the standard success envelope via responses.success()

No business logic here. No DB queries.
AppError propagates to the global error handler in app/__init__.py; routes
never catch it. Login steps commit in a `finally` so the failed-attempt
journal row survives the error.

Endpoints (url_prefix=/api/v1/auth):
  POST   /register         → 200
  POST   /login            → 200  (step 1: emails a code)
  POST   /login/verify     → 200  (step 2: token pair)
  POST   /refresh          → 200
  POST   /logout           → 200  (auth required)
  POST   /forgot-password  → 200
  POST   /reset-password   → 200
  GET    /profile          → 200  (auth required)
"""

from __future__ import annotations

from flask import Blueprint, g

from backend.app.extensions import db, get_auth_context
from backend.app.middleware.auth_middleware import require_auth
from backend.app.responses import client_info, json_body, success
from backend.app.schemas.auth_schema import (
    ForgotPasswordSchema,
    LoginSchema,
    LoginVerifySchema,
    RefreshTokenSchema,
    RegisterSchema,
    ResetPasswordSchema,
)
from backend.app.services import auth_service
from backend.app.services.principals import USER

auth_bp = Blueprint("auth", __name__)


@auth_bp.route("/register", methods=["POST"])
def register():
    """POST /auth/register — Create an inactive account. (No auth required.)"""
    data = RegisterSchema().load(json_body())
    result = auth_service.register_user(
        email=data["email"],
        password=data["password"],
        session=db.session,
        ctx=get_auth_context(),
        name=data["name"],
        phone=data["phone"],
    )
    db.session.commit()
    return success(result)


@auth_bp.route("/login", methods=["POST"])
def login():
    """POST /auth/login — Check credentials, email a login code."""
    data = LoginSchema().load(json_body())
    try:
        result = auth_service.login(
            USER,
            email=data["email"],
            password=data["password"],
            client=client_info(),
            session=db.session,
            ctx=get_auth_context(),
        )
    finally:
        db.session.commit()
    return success(result)


@auth_bp.route("/login/verify", methods=["POST"])
def login_verify():
    """POST /auth/login/verify — Exchange the emailed code for tokens."""
    data = LoginVerifySchema().load(json_body())
    try:
        result = auth_service.login_verify(
            USER,
            email=data["email"],
            code=data["code"],
            client=client_info(),
            session=db.session,
            ctx=get_auth_context(),
        )
    finally:
        db.session.commit()
    return success(result)


@auth_bp.route("/refresh", methods=["POST"])
def refresh():
    """POST /auth/refresh — New access token for a stored refresh token."""
    data = RefreshTokenSchema().load(json_body())
    result = auth_service.refresh(
        USER,
        raw_refresh_token=data["refresh_token"],
        session=db.session,
        ctx=get_auth_context(),
    )
    return success(result)


@auth_bp.route("/logout", methods=["POST"])
@require_auth("user")
def logout():
    """POST /auth/logout — Revoke one refresh token. (Auth required.)"""
    data = RefreshTokenSchema().load(json_body())
    auth_service.logout(
        USER,
        principal_id=g.user_id,
        raw_refresh_token=data["refresh_token"],
        session=db.session,
    )
    db.session.commit()
    return success({"message": "Logged out successfully."})


@auth_bp.route("/forgot-password", methods=["POST"])
def forgot_password():
    data = ForgotPasswordSchema().load(json_body())
    result = auth_service.forgot_password(
        USER,
        email=data["email"],
        session=db.session,
        ctx=get_auth_context(),
    )
    db.session.commit()
    return success(result)


@auth_bp.route("/reset-password", methods=["POST"])
def reset_password():
    data = ResetPasswordSchema().load(json_body())
    result = auth_service.reset_password(
        USER,
        email=data["email"],
        code=data["code"],
        new_password=data["password"],
        session=db.session,
        ctx=get_auth_context(),
    )
    db.session.commit()
    return success(result)


@auth_bp.route("/profile", methods=["GET"])
@require_auth("user")
def profile():
    """GET /auth/profile — Current user. (Auth required.)"""
    result = auth_service.get_profile(USER, principal_id=g.user_id, session=db.session)
    return success(result)
