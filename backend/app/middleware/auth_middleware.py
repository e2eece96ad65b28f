"""
middleware/auth_middleware.py — JWT authentication decorator.

The @require_auth(kind) decorator:
  1. Reads the Authorization header (expected: "Bearer <token>")
  2. Decodes the access token through the app's TokenCodec
  3. Requires the token's user_type to match the route's principal kind
  4. Optionally requires a super admin (role super_admin or is_super in DB)
  5. Attaches user_id / user_email / user_role / user_type to flask.g

Strict responsibility boundary:
  - This middleware authenticates and checks the principal kind only.
  - Record ownership (detection history, tokens) is enforced in services,
    which receive the caller's id as a plain integer argument.

Error codes:
  TOKEN_MISSING            (401) — no Authorization header
  TOKEN_INVALID            (401) — malformed header, bad signature, expired
  FORBIDDEN                (403) — token of the other principal kind
  INSUFFICIENT_PERMISSIONS (403) — super-admin route, caller is not one
"""

from __future__ import annotations

import functools
from typing import Callable

from flask import g, request

from backend.app.errors import AppError, ErrorCode
from backend.app.extensions import db, get_auth_context
from backend.app.models.admin import Admin
from backend.app.security.tokens import USER_TYPE_ADMIN, TokenClaims

ROLE_SUPER_ADMIN = "super_admin"


def require_auth(kind_name: str, super_only: bool = False) -> Callable:
    """
    Route decorator factory that enforces JWT authentication.

    Raises AppError for all auth failures; the global error handler converts
    these to the JSON envelope. Routes never catch AppError.

    Usage:
        @bp.get("/profile")
        @require_auth("user")
        def profile():
            user_id = g.user_id  # always an int when this runs
            ...
    """
    def decorator(f: Callable) -> Callable:
        @functools.wraps(f)
        def decorated(*args, **kwargs):
            claims = _authenticate_request(kind_name)
            if super_only:
                _require_super_admin(claims)
            return f(*args, **kwargs)

        return decorated

    return decorator


def _authenticate_request(kind_name: str) -> TokenClaims:
    """
    Performs the full JWT authentication sequence and populates flask.g.

    Separated from the decorator wrapper so tests can call it directly
    inside a request context.
    """
    auth_header = request.headers.get("Authorization", "")

    # ── Step 1: Require Authorization header ──────────────────────────────
    if not auth_header:
        raise AppError(
            ErrorCode.TOKEN_MISSING,
            "Authentication required. Provide a Bearer token in the Authorization header.",
            401,
        )

    # ── Step 2: Parse "Bearer <token>" format ─────────────────────────────
    parts = auth_header.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        raise AppError(
            ErrorCode.TOKEN_INVALID,
            "Authorization header must be in the format: Bearer <token>.",
            401,
        )

    # ── Step 3: Decode and verify ─────────────────────────────────────────
    claims = get_auth_context().codec.decode_access(parts[1])

    # ── Step 4: Principal kind ────────────────────────────────────────────
    if claims.user_type != kind_name:
        raise AppError(
            ErrorCode.FORBIDDEN,
            f"This endpoint requires a {kind_name} token.",
            403,
        )

    # ── Step 5: Attach identity to flask.g ────────────────────────────────
    g.user_id = claims.user_id
    g.user_email = claims.email
    g.user_role = claims.role
    g.user_type = claims.user_type
    return claims


def _require_super_admin(claims: TokenClaims) -> None:
    if claims.user_type == USER_TYPE_ADMIN:
        if claims.role == ROLE_SUPER_ADMIN:
            return
        admin = db.session.get(Admin, claims.user_id)
        if admin is not None and admin.is_super:
            return
    raise AppError(
        ErrorCode.INSUFFICIENT_PERMISSIONS,
        "Super administrator privileges are required.",
        403,
    )
