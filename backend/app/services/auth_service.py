"""
services/auth_service.py — Authentication business logic for users AND admins.

Responsibilities:
  - Two-step login: credentials → emailed code, then code → token pair
  - Refresh: new access token for a valid stored refresh token (the refresh
    token itself is reused, not rotated)
  - Logout: revoke one refresh token
  - Password reset: code-gated hash replacement plus blanket revocation of
    every refresh token the principal holds
  - User registration and profile projections

Every function takes a PrincipalKind (services/principals.py) as its first
argument. The kind picks the tables, verification purposes, error codes and
journal; the pipeline is the same for both.

Layer rules:
  - No imports from routes or schemas
  - No use of flask.request, flask.g, or current_app
  - Collaborators (token codec, rate limiter, IP lookup) arrive in an
    AuthContext; the caller's IP / User-Agent arrive in a ClientInfo
  - Receives a Session, flushes, never commits

Token storage:
  - Refresh tokens are signed JWTs (refresh secret). The DB stores only the
    SHA-256 hex digest of the token string.
  - A stored token validates only if is_valid, unexpired, and owned by the
    user_id in its claims. All three are checked in one SELECT.

Session journal:
  - Step 1 success writes nothing; every other login outcome writes exactly
    one row (services/session_journal.py).
"""

from __future__ import annotations

import hashlib
import logging
from datetime import timedelta

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from backend.app.clock import utcnow
from backend.app.errors import AppError, ErrorCode
from backend.app.models.user import User
from backend.app.security.passwords import check_password, hash_password
from backend.app.services import session_journal, verification_service
from backend.app.services.context import AuthContext
from backend.app.services.principals import (
    REASON_BAD_PASSWORD,
    REASON_INVALID_CODE,
    REASON_LOGIN_OK,
    USER,
    PrincipalKind,
)
from backend.app.services.session_journal import STATUS_FAILED, STATUS_SUCCESS, ClientInfo

logger = logging.getLogger(__name__)

TOKEN_TYPE = "Bearer"
STATUS_ACTIVE = "active"


# ── Private helpers ────────────────────────────────────────────────────────

def _hash_token(raw_token: str) -> str:
    """SHA-256 hex digest of a raw token string. Used for refresh token storage."""
    return hashlib.sha256(raw_token.encode("utf-8")).hexdigest()


def _find_by_email(kind: PrincipalKind, email: str, session: Session):
    return session.execute(
        select(kind.model).where(func.lower(kind.model.email) == email.strip().lower())
    ).scalar_one_or_none()


def _iso(value) -> str | None:
    return value.isoformat() if value is not None else None


def principal_dict(kind: PrincipalKind, principal) -> dict:
    """Public projection. password_hash never leaves this module."""
    payload = {
        "id": principal.id,
        "name": principal.name or "",
        "email": principal.email,
        "phone": principal.phone,
        "role": principal.role,
        "status": principal.status,
        "email_verified": bool(principal.email_verified),
        "last_login_at": _iso(principal.last_login_at),
        "created_at": _iso(principal.created_at),
        "updated_at": _iso(principal.updated_at),
    }
    if hasattr(principal, "is_super"):
        payload["is_super"] = bool(principal.is_super)
    return payload


def _fail(
        kind: PrincipalKind,
        owner_id: int,
        reason: str,
        error: AppError,
        client: ClientInfo,
        session: Session,
        ctx: AuthContext,
) -> AppError:
    """Journals a failed attempt and returns the error for the caller to raise."""
    session_journal.record(
        kind, owner_id, STATUS_FAILED, reason, client, session, ipinfo=ctx.ipinfo,
    )
    return error


def _load_active_for_login(
        kind: PrincipalKind,
        email: str,
        client: ClientInfo,
        session: Session,
        ctx: AuthContext,
        password: str | None = None,
):
    """
    Shared front half of both login steps: look up, optionally check the
    password, require status=active. Journals and raises on every failure.
    """
    principal = _find_by_email(kind, email, session)
    if principal is None:
        raise _fail(
            kind, 0, kind.not_found_reason,
            AppError(kind.login_missing_code, kind.login_missing_message, 400),
            client, session, ctx,
        )

    if password is not None and not check_password(password, principal.password_hash):
        raise _fail(
            kind, principal.id, REASON_BAD_PASSWORD,
            AppError(kind.bad_credentials_code, "The email or password is incorrect.", 400),
            client, session, ctx,
        )

    if principal.status != STATUS_ACTIVE:
        raise _fail(
            kind, principal.id, kind.inactive_reason,
            AppError(kind.inactive_code, "This account is not active.", 400),
            client, session, ctx,
        )

    return principal


def _store_refresh_token(
        kind: PrincipalKind,
        owner_id: int,
        raw_token: str,
        device_info: str,
        session: Session,
        ctx: AuthContext,
) -> None:
    row = kind.refresh_model(
        owner_id=owner_id,
        token_hash=_hash_token(raw_token),
        is_valid=True,
        expires_at=utcnow() + timedelta(seconds=ctx.codec.refresh_ttl),
        device_info=device_info or None,
        created_at=utcnow(),
    )
    session.add(row)
    session.flush()


def _login_envelope(
        kind: PrincipalKind,
        principal,
        access_token: str,
        refresh_token: str,
        ctx: AuthContext,
) -> dict:
    return {
        "access_token": access_token,
        "refresh_token": refresh_token,
        "token_type": TOKEN_TYPE,
        "expires_in": ctx.codec.access_ttl,
        kind.name: principal_dict(kind, principal),
    }


# ── Login ──────────────────────────────────────────────────────────────────

def login(
        kind: PrincipalKind,
        email: str,
        password: str,
        client: ClientInfo,
        session: Session,
        ctx: AuthContext,
) -> dict:
    """
    Step 1: check credentials and email a login code.

    Raises (all 400, all journaled):
      login_missing_code — unknown email (INVALID_CREDENTIALS for users,
                           ADMIN_NOT_FOUND for admins)
      bad_credentials_code — wrong password
      inactive_code — status is not active
    Also AppError(RATE_LIMITED, 429) inside the send cool-down, journaled too.

    Returns: {"message": "...", "expires_in": <code ttl seconds>}
    """
    principal = _load_active_for_login(kind, email, client, session, ctx, password=password)

    try:
        verification_service.issue_code(
            principal.email,
            kind.login_purpose,
            session,
            ttl=ctx.code_ttl,
            user_id=principal.id,
            rate_limiter=ctx.rate_limiter,
        )
    except AppError as exc:
        raise _fail(kind, principal.id, exc.message, exc, client, session, ctx)
    return {
        "message": "A verification code has been sent to your email.",
        "expires_in": ctx.code_ttl,
    }


def login_verify(
        kind: PrincipalKind,
        email: str,
        code: str,
        client: ClientInfo,
        session: Session,
        ctx: AuthContext,
) -> dict:
    """
    Step 2: consume the login code and issue a token pair.

    Raises:
      AppError(INVALID_CODE, 400) — no unused, unexpired matching code
      plus the lookup/inactive errors of step 1

    Returns: {access_token, refresh_token, token_type, expires_in,
              user|admin: {...}, login_session: {...}}
    """
    principal = _load_active_for_login(kind, email, client, session, ctx)

    try:
        consumed = verification_service.verify_code(
            principal.email, kind.login_purpose, code, session, rate_limiter=ctx.rate_limiter,
        )
    except AppError as exc:
        raise _fail(kind, principal.id, exc.message, exc, client, session, ctx)

    if not consumed:
        raise _fail(
            kind, principal.id, REASON_INVALID_CODE,
            AppError(ErrorCode.INVALID_CODE, "The verification code is invalid or has expired.", 400, field="code"),
            client, session, ctx,
        )

    access_token = ctx.codec.encode_access(principal.id, principal.email, principal.role, kind.name)
    refresh_token = ctx.codec.encode_refresh(principal.id, principal.email, principal.role, kind.name)
    _store_refresh_token(kind, principal.id, refresh_token, client.user_agent, session, ctx)

    principal.last_login_at = utcnow()
    if kind.verify_email_on_login:
        principal.email_verified = True
    session.flush()

    journal_row = session_journal.record(
        kind, principal.id, STATUS_SUCCESS, REASON_LOGIN_OK, client, session, ipinfo=ctx.ipinfo,
    )
    logger.info("%s %s logged in", kind.name, principal.id)

    envelope = _login_envelope(kind, principal, access_token, refresh_token, ctx)
    envelope["login_session"] = session_journal.to_dict(journal_row)
    return envelope


# ── Refresh / logout ───────────────────────────────────────────────────────

def refresh(
        kind: PrincipalKind,
        raw_refresh_token: str,
        session: Session,
        ctx: AuthContext,
) -> dict:
    """
    Issues a new access token; the SAME refresh token is returned.

    Raises:
      AppError(TOKEN_INVALID, 401)         — bad signature / expired / malformed
      AppError(REFRESH_TOKEN_INVALID, 401) — unknown, revoked, expired row, owner
                                             mismatch, or a token of the other kind
      AppError(not_found_code, 404)        — principal deleted since issue
      AppError(inactive_code, 400)         — principal deactivated since issue
    """
    claims = ctx.codec.decode_refresh(raw_refresh_token)

    invalid = AppError(
        ErrorCode.REFRESH_TOKEN_INVALID,
        "The refresh token is invalid, expired, or has been revoked.",
        401,
    )
    if claims.user_type != kind.name:
        raise invalid

    model = kind.refresh_model
    record = session.execute(
        select(model).where(
            model.token_hash == _hash_token(raw_refresh_token),
            model.is_valid.is_(True),
            model.expires_at > utcnow(),
            model.owner_id == claims.user_id,
        )
    ).scalar_one_or_none()
    if record is None:
        raise invalid

    principal = session.get(kind.model, claims.user_id)
    if principal is None:
        raise AppError(kind.not_found_code, "The account no longer exists.", 404)
    if principal.status != STATUS_ACTIVE:
        raise AppError(kind.inactive_code, "This account is not active.", 400)

    access_token = ctx.codec.encode_access(principal.id, principal.email, principal.role, kind.name)
    return _login_envelope(kind, principal, access_token, raw_refresh_token, ctx)


def logout(
        kind: PrincipalKind,
        principal_id: int,
        raw_refresh_token: str,
        session: Session,
) -> None:
    """
    Revokes one refresh token owned by the caller.

    Raises:
      AppError(REFRESH_TOKEN_INVALID, 401) — not found, not owned, or already revoked.
    """
    model = kind.refresh_model
    result = session.execute(
        update(model)
        .where(
            model.token_hash == _hash_token(raw_refresh_token),
            model.owner_id == principal_id,
            model.is_valid.is_(True),
        )
        .values(is_valid=False)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise AppError(
            ErrorCode.REFRESH_TOKEN_INVALID,
            "The refresh token is invalid or has already been revoked.",
            401,
        )
    session.flush()


def revoke_all_refresh_tokens(kind: PrincipalKind, principal_id: int, session: Session) -> int:
    """Blanket revocation. Returns how many tokens flipped to invalid."""
    model = kind.refresh_model
    result = session.execute(
        update(model)
        .where(model.owner_id == principal_id, model.is_valid.is_(True))
        .values(is_valid=False)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount or 0


# ── Password reset ─────────────────────────────────────────────────────────

def forgot_password(
        kind: PrincipalKind,
        email: str,
        session: Session,
        ctx: AuthContext,
) -> dict:
    """
    Emails a reset code when the account exists. The response is identical
    either way so the endpoint cannot be used to probe for accounts; the
    cool-down is also applied regardless of existence.
    """
    if ctx.rate_limiter is not None:
        ctx.rate_limiter.acquire_send_slot(email, kind.reset_purpose)

    principal = _find_by_email(kind, email, session)
    if principal is not None:
        verification_service.issue_code(
            principal.email, kind.reset_purpose, session, ttl=ctx.code_ttl, user_id=principal.id,
        )
    else:
        logger.info("password reset requested for unknown %s email", kind.name)

    return {
        "message": "If the email is registered, a verification code has been sent.",
        "expires_in": ctx.code_ttl,
    }


def reset_password(
        kind: PrincipalKind,
        email: str,
        code: str,
        new_password: str,
        session: Session,
        ctx: AuthContext,
) -> dict:
    """
    Replaces the password hash and revokes every refresh token of the
    principal. Both writes share the caller's transaction.

    Raises:
      AppError(INVALID_CODE, 400) — code missing, used, expired, or unknown email
    """
    invalid_code = AppError(
        ErrorCode.INVALID_CODE,
        "The verification code is invalid or has expired.",
        400,
        field="code",
    )

    principal = _find_by_email(kind, email, session)
    if principal is None:
        raise invalid_code

    if not verification_service.verify_code(
            principal.email, kind.reset_purpose, code, session, rate_limiter=ctx.rate_limiter,
    ):
        raise invalid_code

    principal.password_hash = hash_password(new_password, rounds=ctx.bcrypt_rounds)
    session.flush()
    revoked = revoke_all_refresh_tokens(kind, principal.id, session)
    logger.info("%s %s reset password; %d refresh tokens revoked", kind.name, principal.id, revoked)

    return {"message": "Password has been reset. Please log in again."}


# ── Registration / profile ─────────────────────────────────────────────────

def register_user(
        email: str,
        password: str,
        session: Session,
        ctx: AuthContext,
        name: str | None = None,
        phone: str | None = None,
) -> dict:
    """
    Creates an inactive, unverified user. Activation happens through a
    register-type verification code.

    Raises:
      AppError(EMAIL_EXISTS, 400)
      AppError(PHONE_EXISTS, 400)
    """
    existing = session.execute(
        select(User).where(func.lower(User.email) == email.strip().lower())
    ).scalar_one_or_none()
    if existing is not None:
        raise AppError(
            ErrorCode.EMAIL_EXISTS,
            f"The email address '{email}' is already registered.",
            400,
            field="email",
        )

    if phone:
        taken = session.execute(
            select(User.id).where(User.phone == phone)
        ).scalar_one_or_none()
        if taken is not None:
            raise AppError(
                ErrorCode.PHONE_EXISTS,
                "The phone number is already registered.",
                400,
                field="phone",
            )

    now = utcnow()
    user = User(
        name=name,
        email=email.strip(),
        password_hash=hash_password(password, rounds=ctx.bcrypt_rounds),
        phone=phone or None,
        role="user",
        status="inactive",
        email_verified=False,
        created_at=now,
        updated_at=now,
    )
    session.add(user)
    session.flush()
    logger.info("user %s registered", user.id)

    return {"user": principal_dict(USER, user)}


def get_profile(kind: PrincipalKind, principal_id: int, session: Session) -> dict:
    """
    Raises:
      AppError(not_found_code, 404) — deleted between token issue and request.
    """
    principal = session.get(kind.model, principal_id)
    if principal is None:
        raise AppError(kind.not_found_code, f"{kind.name.capitalize()} {principal_id} not found.", 404)
    return {kind.name: principal_dict(kind, principal)}
