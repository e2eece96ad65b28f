"""
services/verification_service.py — one-time six-digit codes.

Responsibilities:
  - Issue: CSPRNG code, persisted with expires_at = now + ttl, handed to the
    mailer (a log stub; real delivery is outside this service).
  - Verify: consume the most recent unused, unexpired row matching
    (target, purpose, code) in ONE conditional UPDATE, so two concurrent
    attempts with the same code cannot both succeed.
  - Sweep: delete expired rows (`flask cleanup-verifications`).
  - Register flow: sending a register code requires an existing user;
    consuming it activates that user.

A wrong code never invalidates an outstanding one.

Layer rules:
  - No imports from routes or schemas
  - No use of flask.request, flask.g
  - Receives a Session, flushes, never commits
"""

from __future__ import annotations

import logging
import secrets
from datetime import timedelta

from sqlalchemy import delete, func, select, update
from sqlalchemy.orm import Session

from backend.app.clock import utcnow
from backend.app.errors import AppError, ErrorCode
from backend.app.models.user import User
from backend.app.models.verification import Verification
from backend.app.services.principals import (
    ALL_PURPOSES,
    PURPOSE_FORGOT_PASSWORD,
    PURPOSE_REGISTER,
    PURPOSE_RESET_PASSWORD,
)
from backend.app.services.rate_limit import CodeRateLimiter

logger = logging.getLogger(__name__)

DEFAULT_CODE_TTL = 600

# Purposes the stand-alone endpoints may issue or consume. Login codes only
# come from login step 1, after the password has been checked.
PUBLIC_PURPOSES = (PURPOSE_REGISTER, PURPOSE_FORGOT_PASSWORD, PURPOSE_RESET_PASSWORD)


# ── Private helpers ────────────────────────────────────────────────────────

def _generate_code() -> str:
    """Uniform over 000000–999999."""
    return f"{secrets.randbelow(1_000_000):06d}"


def _deliver(target: str, purpose: str, code: str) -> None:
    """Mail stub: the code only ever reaches the log, and only at DEBUG."""
    logger.info("verification code issued to %s for %s", target, purpose)
    logger.debug("verification code for %s/%s: %s", target, purpose, code)


def _check_purpose(purpose: str, allowed: tuple[str, ...] = ALL_PURPOSES) -> None:
    if purpose not in allowed:
        raise AppError(
            ErrorCode.INVALID_FIELD,
            f"Unknown verification type '{purpose}'.",
            400,
            field="type",
        )


# ── Public service functions ───────────────────────────────────────────────

def issue_code(
        target: str,
        purpose: str,
        session: Session,
        ttl: int = DEFAULT_CODE_TTL,
        user_id: int | None = None,
        rate_limiter: CodeRateLimiter | None = None,
) -> Verification:
    """
    Creates and delivers a new code for (target, purpose).

    Raises:
      AppError(RATE_LIMITED, 429) — inside the send cool-down window; nothing
        is written in that case.

    Returns the flushed Verification row.
    """
    _check_purpose(purpose)
    if rate_limiter is not None:
        rate_limiter.acquire_send_slot(target, purpose)

    now = utcnow()
    verification = Verification(
        user_id=user_id,
        target=target,
        type=purpose,
        code=_generate_code(),
        is_used=False,
        sent_at=now,
        expires_at=now + timedelta(seconds=ttl),
        created_at=now,
    )
    session.add(verification)
    session.flush()

    _deliver(target, purpose, verification.code)
    return verification


def verify_code(
        target: str,
        purpose: str,
        code: str,
        session: Session,
        rate_limiter: CodeRateLimiter | None = None,
) -> bool:
    """
    Consumes a matching code. Returns True exactly once per issued code.

    Expired or used rows never match. A miss leaves every row untouched.

    Raises:
      AppError(RATE_LIMITED, 429) — too many failed attempts in the window.
    """
    if rate_limiter is not None:
        rate_limiter.ensure_attempts_left(target, purpose)

    now = utcnow()
    newest_match = (
        select(Verification.id)
        .where(
            Verification.target == target,
            Verification.type == purpose,
            Verification.code == code,
            Verification.is_used.is_(False),
            Verification.expires_at > now,
        )
        .order_by(Verification.created_at.desc(), Verification.id.desc())
        .limit(1)
        .scalar_subquery()
    )
    result = session.execute(
        update(Verification)
        .where(
            Verification.id == newest_match,
            Verification.is_used.is_(False),
        )
        .values(is_used=True)
        .execution_options(synchronize_session=False)
    )
    consumed = result.rowcount == 1

    if rate_limiter is not None:
        if consumed:
            rate_limiter.reset_failures(target, purpose)
        else:
            rate_limiter.record_failure(target, purpose)

    if not consumed:
        logger.info("verification failed for %s/%s", target, purpose)
    return consumed


def sweep_expired(session: Session) -> int:
    """Deletes expired rows. Returns how many were removed."""
    result = session.execute(
        delete(Verification)
        .where(Verification.expires_at < utcnow())
        .execution_options(synchronize_session=False)
    )
    session.flush()
    removed = result.rowcount or 0
    logger.info("swept %d expired verification codes", removed)
    return removed


def send_verification(
        target: str,
        purpose: str,
        session: Session,
        ttl: int = DEFAULT_CODE_TTL,
        rate_limiter: CodeRateLimiter | None = None,
) -> dict:
    """
    POST /verification/send.

    Raises:
      AppError(USER_NOT_FOUND, 400) — register codes need an existing account.

    Returns: {"message": "...", "expires_in": ttl}
    """
    _check_purpose(purpose, PUBLIC_PURPOSES)

    user_id = None
    if purpose == PURPOSE_REGISTER:
        user = session.execute(
            select(User).where(func.lower(User.email) == target.strip().lower())
        ).scalar_one_or_none()
        if user is None:
            raise AppError(
                ErrorCode.USER_NOT_FOUND,
                "No account is registered with this email address.",
                400,
                field="target",
            )
        user_id = user.id

    issue_code(target, purpose, session, ttl=ttl, user_id=user_id, rate_limiter=rate_limiter)
    return {
        "message": "Verification code sent.",
        "expires_in": ttl,
    }


def confirm_verification(
        target: str,
        purpose: str,
        code: str,
        session: Session,
        rate_limiter: CodeRateLimiter | None = None,
) -> dict:
    """
    POST /verification/verify. A register code also activates the account.

    Raises:
      AppError(INVALID_CODE, 400) — no unused, unexpired match.
    """
    _check_purpose(purpose, PUBLIC_PURPOSES)

    if not verify_code(target, purpose, code, session, rate_limiter=rate_limiter):
        raise AppError(
            ErrorCode.INVALID_CODE,
            "The verification code is invalid or has expired.",
            400,
            field="code",
        )

    if purpose == PURPOSE_REGISTER:
        user = session.execute(
            select(User).where(func.lower(User.email) == target.strip().lower())
        ).scalar_one_or_none()
        if user is not None:
            user.status = "active"
            user.email_verified = True
            session.flush()
            logger.info("user %s activated via register code", user.id)

    return {"message": "Verification succeeded."}
