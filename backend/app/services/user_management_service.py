"""
services/user_management_service.py — admin-facing read views over users.

Layer rules:
  - No imports from routes or schemas
  - No use of flask.request, flask.g
  - Read-only: never flushes or commits
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from backend.app.clock import utcnow
from backend.app.errors import AppError, ErrorCode
from backend.app.models.user import User
from backend.app.services.auth_service import principal_dict
from backend.app.services.principals import USER

DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100


def _normalise_page(page: int | None, page_size: int | None) -> tuple[int, int]:
    page = page if page and page > 0 else 1
    if not page_size or page_size < 1 or page_size > MAX_PAGE_SIZE:
        page_size = DEFAULT_PAGE_SIZE
    return page, page_size


def list_users(
        session: Session,
        page: int | None = None,
        page_size: int | None = None,
        status: str | None = None,
        email: str | None = None,
        phone: str | None = None,
) -> dict:
    """
    Paginated user list, newest first.

    status "all" (or empty) disables the status filter. email and phone are
    substring matches.

    Returns: {"total", "page", "size", "users": [...]}
    """
    page, page_size = _normalise_page(page, page_size)

    conditions = []
    if status and status != "all":
        conditions.append(User.status == status)
    if email:
        conditions.append(User.email.ilike(f"%{email}%"))
    if phone:
        conditions.append(User.phone.like(f"%{phone}%"))

    total = session.execute(
        select(func.count(User.id)).where(*conditions)
    ).scalar_one()

    users = session.execute(
        select(User)
        .where(*conditions)
        .order_by(User.created_at.desc(), User.id.desc())
        .limit(page_size)
        .offset((page - 1) * page_size)
    ).scalars().all()

    return {
        "total": total,
        "page": page,
        "size": page_size,
        "users": [principal_dict(USER, user) for user in users],
    }


def user_stats(session: Session, now: datetime | None = None) -> dict:
    """
    Counts by status plus registrations today / this week (Monday start) /
    this month, all in UTC.
    """
    now = now or utcnow()
    start_of_day = datetime(now.year, now.month, now.day, tzinfo=timezone.utc)
    start_of_week = start_of_day - timedelta(days=start_of_day.weekday())
    start_of_month = datetime(now.year, now.month, 1, tzinfo=timezone.utc)

    def _count(*conditions) -> int:
        return session.execute(select(func.count(User.id)).where(*conditions)).scalar_one()

    return {
        "total_users": _count(),
        "active_users": _count(User.status == "active"),
        "inactive_users": _count(User.status == "inactive"),
        "registered_today": _count(User.created_at >= start_of_day),
        "registered_this_week": _count(User.created_at >= start_of_week),
        "registered_this_month": _count(User.created_at >= start_of_month),
    }


def get_user(user_id: int, session: Session) -> dict:
    """
    Raises:
      AppError(USER_NOT_FOUND, 404)
    """
    user = session.get(User, user_id)
    if user is None:
        raise AppError(
            ErrorCode.USER_NOT_FOUND,
            f"User {user_id} not found.",
            404,
        )
    return principal_dict(USER, user)
