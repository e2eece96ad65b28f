"""
models/login_session.py — append-only login journal, one table per principal kind.

Every login step (success or failure) inserts exactly one row. Rows are never
updated. Failed attempts for an unknown email are recorded with owner 0, so
the owner column carries no foreign key.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, DateTime, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column, synonym

from backend.app.clock import utcnow
from backend.app.extensions import db


class _LoginSessionColumns:
    """Columns shared by both journals. Not a table on its own."""

    id: Mapped[int] = mapped_column(primary_key=True)

    ip_address: Mapped[str | None] = mapped_column(String(64), nullable=True)

    country: Mapped[str | None] = mapped_column(String(100), nullable=True)
    city: Mapped[str | None] = mapped_column(String(100), nullable=True)
    region: Mapped[str | None] = mapped_column(String(100), nullable=True)
    timezone: Mapped[str | None] = mapped_column(String(64), nullable=True)
    organization: Mapped[str | None] = mapped_column(String(255), nullable=True)
    location: Mapped[str | None] = mapped_column(String(64), nullable=True)

    user_agent: Mapped[str | None] = mapped_column(Text, nullable=True)
    device_type: Mapped[str | None] = mapped_column(String(20), nullable=True)
    os: Mapped[str | None] = mapped_column(String(50), nullable=True)
    browser: Mapped[str | None] = mapped_column(String(50), nullable=True)
    is_trusted: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        server_default="false",
    )

    login_method: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default="password",
        server_default="password",
    )
    platform: Mapped[str | None] = mapped_column(String(20), nullable=True)

    # success | failed
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    reason: Mapped[str | None] = mapped_column(String(255), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        server_default=func.now(),
    )


class UserLoginSession(_LoginSessionColumns, db.Model):
    __tablename__ = "user_login_sessions"

    user_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)

    owner_id = synonym("user_id")

    def __repr__(self) -> str:  # pragma: no cover
        return f"<UserLoginSession id={self.id} user_id={self.user_id} status={self.status!r}>"


class AdminLoginSession(_LoginSessionColumns, db.Model):
    __tablename__ = "admin_login_sessions"

    admin_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)

    owner_id = synonym("admin_id")

    def __repr__(self) -> str:  # pragma: no cover
        return f"<AdminLoginSession id={self.id} admin_id={self.admin_id} status={self.status!r}>"
