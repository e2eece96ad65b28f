"""
models/refresh_token.py — UserRefreshToken / AdminRefreshToken tables.

One table per principal kind. Both expose `owner_id` as a synonym of their
FK column so services/auth_service.py can treat them uniformly.

Stores the SHA-256 hex digest of the issued refresh JWT, never the token
itself. A compromised DB does not expose valid raw tokens.

`is_valid` only ever goes True → False (logout, password reset). Nothing
flips it back.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, DateTime, ForeignKey, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column, relationship, synonym

from backend.app.clock import utcnow
from backend.app.extensions import db


class UserRefreshToken(db.Model):
    __tablename__ = "user_refresh_tokens"

    id: Mapped[int] = mapped_column(primary_key=True)

    user_id: Mapped[int] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    owner_id = synonym("user_id")

    token_hash: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        unique=True,
    )

    is_valid: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
        server_default="true",
    )

    expires_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )

    device_info: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        server_default=func.now(),
    )

    user: Mapped["User"] = relationship(  # noqa: F821
        "User",
        back_populates="refresh_tokens",
    )

    def __repr__(self) -> str:  # pragma: no cover
        return (
            f"<UserRefreshToken id={self.id} "
            f"user_id={self.user_id} "
            f"is_valid={self.is_valid}>"
        )


class AdminRefreshToken(db.Model):
    __tablename__ = "admin_refresh_tokens"

    id: Mapped[int] = mapped_column(primary_key=True)

    admin_id: Mapped[int] = mapped_column(
        ForeignKey("admins.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    owner_id = synonym("admin_id")

    token_hash: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        unique=True,
    )

    is_valid: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=True,
        server_default="true",
    )

    expires_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )

    device_info: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        server_default=func.now(),
    )

    admin: Mapped["Admin"] = relationship(  # noqa: F821
        "Admin",
        back_populates="refresh_tokens",
    )

    def __repr__(self) -> str:  # pragma: no cover
        return (
            f"<AdminRefreshToken id={self.id} "
            f"admin_id={self.admin_id} "
            f"is_valid={self.is_valid}>"
        )
