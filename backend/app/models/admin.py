"""
models/admin.py — Admin table definition.

Admins are provisioned out of band (seed script / SQL); there is no public
registration path. `is_super` is an extra privilege flag on top of `role`.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, CheckConstraint, DateTime, String, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from backend.app.clock import utcnow
from backend.app.extensions import db


class Admin(db.Model):
    __tablename__ = "admins"

    __table_args__ = (
        CheckConstraint(
            "email LIKE '%@%'",
            name="ck_admins_email_format",
        ),
        CheckConstraint(
            "status IN ('active', 'inactive')",
            name="ck_admins_status",
        ),
    )

    id: Mapped[int] = mapped_column(primary_key=True)

    name: Mapped[str | None] = mapped_column(String(100), nullable=True)

    email: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        unique=True,
    )

    password_hash: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
    )

    phone: Mapped[str | None] = mapped_column(String(32), nullable=True)

    role: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        default="admin",
        server_default="admin",
    )

    is_super: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        server_default="false",
    )

    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default="active",
        server_default="active",
    )

    email_verified: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        server_default="false",
    )

    last_login_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        server_default=func.now(),
    )

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        onupdate=utcnow,
        server_default=func.now(),
    )

    refresh_tokens: Mapped[list["AdminRefreshToken"]] = relationship(  # noqa: F821
        "AdminRefreshToken",
        back_populates="admin",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    def __repr__(self) -> str:  # pragma: no cover
        return f"<Admin id={self.id} email={self.email!r} is_super={self.is_super}>"
