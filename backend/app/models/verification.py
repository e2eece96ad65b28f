"""
models/verification.py — one-time verification code table.

A row is valid only while is_used is false and expires_at is in the future.
Consumption flips is_used in a single conditional UPDATE
(services/verification_service.py); expired rows are swept by the
`flask cleanup-verifications` command.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Boolean, DateTime, Index, Integer, String, func
from sqlalchemy.orm import Mapped, mapped_column

from backend.app.clock import utcnow
from backend.app.extensions import db


class Verification(db.Model):
    __tablename__ = "verifications"

    __table_args__ = (
        Index("idx_verifications_target_type", "target", "type"),
        Index("idx_verifications_expires_at", "expires_at"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)

    # Owner when known (register flow); codes for login/reset are keyed by target only.
    user_id: Mapped[int | None] = mapped_column(Integer, nullable=True)

    target: Mapped[str] = mapped_column(String(255), nullable=False)

    # Purpose tag: register | user_login | admin_login | forgot_password | reset_password
    type: Mapped[str] = mapped_column(String(32), nullable=False)

    action: Mapped[str] = mapped_column(
        String(32),
        nullable=False,
        default="email_verification",
        server_default="email_verification",
    )

    code: Mapped[str] = mapped_column(String(6), nullable=False)

    is_used: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        server_default="false",
    )

    sent_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        server_default=func.now(),
    )

    expires_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        server_default=func.now(),
    )

    def __repr__(self) -> str:  # pragma: no cover
        return (
            f"<Verification id={self.id} target={self.target!r} "
            f"type={self.type!r} is_used={self.is_used}>"
        )
