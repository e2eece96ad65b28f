"""
models/card_detection.py — detection records and the product/region catalog.

CardDetectionRecord:
  One row per (request_id, card_number). Inserted as 'pending' before the
  upstream call and moved exactly once to 'completed' or 'failed'.
  check_result holds the upstream envelope verbatim as JSON text.

CDProduct / CDRegion:
  Read-only catalog maintained by operators; the API only lists them.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from backend.app.clock import utcnow
from backend.app.extensions import db


CHECK_STATUS_PENDING   = "pending"
CHECK_STATUS_COMPLETED = "completed"
CHECK_STATUS_FAILED    = "failed"


class CardDetectionRecord(db.Model):
    __tablename__ = "card_detection_records"

    __table_args__ = (
        UniqueConstraint("request_id", "card_number", name="uq_cd_records_request_card"),
        CheckConstraint(
            "check_status IN ('pending', 'completed', 'failed')",
            name="ck_cd_records_check_status",
        ),
        Index("idx_cd_records_user_created", "user_id", "created_at"),
        Index("idx_cd_records_request_id", "request_id"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)

    user_id: Mapped[int] = mapped_column(Integer, nullable=False)

    # UUID4 shared by every card of one submission.
    request_id: Mapped[str] = mapped_column(String(36), nullable=False)

    card_number: Mapped[str] = mapped_column(String(255), nullable=False)
    pin_code: Mapped[str | None] = mapped_column(String(255), nullable=True)
    product_mark: Mapped[str] = mapped_column(String(32), nullable=False)
    region_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    region_name: Mapped[str | None] = mapped_column(String(100), nullable=True)
    auto_type: Mapped[int | None] = mapped_column(Integer, nullable=True)

    check_status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=CHECK_STATUS_PENDING,
        server_default=CHECK_STATUS_PENDING,
    )
    check_result: Mapped[str | None] = mapped_column(Text, nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    response_code: Mapped[int | None] = mapped_column(Integer, nullable=True)
    # Milliseconds.
    response_time: Mapped[int | None] = mapped_column(Integer, nullable=True)
    checked_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

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

    def __repr__(self) -> str:  # pragma: no cover
        return (
            f"<CardDetectionRecord id={self.id} request_id={self.request_id!r} "
            f"check_status={self.check_status!r}>"
        )


class CDProduct(db.Model):
    __tablename__ = "cd_products"

    id: Mapped[int] = mapped_column(primary_key=True)
    product_mark: Mapped[str] = mapped_column(String(32), nullable=False, unique=True)
    product_name: Mapped[str] = mapped_column(String(100), nullable=False)
    requires_region: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="false")
    requires_pin: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="false")
    card_format: Mapped[str | None] = mapped_column(String(100), nullable=True)
    card_length_min: Mapped[int | None] = mapped_column(Integer, nullable=True)
    card_length_max: Mapped[int | None] = mapped_column(Integer, nullable=True)
    pin_length: Mapped[int | None] = mapped_column(Integer, nullable=True)
    validation_pattern: Mapped[str | None] = mapped_column(String(255), nullable=True)
    supports_auto_type: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default="false")
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="active", server_default="active")
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow, server_default=func.now(),
    )


class CDRegion(db.Model):
    __tablename__ = "cd_regions"

    __table_args__ = (
        UniqueConstraint("product_mark", "region_id", name="uq_cd_regions_product_region"),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    product_mark: Mapped[str] = mapped_column(String(32), nullable=False, index=True)
    # Xbox regions are keyed by name, so the id column is textual.
    region_id: Mapped[str] = mapped_column(String(32), nullable=False)
    region_name: Mapped[str] = mapped_column(String(100), nullable=False)
    region_name_en: Mapped[str | None] = mapped_column(String(100), nullable=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="active", server_default="active")
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now(),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow, server_default=func.now(),
    )
