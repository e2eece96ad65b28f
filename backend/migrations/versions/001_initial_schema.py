"""Initial schema — principals, tokens, login journals, codes, card detection.

Revision: 001_initial_schema
Created:  2026-10-19

Append-only:
  This file must NEVER be edited after it has been applied to any database.
  If a schema change is required, create a NEW migration file.

Creation order:
  1. users, admins
  2. user_refresh_tokens, admin_refresh_tokens (FK → owner, CASCADE)
  3. user_login_sessions, admin_login_sessions (no FK: owner 0 = unknown email)
  4. verifications
  5. card_detection_records, cd_products, cd_regions
"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op

# ── Alembic revision identifiers ──────────────────────────────────────────
revision: str = "001_initial_schema"
down_revision: str | None = None      # first migration — no parent
branch_labels: tuple | None = None
depends_on: tuple | None = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("NOW()")),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("NOW()")),
    ]


def _login_session_columns() -> list[sa.Column]:
    return [
        sa.Column("ip_address", sa.String(64), nullable=True),
        sa.Column("country", sa.String(100), nullable=True),
        sa.Column("city", sa.String(100), nullable=True),
        sa.Column("region", sa.String(100), nullable=True),
        sa.Column("timezone", sa.String(64), nullable=True),
        sa.Column("organization", sa.String(255), nullable=True),
        sa.Column("location", sa.String(64), nullable=True),
        sa.Column("user_agent", sa.Text(), nullable=True),
        sa.Column("device_type", sa.String(20), nullable=True),
        sa.Column("os", sa.String(50), nullable=True),
        sa.Column("browser", sa.String(50), nullable=True),
        sa.Column("is_trusted", sa.Boolean(), nullable=False, server_default=sa.text("FALSE")),
        sa.Column("login_method", sa.String(20), nullable=False, server_default="password"),
        sa.Column("platform", sa.String(20), nullable=True),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column("reason", sa.String(255), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("NOW()")),
    ]


def upgrade() -> None:
    """Apply the full initial schema."""

    # ── Step 1: principals ─────────────────────────────────────────────────

    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(100), nullable=True),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("password_hash", sa.String(255), nullable=False),
        sa.Column("phone", sa.String(32), nullable=True),
        sa.Column("role", sa.String(50), nullable=False, server_default="user"),
        sa.Column("status", sa.String(20), nullable=False, server_default="inactive"),
        sa.Column("email_verified", sa.Boolean(), nullable=False, server_default=sa.text("FALSE")),
        sa.Column("last_login_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id", name="pk_users"),
        sa.UniqueConstraint("email", name="uq_users_email"),
        sa.UniqueConstraint("phone", name="uq_users_phone"),
        sa.CheckConstraint("email LIKE '%@%'", name="ck_users_email_format"),
        sa.CheckConstraint("status IN ('active', 'inactive')", name="ck_users_status"),
    )

    op.create_table(
        "admins",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(100), nullable=True),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("password_hash", sa.String(255), nullable=False),
        sa.Column("phone", sa.String(32), nullable=True),
        sa.Column("role", sa.String(50), nullable=False, server_default="admin"),
        sa.Column("is_super", sa.Boolean(), nullable=False, server_default=sa.text("FALSE")),
        sa.Column("status", sa.String(20), nullable=False, server_default="active"),
        sa.Column("email_verified", sa.Boolean(), nullable=False, server_default=sa.text("FALSE")),
        sa.Column("last_login_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id", name="pk_admins"),
        sa.UniqueConstraint("email", name="uq_admins_email"),
        sa.CheckConstraint("email LIKE '%@%'", name="ck_admins_email_format"),
        sa.CheckConstraint("status IN ('active', 'inactive')", name="ck_admins_status"),
    )

    # ── Step 2: refresh tokens ─────────────────────────────────────────────
    # Only the SHA-256 hex digest is stored. is_valid never goes back to TRUE.

    for table, owner, parent in (
        ("user_refresh_tokens", "user_id", "users"),
        ("admin_refresh_tokens", "admin_id", "admins"),
    ):
        op.create_table(
            table,
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column(
                owner,
                sa.Integer(),
                sa.ForeignKey(f"{parent}.id", ondelete="CASCADE", name=f"fk_{table}_{owner}"),
                nullable=False,
            ),
            sa.Column("token_hash", sa.String(64), nullable=False),
            sa.Column("is_valid", sa.Boolean(), nullable=False, server_default=sa.text("TRUE")),
            sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("device_info", sa.Text(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("NOW()")),
            sa.PrimaryKeyConstraint("id", name=f"pk_{table}"),
            sa.UniqueConstraint("token_hash", name=f"uq_{table}_hash"),
        )
        op.create_index(f"ix_{table}_{owner}", table, [owner])

    # ── Step 3: login journals ─────────────────────────────────────────────

    for table, owner in (
        ("user_login_sessions", "user_id"),
        ("admin_login_sessions", "admin_id"),
    ):
        op.create_table(
            table,
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column(owner, sa.Integer(), nullable=False),
            *_login_session_columns(),
            sa.PrimaryKeyConstraint("id", name=f"pk_{table}"),
        )
        op.create_index(f"ix_{table}_{owner}", table, [owner])

    # ── Step 4: verification codes ─────────────────────────────────────────

    op.create_table(
        "verifications",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=True),
        sa.Column("target", sa.String(255), nullable=False),
        sa.Column("type", sa.String(32), nullable=False),
        sa.Column("action", sa.String(32), nullable=False, server_default="email_verification"),
        sa.Column("code", sa.String(6), nullable=False),
        sa.Column("is_used", sa.Boolean(), nullable=False, server_default=sa.text("FALSE")),
        sa.Column("sent_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("NOW()")),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("NOW()")),
        sa.PrimaryKeyConstraint("id", name="pk_verifications"),
    )
    op.create_index("idx_verifications_target_type", "verifications", ["target", "type"])
    op.create_index("idx_verifications_expires_at", "verifications", ["expires_at"])

    # ── Step 5: card detection ─────────────────────────────────────────────
    # One row per (request_id, card_number); pending → completed | failed once.

    op.create_table(
        "card_detection_records",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("request_id", sa.String(36), nullable=False),
        sa.Column("card_number", sa.String(255), nullable=False),
        sa.Column("pin_code", sa.String(255), nullable=True),
        sa.Column("product_mark", sa.String(32), nullable=False),
        sa.Column("region_id", sa.Integer(), nullable=True),
        sa.Column("region_name", sa.String(100), nullable=True),
        sa.Column("auto_type", sa.Integer(), nullable=True),
        sa.Column("check_status", sa.String(20), nullable=False, server_default="pending"),
        sa.Column("check_result", sa.Text(), nullable=True),
        sa.Column("error_message", sa.Text(), nullable=True),
        sa.Column("response_code", sa.Integer(), nullable=True),
        sa.Column("response_time", sa.Integer(), nullable=True),
        sa.Column("checked_at", sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id", name="pk_card_detection_records"),
        sa.UniqueConstraint("request_id", "card_number", name="uq_cd_records_request_card"),
        sa.CheckConstraint(
            "check_status IN ('pending', 'completed', 'failed')",
            name="ck_cd_records_check_status",
        ),
    )
    op.create_index("idx_cd_records_user_created", "card_detection_records", ["user_id", "created_at"])
    op.create_index("idx_cd_records_request_id", "card_detection_records", ["request_id"])

    op.create_table(
        "cd_products",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("product_mark", sa.String(32), nullable=False),
        sa.Column("product_name", sa.String(100), nullable=False),
        sa.Column("requires_region", sa.Boolean(), nullable=False, server_default=sa.text("FALSE")),
        sa.Column("requires_pin", sa.Boolean(), nullable=False, server_default=sa.text("FALSE")),
        sa.Column("card_format", sa.String(100), nullable=True),
        sa.Column("card_length_min", sa.Integer(), nullable=True),
        sa.Column("card_length_max", sa.Integer(), nullable=True),
        sa.Column("pin_length", sa.Integer(), nullable=True),
        sa.Column("validation_pattern", sa.String(255), nullable=True),
        sa.Column("supports_auto_type", sa.Boolean(), nullable=False, server_default=sa.text("FALSE")),
        sa.Column("status", sa.String(20), nullable=False, server_default="active"),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id", name="pk_cd_products"),
        sa.UniqueConstraint("product_mark", name="uq_cd_products_product_mark"),
    )

    op.create_table(
        "cd_regions",
        sa.Column("id", sa.Integer(), nullable=False),
        sa.Column("product_mark", sa.String(32), nullable=False),
        sa.Column("region_id", sa.String(32), nullable=False),
        sa.Column("region_name", sa.String(100), nullable=False),
        sa.Column("region_name_en", sa.String(100), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="active"),
        sa.Column("sort_order", sa.Integer(), nullable=False, server_default=sa.text("0")),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id", name="pk_cd_regions"),
        sa.UniqueConstraint("product_mark", "region_id", name="uq_cd_regions_product_region"),
    )
    op.create_index("ix_cd_regions_product_mark", "cd_regions", ["product_mark"])


def downgrade() -> None:
    """Drop everything in reverse dependency order."""
    op.drop_index("ix_cd_regions_product_mark", table_name="cd_regions")
    op.drop_table("cd_regions")
    op.drop_table("cd_products")
    op.drop_index("idx_cd_records_request_id", table_name="card_detection_records")
    op.drop_index("idx_cd_records_user_created", table_name="card_detection_records")
    op.drop_table("card_detection_records")
    op.drop_index("idx_verifications_expires_at", table_name="verifications")
    op.drop_index("idx_verifications_target_type", table_name="verifications")
    op.drop_table("verifications")
    for table, owner in (
        ("admin_login_sessions", "admin_id"),
        ("user_login_sessions", "user_id"),
        ("admin_refresh_tokens", "admin_id"),
        ("user_refresh_tokens", "user_id"),
    ):
        op.drop_index(f"ix_{table}_{owner}", table_name=table)
        op.drop_table(table)
    op.drop_table("admins")
    op.drop_table("users")
