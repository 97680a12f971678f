"""
Phone OTP login schema.

- users: identity + OTP bookkeeping columns
- user_sessions: one refresh record per user (SHA-256 of the token)
- otp_verifications: one row per code issuance
- phone_auth_sessions: one row per successful phone login
"""

from __future__ import annotations

import sqlalchemy as sa
from alembic import op

revision = "0001_phone_otp_schema"
down_revision = None
branch_labels = None
depends_on = None

_OTP_PURPOSE = ("LOGIN", "REGISTRATION")
_OTP_STATUS = ("PENDING", "VERIFIED", "EXPIRED", "FAILED")


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("hashed_password", sa.String(255), nullable=False),
        sa.Column("first_name", sa.String(100)),
        sa.Column("last_name", sa.String(100)),
        sa.Column("user_type", sa.String(32), nullable=False),
        sa.Column("status", sa.String(32), nullable=False),
        sa.Column("email_verified", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("phone", sa.String(20)),
        sa.Column("phone_verified", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("phone_verified_at", sa.DateTime()),
        sa.Column("otp_verified", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("otp_attempts", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("otp_blocked_until", sa.DateTime()),
        sa.Column("last_otp_sent_at", sa.DateTime()),
        sa.Column("otp_last_ip", sa.String(45)),
        sa.Column("otp_last_user_agent", sa.String(500)),
        sa.Column("last_login_at", sa.DateTime()),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id", name="pk__users"),
        sa.UniqueConstraint("email", name="uq__users__email"),
        sa.UniqueConstraint("phone", name="uq__users__phone"),
    )

    op.create_table(
        "user_sessions",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("refresh_token", sa.String(255), nullable=False),
        sa.Column("ip_address", sa.String(45)),
        sa.Column("user_agent", sa.String(500)),
        sa.Column("expires_at", sa.DateTime(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id", name="pk__user_sessions"),
        sa.ForeignKeyConstraint(
            ["user_id"], ["users.id"], ondelete="CASCADE", name="fk__user_sessions__user_id__users"
        ),
        sa.UniqueConstraint("user_id", name="uq__user_sessions__user_id"),
    )

    op.create_table(
        "otp_verifications",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("public_id", sa.String(36), nullable=False),
        sa.Column("phone_number", sa.String(20), nullable=False),
        sa.Column("code_digest", sa.String(64), nullable=False),
        sa.Column("code_salt", sa.String(64), nullable=False),
        sa.Column("purpose", sa.Enum(*_OTP_PURPOSE, name="otp_purpose", native_enum=False, length=20), nullable=False),
        sa.Column("status", sa.Enum(*_OTP_STATUS, name="otp_status", native_enum=False, length=20), nullable=False),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("max_attempts", sa.Integer(), nullable=False),
        sa.Column("expires_at", sa.DateTime(), nullable=False),
        sa.Column("last_sent_at", sa.DateTime(), nullable=False),
        sa.Column("verified_at", sa.DateTime()),
        sa.Column("ip_address", sa.String(45)),
        sa.Column("user_agent", sa.String(500)),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id", name="pk__otp_verifications"),
        sa.UniqueConstraint("public_id", name="uq__otp_verifications__public_id"),
        sa.CheckConstraint("attempts >= 0", name="ck__otp_verifications__attempts_non_negative"),
        sa.CheckConstraint("max_attempts > 0", name="ck__otp_verifications__max_attempts_positive"),
    )
    op.create_index("ix_otp_verifications_phone_id", "otp_verifications", ["phone_number", "id"])
    op.create_index("ix_otp_verifications_phone_created", "otp_verifications", ["phone_number", "created_at"])
    op.create_index("ix_otp_verifications_status_expires", "otp_verifications", ["status", "expires_at"])

    op.create_table(
        "phone_auth_sessions",
        sa.Column("id", sa.String(36), nullable=False),
        sa.Column("phone_number", sa.String(20), nullable=False),
        sa.Column("session_token", sa.String(128), nullable=False),
        sa.Column("user_id", sa.Integer(), nullable=False),
        sa.Column("otp_verification_id", sa.Integer()),
        sa.Column("expires_at", sa.DateTime(), nullable=False),
        sa.Column("ip_address", sa.String(45)),
        sa.Column("user_agent", sa.String(500)),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("created_at", sa.DateTime(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), nullable=False),
        sa.PrimaryKeyConstraint("id", name="pk__phone_auth_sessions"),
        sa.UniqueConstraint("session_token", name="uq__phone_auth_sessions__session_token"),
        sa.ForeignKeyConstraint(
            ["user_id"], ["users.id"], ondelete="CASCADE", name="fk__phone_auth_sessions__user_id__users"
        ),
        sa.ForeignKeyConstraint(
            ["otp_verification_id"],
            ["otp_verifications.id"],
            ondelete="SET NULL",
            name="fk__phone_auth_sessions__otp_verification_id__otp_verifications",
        ),
    )
    op.create_index("ix__phone_auth_sessions__phone_number", "phone_auth_sessions", ["phone_number"])
    op.create_index("ix__phone_auth_sessions__user_id", "phone_auth_sessions", ["user_id"])


def downgrade() -> None:
    op.drop_index("ix__phone_auth_sessions__user_id", table_name="phone_auth_sessions")
    op.drop_index("ix__phone_auth_sessions__phone_number", table_name="phone_auth_sessions")
    op.drop_table("phone_auth_sessions")
    op.drop_index("ix_otp_verifications_status_expires", table_name="otp_verifications")
    op.drop_index("ix_otp_verifications_phone_created", table_name="otp_verifications")
    op.drop_index("ix_otp_verifications_phone_id", table_name="otp_verifications")
    op.drop_table("otp_verifications")
    op.drop_table("user_sessions")
    op.drop_table("users")
