from __future__ import annotations

import enum
import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column

from phoneauth.models.base import Base, TimestampMixin, utc_now


class OtpPurpose(str, enum.Enum):
    LOGIN = "LOGIN"
    REGISTRATION = "REGISTRATION"

    @classmethod
    def parse(cls, value: "str | OtpPurpose | None") -> "OtpPurpose":
        if value is None or value == "":
            return cls.LOGIN
        if isinstance(value, cls):
            return value
        return cls(str(value).strip().upper())


class OtpStatus(str, enum.Enum):
    PENDING = "PENDING"
    VERIFIED = "VERIFIED"
    EXPIRED = "EXPIRED"
    FAILED = "FAILED"


def _uuid_str() -> str:
    return str(uuid.uuid4())


def _enum_values(enum_cls: type[enum.Enum]) -> list[str]:
    return [m.value for m in enum_cls]


class OtpVerification(TimestampMixin, Base):
    """
    One row per code issuance.

    Rows are never deleted. Only PENDING rows change state, and only through
    conditional updates (status = PENDING in the WHERE clause). ``id`` orders
    issuances for the same phone; ``public_id`` is what clients see.
    """

    __tablename__ = "otp_verifications"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    public_id: Mapped[str] = mapped_column(String(36), unique=True, nullable=False, default=_uuid_str)
    phone_number: Mapped[str] = mapped_column(String(20), nullable=False)
    code_digest: Mapped[str] = mapped_column(String(64), nullable=False)
    code_salt: Mapped[str] = mapped_column(String(64), nullable=False)
    purpose: Mapped[OtpPurpose] = mapped_column(
        Enum(OtpPurpose, name="otp_purpose", native_enum=False, values_callable=_enum_values, length=20),
        nullable=False,
        default=OtpPurpose.LOGIN,
    )
    status: Mapped[OtpStatus] = mapped_column(
        Enum(OtpStatus, name="otp_status", native_enum=False, values_callable=_enum_values, length=20),
        nullable=False,
        default=OtpStatus.PENDING,
    )
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default=text("0"))
    max_attempts: Mapped[int] = mapped_column(Integer, nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    last_sent_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, default=utc_now)
    verified_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    ip_address: Mapped[Optional[str]] = mapped_column(String(45))
    user_agent: Mapped[Optional[str]] = mapped_column(String(500))

    __table_args__ = (
        CheckConstraint("attempts >= 0", name="attempts_non_negative"),
        CheckConstraint("max_attempts > 0", name="max_attempts_positive"),
        Index("ix_otp_verifications_phone_id", "phone_number", "id"),
        Index("ix_otp_verifications_phone_created", "phone_number", "created_at"),
        Index("ix_otp_verifications_status_expires", "status", "expires_at"),
    )

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return (now or utc_now()) > self.expires_at

    def __repr__(self) -> str:
        return (
            f"<OtpVerification(id={self.id}, status={self.status}, "
            f"attempts={self.attempts}/{self.max_attempts})>"
        )


class PhoneAuthSession(TimestampMixin, Base):
    """Audit record of a successful phone login."""

    __tablename__ = "phone_auth_sessions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_uuid_str)
    phone_number: Mapped[str] = mapped_column(String(20), nullable=False, index=True)
    session_token: Mapped[str] = mapped_column(String(128), unique=True, nullable=False)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    otp_verification_id: Mapped[Optional[int]] = mapped_column(
        ForeignKey("otp_verifications.id", ondelete="SET NULL")
    )
    expires_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    ip_address: Mapped[Optional[str]] = mapped_column(String(45))
    user_agent: Mapped[Optional[str]] = mapped_column(String(500))
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=text("true"))

    def __repr__(self) -> str:
        return f"<PhoneAuthSession(id={self.id}, user_id={self.user_id}, active={self.is_active})>"


__all__ = ["OtpPurpose", "OtpStatus", "OtpVerification", "PhoneAuthSession"]
