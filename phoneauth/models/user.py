from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, String, text
from sqlalchemy.orm import Mapped, mapped_column

from phoneauth.models.base import Base, TimestampMixin, utc_now


class User(TimestampMixin, Base):
    """
    Marketplace account.

    Only the identity fields and the OTP bookkeeping live here; profile data
    belongs to other services. otp_attempts counts how many times the user has
    been blocked and is never reset by issuing a new code.
    """

    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    hashed_password: Mapped[str] = mapped_column(String(255), nullable=False)
    first_name: Mapped[Optional[str]] = mapped_column(String(100))
    last_name: Mapped[Optional[str]] = mapped_column(String(100))
    user_type: Mapped[str] = mapped_column(String(32), nullable=False, default="consumer")
    status: Mapped[str] = mapped_column(String(32), nullable=False, default="active")
    email_verified: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default=text("false"))

    phone: Mapped[Optional[str]] = mapped_column(String(20), unique=True)
    phone_verified: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default=text("false"))
    phone_verified_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    otp_verified: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default=text("false"))
    otp_attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default=text("0"))
    otp_blocked_until: Mapped[Optional[datetime]] = mapped_column(DateTime)
    last_otp_sent_at: Mapped[Optional[datetime]] = mapped_column(DateTime)
    otp_last_ip: Mapped[Optional[str]] = mapped_column(String(45))
    otp_last_user_agent: Mapped[Optional[str]] = mapped_column(String(500))
    last_login_at: Mapped[Optional[datetime]] = mapped_column(DateTime)

    def to_public_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "email": self.email,
            "firstName": self.first_name,
            "lastName": self.last_name,
            "userType": self.user_type,
            "phone": self.phone,
            "phoneVerified": self.phone_verified,
            "emailVerified": self.email_verified,
            "status": self.status,
        }

    def __repr__(self) -> str:
        return f"<User(id={self.id}, phone={self.phone!r}, type={self.user_type!r})>"


class UserSession(TimestampMixin, Base):
    """Refresh credential record. At most one per user; the token is stored as SHA-256."""

    __tablename__ = "user_sessions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), unique=True, nullable=False)
    refresh_token: Mapped[str] = mapped_column(String(255), nullable=False)
    ip_address: Mapped[Optional[str]] = mapped_column(String(45))
    user_agent: Mapped[Optional[str]] = mapped_column(String(500))
    expires_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=text("true"))

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        return (now or utc_now()) > self.expires_at

    def __repr__(self) -> str:
        return f"<UserSession(id={self.id}, user_id={self.user_id}, active={self.is_active})>"


__all__ = ["User", "UserSession"]
