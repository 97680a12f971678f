from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import timedelta
from functools import lru_cache
from typing import Any, Dict, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

log = logging.getLogger(__name__)

_DEV_JWT_SECRET = "change-me-in-production"


# ================================
# HELPERS
# ================================
def _mask_secret(val: Optional[str]) -> Optional[str]:
    if val is None:
        return None
    s = str(val)
    if len(s) <= 6:
        return "***"
    return s[:3] + "***" + s[-3:]


def _normalize_async_url(url: str) -> str:
    if url.startswith("postgres://"):
        url = url.replace("postgres://", "postgresql://", 1)
    if url.startswith("postgresql+"):
        return "postgresql+asyncpg://" + url.split("://", 1)[1]
    if url.startswith("postgresql://"):
        return url.replace("postgresql://", "postgresql+asyncpg://", 1)
    if url.startswith("sqlite://") and not url.startswith("sqlite+aiosqlite://"):
        return url.replace("sqlite://", "sqlite+aiosqlite://", 1)
    return url


# ================================
# OTP POLICY
# ================================
@dataclass(frozen=True)
class OtpPolicy:
    """
    Immutable snapshot of the OTP knobs.

    Built once from Settings and handed to every component at construction,
    so tests can run components with their own policy without touching env.
    """

    code_length: int = 6
    expiry: timedelta = timedelta(minutes=10)
    resend_cooldown_seconds: int = 60
    max_attempts: int = 5
    block_duration: timedelta = timedelta(minutes=15)
    max_per_hour: int = 5
    session_lifetime: timedelta = timedelta(days=7)
    access_token_lifetime: timedelta = timedelta(minutes=15)
    refresh_token_lifetime: timedelta = timedelta(days=7)
    dev_mode: bool = False
    dev_code: str = "123456"
    enforce_rate_limits: bool = True
    default_country_code: str = "1"
    account_email_domain: str = "fixrx.app"

    @property
    def expiry_seconds(self) -> int:
        return int(self.expiry.total_seconds())

    @property
    def block_seconds(self) -> int:
        return int(self.block_duration.total_seconds())


# ================================
# SETTINGS
# ================================
class Settings(BaseSettings):
    """
    Application settings (env / .env).

    - OTP policy knobs are flat env vars, folded into OtpPolicy by otp_policy().
    - Postgres URLs are normalized to asyncpg, plain sqlite to aiosqlite.
    - JWT_REFRESH_SECRET_KEY is optional and falls back to JWT_SECRET_KEY.
    """

    model_config = SettingsConfigDict(
        env_file=(".env.test", ".env"),
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="ignore",
        env_ignore_empty=True,
    )

    # ---- base
    APP_NAME: str = Field(default="phoneauth", description="Application name")
    VERSION: str = Field(default="0.1.0", description="Application version")
    ENVIRONMENT: str = Field(default="development", description="Environment")
    DEBUG: bool = Field(default=False, description="Debug mode")
    API_V1_STR: str = Field(default="/api/v1", description="API v1 prefix")

    # ---- database
    DATABASE_URL: str = Field(
        default="sqlite+aiosqlite:///./phoneauth.db", description="Async SQLAlchemy database URL"
    )
    SQLALCHEMY_ECHO: bool = Field(default=False, description="Echo SQL statements")

    # ---- logging
    LOG_LEVEL: str = Field(default="INFO", description="Logging level")
    LOG_FORMAT: str = Field(default="json", description="Logging format (json|text)")

    # ---- JWT
    JWT_SECRET_KEY: str = Field(default=_DEV_JWT_SECRET, description="Access token signing key")
    JWT_REFRESH_SECRET_KEY: Optional[str] = Field(default=None, description="Refresh token signing key")
    JWT_ALGORITHM: str = Field(default="HS256", description="JWT algorithm")

    # ---- OTP
    OTP_CODE_LENGTH: int = Field(default=6, ge=4, le=10, description="Digits per code")
    OTP_EXPIRY_MINUTES: float = Field(default=10, gt=0, description="Code lifetime (minutes)")
    OTP_RESEND_COOLDOWN_SECONDS: int = Field(default=60, ge=0, description="Minimum gap between sends")
    OTP_MAX_ATTEMPTS: int = Field(default=5, ge=1, description="Wrong guesses before a code fails")
    OTP_BLOCK_DURATION_MINUTES: float = Field(default=15, gt=0, description="User block after failed code")
    OTP_MAX_PER_HOUR: int = Field(default=5, ge=1, description="Issuances per phone per rolling hour")
    OTP_SESSION_EXPIRE_DAYS: int = Field(default=7, ge=1, description="Phone-auth session lifetime")
    OTP_ACCESS_TOKEN_EXPIRE_MINUTES: int = Field(default=15, ge=1, description="Access token lifetime")
    OTP_REFRESH_TOKEN_EXPIRE_DAYS: int = Field(default=7, ge=1, description="Refresh token lifetime")
    OTP_DEV_MODE: bool = Field(default=False, description="Fixed code, console delivery, advisory limits")
    OTP_DEV_CODE: str = Field(default="123456", description="Fixed code used in dev mode")
    OTP_ENFORCE_RATE_LIMITS: Optional[bool] = Field(
        default=None, description="Reject on limit hit (default: not OTP_DEV_MODE)"
    )
    OTP_DEFAULT_COUNTRY_CODE: str = Field(default="1", description="Country code for 10-digit numbers")
    OTP_ACCOUNT_EMAIL_DOMAIN: str = Field(default="fixrx.app", description="Domain of placeholder emails")
    OTP_EXPIRY_SWEEP_SECONDS: int = Field(default=0, ge=0, description="Expiry sweep interval, 0 disables")
    OTP_SEND_RATE_LIMIT: Optional[int] = Field(
        default=None, ge=1, description="Send/resend requests per ip+phone per window (default: 5, dev 100)"
    )
    OTP_VERIFY_RATE_LIMIT: Optional[int] = Field(
        default=None, ge=1, description="Verify requests per ip+phone per window (default: 10, dev 200)"
    )
    OTP_RATE_LIMIT_WINDOW_SECONDS: int = Field(default=300, ge=1, description="Request throttle window")

    # ---- SMS
    SMS_PROVIDER: str = Field(default="console", description="twilio|mobizon|console")
    SMS_TIMEOUT_SECONDS: float = Field(default=10.0, gt=0, description="Delivery timeout")
    TWILIO_ACCOUNT_SID: Optional[str] = Field(default=None, description="Twilio account SID")
    TWILIO_AUTH_TOKEN: Optional[str] = Field(default=None, description="Twilio auth token")
    TWILIO_FROM_NUMBER: Optional[str] = Field(default=None, description="Twilio sender number")
    TWILIO_API_URL: str = Field(default="https://api.twilio.com/2010-04-01", description="Twilio API URL")
    MOBIZON_API_KEY: Optional[str] = Field(default=None, description="Mobizon API key")
    MOBIZON_API_URL: str = Field(default="https://api.mobizon.kz/service", description="Mobizon API URL")
    MOBIZON_FROM: Optional[str] = Field(default=None, description="Mobizon sender name")

    @field_validator("DATABASE_URL")
    @classmethod
    def _async_driver(cls, v: str) -> str:
        return _normalize_async_url(v.strip())

    @field_validator("SMS_PROVIDER")
    @classmethod
    def _provider_lower(cls, v: str) -> str:
        return v.strip().lower()

    @field_validator("OTP_DEV_CODE")
    @classmethod
    def _digits_only(cls, v: str) -> str:
        if not (v.isascii() and v.isdigit()):
            raise ValueError("OTP_DEV_CODE must contain digits only")
        return v

    # ---- derived
    @property
    def is_production(self) -> bool:
        return self.ENVIRONMENT.lower() == "production"

    @property
    def refresh_secret_key(self) -> str:
        return self.JWT_REFRESH_SECRET_KEY or self.JWT_SECRET_KEY

    @property
    def enforce_rate_limits(self) -> bool:
        if self.OTP_ENFORCE_RATE_LIMITS is None:
            return not self.OTP_DEV_MODE
        return self.OTP_ENFORCE_RATE_LIMITS

    @property
    def otp_send_rate_limit(self) -> int:
        if self.OTP_SEND_RATE_LIMIT is None:
            return 100 if self.OTP_DEV_MODE else 5
        return self.OTP_SEND_RATE_LIMIT

    @property
    def otp_verify_rate_limit(self) -> int:
        if self.OTP_VERIFY_RATE_LIMIT is None:
            return 200 if self.OTP_DEV_MODE else 10
        return self.OTP_VERIFY_RATE_LIMIT

    def otp_policy(self) -> OtpPolicy:
        return OtpPolicy(
            code_length=self.OTP_CODE_LENGTH,
            expiry=timedelta(minutes=self.OTP_EXPIRY_MINUTES),
            resend_cooldown_seconds=self.OTP_RESEND_COOLDOWN_SECONDS,
            max_attempts=self.OTP_MAX_ATTEMPTS,
            block_duration=timedelta(minutes=self.OTP_BLOCK_DURATION_MINUTES),
            max_per_hour=self.OTP_MAX_PER_HOUR,
            session_lifetime=timedelta(days=self.OTP_SESSION_EXPIRE_DAYS),
            access_token_lifetime=timedelta(minutes=self.OTP_ACCESS_TOKEN_EXPIRE_MINUTES),
            refresh_token_lifetime=timedelta(days=self.OTP_REFRESH_TOKEN_EXPIRE_DAYS),
            dev_mode=self.OTP_DEV_MODE,
            dev_code=self.OTP_DEV_CODE,
            enforce_rate_limits=self.enforce_rate_limits,
            default_country_code=self.OTP_DEFAULT_COUNTRY_CODE,
            account_email_domain=self.OTP_ACCOUNT_EMAIL_DOMAIN,
        )

    def check_secret_key(self) -> None:
        if self.is_production and self.JWT_SECRET_KEY == _DEV_JWT_SECRET:
            raise ValueError("JWT_SECRET_KEY must be set in production")
        if not self.JWT_REFRESH_SECRET_KEY:
            log.warning("JWT_REFRESH_SECRET_KEY is not set; refresh tokens are signed with JWT_SECRET_KEY")
        if len(self.OTP_DEV_CODE) != self.OTP_CODE_LENGTH:
            log.warning(
                "OTP_DEV_CODE length %s differs from OTP_CODE_LENGTH %s",
                len(self.OTP_DEV_CODE),
                self.OTP_CODE_LENGTH,
            )

    def dump_settings_safe(self) -> Dict[str, Any]:
        data = self.model_dump()
        for key in ("JWT_SECRET_KEY", "JWT_REFRESH_SECRET_KEY", "TWILIO_AUTH_TOKEN", "MOBIZON_API_KEY"):
            data[key] = _mask_secret(data.get(key))
        return data


@lru_cache
def get_settings() -> Settings:
    s = Settings()
    s.check_secret_key()
    return s


settings = get_settings()

__all__ = ["OtpPolicy", "Settings", "get_settings", "settings"]
