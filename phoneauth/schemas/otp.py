from __future__ import annotations

from typing import Optional

from pydantic import Field, field_validator

from phoneauth.models.otp import OtpPurpose
from phoneauth.schemas.base import CamelModel


class OtpSendRequest(CamelModel):
    phone: str = Field(..., min_length=1, max_length=64, description="Phone number in any common format")
    purpose: OtpPurpose = Field(default=OtpPurpose.LOGIN, description="LOGIN or REGISTRATION")

    @field_validator("purpose", mode="before")
    @classmethod
    def _purpose_upper(cls, v):
        if v is None or v == "":
            return OtpPurpose.LOGIN
        return str(v).strip().upper() if isinstance(v, str) else v


class OtpVerifyRequest(CamelModel):
    phone: str = Field(..., min_length=1, max_length=64)
    code: str = Field(..., min_length=1, max_length=12, description="Code received by SMS")


class RefreshTokenRequest(CamelModel):
    refresh_token: str = Field(..., min_length=1)


class OtpHealth(CamelModel):
    status: str = "ok"
    dev_mode: bool
    delivery_provider: str
    code_length: int
    expiry_minutes: float
    database: Optional[str] = None
