from phoneauth.models.base import Base, utc_now
from phoneauth.models.otp import OtpPurpose, OtpStatus, OtpVerification, PhoneAuthSession
from phoneauth.models.user import User, UserSession

__all__ = [
    "Base",
    "utc_now",
    "OtpPurpose",
    "OtpStatus",
    "OtpVerification",
    "PhoneAuthSession",
    "User",
    "UserSession",
]
