from phoneauth.schemas.base import ErrorResponse, SuccessResponse
from phoneauth.schemas.otp import OtpHealth, OtpSendRequest, OtpVerifyRequest, RefreshTokenRequest

__all__ = [
    "ErrorResponse",
    "SuccessResponse",
    "OtpHealth",
    "OtpSendRequest",
    "OtpVerifyRequest",
    "RefreshTokenRequest",
]
