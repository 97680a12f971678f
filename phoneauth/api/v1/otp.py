"""
Phone OTP login endpoints.

- POST /auth/otp/send     issue a code and deliver it by SMS
- POST /auth/otp/resend   same as send (cooldown applies)
- POST /auth/otp/verify   check a code; on success provision account + tokens
- POST /auth/otp/refresh  exchange a refresh token for a new access token
- GET  /auth/otp/health   OTP subsystem configuration summary

/send and /resend share one per-ip+phone request throttle, /verify has its own.
Errors leave through phoneauth.core.exceptions handlers as
{success: false, message, code, retryAfterSeconds?}.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends

from phoneauth.core.config import settings
from phoneauth.core.dependencies import (
    get_client_context,
    get_delivery_adapter,
    get_otp_service,
    send_rate_limit,
    verify_rate_limit,
)
from phoneauth.schemas.base import ErrorResponse, SuccessResponse
from phoneauth.schemas.otp import OtpHealth, OtpSendRequest, OtpVerifyRequest, RefreshTokenRequest
from phoneauth.services.delivery import DeliveryAdapter
from phoneauth.services.otp_service import ClientContext, OtpService

router = APIRouter(prefix="/auth/otp", tags=["Phone OTP"])

_ERRORS = {
    400: {"model": ErrorResponse, "description": "Invalid phone, code or request"},
    429: {"model": ErrorResponse, "description": "Rate limited or blocked"},
    500: {"model": ErrorResponse, "description": "Server error"},
}


async def _send(body: OtpSendRequest, service: OtpService, ctx: ClientContext) -> SuccessResponse:
    outcome = await service.send_otp(body.phone, body.purpose, ctx)
    return SuccessResponse(message="Verification code sent", data=outcome.to_dict())


@router.post("/send", response_model=SuccessResponse, responses=_ERRORS, dependencies=[Depends(send_rate_limit)])
async def send_otp(
    body: OtpSendRequest,
    service: OtpService = Depends(get_otp_service),
    ctx: ClientContext = Depends(get_client_context),
):
    return await _send(body, service, ctx)


@router.post("/resend", response_model=SuccessResponse, responses=_ERRORS, dependencies=[Depends(send_rate_limit)])
async def resend_otp(
    body: OtpSendRequest,
    service: OtpService = Depends(get_otp_service),
    ctx: ClientContext = Depends(get_client_context),
):
    return await _send(body, service, ctx)


@router.post(
    "/verify", response_model=SuccessResponse, responses=_ERRORS, dependencies=[Depends(verify_rate_limit)]
)
async def verify_otp(
    body: OtpVerifyRequest,
    service: OtpService = Depends(get_otp_service),
    ctx: ClientContext = Depends(get_client_context),
):
    outcome = await service.verify_otp(body.phone, body.code, ctx)
    message = "Account created and signed in" if outcome.is_new_user else "Signed in"
    return SuccessResponse(message=message, data=outcome.to_dict())


@router.post(
    "/refresh",
    response_model=SuccessResponse,
    responses={401: {"model": ErrorResponse, "description": "Invalid refresh token"}},
)
async def refresh_token(body: RefreshTokenRequest, service: OtpService = Depends(get_otp_service)):
    issued = await service.refresh_access_token(body.refresh_token)
    return SuccessResponse(
        message="Token refreshed",
        data={"accessToken": issued.access_token, "expiresInSeconds": issued.access_expires_in},
    )


@router.get("/health", response_model=SuccessResponse)
async def otp_health(delivery: DeliveryAdapter = Depends(get_delivery_adapter)):
    policy = delivery.policy
    health = OtpHealth(
        dev_mode=policy.dev_mode,
        delivery_provider=delivery.provider_name,
        code_length=policy.code_length,
        expiry_minutes=policy.expiry_seconds / 60,
        database=settings.DATABASE_URL.split("://", 1)[0],
    )
    return SuccessResponse(message="OTP service is healthy", data=health.model_dump(by_alias=True))
