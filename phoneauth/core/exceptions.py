"""
Domain exceptions & FastAPI handlers for phoneauth.

Every failure leaves the API as the same envelope:

    {"success": false, "message": ..., "code": ..., "retryAfterSeconds"?: ..., ...}

- Domain exceptions carry a stable error code and an HTTP status.
- Retry hints are mirrored into the Retry-After header.
- Request validation maps to VALIDATION_ERROR.
- Anything unexpected maps to SERVER_ERROR; details only go to the log.
"""

from __future__ import annotations

import math
from typing import Any, Dict, Optional

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException

from phoneauth.core.logging import get_logger

logger = get_logger(__name__)

# -----------------------------------------------------------------------------
# Custom domain exceptions
# -----------------------------------------------------------------------------


class PhoneAuthException(Exception):
    """Base domain exception."""

    code: str = "SERVER_ERROR"
    http_status: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message: str = "An unexpected error occurred"

    def __init__(
        self,
        message: Optional[str] = None,
        code: Optional[str] = None,
        *,
        retry_after: Optional[float] = None,
        extra: Optional[Dict[str, Any]] = None,
        http_status: Optional[int] = None,
    ):
        self.message = message or self.default_message
        if code is not None:
            self.code = code
        if http_status is not None:
            self.http_status = http_status
        self.retry_after = None if retry_after is None else max(1, math.ceil(retry_after))
        self.extra = extra or {}
        super().__init__(self.message)

    def to_body(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"success": False, "message": self.message, "code": self.code}
        if self.retry_after is not None:
            body["retryAfterSeconds"] = self.retry_after
        body.update(self.extra)
        return body

    @property
    def headers(self) -> Dict[str, str]:
        if self.retry_after is None:
            return {}
        return {"Retry-After": str(self.retry_after)}


class InvalidPhoneError(PhoneAuthException):
    code = "INVALID_PHONE"
    http_status = status.HTTP_400_BAD_REQUEST
    default_message = "Invalid phone number format"


class RateLimitError(PhoneAuthException):
    code = "RATE_LIMIT"
    http_status = status.HTTP_429_TOO_MANY_REQUESTS
    default_message = "Too many requests. Please try again later"


class TooManyAttemptsError(PhoneAuthException):
    code = "TOO_MANY_ATTEMPTS"
    http_status = status.HTTP_429_TOO_MANY_REQUESTS
    default_message = "Too many failed attempts. Please try again later"


class VerificationNotFoundError(PhoneAuthException):
    code = "VERIFICATION_NOT_FOUND"
    http_status = status.HTTP_400_BAD_REQUEST
    default_message = "No active verification found. Please request a new code"


class OtpExpiredError(PhoneAuthException):
    code = "OTP_EXPIRED"
    http_status = status.HTTP_400_BAD_REQUEST
    default_message = "Verification code has expired. Please request a new code"


class InvalidCodeError(PhoneAuthException):
    code = "INVALID_CODE"
    http_status = status.HTTP_400_BAD_REQUEST
    default_message = "Invalid verification code"


class AuthenticationError(PhoneAuthException):
    code = "INVALID_REFRESH_TOKEN"
    http_status = status.HTTP_401_UNAUTHORIZED
    default_message = "Invalid or expired refresh token"


class ServerError(PhoneAuthException):
    """Raised when provisioning fails after a code was accepted."""


# -----------------------------------------------------------------------------
# Exception Handlers (FastAPI)
# -----------------------------------------------------------------------------


def _envelope(status_code: int, body: Dict[str, Any], headers: Optional[Dict[str, str]] = None) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=body, headers=headers or None)


async def phoneauth_exception_handler(request: Request, exc: PhoneAuthException) -> JSONResponse:
    log = logger.error if exc.http_status >= 500 else logger.info
    log(
        "phoneauth_exception",
        exception_type=type(exc).__name__,
        error_code=exc.code,
        message=exc.message,
        path=request.url.path,
        method=request.method,
    )
    return _envelope(exc.http_status, exc.to_body(), exc.headers)


async def request_validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    logger.info("request_validation_failed", path=request.url.path, errors=len(errors))
    first = errors[0] if errors else {}
    loc = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
    message = f"{loc}: {first.get('msg')}" if loc else str(first.get("msg") or "Invalid request")
    body = {"success": False, "message": message, "code": "VALIDATION_ERROR"}
    return _envelope(status.HTTP_400_BAD_REQUEST, body)


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    body = {"success": False, "message": str(exc.detail), "code": f"HTTP_{exc.status_code}"}
    return _envelope(exc.status_code, body, getattr(exc, "headers", None))


async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Fallback handler for uncaught exceptions."""
    logger.error(
        "unhandled_exception",
        exc_info=exc,
        path=request.url.path,
        method=request.method,
    )
    body = {
        "success": False,
        "message": "Internal server error. Please try again later",
        "code": "SERVER_ERROR",
    }
    return _envelope(status.HTTP_500_INTERNAL_SERVER_ERROR, body)


# -----------------------------------------------------------------------------
# Registration
# -----------------------------------------------------------------------------


def register_exception_handlers(app: FastAPI) -> None:
    """Attach all exception handlers to FastAPI app."""
    app.add_exception_handler(PhoneAuthException, phoneauth_exception_handler)
    app.add_exception_handler(RequestValidationError, request_validation_exception_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(Exception, global_exception_handler)


__all__ = [
    "PhoneAuthException",
    "InvalidPhoneError",
    "RateLimitError",
    "TooManyAttemptsError",
    "VerificationNotFoundError",
    "OtpExpiredError",
    "InvalidCodeError",
    "AuthenticationError",
    "ServerError",
    "register_exception_handlers",
]
