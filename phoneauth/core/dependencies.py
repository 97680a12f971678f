"""
FastAPI dependencies:
- client context (ip, user agent)
- clock (overridable in tests)
- delivery adapter (one per app, keeps the provider's HTTP connection pool)
- OtpService per request
- request throttles for send/resend and verify (per ip + phone, in-memory)
"""

from __future__ import annotations

import math
import time
from collections import deque
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Deque, Dict

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from phoneauth.core.config import settings
from phoneauth.core.db import get_db
from phoneauth.core.exceptions import RateLimitError, TooManyAttemptsError
from phoneauth.core.logging import get_logger, mask_phone
from phoneauth.integrations.sms_base import get_sms_client
from phoneauth.models.base import utc_now
from phoneauth.services.delivery import DeliveryAdapter
from phoneauth.services.otp_service import ClientContext, OtpService
from phoneauth.services.phone import normalize_phone

logger = get_logger(__name__)


def get_client_info(request: Request) -> dict:
    forwarded = request.headers.get("x-forwarded-for", "")
    return {
        "ip_address": (
            request.headers.get("x-real-ip")
            or forwarded.split(",")[0].strip()
            or (request.client.host if request.client else "")
        ),
        "user_agent": request.headers.get("user-agent", "unknown"),
    }


def get_client_context(client_info: dict = Depends(get_client_info)) -> ClientContext:
    return ClientContext(ip_address=client_info["ip_address"] or None, user_agent=client_info["user_agent"])


def get_clock() -> Callable[[], datetime]:
    return utc_now


def build_delivery_adapter() -> DeliveryAdapter:
    return DeliveryAdapter(
        get_sms_client(settings),
        settings.otp_policy(),
        timeout=settings.SMS_TIMEOUT_SECONDS,
    )


def get_delivery_adapter(request: Request) -> DeliveryAdapter:
    adapter = getattr(request.app.state, "delivery", None)
    if adapter is None:
        adapter = build_delivery_adapter()
        request.app.state.delivery = adapter
    return adapter


def get_otp_service(
    db: AsyncSession = Depends(get_db),
    delivery: DeliveryAdapter = Depends(get_delivery_adapter),
    clock: Callable[[], datetime] = Depends(get_clock),
) -> OtpService:
    return OtpService(
        session=db,
        policy=delivery.policy,
        delivery=delivery,
        access_secret=settings.JWT_SECRET_KEY,
        refresh_secret=settings.JWT_REFRESH_SECRET_KEY,
        algorithm=settings.JWT_ALGORITHM,
        clock=clock,
    )


# =============================================================================
# Request throttling (in-memory sliding window, per ip + phone)
# =============================================================================
class RequestThrottle:
    """
    Sliding-window counter keyed by an arbitrary string.

    hit() records a request and returns 0, or returns the seconds until the
    oldest request in the window ages out when the key is at its limit.
    Counters live in process memory; each worker enforces its own window.
    """

    _SWEEP_THRESHOLD = 10_000

    def __init__(self, max_requests: int, window_seconds: float, timer: Callable[[], float] = time.monotonic):
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.timer = timer
        self._hits: Dict[str, Deque[float]] = {}

    def hit(self, key: str) -> int:
        now = self.timer()
        cutoff = now - self.window_seconds
        if len(self._hits) > self._SWEEP_THRESHOLD:
            self._sweep(cutoff)

        q = self._hits.setdefault(key, deque())
        while q and q[0] <= cutoff:
            q.popleft()
        if len(q) >= self.max_requests:
            return max(1, math.ceil(self.window_seconds - (now - q[0])))
        q.append(now)
        return 0

    def _sweep(self, cutoff: float) -> None:
        stale = [k for k, q in self._hits.items() if not q or q[-1] <= cutoff]
        for k in stale:
            del self._hits[k]

    def reset(self) -> None:
        self._hits.clear()


@dataclass
class OtpThrottles:
    send: RequestThrottle
    verify: RequestThrottle


def build_otp_throttles() -> OtpThrottles:
    window = settings.OTP_RATE_LIMIT_WINDOW_SECONDS
    return OtpThrottles(
        send=RequestThrottle(settings.otp_send_rate_limit, window),
        verify=RequestThrottle(settings.otp_verify_rate_limit, window),
    )


def get_otp_throttles(request: Request) -> OtpThrottles:
    throttles = getattr(request.app.state, "otp_throttles", None)
    if throttles is None:
        throttles = build_otp_throttles()
        request.app.state.otp_throttles = throttles
    return throttles


async def _throttle_key(request: Request, scope: str) -> tuple[str, str]:
    # the body is already parsed and cached by the time dependencies run
    try:
        body = await request.json()
    except ValueError:
        body = None
    raw = body.get("phone") if isinstance(body, dict) else None
    phone = normalize_phone(raw, settings.OTP_DEFAULT_COUNTRY_CODE) if isinstance(raw, str) else None
    ip = get_client_info(request)["ip_address"] or "unknown"
    phone = phone or "unknown"
    return f"{scope}:{ip}:{phone}", phone


async def send_rate_limit(request: Request, throttles: OtpThrottles = Depends(get_otp_throttles)) -> None:
    """Shared by /send and /resend."""
    key, phone = await _throttle_key(request, "otp_send")
    retry = throttles.send.hit(key)
    if retry:
        logger.warning("otp_send_throttled", phone=mask_phone(phone), retry_after=retry)
        raise RateLimitError("Too many OTP requests. Please wait before trying again", retry_after=retry)


async def verify_rate_limit(request: Request, throttles: OtpThrottles = Depends(get_otp_throttles)) -> None:
    key, phone = await _throttle_key(request, "otp_verify")
    retry = throttles.verify.hit(key)
    if retry:
        logger.warning("otp_verify_throttled", phone=mask_phone(phone), retry_after=retry)
        raise TooManyAttemptsError("Too many verification attempts. Please try again later", retry_after=retry)


__all__ = [
    "get_client_info",
    "get_client_context",
    "get_clock",
    "build_delivery_adapter",
    "get_delivery_adapter",
    "get_otp_service",
    "RequestThrottle",
    "OtpThrottles",
    "build_otp_throttles",
    "get_otp_throttles",
    "send_rate_limit",
    "verify_rate_limit",
]
