from __future__ import annotations

from prometheus_client import CONTENT_TYPE_LATEST, Counter, generate_latest

OTP_SENT_TOTAL = Counter(
    "phoneauth_otp_sent_total",
    "OTP codes issued",
    ["purpose", "delivery_method"],
)
OTP_VERIFY_TOTAL = Counter(
    "phoneauth_otp_verify_total",
    "OTP verification outcomes",
    ["result"],
)
OTP_RATE_LIMITED_TOTAL = Counter(
    "phoneauth_otp_rate_limited_total",
    "Issuance requests that hit a limit",
    ["reason", "enforced"],
)
SMS_DELIVERY_TOTAL = Counter(
    "phoneauth_sms_delivery_total",
    "SMS delivery attempts by provider and outcome",
    ["provider", "success"],
)


def render_latest() -> tuple[bytes, str]:
    return generate_latest(), CONTENT_TYPE_LATEST


__all__ = [
    "OTP_SENT_TOTAL",
    "OTP_VERIFY_TOTAL",
    "OTP_RATE_LIMITED_TOTAL",
    "SMS_DELIVERY_TOTAL",
    "render_latest",
]
