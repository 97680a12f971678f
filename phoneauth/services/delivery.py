from __future__ import annotations

import asyncio
import math
from dataclasses import dataclass
from typing import Optional

from phoneauth.core.config import OtpPolicy
from phoneauth.core.logging import get_logger, mask_phone
from phoneauth.core.metrics import SMS_DELIVERY_TOTAL
from phoneauth.integrations.console import ConsoleSmsClient
from phoneauth.integrations.sms_base import SmsProvider, SmsResult
from phoneauth.models.otp import OtpPurpose

logger = get_logger(__name__)

METHOD_SMS = "sms"
METHOD_CONSOLE = "console"
METHOD_FALLBACK = "fallback"


@dataclass(frozen=True)
class DeliveryResult:
    method: str
    provider: str
    live: bool
    message_id: Optional[str] = None
    error: Optional[str] = None


def render_message(code: str, purpose: OtpPurpose, policy: OtpPolicy) -> str:
    minutes = max(1, math.ceil(policy.expiry_seconds / 60))
    action = "sign-up" if purpose is OtpPurpose.REGISTRATION else "login"
    return f"Your {action} verification code is {code}. It expires in {minutes} minutes."


class DeliveryAdapter:
    """
    Hands a plaintext code to the configured SMS gateway.

    Dev mode always uses the console channel. A gateway error, rejection or
    timeout degrades to the console fallback instead of failing the send; the
    verification row is already stored at that point.
    """

    def __init__(
        self,
        client: SmsProvider,
        policy: OtpPolicy,
        *,
        timeout: float = 10.0,
        fallback: Optional[SmsProvider] = None,
    ):
        self.client = client
        self.policy = policy
        self.timeout = timeout
        self.fallback = fallback or ConsoleSmsClient()

    @property
    def provider_name(self) -> str:
        return METHOD_CONSOLE if self.policy.dev_mode else self.client.name

    async def deliver(self, phone: str, code: str, purpose: OtpPurpose) -> DeliveryResult:
        text = render_message(code, purpose, self.policy)

        if self.policy.dev_mode:
            await self.fallback.send_sms(phone, text)
            return DeliveryResult(method=METHOD_CONSOLE, provider=self.fallback.name, live=False)

        error: Optional[str]
        try:
            result: SmsResult = await asyncio.wait_for(self.client.send_sms(phone, text), timeout=self.timeout)
        except asyncio.TimeoutError:
            error = f"timeout after {self.timeout}s"
        except Exception as e:
            logger.error("sms_delivery_error", provider=self.client.name, phone=mask_phone(phone), exc_info=e)
            error = str(e) or type(e).__name__
        else:
            SMS_DELIVERY_TOTAL.labels(provider=result.provider, success=str(result.success).lower()).inc()
            if result.success:
                method = METHOD_SMS if result.live else METHOD_CONSOLE
                return DeliveryResult(
                    method=method,
                    provider=result.provider,
                    live=result.live,
                    message_id=result.message_id,
                )
            error = result.error or "rejected"

        logger.warning(
            "sms_delivery_fallback",
            provider=self.client.name,
            phone=mask_phone(phone),
            reason=error,
        )
        await self.fallback.send_sms(phone, text)
        return DeliveryResult(method=METHOD_FALLBACK, provider=self.fallback.name, live=False, error=error)


__all__ = [
    "DeliveryAdapter",
    "DeliveryResult",
    "render_message",
    "METHOD_SMS",
    "METHOD_CONSOLE",
    "METHOD_FALLBACK",
]
