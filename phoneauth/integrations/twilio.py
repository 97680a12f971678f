from __future__ import annotations

from typing import Optional

import httpx

from phoneauth.core.config import Settings
from phoneauth.core.logging import get_logger, mask_phone
from phoneauth.integrations.sms_base import SmsResult

log = get_logger(__name__)


class TwilioClient:
    """Twilio Programmable Messaging over its REST API (form-encoded, basic auth)."""

    name = "twilio"
    live = True

    def __init__(
        self,
        account_sid: str,
        auth_token: str,
        from_number: str,
        *,
        base_url: str = "https://api.twilio.com/2010-04-01",
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        if not (account_sid and auth_token and from_number):
            raise RuntimeError("TWILIO_ACCOUNT_SID, TWILIO_AUTH_TOKEN and TWILIO_FROM_NUMBER are required")
        self.account_sid = account_sid
        self.from_number = from_number
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            auth=(account_sid, auth_token),
            timeout=timeout,
            transport=transport,
        )

    @classmethod
    def from_settings(cls, cfg: Settings) -> "TwilioClient":
        return cls(
            cfg.TWILIO_ACCOUNT_SID or "",
            cfg.TWILIO_AUTH_TOKEN or "",
            cfg.TWILIO_FROM_NUMBER or "",
            base_url=cfg.TWILIO_API_URL,
            timeout=cfg.SMS_TIMEOUT_SECONDS,
        )

    async def send_sms(self, recipient: str, text: str) -> SmsResult:
        if not recipient or not text:
            raise ValueError("recipient and text are required")

        url = f"/Accounts/{self.account_sid}/Messages.json"
        payload = {"To": recipient, "From": self.from_number, "Body": text}
        try:
            resp = await self._client.post(url, data=payload)
        except httpx.HTTPError as e:
            log.warning("twilio_http_error", recipient=mask_phone(recipient), error=str(e))
            return SmsResult(provider=self.name, success=False, error=f"http_error: {e}")

        try:
            data = resp.json()
        except ValueError:
            data = {}

        # 201 Created with a message SID on success; error payloads carry code/message
        if resp.status_code in (200, 201) and data.get("sid"):
            return SmsResult(provider=self.name, success=True, message_id=data["sid"], raw=data)

        error = data.get("message") or f"status {resp.status_code}"
        log.warning(
            "twilio_rejected",
            recipient=mask_phone(recipient),
            status_code=resp.status_code,
            error_code=data.get("code"),
        )
        return SmsResult(provider=self.name, success=False, error=error, raw=data)

    async def aclose(self) -> None:
        await self._client.aclose()
