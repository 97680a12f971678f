from __future__ import annotations

from typing import Optional

import httpx

from phoneauth.core.config import Settings
from phoneauth.core.logging import get_logger, mask_phone
from phoneauth.integrations.sms_base import SmsResult

log = get_logger(__name__)


class MobizonClient:
    name = "mobizon"
    live = True

    def __init__(
        self,
        api_key: str,
        *,
        base_url: str = "https://api.mobizon.kz/service",
        sender: Optional[str] = None,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        if not api_key:
            raise RuntimeError("MOBIZON_API_KEY is not set")
        self.sender = sender
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers={"Authorization": f"Token {api_key}"},
            timeout=timeout,
            transport=transport,
        )

    @classmethod
    def from_settings(cls, cfg: Settings) -> "MobizonClient":
        return cls(
            cfg.MOBIZON_API_KEY or "",
            base_url=cfg.MOBIZON_API_URL,
            sender=cfg.MOBIZON_FROM,
            timeout=cfg.SMS_TIMEOUT_SECONDS,
        )

    async def send_sms(self, recipient: str, text: str) -> SmsResult:
        """
        Send via /message/sendSms (form-encoded).

        Mobizon wants the number without '+'. A successful answer looks like
        {"code": 0, "data": {"messageId": "..."}, "message": ""}.
        """
        if not recipient or not text:
            raise ValueError("recipient and text are required")

        payload = {"recipient": recipient.lstrip("+"), "text": text}
        if self.sender:
            payload["from"] = self.sender

        try:
            resp = await self._client.post("/message/sendSms", data=payload)
            resp.raise_for_status()
            data = resp.json()
        except httpx.HTTPError as e:
            log.warning("mobizon_http_error", recipient=mask_phone(recipient), error=str(e))
            return SmsResult(provider=self.name, success=False, error=f"http_error: {e}")
        except ValueError:
            return SmsResult(provider=self.name, success=False, error="invalid_response_format")

        if data.get("code") == 0:
            message_id = (data.get("data") or {}).get("messageId")
            return SmsResult(provider=self.name, success=True, message_id=message_id, raw=data)
        return SmsResult(provider=self.name, success=False, error=data.get("message") or str(data), raw=data)

    async def aclose(self) -> None:
        await self._client.aclose()
