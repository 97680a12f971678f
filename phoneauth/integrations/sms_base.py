from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Protocol

from phoneauth.core.config import Settings, settings as default_settings


@dataclass
class SmsResult:
    provider: str
    success: bool
    message_id: Optional[str] = None
    error: Optional[str] = None
    live: bool = True
    raw: Dict[str, Any] = field(default_factory=dict)


class SmsProvider(Protocol):
    name: str
    live: bool

    async def send_sms(self, recipient: str, text: str) -> SmsResult: ...

    async def aclose(self) -> None: ...


def get_sms_client(cfg: Optional[Settings] = None) -> SmsProvider:
    cfg = cfg or default_settings
    provider = (cfg.SMS_PROVIDER or "console").strip().lower()
    if provider == "twilio":
        from phoneauth.integrations.twilio import TwilioClient

        return TwilioClient.from_settings(cfg)
    if provider == "mobizon":
        from phoneauth.integrations.mobizon import MobizonClient

        return MobizonClient.from_settings(cfg)
    if provider == "console":
        from phoneauth.integrations.console import ConsoleSmsClient

        return ConsoleSmsClient()
    raise RuntimeError(f"Unsupported SMS_PROVIDER: {provider}")
