from __future__ import annotations

from phoneauth.core.logging import get_logger, mask_phone
from phoneauth.integrations.sms_base import SmsResult

log = get_logger(__name__)


class ConsoleSmsClient:
    """Local delivery: writes the message to the log. Never counts as a live send."""

    name = "console"
    live = False

    async def send_sms(self, recipient: str, text: str) -> SmsResult:
        log.warning("sms_console_delivery", recipient=mask_phone(recipient), body=text)
        return SmsResult(provider=self.name, success=True, live=False)

    async def aclose(self) -> None:
        return None
