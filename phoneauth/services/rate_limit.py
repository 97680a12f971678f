"""
Issuance limits and attempt blocking for phone OTP.

Three checks run on every send, in this order:

1. user block     - owning user's otp_blocked_until is in the future
2. resend cooldown - latest issuance for the phone is too recent
3. hourly quota   - too many issuances for the phone in the trailing hour

All three are always evaluated. With enforcement on, the first denial is
raised; with enforcement off (dev mode), denials are only logged.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import List, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from phoneauth.core.config import OtpPolicy
from phoneauth.core.exceptions import PhoneAuthException, RateLimitError, TooManyAttemptsError
from phoneauth.core.logging import audit_logger, get_logger, mask_phone
from phoneauth.core.metrics import OTP_RATE_LIMITED_TOTAL
from phoneauth.models.user import User
from phoneauth.services.verification_store import VerificationStore

logger = get_logger(__name__)

QUOTA_WINDOW = timedelta(hours=1)

USER_BLOCKED = "user_blocked"
RESEND_COOLDOWN = "resend_cooldown"
HOURLY_QUOTA = "hourly_quota"


@dataclass(frozen=True)
class RateLimitDenial:
    reason: str
    retry_after: Optional[int] = None

    def to_exception(self) -> PhoneAuthException:
        if self.reason == USER_BLOCKED:
            return TooManyAttemptsError(retry_after=self.retry_after)
        if self.reason == RESEND_COOLDOWN:
            return RateLimitError(
                "Please wait before requesting another code",
                retry_after=self.retry_after,
            )
        return RateLimitError("Too many codes requested. Please try again later")


class RateLimitGuard:
    def __init__(self, session: AsyncSession, store: VerificationStore, policy: OtpPolicy):
        self.session = session
        self.store = store
        self.policy = policy

    # ------------------------------------------------------------ evaluation
    async def _blocked_until(self, phone: str) -> Optional[datetime]:
        stmt = select(User.otp_blocked_until).where(User.phone == phone)
        return (await self.session.execute(stmt)).scalar_one_or_none()

    async def evaluate(self, phone: str, now: datetime) -> List[RateLimitDenial]:
        denials: List[RateLimitDenial] = []

        blocked_until = await self._blocked_until(phone)
        if blocked_until is not None and blocked_until > now:
            remaining = (blocked_until - now).total_seconds()
            denials.append(RateLimitDenial(USER_BLOCKED, max(1, math.ceil(remaining))))

        cooldown = self.policy.resend_cooldown_seconds
        last_sent = await self.store.last_issued_at(phone)
        if cooldown > 0 and last_sent is not None:
            elapsed = (now - last_sent).total_seconds()
            if elapsed < cooldown:
                retry = cooldown - math.floor(max(0.0, elapsed))
                denials.append(RateLimitDenial(RESEND_COOLDOWN, min(cooldown, max(1, retry))))

        issued = await self.store.count_since(phone, now - QUOTA_WINDOW)
        if issued >= self.policy.max_per_hour:
            denials.append(RateLimitDenial(HOURLY_QUOTA))

        return denials

    async def check_issuance(self, phone: str, now: datetime) -> None:
        denials = await self.evaluate(phone, now)
        if not denials:
            return

        enforced = self.policy.enforce_rate_limits
        for d in denials:
            OTP_RATE_LIMITED_TOTAL.labels(reason=d.reason, enforced=str(enforced).lower()).inc()

        first = denials[0]
        if not enforced:
            logger.info(
                "otp_rate_limit_advisory",
                phone=mask_phone(phone),
                reasons=[d.reason for d in denials],
            )
            return

        audit_logger.log_security_event(
            "otp_send_rejected",
            {"phone": mask_phone(phone), "reason": first.reason, "retry_after": first.retry_after},
        )
        raise first.to_exception()

    # ----------------------------------------------------------- bookkeeping
    async def record_issuance(
        self,
        phone: str,
        now: datetime,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> None:
        stmt = (
            update(User)
            .where(User.phone == phone)
            .values(
                last_otp_sent_at=now,
                otp_last_ip=ip_address,
                otp_last_user_agent=user_agent[:500] if user_agent else None,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        await self.session.execute(stmt)

    async def block_user(self, phone: str, now: datetime) -> Optional[datetime]:
        """Block the user owning ``phone``. No-op (returns None) when no user exists yet."""
        until = now + self.policy.block_duration
        stmt = (
            update(User)
            .where(User.phone == phone)
            .values(otp_blocked_until=until, otp_attempts=User.otp_attempts + 1, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        if not result.rowcount:
            return None
        audit_logger.log_security_event(
            "otp_user_blocked",
            {"phone": mask_phone(phone), "blocked_until": until.isoformat()},
        )
        return until


__all__ = [
    "RateLimitDenial",
    "RateLimitGuard",
    "USER_BLOCKED",
    "RESEND_COOLDOWN",
    "HOURLY_QUOTA",
]
