"""
Persistence and state transitions for OtpVerification rows.

The store never commits; the caller owns the unit of work. Every transition
is a single conditional UPDATE guarded by ``status = PENDING`` so concurrent
requests cannot move a row out of a terminal state, and the wrong-guess
counter is incremented in the database rather than read-modify-written here.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from phoneauth.core.config import OtpPolicy
from phoneauth.models.otp import OtpPurpose, OtpStatus, OtpVerification
from phoneauth.services.codes import IssuedCode


@dataclass(frozen=True)
class AttemptOutcome:
    attempts: int
    max_attempts: int

    @property
    def exhausted(self) -> bool:
        return self.attempts >= self.max_attempts

    @property
    def remaining(self) -> int:
        return max(0, self.max_attempts - self.attempts)


class VerificationStore:
    def __init__(self, session: AsyncSession, policy: OtpPolicy):
        self.session = session
        self.policy = policy

    # ---------------------------------------------------------------- reads
    async def latest(self, phone: str) -> Optional[OtpVerification]:
        stmt = (
            select(OtpVerification)
            .where(OtpVerification.phone_number == phone)
            .order_by(OtpVerification.id.desc())
            .limit(1)
            .execution_options(populate_existing=True)
        )
        return (await self.session.execute(stmt)).scalar_one_or_none()

    async def find_active(self, phone: str) -> Optional[OtpVerification]:
        """Most recent row for the phone, only if it is still PENDING."""
        row = await self.latest(phone)
        if row is None or row.status != OtpStatus.PENDING:
            return None
        return row

    async def get(self, row_id: int) -> Optional[OtpVerification]:
        return await self.session.get(OtpVerification, row_id, populate_existing=True)

    async def last_issued_at(self, phone: str) -> Optional[datetime]:
        row = await self.latest(phone)
        return row.last_sent_at if row is not None else None

    async def count_since(self, phone: str, since: datetime) -> int:
        stmt = select(func.count(OtpVerification.id)).where(
            OtpVerification.phone_number == phone,
            OtpVerification.created_at >= since,
        )
        return int((await self.session.execute(stmt)).scalar_one())

    # --------------------------------------------------------------- writes
    async def create(
        self,
        phone: str,
        issued: IssuedCode,
        purpose: OtpPurpose,
        *,
        now: datetime,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> OtpVerification:
        row = OtpVerification(
            phone_number=phone,
            code_digest=issued.digest,
            code_salt=issued.salt,
            purpose=purpose,
            status=OtpStatus.PENDING,
            attempts=0,
            max_attempts=self.policy.max_attempts,
            expires_at=now + self.policy.expiry,
            last_sent_at=now,
            created_at=now,
            updated_at=now,
            ip_address=ip_address,
            user_agent=user_agent[:500] if user_agent else None,
        )
        self.session.add(row)
        await self.session.flush()
        return row

    async def _transition(self, row_id: int, new_status: OtpStatus, now: datetime, **values) -> bool:
        stmt = (
            update(OtpVerification)
            .where(OtpVerification.id == row_id, OtpVerification.status == OtpStatus.PENDING)
            .values(status=new_status, updated_at=now, **values)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        return result.rowcount == 1

    async def mark_expired(self, row_id: int, now: datetime) -> bool:
        return await self._transition(row_id, OtpStatus.EXPIRED, now)

    async def mark_verified(self, row_id: int, now: datetime) -> bool:
        return await self._transition(row_id, OtpStatus.VERIFIED, now, verified_at=now)

    async def mark_failed(self, row_id: int, now: datetime) -> bool:
        return await self._transition(row_id, OtpStatus.FAILED, now)

    async def register_failed_attempt(self, row_id: int, now: datetime) -> Optional[AttemptOutcome]:
        """
        Atomically bump ``attempts`` on a PENDING row.

        Returns the post-increment counters, or None when the row already left
        PENDING (a concurrent request won).
        """
        stmt = (
            update(OtpVerification)
            .where(OtpVerification.id == row_id, OtpVerification.status == OtpStatus.PENDING)
            .values(attempts=OtpVerification.attempts + 1, updated_at=now)
            .returning(OtpVerification.attempts, OtpVerification.max_attempts)
            .execution_options(synchronize_session=False)
        )
        row = (await self.session.execute(stmt)).one_or_none()
        if row is None:
            return None
        return AttemptOutcome(attempts=row.attempts, max_attempts=row.max_attempts)

    async def expire_overdue(self, now: datetime) -> int:
        stmt = (
            update(OtpVerification)
            .where(OtpVerification.status == OtpStatus.PENDING, OtpVerification.expires_at < now)
            .values(status=OtpStatus.EXPIRED, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        return int(result.rowcount or 0)


__all__ = ["AttemptOutcome", "VerificationStore"]
