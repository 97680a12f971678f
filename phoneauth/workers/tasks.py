"""
Background tasks for phoneauth using asyncio.
"""

from __future__ import annotations

import asyncio
from datetime import datetime
from typing import Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.exc import SQLAlchemyError

from phoneauth.core.config import OtpPolicy
from phoneauth.core.logging import get_logger
from phoneauth.models.base import utc_now
from phoneauth.services.verification_store import VerificationStore

logger = get_logger(__name__)


async def expire_overdue_verifications(
    session_factory: async_sessionmaker[AsyncSession],
    policy: OtpPolicy,
    now: Optional[datetime] = None,
) -> int:
    """Move PENDING rows past their expiry to EXPIRED. Returns the number of rows swept."""
    async with session_factory() as db:
        count = await VerificationStore(db, policy).expire_overdue(now or utc_now())
        await db.commit()
    if count:
        logger.info("otp_expiry_sweep", expired=count)
    return count


class ExpirySweeper:
    """Periodic expiry sweep, started and stopped with the application."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        policy: OtpPolicy,
        interval_seconds: float,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.session_factory = session_factory
        self.policy = policy
        self.interval_seconds = interval_seconds
        self.clock = clock
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def run_once(self) -> int:
        return await expire_overdue_verifications(self.session_factory, self.policy, self.clock())

    async def _loop(self) -> None:
        while True:
            await asyncio.sleep(self.interval_seconds)
            try:
                await self.run_once()
            except SQLAlchemyError as e:
                logger.error("otp_expiry_sweep_failed", exc_info=e)

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._loop(), name="otp-expiry-sweeper")
        logger.info("otp_expiry_sweeper_started", interval_seconds=self.interval_seconds)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        await asyncio.gather(self._task, return_exceptions=True)
        self._task = None
        logger.info("otp_expiry_sweeper_stopped")


__all__ = ["ExpirySweeper", "expire_overdue_verifications"]
