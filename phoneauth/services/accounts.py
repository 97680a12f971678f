"""
Find-or-create of user accounts keyed by canonical phone number.

Creation is insert-then-reselect: the unique constraint on ``users.phone``
decides races between concurrent verifications, and the loser re-reads the
winner's row. The caller must have committed its own work before calling
``provision``, since a lost race rolls the session back.
"""

from __future__ import annotations

import asyncio
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from phoneauth.core.config import OtpPolicy
from phoneauth.core.logging import audit_logger, get_logger, mask_phone
from phoneauth.core.security import generate_random_password, get_password_hash
from phoneauth.models.user import User
from phoneauth.services.phone import phone_digits

logger = get_logger(__name__)

MAX_CREATE_ATTEMPTS = 3


@dataclass(frozen=True)
class ProvisionResult:
    user: User
    is_new_user: bool


class AccountProvisioner:
    def __init__(self, session: AsyncSession, policy: OtpPolicy):
        self.session = session
        self.policy = policy

    async def _by_phone(self, phone: str) -> Optional[User]:
        stmt = select(User).where(User.phone == phone).execution_options(populate_existing=True)
        return (await self.session.execute(stmt)).scalar_one_or_none()

    async def _email_taken(self, email: str) -> bool:
        stmt = select(User.id).where(User.email == email).limit(1)
        return (await self.session.execute(stmt)).first() is not None

    async def _placeholder_email(self, phone: str, force_suffix: bool = False) -> str:
        local = phone_digits(phone)
        domain = self.policy.account_email_domain
        email = f"{local}@{domain}"
        if force_suffix or await self._email_taken(email):
            email = f"{local}-{uuid.uuid4().hex[:6]}@{domain}"
        return email

    def _mark_login(
        self,
        user: User,
        now: datetime,
        ip_address: Optional[str],
        user_agent: Optional[str],
    ) -> None:
        user.phone_verified = True
        user.phone_verified_at = now
        user.otp_verified = True
        user.last_login_at = now
        user.otp_last_ip = ip_address
        user.otp_last_user_agent = user_agent[:500] if user_agent else None
        user.updated_at = now

    async def provision(
        self,
        phone: str,
        now: datetime,
        *,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> ProvisionResult:
        existing = await self._by_phone(phone)
        if existing is not None:
            self._mark_login(existing, now, ip_address, user_agent)
            await self.session.commit()
            return ProvisionResult(user=existing, is_new_user=False)

        hashed = await asyncio.to_thread(get_password_hash, generate_random_password())
        force_suffix = False
        for attempt in range(1, MAX_CREATE_ATTEMPTS + 1):
            user = User(
                email=await self._placeholder_email(phone, force_suffix),
                hashed_password=hashed,
                first_name="New",
                last_name="User",
                user_type="consumer",
                status="active",
                phone=phone,
                created_at=now,
            )
            self._mark_login(user, now, ip_address, user_agent)
            self.session.add(user)
            try:
                await self.session.commit()
            except IntegrityError:
                await self.session.rollback()
                winner = await self._by_phone(phone)
                if winner is not None:
                    logger.info("account_provision_race_lost", phone=mask_phone(phone))
                    self._mark_login(winner, now, ip_address, user_agent)
                    await self.session.commit()
                    return ProvisionResult(user=winner, is_new_user=False)
                # email collided with an unrelated account
                force_suffix = True
                logger.info("account_email_collision", phone=mask_phone(phone), attempt=attempt)
                continue

            audit_logger.log_system_event("user_provisioned", {"user_id": user.id, "phone": mask_phone(phone)})
            return ProvisionResult(user=user, is_new_user=True)

        raise RuntimeError(f"could not provision account for {mask_phone(phone)}")


__all__ = ["AccountProvisioner", "ProvisionResult"]
