"""
Phone OTP login orchestration.

send_otp:   normalize -> issuance limits -> generate code -> store PENDING row
            -> deliver -> user bookkeeping
verify_otp: normalize -> latest PENDING row -> expiry -> digest comparison
            -> (mismatch) attempt counter / block, or
            -> (match) VERIFIED -> find-or-create user -> tokens + sessions

Each call works on the AsyncSession it was built with and commits at the
points where state must survive a raised error (expired, wrong code, block).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from phoneauth.core.config import OtpPolicy
from phoneauth.core.exceptions import (
    InvalidCodeError,
    InvalidPhoneError,
    OtpExpiredError,
    PhoneAuthException,
    ServerError,
    TooManyAttemptsError,
    VerificationNotFoundError,
)
from phoneauth.core.logging import audit_logger, get_logger, mask_phone
from phoneauth.core.metrics import OTP_SENT_TOTAL, OTP_VERIFY_TOTAL
from phoneauth.models.base import utc_now
from phoneauth.models.otp import OtpPurpose
from phoneauth.models.user import User
from phoneauth.services.accounts import AccountProvisioner
from phoneauth.services.codes import CodeGenerator
from phoneauth.services.delivery import DeliveryAdapter
from phoneauth.services.phone import normalize_phone
from phoneauth.services.rate_limit import RateLimitGuard
from phoneauth.services.sessions import IssuedSession, SessionIssuer
from phoneauth.services.verification_store import VerificationStore

logger = get_logger(__name__)

Clock = Callable[[], datetime]


@dataclass(frozen=True)
class ClientContext:
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None


@dataclass(frozen=True)
class SendOutcome:
    phone: str
    expires_in_seconds: int
    delivery_method: str
    verification_id: str
    dev_code: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "phone": self.phone,
            "expiresInSeconds": self.expires_in_seconds,
            "deliveryMethod": self.delivery_method,
            "verificationId": self.verification_id,
        }
        if self.dev_code is not None:
            data["devCode"] = self.dev_code
        return data


@dataclass(frozen=True)
class VerifyOutcome:
    user: User
    tokens: IssuedSession
    is_new_user: bool

    def to_dict(self) -> Dict[str, Any]:
        return {
            "user": self.user.to_public_dict(),
            "accessToken": self.tokens.access_token,
            "refreshToken": self.tokens.refresh_token,
            "sessionToken": self.tokens.session_token,
            "expiresInSeconds": self.tokens.access_expires_in,
            "isNewUser": self.is_new_user,
        }


@dataclass
class OtpService:
    session: AsyncSession
    policy: OtpPolicy
    delivery: DeliveryAdapter
    access_secret: str
    refresh_secret: Optional[str] = None
    algorithm: str = "HS256"
    clock: Clock = utc_now
    codes: Optional[CodeGenerator] = None
    store: VerificationStore = field(init=False)
    guard: RateLimitGuard = field(init=False)
    accounts: AccountProvisioner = field(init=False)
    sessions: SessionIssuer = field(init=False)

    def __post_init__(self) -> None:
        if self.codes is None:
            fixed = self.policy.dev_code if self.policy.dev_mode else None
            self.codes = CodeGenerator(self.policy.code_length, fixed_code=fixed)
        self.store = VerificationStore(self.session, self.policy)
        self.guard = RateLimitGuard(self.session, self.store, self.policy)
        self.accounts = AccountProvisioner(self.session, self.policy)
        self.sessions = SessionIssuer(
            self.session,
            self.policy,
            access_secret=self.access_secret,
            refresh_secret=self.refresh_secret,
            algorithm=self.algorithm,
        )

    def normalize(self, raw_phone: Optional[str]) -> str:
        phone = normalize_phone(raw_phone, self.policy.default_country_code)
        if phone is None:
            raise InvalidPhoneError()
        return phone

    # ================================================================== send
    async def send_otp(
        self,
        raw_phone: Optional[str],
        purpose: "OtpPurpose | str | None" = None,
        ctx: ClientContext = ClientContext(),
    ) -> SendOutcome:
        phone = self.normalize(raw_phone)
        try:
            purpose = OtpPurpose.parse(purpose)
        except ValueError:
            raise PhoneAuthException("Invalid purpose", code="VALIDATION_ERROR", http_status=400) from None
        now = self.clock()

        await self.guard.check_issuance(phone, now)

        issued = self.codes.issue()
        row = await self.store.create(
            phone,
            issued,
            purpose,
            now=now,
            ip_address=ctx.ip_address,
            user_agent=ctx.user_agent,
        )
        public_id = row.public_id
        await self.session.commit()

        delivery = await self.delivery.deliver(phone, issued.code, purpose)

        await self.guard.record_issuance(phone, now, ctx.ip_address, ctx.user_agent)
        await self.session.commit()

        OTP_SENT_TOTAL.labels(purpose=purpose.value, delivery_method=delivery.method).inc()
        logger.info(
            "otp_sent",
            phone=mask_phone(phone),
            purpose=purpose.value,
            delivery_method=delivery.method,
            verification_id=public_id,
        )

        expose = self.policy.dev_mode and not delivery.live
        return SendOutcome(
            phone=phone,
            expires_in_seconds=self.policy.expiry_seconds,
            delivery_method=delivery.method,
            verification_id=public_id,
            dev_code=issued.code if expose else None,
        )

    # ================================================================ verify
    async def verify_otp(
        self,
        raw_phone: Optional[str],
        code: str,
        ctx: ClientContext = ClientContext(),
    ) -> VerifyOutcome:
        phone = self.normalize(raw_phone)
        now = self.clock()
        candidate = (code or "").strip()

        row = await self.store.find_active(phone)
        if row is None:
            self._failed(phone, ctx, "not_found")
            raise VerificationNotFoundError()

        if row.is_expired(now):
            if await self.store.mark_expired(row.id, now):
                await self.session.commit()
            self._failed(phone, ctx, "expired")
            raise OtpExpiredError()

        if not self.codes.matches(candidate, row.code_salt, row.code_digest):
            await self._reject_code(row.id, phone, now, ctx)

        if not await self.store.mark_verified(row.id, now):
            # a concurrent request already consumed or failed this row
            await self.session.rollback()
            self._failed(phone, ctx, "not_found")
            raise VerificationNotFoundError()
        await self.session.commit()

        try:
            provisioned = await self.accounts.provision(
                phone, now, ip_address=ctx.ip_address, user_agent=ctx.user_agent
            )
            tokens = await self.sessions.issue(
                provisioned.user,
                phone,
                now,
                verification_id=row.id,
                ip_address=ctx.ip_address,
                user_agent=ctx.user_agent,
            )
        except (SQLAlchemyError, RuntimeError) as e:
            await self.session.rollback()
            logger.error("otp_provisioning_failed", phone=mask_phone(phone), exc_info=e)
            OTP_VERIFY_TOTAL.labels(result="server_error").inc()
            raise ServerError("Could not complete sign-in. Please try again") from e

        OTP_VERIFY_TOTAL.labels(result="verified").inc()
        audit_logger.log_auth_success(provisioned.user.id, ctx.ip_address, ctx.user_agent)
        return VerifyOutcome(user=provisioned.user, tokens=tokens, is_new_user=provisioned.is_new_user)

    async def _reject_code(self, row_id: int, phone: str, now: datetime, ctx: ClientContext) -> None:
        outcome = await self.store.register_failed_attempt(row_id, now)
        if outcome is None:
            await self.session.commit()
            self._failed(phone, ctx, "not_found")
            raise VerificationNotFoundError()

        if outcome.exhausted:
            await self.store.mark_failed(row_id, now)
            await self.guard.block_user(phone, now)
            await self.session.commit()
            self._failed(phone, ctx, "attempts_exhausted")
            raise TooManyAttemptsError(retry_after=self.policy.block_seconds)

        await self.session.commit()
        self._failed(phone, ctx, "invalid_code")
        raise InvalidCodeError(extra={"attemptsRemaining": outcome.remaining})

    def _failed(self, phone: str, ctx: ClientContext, reason: str) -> None:
        OTP_VERIFY_TOTAL.labels(result=reason).inc()
        audit_logger.log_auth_failure(mask_phone(phone), ctx.ip_address, reason)

    # =============================================================== refresh
    async def refresh_access_token(self, refresh_token: str) -> IssuedSession:
        return await self.sessions.refresh_access_token(refresh_token, self.clock())


__all__ = ["ClientContext", "OtpService", "SendOutcome", "VerifyOutcome"]
