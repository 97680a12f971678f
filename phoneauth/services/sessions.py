from __future__ import annotations

from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any, Dict, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from phoneauth.core.config import OtpPolicy
from phoneauth.core.exceptions import AuthenticationError
from phoneauth.core.security import (
    constant_time_compare,
    create_jwt,
    decode_token,
    generate_session_token,
    token_digest,
)
from phoneauth.models.otp import PhoneAuthSession
from phoneauth.models.user import User, UserSession


@dataclass(frozen=True)
class IssuedSession:
    access_token: str
    refresh_token: str
    session_token: str
    access_expires_in: int


class SessionIssuer:
    """
    Mints access/refresh JWTs and persists the refresh record and the
    phone-auth session row for a verified login.
    """

    def __init__(
        self,
        session: AsyncSession,
        policy: OtpPolicy,
        *,
        access_secret: str,
        refresh_secret: Optional[str] = None,
        algorithm: str = "HS256",
    ):
        self.session = session
        self.policy = policy
        self.access_secret = access_secret
        self.algorithm = algorithm
        self.refresh_secret = refresh_secret or access_secret

    # ---------------------------------------------------------------- tokens
    def create_access_token(self, user: User, now: datetime) -> str:
        claims: Dict[str, Any] = {
            "user_id": user.id,
            "phone": user.phone,
            "email": user.email,
            "user_type": user.user_type,
        }
        return create_jwt(
            user.id,
            "access",
            secret_key=self.access_secret,
            algorithm=self.algorithm,
            expires_delta=self.policy.access_token_lifetime,
            claims=claims,
            now=now.replace(tzinfo=UTC),
        )

    def create_refresh_token(self, user: User, now: datetime) -> str:
        return create_jwt(
            user.id,
            "refresh",
            secret_key=self.refresh_secret,
            algorithm=self.algorithm,
            expires_delta=self.policy.refresh_token_lifetime,
            claims={"user_id": user.id},
            now=now.replace(tzinfo=UTC),
        )

    def decode_access_token(self, token: str) -> Optional[Dict[str, Any]]:
        return decode_token(token, secret_key=self.access_secret, algorithm=self.algorithm, expected_type="access")

    # ------------------------------------------------------------ persistence
    async def _upsert_refresh_record(
        self,
        user_id: int,
        refresh_token: str,
        now: datetime,
        ip_address: Optional[str],
        user_agent: Optional[str],
    ) -> None:
        values = {
            "user_id": user_id,
            "refresh_token": token_digest(refresh_token),
            "ip_address": ip_address,
            "user_agent": user_agent[:500] if user_agent else None,
            "expires_at": now + self.policy.refresh_token_lifetime,
            "is_active": True,
            "created_at": now,
            "updated_at": now,
        }
        dialect = self.session.get_bind().dialect.name
        if dialect in ("postgresql", "sqlite"):
            if dialect == "postgresql":
                from sqlalchemy.dialects.postgresql import insert
            else:
                from sqlalchemy.dialects.sqlite import insert

            stmt = insert(UserSession).values(**values)
            stmt = stmt.on_conflict_do_update(
                index_elements=[UserSession.user_id],
                set_={k: stmt.excluded[k] for k in values if k not in ("user_id", "created_at")},
            )
            await self.session.execute(stmt)
            return

        result = await self.session.execute(
            update(UserSession)
            .where(UserSession.user_id == user_id)
            .values(**{k: v for k, v in values.items() if k != "created_at"})
            .execution_options(synchronize_session=False)
        )
        if not result.rowcount:
            self.session.add(UserSession(**values))

    async def issue(
        self,
        user: User,
        phone: str,
        now: datetime,
        *,
        verification_id: Optional[int] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> IssuedSession:
        access_token = self.create_access_token(user, now)
        refresh_token = self.create_refresh_token(user, now)
        session_token = generate_session_token()

        await self._upsert_refresh_record(user.id, refresh_token, now, ip_address, user_agent)
        self.session.add(
            PhoneAuthSession(
                phone_number=phone,
                session_token=session_token,
                user_id=user.id,
                otp_verification_id=verification_id,
                expires_at=now + self.policy.session_lifetime,
                ip_address=ip_address,
                user_agent=user_agent[:500] if user_agent else None,
                is_active=True,
                created_at=now,
                updated_at=now,
            )
        )
        await self.session.commit()

        return IssuedSession(
            access_token=access_token,
            refresh_token=refresh_token,
            session_token=session_token,
            access_expires_in=int(self.policy.access_token_lifetime.total_seconds()),
        )

    async def refresh_access_token(self, refresh_token: str, now: datetime) -> IssuedSession:
        """Exchange a stored, unexpired refresh token for a new access token."""
        payload = decode_token(
            refresh_token,
            secret_key=self.refresh_secret,
            algorithm=self.algorithm,
            expected_type="refresh",
        )
        if not payload:
            raise AuthenticationError()

        try:
            user_id = int(payload.get("user_id") or payload["sub"])
        except (KeyError, TypeError, ValueError):
            raise AuthenticationError() from None
        record = (
            await self.session.execute(
                select(UserSession)
                .where(UserSession.user_id == user_id)
                .execution_options(populate_existing=True)
            )
        ).scalar_one_or_none()
        if (
            record is None
            or not record.is_active
            or record.is_expired(now)
            or not constant_time_compare(record.refresh_token, token_digest(refresh_token))
        ):
            raise AuthenticationError()

        user = await self.session.get(User, user_id)
        if user is None or user.status != "active":
            raise AuthenticationError()

        return IssuedSession(
            access_token=self.create_access_token(user, now),
            refresh_token=refresh_token,
            session_token="",
            access_expires_in=int(self.policy.access_token_lifetime.total_seconds()),
        )


__all__ = ["IssuedSession", "SessionIssuer"]
