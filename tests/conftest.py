# tests/conftest.py
"""
Pytest configuration and fixtures for phoneauth.

- Each test gets its own file-backed SQLite database (aiosqlite), so concurrent
  sessions behave like separate connections.
- Time is driven by a FakeClock injected into services and the API.
- SMS goes to a RecordingSmsClient; nothing leaves the process.
- API tests talk to the ASGI app through httpx.AsyncClient with DI overrides
  for the DB session, delivery adapter, clock and request throttles.
"""

from __future__ import annotations

import os

os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///./phoneauth-test.db")
os.environ.setdefault("JWT_SECRET_KEY", "test-access-secret-0123456789")
os.environ.setdefault("JWT_REFRESH_SECRET_KEY", "test-refresh-secret-0123456789")
os.environ.setdefault("SMS_PROVIDER", "console")
os.environ.setdefault("LOG_FORMAT", "text")

import asyncio  # noqa: E402
import re  # noqa: E402
from collections.abc import AsyncIterator, Callable  # noqa: E402
from contextlib import asynccontextmanager  # noqa: E402
from dataclasses import replace  # noqa: E402
from datetime import datetime, timedelta  # noqa: E402
from typing import Any, List, Optional  # noqa: E402

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker  # noqa: E402

from phoneauth.core.config import OtpPolicy  # noqa: E402
from phoneauth.core.db import build_engine, build_sessionmaker, get_db  # noqa: E402
from phoneauth.core.dependencies import (  # noqa: E402
    OtpThrottles,
    RequestThrottle,
    get_clock,
    get_delivery_adapter,
    get_otp_throttles,
)
from phoneauth.integrations.sms_base import SmsResult  # noqa: E402
from phoneauth.main import app  # noqa: E402
from phoneauth.models import Base, User, utc_now  # noqa: E402
from phoneauth.services.delivery import DeliveryAdapter  # noqa: E402
from phoneauth.services.otp_service import OtpService  # noqa: E402

ACCESS_SECRET = os.environ["JWT_SECRET_KEY"]
REFRESH_SECRET = os.environ["JWT_REFRESH_SECRET_KEY"]


# ======================================================================================
# Test doubles
# ======================================================================================


class FakeClock:
    """Naive-UTC clock that only moves when told to."""

    def __init__(self, start: Optional[datetime] = None):
        self.now = (start or utc_now()).replace(microsecond=0)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now

    def timestamp(self) -> float:
        return self.now.timestamp()


class RecordingSmsClient:
    """Captures outgoing messages; can be switched to fail or hang."""

    name = "recording"
    live = True

    def __init__(self) -> None:
        self.sent: List[tuple[str, str]] = []
        self.fail_with: Optional[str] = None
        self.raise_exc: Optional[Exception] = None
        self.delay: float = 0.0

    async def send_sms(self, recipient: str, text: str) -> SmsResult:
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.raise_exc is not None:
            raise self.raise_exc
        self.sent.append((recipient, text))
        if self.fail_with:
            return SmsResult(provider=self.name, success=False, error=self.fail_with)
        return SmsResult(provider=self.name, success=True, message_id=f"msg-{len(self.sent)}")

    async def aclose(self) -> None:
        return None

    def last_code(self) -> str:
        _, text = self.sent[-1]
        return re.search(r"code is (\d+)", text).group(1)


# ======================================================================================
# Policy / clock / SMS
# ======================================================================================


@pytest.fixture
def policy() -> OtpPolicy:
    return OtpPolicy()


@pytest.fixture
def make_policy() -> Callable[..., OtpPolicy]:
    def _make(**overrides: Any) -> OtpPolicy:
        return replace(OtpPolicy(), **overrides)

    return _make


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def sms() -> RecordingSmsClient:
    return RecordingSmsClient()


# ======================================================================================
# Database
# ======================================================================================


@pytest_asyncio.fixture
async def engine(tmp_path) -> AsyncIterator[AsyncEngine]:
    eng = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'phoneauth.db'}")
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    try:
        yield eng
    finally:
        await eng.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return build_sessionmaker(engine)


@pytest_asyncio.fixture
async def db_session(session_factory: async_sessionmaker[AsyncSession]) -> AsyncIterator[AsyncSession]:
    async with session_factory() as session:
        yield session


@pytest.fixture
def create_user(session_factory: async_sessionmaker[AsyncSession]):
    """Insert a committed user in a separate session and return its id."""

    async def _create(phone: str, **fields: Any) -> int:
        digits = phone.lstrip("+")
        values = {
            "email": f"{digits}@example.com",
            "hashed_password": "x",
            "first_name": "Existing",
            "last_name": "User",
            **fields,
        }
        async with session_factory() as session:
            user = User(phone=phone, **values)
            session.add(user)
            await session.commit()
            return user.id

    return _create


# ======================================================================================
# Services
# ======================================================================================


@pytest.fixture
def make_service(clock: FakeClock, sms: RecordingSmsClient) -> Callable[..., OtpService]:
    def _make(session: AsyncSession, policy: Optional[OtpPolicy] = None, **kwargs: Any) -> OtpService:
        pol = policy or OtpPolicy()
        return OtpService(
            session=session,
            policy=pol,
            delivery=DeliveryAdapter(sms, pol, timeout=1.0),
            access_secret=ACCESS_SECRET,
            refresh_secret=REFRESH_SECRET,
            clock=clock,
            **kwargs,
        )

    return _make


@pytest.fixture
def service(db_session: AsyncSession, make_service: Callable[..., OtpService]) -> OtpService:
    return make_service(db_session)


# ======================================================================================
# HTTP client
# ======================================================================================


@pytest.fixture
def build_client(
    session_factory: async_sessionmaker[AsyncSession],
    clock: FakeClock,
    sms: RecordingSmsClient,
):
    @asynccontextmanager
    async def _build(
        policy: Optional[OtpPolicy] = None,
        throttles: Optional[OtpThrottles] = None,
        **transport_kwargs: Any,
    ) -> AsyncIterator[AsyncClient]:
        adapter = DeliveryAdapter(sms, policy or OtpPolicy(), timeout=1.0)
        throttles = throttles or OtpThrottles(
            send=RequestThrottle(100, 300, timer=clock.timestamp),
            verify=RequestThrottle(200, 300, timer=clock.timestamp),
        )

        async def _override_get_db() -> AsyncIterator[AsyncSession]:
            async with session_factory() as session:
                yield session

        app.dependency_overrides[get_db] = _override_get_db
        app.dependency_overrides[get_delivery_adapter] = lambda: adapter
        app.dependency_overrides[get_clock] = lambda: clock
        app.dependency_overrides[get_otp_throttles] = lambda: throttles
        transport = ASGITransport(app=app, **transport_kwargs)
        try:
            async with AsyncClient(transport=transport, base_url="http://test") as client:
                yield client
        finally:
            app.dependency_overrides.clear()

    return _build


@pytest_asyncio.fixture
async def async_client(build_client) -> AsyncIterator[AsyncClient]:
    async with build_client() as client:
        yield client
