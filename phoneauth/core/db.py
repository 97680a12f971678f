"""
Async database engine and session management.

- Lazy engine creation (no connections at import time).
- One AsyncSession per request via get_db(); the store is the only shared state.
- SQLite (aiosqlite) gets a busy timeout so concurrent writers wait instead of failing.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from typing import Any, Dict, Optional

from sqlalchemy import text
from sqlalchemy.engine.url import make_url
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from phoneauth.core.config import settings
from phoneauth.core.logging import get_logger

logger = get_logger(__name__)

_engine: Optional[AsyncEngine] = None
_sessionmaker: Optional[async_sessionmaker[AsyncSession]] = None


def _engine_options(url: str) -> Dict[str, Any]:
    opts: Dict[str, Any] = {"echo": settings.SQLALCHEMY_ECHO}
    backend = make_url(url).get_backend_name()
    if backend == "sqlite":
        opts["connect_args"] = {"timeout": 30}
    else:
        opts.update(pool_pre_ping=True, pool_size=10, max_overflow=20, pool_recycle=1800)
    return opts


def build_engine(url: str) -> AsyncEngine:
    return create_async_engine(url, **_engine_options(url))


def build_sessionmaker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


def get_engine() -> AsyncEngine:
    global _engine
    if _engine is None:
        _engine = build_engine(settings.DATABASE_URL)
        logger.info("db_engine_created", backend=_engine.dialect.name)
    return _engine


def get_sessionmaker() -> async_sessionmaker[AsyncSession]:
    global _sessionmaker
    if _sessionmaker is None:
        _sessionmaker = build_sessionmaker(get_engine())
    return _sessionmaker


async def get_db() -> AsyncIterator[AsyncSession]:
    """FastAPI dependency: a session per request, rolled back on error."""
    async with get_sessionmaker()() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise


async def init_db() -> None:
    """Create tables for local/dev runs. Production schemas come from alembic."""
    from phoneauth.models import Base

    async with get_engine().begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("db_schema_ensured")


async def close_db() -> None:
    global _engine, _sessionmaker
    if _engine is not None:
        await _engine.dispose()
    _engine = None
    _sessionmaker = None


async def health_check_db() -> bool:
    async with get_engine().connect() as conn:
        await conn.execute(text("SELECT 1"))
    return True


__all__ = [
    "build_engine",
    "build_sessionmaker",
    "get_engine",
    "get_sessionmaker",
    "get_db",
    "init_db",
    "close_db",
    "health_check_db",
]
