"""
Database layer — async SQLAlchemy 2.0 (asyncpg in production, aiosqlite locally).

Provides:
    • Engine / session-factory construction from settings
    • Base model for ORM entities
    • UTC-preserving datetime column type
    • Table creation, disposal and a connectivity ping

Nothing here is a module-level singleton: the composition root builds one
engine per process (or per test) and hands the session factory to the
stores that need it.

Usage:
    from emergency_backend.app.core.database import build_engine, build_session_factory

    engine = build_engine(settings)
    sessions = build_session_factory(engine)
    async with sessions() as session:
        ...
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Optional

from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.types import DateTime, TypeDecorator

from emergency_backend.app.core.config import Settings

logger = logging.getLogger(__name__)


# ── Engine ──
def build_engine(settings: Settings, *, url: Optional[str] = None) -> AsyncEngine:
    """Create the async engine for ``settings.DATABASE_URL`` (or ``url``)."""
    database_url = url or settings.DATABASE_URL
    kwargs: dict[str, Any] = {
        "echo": settings.DATABASE_ECHO,
        "future": True,
    }
    if database_url.startswith("sqlite"):
        # SQLite writers queue on the file lock instead of failing fast
        kwargs["connect_args"] = {"timeout": 30}
    else:
        kwargs["pool_size"] = settings.DATABASE_POOL_SIZE
        kwargs["max_overflow"] = settings.DATABASE_MAX_OVERFLOW
        kwargs["pool_pre_ping"] = True
    return create_async_engine(database_url, **kwargs)


# ── Session Factory ──
def build_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


# ── ORM Base ──
class Base(DeclarativeBase):
    """Declarative base for all ORM models."""
    pass


class UTCDateTime(TypeDecorator):
    """
    Timezone-aware UTC datetimes on every backend.

    SQLite has no timezone support, so values are stored as naive UTC and
    re-tagged on the way out.
    """

    impl = DateTime
    cache_ok = True

    def process_bind_param(self, value: Optional[datetime], dialect) -> Optional[datetime]:
        if value is None:
            return None
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc).replace(tzinfo=None)

    def process_result_value(self, value: Optional[datetime], dialect) -> Optional[datetime]:
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


# ── Lifecycle ──
async def init_db(engine: AsyncEngine) -> None:
    """Create all tables (dev/test only — production schemas are managed externally)."""
    # Import models so they register on Base.metadata
    from emergency_backend.app.events import tables  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables initialised")


async def close_db(engine: AsyncEngine) -> None:
    """Dispose engine connections."""
    await engine.dispose()
    logger.info("Database connections closed")


async def ping(engine: AsyncEngine) -> bool:
    """True when a trivial query round-trips."""
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        return True
    except Exception as exc:
        logger.warning("Database ping failed: %s", exc)
        return False
