"""
Async database engine and session management.

The engine is created lazily from DATABASE_URL on first use. The session
factory is handed to SqlAlchemyBookingStore, which opens one session per
operation:

    from database.connection import get_session_factory

    store = SqlAlchemyBookingStore(get_session_factory())
"""

import logging

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from database.models import Base
from shared.config import get_settings

logger = logging.getLogger(__name__)

_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


def normalize_database_url(url: str) -> str:
    """Ensure an async driver is used for PostgreSQL URLs."""
    if url.startswith("postgresql://"):
        return url.replace("postgresql://", "postgresql+asyncpg://", 1)
    if url.startswith("postgresql+psycopg://"):
        return url.replace("postgresql+psycopg://", "postgresql+asyncpg://", 1)
    return url


def get_engine() -> AsyncEngine:
    global _engine
    if _engine is None:
        url = normalize_database_url(get_settings().DATABASE_URL)
        kwargs = {"echo": False}
        if url.startswith("postgresql"):
            kwargs.update(pool_size=10, max_overflow=5, pool_pre_ping=True)
        _engine = create_async_engine(url, **kwargs)
        logger.info(f"Database engine created: {url.split('@')[-1]}")
    return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    global _session_factory
    if _session_factory is None:
        _session_factory = async_sessionmaker(get_engine(), expire_on_commit=False)
    return _session_factory


async def create_tables(engine: AsyncEngine | None = None) -> None:
    """Create missing tables (idempotent)."""
    async with (engine or get_engine()).begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def dispose_engine() -> None:
    global _engine, _session_factory
    if _engine is not None:
        await _engine.dispose()
    _engine = None
    _session_factory = None
