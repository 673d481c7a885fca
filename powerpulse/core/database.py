"""
Async SQLAlchemy engine and sessions.

PostgreSQL (asyncpg) in production, SQLite (aiosqlite) for local runs and tests.
Requests get a session through get_db(); cron work opens one session_scope per
job or per user so a single failure never poisons a shared transaction.
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from .config import get_settings

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    pass


# Built on first use, torn down by close_db()
_engine: Optional[AsyncEngine] = None
_session_factory: Optional[async_sessionmaker[AsyncSession]] = None


def _normalize_url(url: str) -> str:
    # Hosting providers hand out plain postgresql:// URLs
    if url.startswith("postgres://"):
        url = url.replace("postgres://", "postgresql://", 1)
    if url.startswith("postgresql://"):
        url = url.replace("postgresql://", "postgresql+asyncpg://", 1)
    return url


def get_engine() -> AsyncEngine:
    global _engine
    if _engine is None:
        settings = get_settings()
        url = _normalize_url(settings.database_url)

        if url.startswith("sqlite"):
            # Concurrent job windows write from several connections
            _engine = create_async_engine(
                url, echo=settings.debug, connect_args={"timeout": 30}
            )
        else:
            _engine = create_async_engine(
                url,
                echo=settings.debug,
                pool_size=settings.db_pool_size,
                max_overflow=10,
                pool_pre_ping=True,
            )
        logger.info("Database engine created (%s)", _engine.dialect.name)
    return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    global _session_factory
    if _session_factory is None:
        _session_factory = async_sessionmaker(
            bind=get_engine(),
            class_=AsyncSession,
            expire_on_commit=False,
        )
    return _session_factory


async def get_db() -> AsyncIterator[AsyncSession]:
    async with session_scope() as session:
        yield session


@asynccontextmanager
async def session_scope(
    factory: Optional[async_sessionmaker[AsyncSession]] = None,
) -> AsyncIterator[AsyncSession]:
    """
    Commit on success, roll back on error.
    AsyncSession is not shareable across tasks: one scope per concurrent job.
    """
    factory = factory or get_session_factory()
    async with factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def init_db():
    """Create missing tables. Called on startup."""
    # Registers every model on Base.metadata
    from ..models import DailyContent, AudioGenerationJob, User  # noqa: F401

    async with get_engine().begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables created/verified")


async def close_db():
    global _engine, _session_factory
    if _engine is not None:
        await _engine.dispose()
        _engine = None
        _session_factory = None
        logger.info("Database engine disposed")
