"""
Database engine and sessions

One async engine per process. API requests get a session through `get_db`;
scheduler jobs open their own with `AsyncSessionLocal()`.
"""
from __future__ import annotations

from collections.abc import AsyncGenerator
from typing import Any

import structlog
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from asyncstand.core.config import settings

logger = structlog.get_logger(__name__)


def engine_options(url: str) -> dict[str, Any]:
    """Pool settings for server databases; SQLite keeps its own pool."""
    options: dict[str, Any] = {"echo": settings.DB_ECHO}
    if make_url(url).get_backend_name() == "sqlite":
        return options
    options.update(
        pool_pre_ping=True,
        pool_size=settings.DB_POOL_SIZE,
        max_overflow=settings.DB_MAX_OVERFLOW,
        pool_recycle=settings.DB_POOL_RECYCLE_SECONDS,
    )
    return options


# asyncpg rejects sslmode/channel_binding in the query string
DATABASE_URL_ASYNC = settings.DATABASE_URL_ASYNC_CLEAN

engine: AsyncEngine = create_async_engine(DATABASE_URL_ASYNC, **engine_options(DATABASE_URL_ASYNC))

AsyncSessionLocal = async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """One session per request; uncommitted work is rolled back on error."""
    async with AsyncSessionLocal() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise


async def dispose_engine() -> None:
    await engine.dispose()
    logger.info("database_engine_disposed")
