"""Database connection and session management.

Uses lazy initialization to ensure the engine is created within
the correct event loop context, avoiding asyncpg event loop issues.
Every sweep worker holds its own session, so the pool is sized from
the sweep concurrency.
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any, Optional

from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool

from shiftguard.config import settings
from shiftguard.logging_config import get_logger

logger = get_logger(__name__)

# Connections kept for API requests on top of the sweep workers
API_POOL_HEADROOM = 5

# Engine and session maker - lazily initialized
_engine: Optional[AsyncEngine] = None
_async_session_maker: Optional[async_sessionmaker[AsyncSession]] = None


def engine_options() -> dict[str, Any]:
    """Keyword arguments for ``create_async_engine`` under the current settings.

    SQLite gets NullPool and a lock timeout: concurrent compare-and-set
    writers queue on its single write lock instead of failing. When
    testing=True, NullPool avoids reusing connections across test event loops.
    """
    if settings.database_url.startswith("sqlite"):
        return {
            "poolclass": NullPool,
            "connect_args": {"timeout": settings.database_lock_timeout_seconds},
        }
    if settings.testing:
        return {"poolclass": NullPool}
    return {
        "echo": settings.log_format == "text" and settings.log_level == "DEBUG",
        "pool_size": settings.escalation_max_concurrency + API_POOL_HEADROOM,
        "max_overflow": 10,
        "pool_pre_ping": True,
    }


def get_engine() -> AsyncEngine:
    """Get or create the database engine."""
    global _engine
    if _engine is None:
        _engine = create_async_engine(settings.database_url, **engine_options())
    return _engine


def get_session_maker() -> async_sessionmaker[AsyncSession]:
    """Get or create the session maker."""
    global _async_session_maker
    if _async_session_maker is None:
        _async_session_maker = async_sessionmaker(
            get_engine(),
            class_=AsyncSession,
            expire_on_commit=False,
        )
    return _async_session_maker


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency for getting database sessions."""
    session_maker = get_session_maker()
    async with session_maker() as session:
        try:
            yield session
        finally:
            await session.close()


@asynccontextmanager
async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """Context manager for database sessions outside request handling."""
    session_maker = get_session_maker()
    async with session_maker() as session:
        try:
            yield session
        finally:
            await session.close()


async def check_database_connection() -> bool:
    """Check if the database is reachable.

    Returns:
        True if database is connected, False otherwise.
    """
    try:
        async with get_engine().connect() as conn:
            await conn.execute(text("SELECT 1"))
            return True
    except Exception as e:
        logger.warning("Database connection check failed", error=str(e))
        return False


async def close_database() -> None:
    """Close the database engine and all connections."""
    global _engine, _async_session_maker
    if _engine is not None:
        await _engine.dispose()
        _engine = None
        _async_session_maker = None


async def reset_database() -> None:
    """Reset the database engine for testing.

    Disposes the current engine so a new one can be created in a
    different event loop.
    """
    await close_database()
