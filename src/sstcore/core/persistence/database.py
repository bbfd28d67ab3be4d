"""Async database engine and session management.

Provides:
- init_database: Initialize async SQLAlchemy engine and create tables
- create_session_factory: Create async session factory
- session_scope: Async context manager for a committed unit of work
- shutdown: Clean shutdown of database connections
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from sstcore.core.config import load_config

from .models import Base


async def init_database(db_url: Optional[str] = None) -> AsyncEngine:
    """Initialize async database engine and create all tables.

    Args:
        db_url: SQLAlchemy database URL (default: Config.database_url)

    Returns:
        AsyncEngine instance

    Example:
        >>> engine = await init_database("sqlite+aiosqlite:///:memory:")
    """
    db_url = db_url or load_config().database_url
    engine = create_async_engine(db_url, echo=False, future=True)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    return engine


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Create async session factory from engine.

    expire_on_commit=False keeps loaded rows usable after commit; lazy
    refreshes are not available under asyncio.

    Args:
        engine: AsyncEngine instance from init_database()

    Returns:
        async_sessionmaker configured for async usage
    """
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,  # CRITICAL for async
        autoflush=False,
        autocommit=False,
    )


@asynccontextmanager
async def session_scope(
    factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    """Open a session that commits on success and rolls back on any exception.

    Yields:
        AsyncSession for database operations

    Example:
        >>> async with session_scope(factory) as session:
        ...     session.add(record)
        ...     # Auto-commits on exit
    """
    async with factory() as session:
        try:
            yield session
            await session.commit()
        except BaseException:
            await session.rollback()
            raise


async def shutdown(engine: AsyncEngine) -> None:
    """Clean shutdown of database engine.

    Args:
        engine: AsyncEngine to dispose
    """
    await engine.dispose()
