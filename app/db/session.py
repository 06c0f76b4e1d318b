"""
Database Session Management
===========================

Provides the process-wide async engine, the session factory and the
request-scoped session dependency.

The engine talks to the hosted Supabase Postgres instance. It is built
lazily on first use, lives for the whole process and is disposed from
the application lifespan.
"""

import logging
from typing import AsyncGenerator

from sqlalchemy import text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from app.config import settings

logger = logging.getLogger(__name__)

# Global engine instance
_engine: AsyncEngine | None = None
_async_session_factory: async_sessionmaker[AsyncSession] | None = None


def get_engine() -> AsyncEngine:
    """
    Get or create the async database engine.

    Webhook traffic is low-volume and bursty, so the pool is kept small:
    - pool_size: 5 connections
    - max_overflow: 10 additional connections
    - pool_recycle: Recycle connections every 5 minutes (matches typical
      Supabase/PgBouncer idle timeouts)
    - pool_use_lifo: Prefer the most-recently-returned connection
    """
    global _engine

    if _engine is None:
        if not settings.database_url_async:
            raise ValueError(
                "Database URL not configured. "
                "Please set SUPABASE_DATABASE_URL environment variable."
            )

        _engine = create_async_engine(
            settings.database_url_async,
            echo=False,
            pool_size=5,
            max_overflow=10,
            pool_pre_ping=False,
            pool_recycle=300,
            pool_use_lifo=True,
            pool_timeout=30,
        )

    return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Get or create the async session factory."""
    global _async_session_factory

    if _async_session_factory is None:
        engine = get_engine()
        _async_session_factory = async_sessionmaker(
            engine,
            class_=AsyncSession,
            expire_on_commit=False,
            autocommit=False,
            autoflush=False,
        )

    return _async_session_factory


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    Dependency that provides a database session.

    Usage:
        @app.get("/users")
        async def get_users(db: AsyncSession = Depends(get_db)):
            ...

    The session is automatically committed on success or rolled back on error.
    """
    session_factory = get_session_factory()
    async with session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


async def init_db() -> None:
    """
    Initialize the database connection.

    Called on application startup. Runs a trivial query so the first
    webhook delivery does not pay TCP + TLS + auth latency.
    """
    engine = get_engine()
    async with engine.connect() as conn:
        await conn.execute(text("SELECT 1"))

    logger.info("Database connection established")


async def close_db() -> None:
    """
    Close database connections.

    Called on application shutdown to clean up resources.
    """
    global _engine, _async_session_factory

    if _engine is not None:
        await _engine.dispose()
        _engine = None
        _async_session_factory = None
        logger.info("Database connections closed")
