"""
Async database engine and session management.

``DATABASE_URL`` selects the backend: SQLite through aiosqlite by default,
PostgreSQL through asyncpg for ``postgresql`` URLs.
"""
from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager
from typing import AsyncIterator

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from rfd_discussions.config import DEFAULT_DATABASE_URL
from rfd_discussions.models import Base

logger = logging.getLogger(__name__)

DATABASE_URL = os.environ.get("DATABASE_URL", DEFAULT_DATABASE_URL)

if DATABASE_URL.startswith("postgresql"):
    engine = create_async_engine(
        DATABASE_URL,
        pool_pre_ping=True,
        pool_size=5,
        max_overflow=10,
    )
elif ":memory:" in DATABASE_URL:
    # One shared connection, otherwise every session sees an empty database
    engine = create_async_engine(
        DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
else:
    engine = create_async_engine(
        DATABASE_URL,
        connect_args={"check_same_thread": False},
    )

async_session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

__all__ = [
    "Base",
    "DATABASE_URL",
    "advisory_lock",
    "async_session",
    "close_db_connections",
    "engine",
    "get_db_session",
    "init_db",
]


async def init_db() -> None:
    """Create tables that do not exist yet."""
    try:
        async with engine.begin() as connection:
            await connection.run_sync(Base.metadata.create_all)
    except SQLAlchemyError as e:
        logger.error(f"Database initialization failed: {e}")
        raise


@asynccontextmanager
async def get_db_session() -> AsyncIterator[AsyncSession]:
    """Yield a session, committing on success and rolling back on error."""
    session = async_session()
    try:
        yield session
        await session.commit()
    except Exception:
        await session.rollback()
        raise
    finally:
        await session.close()


async def close_db_connections() -> None:
    """Dispose of the engine's connection pool."""
    await engine.dispose()


@asynccontextmanager
async def advisory_lock(key: str) -> AsyncIterator[None]:
    """Hold a PostgreSQL session advisory lock on *key* for the block.

    Other backends have no cross-process lock; the block runs unguarded.
    """
    if not DATABASE_URL.startswith("postgresql"):
        yield
        return
    async with engine.connect() as connection:
        await connection.execute(text("SELECT pg_advisory_lock(hashtext(:key))"), {"key": key})
        try:
            yield
        finally:
            await connection.execute(
                text("SELECT pg_advisory_unlock(hashtext(:key))"), {"key": key}
            )
