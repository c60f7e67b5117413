"""
Database configuration and session management.
Uses SQLAlchemy async with SQLite as the per-user row store (learned
preferences, weekly counters, the action log and inbox snapshots).
"""

import logging
import os
from typing import AsyncGenerator, Optional

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    create_async_engine,
    async_sessionmaker,
)
from sqlalchemy.orm import DeclarativeBase

from config import settings

logger = logging.getLogger(__name__)

# Seconds a writer waits on SQLite's file lock before failing
SQLITE_BUSY_TIMEOUT = 15


def sqlite_data_dir(database_url: str) -> Optional[str]:
    """Directory holding a file-based SQLite database, None otherwise."""
    url = make_url(database_url)
    if not url.drivername.startswith("sqlite") or not url.database or url.database == ":memory:":
        return None
    return os.path.dirname(url.database) or None


def _connect_args(database_url: str) -> dict:
    if make_url(database_url).drivername.startswith("sqlite"):
        return {"timeout": SQLITE_BUSY_TIMEOUT}
    return {}


engine = create_async_engine(
    settings.DATABASE_URL,
    echo=False,
    connect_args=_connect_args(settings.DATABASE_URL),
)

# Writers flush explicitly so optimistic version checks fail where they happen
AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""
    pass


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    FastAPI dependency for database sessions.

    Uncommitted work is rolled back when the request fails.

    Yields:
        AsyncSession: Database session for the request
    """
    async with AsyncSessionLocal() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise


async def init_db() -> None:
    """
    Create the data directory and every table that does not exist yet.
    """
    data_dir = sqlite_data_dir(settings.DATABASE_URL)
    if data_dir and not os.path.exists(data_dir):
        os.makedirs(data_dir, exist_ok=True)
        logger.info(f"Created data directory: {data_dir}")

    # Register models on Base.metadata
    from models import (  # noqa: F401
        UserPreference,
        WeeklySummary,
        EmailActionLog,
        InboxSnapshot,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    logger.info("Database tables created successfully")
