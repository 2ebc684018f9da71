"""SQLAlchemy 2.x async database setup.

This module defines the async engine and session factory but does not
hard-code any connection credentials.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import AsyncIterator, Iterator

from sqlalchemy import event
from sqlalchemy.exc import InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from .config import settings

logger = logging.getLogger(__name__)


class StoreUnavailableError(Exception):
    """Raised when the database cannot be reached or drops the connection."""
    pass


def enable_sqlite_foreign_keys(engine: AsyncEngine) -> AsyncEngine:
    """Turn on FK enforcement for every new SQLite connection (off by default)."""
    if engine.dialect.name != "sqlite":
        return engine

    @event.listens_for(engine.sync_engine, "connect")
    def _set_sqlite_pragma(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    return engine


engine: AsyncEngine = enable_sqlite_foreign_keys(
    create_async_engine(settings.db.url, echo=settings.db.echo, future=True)
)

AsyncSessionMaker = async_sessionmaker(bind=engine, expire_on_commit=False, class_=AsyncSession)


@contextmanager
def store_errors(operation: str) -> Iterator[None]:
    """Translate connection-level driver failures into StoreUnavailableError."""
    try:
        yield
    except (OperationalError, InterfaceError) as e:
        logger.error(f"Database unavailable during {operation}: {e}")
        raise StoreUnavailableError(f"Database unavailable during {operation}") from e


async def get_session() -> AsyncIterator[AsyncSession]:
    """FastAPI-friendly async session dependency.

    Usage:
        async def endpoint(session: AsyncSession = Depends(get_session)):
            ...
    """

    async with AsyncSessionMaker() as session:
        yield session
