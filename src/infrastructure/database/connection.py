# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Database connection management using SQLAlchemy async.

Uses SQLAlchemy 2.0 async API with the asyncpg driver in production.

Engines are cached per thread. Dramatiq workers run each thread on its own
persistent event loop (see background.tasks.base.run_async), and asyncpg
connections cannot be shared across loops, so every worker thread gets its
own pool. When run_async creates a new loop it calls
_clear_thread_db_connections() to drop engines bound to the old one.

Example:
    database = Database(settings.database.url)
    await database.create_all()

    async with database.session() as session:
        result = await session.execute(select(RiskProfile))
        profiles = result.scalars().all()
"""

import logging
import threading
import weakref
from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any, AsyncIterator

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from src.infrastructure.database.models.base import Base

if TYPE_CHECKING:
    from src.core.config.settings import DatabaseSettings

logger = logging.getLogger(__name__)

# Every Database instance, so run_async can reset per-thread engines
_databases: "weakref.WeakSet[Database]" = weakref.WeakSet()


class DatabaseError(Exception):
    """Base exception for database operations.

    Attributes:
        message: Human-readable error description.
        original_error: The underlying SQLAlchemy or database error.
    """

    def __init__(self, message: str, original_error: Exception | None = None) -> None:
        """Initialize the database error.

        Args:
            message: Human-readable error description.
            original_error: The underlying exception that caused this error.
        """
        super().__init__(message)
        self.message = message
        self.original_error = original_error

    def __str__(self) -> str:
        """Return string representation of the error."""
        if self.original_error:
            return f"{self.message}: {self.original_error}"
        return self.message


class Database:
    """Thread-aware async engine and session factory.

    Attributes:
        url: SQLAlchemy async database URL.
    """

    def __init__(self, url: str, **engine_options: Any) -> None:
        """Initialize the database.

        Args:
            url: SQLAlchemy async database URL.
            **engine_options: Extra create_async_engine() options.
        """
        self.url = url
        self._engine_options = engine_options
        self._local = threading.local()
        _databases.add(self)

    @classmethod
    def from_settings(cls, settings: "DatabaseSettings") -> "Database":
        """Create a Database from database settings."""
        return cls(
            settings.url,
            pool_size=settings.pool_size,
            max_overflow=settings.max_overflow,
            pool_pre_ping=True,
            pool_recycle=1800,
            echo=settings.echo,
        )

    def _ensure_engine(self) -> AsyncEngine:
        engine = getattr(self._local, "engine", None)
        if engine is None:
            try:
                engine = create_async_engine(self.url, **self._engine_options)
            except SQLAlchemyError as e:
                raise DatabaseError("Failed to initialize database connection", e) from e
            self._local.engine = engine
            self._local.sessionmaker = async_sessionmaker(
                bind=engine,
                class_=AsyncSession,
                expire_on_commit=False,
                autoflush=False,
            )
        return engine

    @property
    def engine(self) -> AsyncEngine:
        """Engine for the current thread, created on first access.

        Raises:
            DatabaseError: If the engine cannot be created.
        """
        return self._ensure_engine()

    @property
    def sessionmaker(self) -> async_sessionmaker[AsyncSession]:
        """Sessionmaker for the current thread."""
        self._ensure_engine()
        return self._local.sessionmaker

    def reset_thread(self) -> None:
        """Forget the current thread's engine without disposing it."""
        self._local.engine = None
        self._local.sessionmaker = None

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        """Get an async session.

        The session is committed on success and rolled back on exception.

        Yields:
            AsyncSession for database operations.

        Raises:
            DatabaseError: If a database operation fails.
        """
        async with self.sessionmaker() as session:
            try:
                yield session
                await session.commit()
            except SQLAlchemyError as e:
                await session.rollback()
                raise DatabaseError("Database operation failed", e) from e
            except Exception:
                await session.rollback()
                raise

    async def create_all(self) -> None:
        """Create all tables that do not exist yet."""
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        logger.info("Database schema ensured")

    async def check_connection(self) -> bool:
        """Check if the database is reachable."""
        try:
            async with self.engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
            return True
        except SQLAlchemyError:
            return False

    async def close(self) -> None:
        """Dispose the current thread's engine."""
        engine = getattr(self._local, "engine", None)
        if engine is not None:
            await engine.dispose()
        self.reset_thread()


def _clear_thread_db_connections() -> None:
    """Clear cached engines of every Database for the current thread.

    Called by run_async() when a new event loop is created for a thread.
    Engines are recreated on next access, bound to the new event loop.
    """
    for database in list(_databases):
        database.reset_thread()
