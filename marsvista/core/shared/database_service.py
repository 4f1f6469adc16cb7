# marsvista/core/shared/database_service.py
"""
Database service for async SQLAlchemy session management.

Provides a singleton service for managing database connections, sessions,
health checks and dialect-aware idempotent inserts. PostgreSQL (asyncpg) is
the production backend; SQLite (aiosqlite) is supported for local runs and
tests.

Usage:
    from marsvista.core.shared.database_service import database_service

    # Get async session (context manager)
    async with database_service.get_session() as session:
        result = await session.execute(select(Photo).where(Photo.sol == 100))
        photos = result.scalars().all()

    # Initialize database (create tables)
    await database_service.init_db()

    # Health check
    health = await database_service.health_check()

PostgreSQL Configuration:
    Connection pooling is configured via settings / environment variables:
    - DB_POOL_SIZE: Number of connections to maintain (default: 10)
    - DB_MAX_OVERFLOW: Extra connections allowed during peak load (default: 20)
    - DB_POOL_RECYCLE: Recycle connections after N seconds (default: 3600)
"""

from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Dict, List, Optional, Sequence

from sqlalchemy import text
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool

from marsvista.config import settings
from marsvista.core.database.base import Base

# Rows per multi-VALUES insert; keeps bound parameters under SQLite/PostgreSQL limits
INSERT_CHUNK_SIZE = 200


def _is_celery_worker() -> bool:
    """Check if we're running inside a Celery worker process."""
    return (
        os.getenv("CELERY_WORKER") == "1" or
        "celery" in os.getenv("_", "").lower() or
        os.getenv("FORKED_BY_MULTIPROCESSING") == "1"
    )


class DatabaseService:
    """
    Database service for managing async SQLAlchemy sessions.

    Attributes:
        _engine: Async SQLAlchemy engine
        _session_factory: Async session factory
        _logger: Logger instance

    Methods:
        get_session(): Get async database session (context manager)
        init_db(): Initialize database (create all tables)
        insert_ignore_duplicates(): Multi-row INSERT ... ON CONFLICT DO NOTHING
        health_check(): Check database connectivity
        close(): Close database engine and connections
    """

    def __init__(self, database_url: Optional[str] = None):
        """
        Initialize database service.

        Args:
            database_url: Async SQLAlchemy URL; defaults to settings.database_url
        """
        self._logger = logging.getLogger("marsvista.database")
        self._engine: Optional[AsyncEngine] = None
        self._session_factory: Optional[async_sessionmaker] = None
        self.database_url = database_url or settings.database_url
        self._initialize_engine()

    @property
    def dialect_name(self) -> str:
        return self._engine.dialect.name if self._engine else ""

    def _initialize_engine(self) -> None:
        """
        Create the async engine for the configured URL.

        SQLite URLs get a plain engine (aiosqlite manages its own connection).
        PostgreSQL uses pooled asyncpg connections, or NullPool inside Celery
        workers where each task runs in a fresh event loop.
        """
        url = self.database_url
        safe_url = url.split("@")[-1] if "@" in url else url
        self._logger.info(f"Initializing database: {safe_url}")

        if url.startswith("sqlite"):
            self._engine = create_async_engine(url, echo=settings.debug)
        elif _is_celery_worker():
            # Fresh connection per task avoids "attached to a different loop" errors
            self._engine = create_async_engine(url, poolclass=NullPool, echo=settings.debug)
            self._logger.info("PostgreSQL configured with NullPool for Celery worker")
        else:
            self._engine = create_async_engine(
                url,
                pool_size=settings.db_pool_size,
                max_overflow=settings.db_max_overflow,
                pool_pre_ping=True,
                pool_recycle=settings.db_pool_recycle,
                echo=settings.debug,
            )
            self._logger.info(
                f"PostgreSQL connection pool: size={settings.db_pool_size}, "
                f"max_overflow={settings.db_max_overflow}, recycle={settings.db_pool_recycle}s"
            )

        self._session_factory = async_sessionmaker(
            self._engine,
            class_=AsyncSession,
            expire_on_commit=False,
            autoflush=False,
        )

    @asynccontextmanager
    async def get_session(self) -> AsyncGenerator[AsyncSession, None]:
        """
        Get async database session as context manager.

        Automatically handles commit on success and rollback on error.

        Yields:
            AsyncSession: Async database session

        Raises:
            RuntimeError: If database is not initialized
            Exception: Any database errors (triggers rollback)
        """
        if not self._session_factory:
            raise RuntimeError("Database not initialized")

        async with self._session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    async def init_db(self) -> None:
        """
        Create all tables defined in the models if they don't exist.

        Safe to call multiple times.
        """
        if not self._engine:
            raise RuntimeError("Database engine not initialized")

        self._logger.info("Creating database tables...")
        async with self._engine.begin() as conn:
            # Import models so they're registered with Base
            from marsvista.core.database import models  # noqa: F401

            await conn.run_sync(Base.metadata.create_all)
        self._logger.info("Database tables created successfully")

    async def insert_ignore_duplicates(
        self,
        session: AsyncSession,
        model: Any,
        rows: Sequence[Dict[str, Any]],
        index_elements: List[str],
    ) -> int:
        """
        Insert rows, silently skipping any that violate the given unique key.

        Uses the dialect's native ``INSERT ... ON CONFLICT DO NOTHING`` so a
        concurrent writer that inserted the same key first never causes a
        duplicate or an IntegrityError.

        Args:
            session: Database session
            model: ORM model class
            rows: Column dicts; every row must carry the same keys
            index_elements: Columns of the unique constraint to ignore conflicts on

        Returns:
            Number of rows actually inserted
        """
        if not rows:
            return 0

        dialect = session.get_bind().dialect.name
        if dialect == "postgresql":
            insert_fn = pg_insert
        elif dialect == "sqlite":
            insert_fn = sqlite_insert
        else:
            raise NotImplementedError(f"ON CONFLICT inserts not supported for dialect '{dialect}'")

        # Core table insert: plain multi-VALUES statement, rowcount = rows written
        table = getattr(model, "__table__", model)
        inserted = 0
        for i in range(0, len(rows), INSERT_CHUNK_SIZE):
            chunk = list(rows[i:i + INSERT_CHUNK_SIZE])
            stmt = insert_fn(table).values(chunk).on_conflict_do_nothing(index_elements=index_elements)
            result = await session.execute(stmt)
            inserted += max(result.rowcount or 0, 0)
        return inserted

    async def health_check(self) -> Dict[str, Any]:
        """
        Check database connectivity.

        Returns:
            Dict with health status:
                {"status": "healthy" | "unhealthy", "connected": bool,
                 "database_type": str, "error": str (if unhealthy)}
        """
        try:
            async with self.get_session() as session:
                await session.execute(text("SELECT 1"))
            return {"status": "healthy", "connected": True, "database_type": self.dialect_name}
        except Exception as e:
            self._logger.error(f"Database health check failed: {e}")
            return {
                "status": "unhealthy",
                "connected": False,
                "database_type": self.dialect_name,
                "error": str(e),
            }

    async def close(self) -> None:
        """Dispose of the engine and all pooled connections."""
        if self._engine:
            await self._engine.dispose()
            self._logger.info("Database connections closed")


# Global database service instance
database_service = DatabaseService()
