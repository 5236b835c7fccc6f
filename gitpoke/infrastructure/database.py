"""Database Session Manager — async engine for the registered-users table.

Invariants:
    - Every session rolls back on exception (no partial registration leaks)
    - Every SQLAlchemy exception leaves this module as DatabaseError (core/errors.py)
    - Non-SQLAlchemy exceptions (e.g. RegistrationRequiredError) pass through untouched

Design Decisions:
    - One manager per engine, owned by bootstrap.engine_lifespan (ADR: no global import side effects)
    - expire_on_commit=False: rows stay readable after commit in async context
    - Pool sizing skipped for SQLite: aiosqlite uses a static pool that rejects it
    - Schema created by create_schema() for local runs and tests; production migrations
      live outside the engine
"""

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

from sqlalchemy import text
from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from gitpoke.core.errors import DatabaseError
from gitpoke.db.base import Base

logger = logging.getLogger(__name__)


def _describe(e: SQLAlchemyError) -> tuple[str, str]:
    """(message, operation) for a driver/ORM failure; most specific type first."""
    match e:
        case IntegrityError():
            return "Integrity constraint violated", "commit"
        case OperationalError():
            return "Connection or operational error", "execute"
        case DBAPIError():
            return "Database driver error", "query"
    return "Database operation failed", "unknown"


class DatabaseSessionManager:
    """Owns the async engine; hands out short-lived sessions."""

    def __init__(self, database_url: str, pool_size: int = 20, max_overflow: int = 10):
        options: dict = {"pool_pre_ping": True}
        if not database_url.startswith("sqlite"):
            options.update(pool_size=pool_size, max_overflow=max_overflow, pool_recycle=3600)
        self.engine = create_async_engine(database_url, **options)
        self._sessions = async_sessionmaker(
            self.engine, class_=AsyncSession, expire_on_commit=False,
        )

    @asynccontextmanager
    async def session(self) -> AsyncGenerator[AsyncSession, None]:
        async with self._sessions() as session:
            try:
                yield session
            except SQLAlchemyError as e:
                await session.rollback()
                message, operation = _describe(e)
                logger.error(f"{message}: {e}", extra={"error_code": "DATABASE_ERROR"})
                raise DatabaseError(message, operation) from e
            except BaseException:
                await session.rollback()
                raise

    async def create_schema(self) -> None:
        import gitpoke.models  # noqa: F401  (registers tables on Base.metadata)
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def health_check(self) -> bool:
        """Readiness probe — never raises."""
        try:
            async with self.session() as session:
                await session.execute(text("SELECT 1"))
        except DatabaseError:
            return False
        return True

    async def dispose(self) -> None:
        await self.engine.dispose()
