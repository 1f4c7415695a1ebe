"""
Database Infrastructure
=======================

Async engine, session lifecycle and column types shared by the SLA tables.

Uses SQLAlchemy 2.0 with asyncpg for async PostgreSQL operations. SQLite
(aiosqlite) is supported for local development and the test suite.
"""

from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import AsyncGenerator, Optional

from sqlalchemy import DateTime, event
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.types import TypeDecorator

from helpdesk.config import settings


class Base(DeclarativeBase):
    """Declarative base for the SLA tables."""


class UTCDateTime(TypeDecorator):
    """
    Timezone-aware UTC datetime column.

    PostgreSQL keeps the offset natively. SQLite has no timezone support, so
    values are stored as naive UTC and re-tagged on the way out; this keeps
    range comparisons against due timestamps identical on both backends.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value: Optional[datetime], dialect) -> Optional[datetime]:
        if value is None:
            return None
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        value = value.astimezone(timezone.utc)
        if dialect.name == "sqlite":
            return value.replace(tzinfo=None)
        return value

    def process_result_value(self, value: Optional[datetime], dialect) -> Optional[datetime]:
        if value is not None and value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value


_engine: AsyncEngine | None = None
_session_maker: async_sessionmaker[AsyncSession] | None = None

_NOT_INITIALIZED = "Database not initialized. Call init_database() first."


def get_engine() -> AsyncEngine:
    if _engine is None:
        raise RuntimeError(_NOT_INITIALIZED)
    return _engine


def get_session_maker() -> async_sessionmaker[AsyncSession]:
    """Session factory for code that manages its own sessions (scheduler, tests)."""
    if _session_maker is None:
        raise RuntimeError(_NOT_INITIALIZED)
    return _session_maker


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record) -> None:
    # Policy deletion relies on the RESTRICT foreign key from tickets
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def init_database(database_url: Optional[str] = None) -> AsyncEngine:
    """
    Create the engine and session factory.

    Called once from the application lifespan; tests pass their own URL.

    Args:
        database_url: Override for ``settings.database_url``

    Returns:
        AsyncEngine: The initialized engine
    """
    global _engine, _session_maker

    # asyncpg understands ssl=, not libpq's sslmode=
    url = (database_url or settings.database_url).replace("sslmode=", "ssl=")
    is_sqlite = url.startswith("sqlite")

    engine_kwargs = {"echo": settings.debug}
    if not is_sqlite:
        engine_kwargs.update(
            pool_size=settings.db_pool_size,
            max_overflow=settings.db_max_overflow,
            pool_pre_ping=True,
        )

    _engine = create_async_engine(url, **engine_kwargs)
    if is_sqlite:
        event.listen(_engine.sync_engine, "connect", _enable_sqlite_foreign_keys)

    # Services keep using entities after commit
    _session_maker = async_sessionmaker(
        bind=_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )
    return _engine


async def close_database() -> None:
    """Dispose of pooled connections. Called on application shutdown."""
    global _engine, _session_maker

    if _engine is not None:
        await _engine.dispose()
        _engine = None
        _session_maker = None


@asynccontextmanager
async def get_session_context() -> AsyncGenerator[AsyncSession, None]:
    """
    Unit-of-work session for background jobs and startup tasks.

    Whatever the block leaves uncommitted is committed on success and rolled
    back on error.

    Usage:
        async with get_session_context() as session:
            await BreachReconciler(SQLAlchemyTicketRepository(session)).sweep()
    """
    async with get_session_maker()() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency: one session per request with the same commit/rollback rule."""
    async with get_session_context() as session:
        yield session


async def create_tables() -> None:
    """
    Create the SLA tables and indexes if they do not exist.

    Development and tests only; production schemas are managed by migrations.
    """
    # Registers the SLA tables on Base.metadata
    from helpdesk.sla.infrastructure import models  # noqa: F401

    async with get_engine().begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
