"""
Database Session Management - Async SQLAlchemy session factory.

Provides separate read and write database connections.
"""

from typing import Any

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from quota_engine.config import settings
from quota_engine.db.models import Base
from quota_engine.observability.tracing import instrument_sqlalchemy

# Global engine instances
_write_engine: AsyncEngine | None = None
_read_engine: AsyncEngine | None = None

# Session factories
_write_session_factory: async_sessionmaker[AsyncSession] | None = None
_read_session_factory: async_sessionmaker[AsyncSession] | None = None


def _engine_options(url: str) -> dict[str, Any]:
    """Pool sizing applies to PostgreSQL only; SQLite picks its own pool."""
    options: dict[str, Any] = {"echo": settings.log_level == "DEBUG"}
    if url.startswith(("postgresql", "postgres")):
        options.update(
            pool_size=settings.database_pool_size,
            max_overflow=settings.database_max_overflow,
            pool_timeout=settings.database_pool_timeout,
            pool_recycle=settings.database_pool_recycle,
        )
    return options


def get_write_engine() -> AsyncEngine:
    """Get or create the write database engine (primary)."""
    global _write_engine
    if _write_engine is None:
        _write_engine = create_async_engine(
            settings.database_url, **_engine_options(settings.database_url)
        )
        instrument_sqlalchemy(_write_engine)
    return _write_engine


def get_read_engine() -> AsyncEngine:
    """Get or create the read database engine (replica)."""
    global _read_engine
    if _read_engine is None:
        _read_engine = create_async_engine(
            settings.read_database_url, **_engine_options(settings.read_database_url)
        )
        instrument_sqlalchemy(_read_engine)
    return _read_engine


def get_write_session_factory() -> async_sessionmaker[AsyncSession]:
    """Get or create the write session factory."""
    global _write_session_factory
    if _write_session_factory is None:
        _write_session_factory = async_sessionmaker(
            get_write_engine(),
            class_=AsyncSession,
            expire_on_commit=False,
        )
    return _write_session_factory


def get_read_session_factory() -> async_sessionmaker[AsyncSession]:
    """Get or create the read session factory."""
    global _read_session_factory
    if _read_session_factory is None:
        _read_session_factory = async_sessionmaker(
            get_read_engine(),
            class_=AsyncSession,
            expire_on_commit=False,
        )
    return _read_session_factory


async def create_schema(engine: AsyncEngine | None = None) -> None:
    """Create all engine tables that don't exist yet."""
    target = engine or get_write_engine()
    async with target.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def close_engines() -> None:
    """Close all database engines (for graceful shutdown)."""
    global _write_engine, _read_engine, _write_session_factory, _read_session_factory

    if _write_engine:
        await _write_engine.dispose()
        _write_engine = None
        _write_session_factory = None

    if _read_engine:
        await _read_engine.dispose()
        _read_engine = None
        _read_session_factory = None
