"""Database base class and session management.

This module provides:
- SQLAlchemy base class for declarative models
- Lazily created async engine and session factory for the tutor database
- Table creation and teardown helpers used by the app lifespan and tests
"""

from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from ..core.config import get_settings


class Base(DeclarativeBase):
    """Base class for all ORM models."""
    pass


# =============================================================================
# Tutor Database
# =============================================================================

_tutor_engine = None
_tutor_session_maker = None


def _engine_options(url: str, debug: bool) -> Dict[str, Any]:
    """Pool options; SQLite drivers do not accept queue-pool sizing."""
    settings = get_settings()
    options: Dict[str, Any] = {"echo": debug}
    if not url.startswith("sqlite"):
        options.update(
            pool_size=settings.DB_POOL_SIZE,
            max_overflow=settings.DB_MAX_OVERFLOW,
            pool_timeout=settings.DB_POOL_TIMEOUT,
            pool_pre_ping=True,
        )
    return options


def get_tutor_engine():
    """Get or create the Tutor database engine."""
    global _tutor_engine

    if _tutor_engine is None:
        settings = get_settings()
        _tutor_engine = create_async_engine(
            settings.TUTOR_DB_URL,
            **_engine_options(settings.TUTOR_DB_URL, debug=False),
        )

    return _tutor_engine


def get_tutor_session_maker():
    """Get or create the Tutor session maker."""
    global _tutor_session_maker

    if _tutor_session_maker is None:
        engine = get_tutor_engine()
        _tutor_session_maker = async_sessionmaker(
            bind=engine,
            class_=AsyncSession,
            expire_on_commit=False,
        )

    return _tutor_session_maker


@asynccontextmanager
async def get_tutor_session() -> AsyncIterator[AsyncSession]:
    """Get a Tutor database session as an async context manager."""
    session_maker = get_tutor_session_maker()
    async with session_maker() as session:
        yield session


# =============================================================================
# Utility Functions
# =============================================================================


async def init_databases():
    """Initialize the tutor database (create tables)."""
    from . import models  # noqa: F401  registers tables on Base.metadata

    engine = get_tutor_engine()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def drop_databases():
    """Drop every table. Used by the test suite."""
    from . import models  # noqa: F401

    engine = get_tutor_engine()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


async def close_all():
    """Close all database connections."""
    global _tutor_engine, _tutor_session_maker

    if _tutor_engine:
        await _tutor_engine.dispose()
        _tutor_engine = None

    _tutor_session_maker = None
