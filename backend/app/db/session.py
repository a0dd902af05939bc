"""
Async engine and session management.

One AsyncSession is one unit of work: the conflict check, the table claim and
the booking write of a single operation all happen inside it, and it either
commits as a whole or rolls back as a whole.
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from app.core.config import get_settings

settings = get_settings()


def build_engine(url: str, **overrides):
    if url.startswith("sqlite"):
        # SQLite serializes writers itself and rejects pool/isolation arguments
        return create_async_engine(url, **overrides)
    options = {
        "pool_size": settings.DB_POOL_SIZE,
        "max_overflow": settings.DB_MAX_OVERFLOW,
        "pool_timeout": settings.DB_POOL_TIMEOUT,
        "pool_recycle": settings.DB_POOL_RECYCLE,
        "pool_pre_ping": True,
        "isolation_level": settings.DB_ISOLATION_LEVEL,
    }
    options.update(overrides)
    return create_async_engine(url, **options)


engine = build_engine(settings.DATABASE_URL, echo=settings.DEBUG)
AsyncSessionLocal = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency: commit on success, roll back on any error."""
    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


def get_session_factory() -> async_sessionmaker:
    """Session factory used by background work that opens its own units of work."""
    return AsyncSessionLocal


@asynccontextmanager
async def unit_of_work(session_factory: async_sessionmaker) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


SERIALIZATION_FAILURE = "40001"


def is_serialization_failure(exc: DBAPIError) -> bool:
    """
    True for PostgreSQL's "could not serialize access" error.

    Under REPEATABLE READ a compare-and-swap that loses to a concurrent commit
    fails this way instead of matching zero rows.
    """
    orig = exc.orig
    code = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    return code == SERIALIZATION_FAILURE
