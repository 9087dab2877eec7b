"""
Database Session Management - Async SQLAlchemy engines and sessions.

Writes go to the primary; listings and the leaderboard may read from a
replica when READ_DATABASE_URL points at one.
"""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

from sqlalchemy import event
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from qafala.config import settings

_engines: dict[str, AsyncEngine] = {}
_factories: dict[str, async_sessionmaker[AsyncSession]] = {}


def _enable_sqlite_foreign_keys(dbapi_connection: Any, connection_record: Any) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def _build_engine(url: str) -> AsyncEngine:
    options: dict[str, Any] = {"echo": settings.log_level == "DEBUG"}
    if not settings.is_sqlite:
        options.update(
            pool_size=settings.database_pool_size,
            max_overflow=settings.database_max_overflow,
            pool_timeout=settings.database_pool_timeout,
            pool_recycle=settings.database_pool_recycle,
            pool_pre_ping=True,
        )
    engine = create_async_engine(url, **options)
    if settings.is_sqlite:
        event.listen(engine.sync_engine, "connect", _enable_sqlite_foreign_keys)
    return engine


def _engine(role: str) -> AsyncEngine:
    if role not in _engines:
        url = settings.database_url if role == "write" else settings.read_database_url
        _engines[role] = _build_engine(url)
    return _engines[role]


def _factory(role: str) -> async_sessionmaker[AsyncSession]:
    if role not in _factories:
        # Services keep using rows after commit (response building, logging)
        _factories[role] = async_sessionmaker(
            _engine(role), class_=AsyncSession, expire_on_commit=False
        )
    return _factories[role]


def get_write_engine() -> AsyncEngine:
    """Engine on the primary database."""
    return _engine("write")


@asynccontextmanager
async def get_write_session() -> AsyncIterator[AsyncSession]:
    """
    Session on the primary for work that runs outside a request.

    Usage:
        async with get_write_session() as session:
            await LeaderboardFinalizer(session).finalize()
    """
    async with _factory("write")() as session:
        yield session


async def get_write_db() -> AsyncGenerator[AsyncSession, None]:
    """
    FastAPI dependency for write database session.

    Usage:
        @router.post("/endpoint")
        async def endpoint(db: AsyncSession = Depends(get_write_db)):
            ...
    """
    async with _factory("write")() as session:
        yield session


async def get_read_db() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency for read database session (replica when configured)."""
    async with _factory("read")() as session:
        yield session


async def close_engines() -> None:
    """Dispose every engine (graceful shutdown, end of a job run)."""
    for role, engine in list(_engines.items()):
        await engine.dispose()
        del _engines[role]
    _factories.clear()
