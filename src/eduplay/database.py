"""Store access: one async engine per process, one session per request."""

from collections.abc import AsyncGenerator, AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from eduplay.config import get_settings
from eduplay.notifications.service import publish_committed

_engine: AsyncEngine | None = None
_sessions: async_sessionmaker[AsyncSession] | None = None


def _engine_options(url: str) -> dict[str, Any]:
    # SQLite (local runs) has no server-side pool to size
    if make_url(url).get_backend_name() == "sqlite":
        return {}
    settings = get_settings()
    return {
        "pool_size": settings.database_pool_size,
        "max_overflow": settings.database_max_overflow,
        "pool_pre_ping": True,
    }


async def init_db(url: str) -> None:
    global _engine, _sessions  # noqa: PLW0603
    _engine = create_async_engine(url, **_engine_options(url))
    _sessions = async_sessionmaker(_engine, class_=AsyncSession, expire_on_commit=False)


async def close_db() -> None:
    global _engine, _sessions  # noqa: PLW0603
    if _engine is not None:
        await _engine.dispose()
    _engine = None
    _sessions = None


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency: the request-scoped session.

    Services flush; routers commit. Notifications committed during the request
    are pushed once the route returns. Anything left uncommitted when the
    request ends is rolled back when the session closes.
    """
    if _sessions is None:
        msg = "Database not initialized. Call init_db() first."
        raise RuntimeError(msg)
    async with _sessions() as session:
        yield session
        await publish_committed(session)


@asynccontextmanager
async def atomic(db: AsyncSession) -> AsyncIterator[AsyncSession]:
    """Run a block of statements all-or-nothing.

    Inside an ambient transaction this opens a SAVEPOINT, so a failure rolls
    back only the wrapped statements and leaves the caller's transaction usable.
    Otherwise it opens (and commits) a transaction of its own.
    """
    if db.in_transaction():
        async with db.begin_nested():
            yield db
    else:
        async with db.begin():
            yield db
