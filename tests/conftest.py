"""Shared test fixtures.

The store is an in-memory SQLite database (aiosqlite) built from the ORM
metadata. A single connection is shared through ``StaticPool``, so API tests
commit their setup before calling the app and never hold a transaction open
across a request.
"""

from __future__ import annotations

import uuid
from collections.abc import AsyncGenerator, Awaitable, Callable
from datetime import datetime
from typing import Any

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from eduplay.auth.jwt import create_access_token
from eduplay.database import get_session
from eduplay.db import models  # noqa: F401
from eduplay.db.base import Base
from eduplay.db.models import Exercise, User, UserStats
from eduplay.main import create_app
from eduplay.notifications.service import publish_committed


@pytest_asyncio.fixture
async def engine() -> AsyncGenerator[AsyncEngine, None]:
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    # pysqlite's own transaction handling breaks SAVEPOINT; let SQLAlchemy emit BEGIN
    @event.listens_for(engine.sync_engine, "connect")
    def _do_connect(dbapi_connection: Any, _connection_record: Any) -> None:
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _do_begin(conn: Any) -> None:
        conn.exec_driver_sql("BEGIN")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(session_factory: async_sessionmaker[AsyncSession]) -> AsyncGenerator[AsyncSession, None]:
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def client(session_factory: async_sessionmaker[AsyncSession]) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client against the app with the session dependency pointed at the test DB."""
    app = create_app()

    async def override_get_session() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            yield session
            await publish_committed(session)

    app.dependency_overrides[get_session] = override_get_session

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture
def make_user(db_session: AsyncSession) -> Callable[..., Awaitable[User]]:
    """Factory: create a user (and stats row when XP or rank is given)."""

    async def _make_user(
        display_name: str | None = None,
        *,
        role: str = "student",
        full_name: str | None = None,
        email: str | None = None,
        last_login: datetime | None = None,
        total_xp: int | None = None,
        current_rank: str | None = None,
        is_active: bool = True,
    ) -> User:
        user = User(
            id=uuid.uuid4(),
            email=email or f"{uuid.uuid4().hex[:12]}@example.com",
            display_name=display_name,
            full_name=full_name,
            role=role,
            is_active=is_active,
            last_login=last_login,
        )
        db_session.add(user)
        await db_session.flush()
        if total_xp is not None or current_rank is not None:
            db_session.add(UserStats(user_id=user.id, total_xp=total_xp or 0, current_rank=current_rank))
            await db_session.flush()
        return user

    return _make_user


@pytest.fixture
def make_exercise(db_session: AsyncSession) -> Callable[..., Awaitable[Exercise]]:
    async def _make_exercise(title: str = "Exercise") -> Exercise:
        exercise = Exercise(id=uuid.uuid4(), title=title, points=10)
        db_session.add(exercise)
        await db_session.flush()
        return exercise

    return _make_exercise


def auth_headers(user: User) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(user.id, user.role)}"}


@pytest.fixture
def headers_for() -> Callable[[User], dict[str, str]]:
    """Bearer headers for a user."""
    return auth_headers
