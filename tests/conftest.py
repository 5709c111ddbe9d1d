"""Shared test fixtures.

Each test gets its own SQLite file database, so sessions opened by the
scheduler and by HTTP requests see each other's commits the way they would
against Postgres.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator, Awaitable, Callable
from datetime import datetime, timedelta, timezone
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from dtrack.auth.jwt import create_access_token
from dtrack.database import build_engine, get_session
from dtrack.db.base import Base
from dtrack.db.models import Deadline, Friendship, User
from dtrack.deadlines.service import create_deadline
from dtrack.email.service import DeliveryResult, reset_email_service
from dtrack.main import create_app

# Monday 09:00 UTC
NOW = datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc)


@pytest_asyncio.fixture
async def engine(tmp_path) -> AsyncGenerator[AsyncEngine, None]:
    """Fresh schema in a throwaway SQLite file."""
    eng = build_engine(f"sqlite+aiosqlite:///{tmp_path / 'dtrack_test.db'}")
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db(session_factory: async_sessionmaker[AsyncSession]) -> AsyncGenerator[AsyncSession, None]:
    """A direct database session for arranging data and asserting on it."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def clock() -> Callable[[], datetime]:
    return lambda: NOW


@pytest.fixture
def mock_email() -> MagicMock:
    """Email service double whose sends always succeed."""
    service = MagicMock()
    service.send_template = AsyncMock(return_value=DeliveryResult(success=True))
    service.send_email = AsyncMock(return_value=DeliveryResult(success=True))
    return service


# ---------------------------------------------------------------------------
# Data builders
# ---------------------------------------------------------------------------


@pytest.fixture
def make_user() -> Callable[..., Awaitable[User]]:
    async def _make(db: AsyncSession, username: str, preferences: dict[str, Any] | None = None) -> User:
        user = User(
            email=f"{username}@example.com",
            username=username,
            full_name=username.capitalize(),
            notification_preferences=preferences,
        )
        db.add(user)
        await db.flush()
        return user

    return _make


@pytest.fixture
def befriend() -> Callable[..., Awaitable[Friendship]]:
    async def _befriend(db: AsyncSession, a: User, b: User, status: str = "accepted") -> Friendship:
        friendship = Friendship(user_id=a.id, friend_id=b.id, status=status, requested_by=a.id)
        db.add(friendship)
        await db.flush()
        return friendship

    return _befriend


@pytest.fixture
def make_deadline() -> Callable[..., Awaitable[Deadline]]:
    async def _make(
        db: AsyncSession, owner: User, title: str = "Essay", due: datetime | None = None, **fields: object
    ) -> Deadline:
        data = {"title": title, "due_date": due or NOW + timedelta(days=3), **fields}
        return await create_deadline(db, owner.id, data)

    return _make


# ---------------------------------------------------------------------------
# HTTP
# ---------------------------------------------------------------------------


def auth_headers(user_id: int) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(user_id)}"}


@pytest.fixture
def auth_for() -> Callable[[int], dict[str, str]]:
    return auth_headers


@pytest_asyncio.fixture
async def client(session_factory: async_sessionmaker[AsyncSession]) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client against the app, backed by the per-test database."""
    app = create_app()

    async def _session() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_session] = _session
    reset_email_service()

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
    reset_email_service()
