"""Shared test fixtures."""

from __future__ import annotations

import os

# Must be set before the app module is imported (it builds an app at import).
os.environ.setdefault("NOOR_LOG_FORMAT", "console")
os.environ.setdefault("NOOR_RATE_LIMIT_REQUESTS", "1000")
os.environ.setdefault("NOOR_DATABASE_URL", "")

from collections.abc import AsyncGenerator, Callable, Generator  # noqa: E402
from datetime import datetime, timezone  # noqa: E402
from pathlib import Path  # noqa: E402
from typing import Any  # noqa: E402

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from fastapi import FastAPI  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession  # noqa: E402

from noorboard.client.identity import build_submit_payload  # noqa: E402
from noorboard.client.state import LeaderboardState  # noqa: E402
from noorboard.client.store import MemoryStore  # noqa: E402
from noorboard.config import Settings, get_settings  # noqa: E402
from noorboard.database import close_db, create_tables, get_session, init_db  # noqa: E402
from noorboard.leaderboard.policy import today_utc  # noqa: E402
from noorboard.leaderboard.router import get_now  # noqa: E402
from noorboard.main import create_app  # noqa: E402

LEADERBOARD_URL = "/api/v1/leaderboard"


@pytest.fixture
def db_url(tmp_path: Path) -> str:
    return f"sqlite+aiosqlite:///{tmp_path / 'leaderboard.db'}"


@pytest.fixture
def app() -> Generator[FastAPI, None, None]:
    application = create_app()
    yield application
    application.dependency_overrides.clear()


@pytest_asyncio.fixture
async def client(app: FastAPI, db_url: str) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client against the app with a fresh SQLite leaderboard store.

    ASGITransport does not run the lifespan, so the store is set up here.
    """
    await close_db()
    await init_db(db_url)
    await create_tables()

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    await close_db()


@pytest_asyncio.fixture
async def bare_client(app: FastAPI) -> AsyncGenerator[AsyncClient, None]:
    """HTTP client against the app with no leaderboard store configured."""
    await close_db()
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest_asyncio.fixture
async def db_session(client: AsyncClient) -> AsyncGenerator[AsyncSession, None]:
    """Direct database session for assertions (shares the client's store)."""
    async for session in get_session():
        yield session
        break


@pytest.fixture
def freeze(app: FastAPI) -> Callable[[datetime], None]:
    """Pin the server clock to a given UTC moment."""

    def _freeze(moment: datetime) -> None:
        app.dependency_overrides[get_now] = lambda: moment

    return _freeze


@pytest.fixture
def override_settings(app: FastAPI) -> Callable[..., Settings]:
    """Swap the settings the leaderboard routes see."""

    def _override(**values: Any) -> Settings:
        settings = Settings(**values)
        app.dependency_overrides[get_settings] = lambda: settings
        return settings

    return _override


@pytest.fixture
def device() -> LeaderboardState:
    """A fresh client device with in-memory storage."""
    return LeaderboardState(MemoryStore())


@pytest.fixture
def sign() -> Callable[..., dict[str, Any]]:
    """Build a signed submission in wire form for a device."""

    def _sign(
        state: LeaderboardState,
        scores: dict[str, Any],
        day: str | None = None,
        now: datetime | None = None,
    ) -> dict[str, Any]:
        now = now or datetime.now(timezone.utc)
        day = day or today_utc(now).isoformat()
        return build_submit_payload(state, day, scores, now=now).to_wire()

    return _sign
