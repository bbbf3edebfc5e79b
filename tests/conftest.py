"""Shared test fixtures - in-memory async SQLite engine, fixed clock, factories."""

import os

# Set env vars BEFORE importing octorank modules (config reads at import time)
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("GITHUB_TOKEN", "test-github-token")

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import pytest
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import NullPool, StaticPool

from octorank.core.database import create_session_factory
from octorank.models import Base, User
from octorank.schemas import GitHubProfile, UserStatsSnapshot
from octorank.services.achievements import AchievementEngine
from octorank.services.background import OrchestratorConfig
from octorank.services.leaderboard import LeaderboardRanker
from octorank.services.runtime import SessionBackgroundRuntime
from octorank.services.sessions import SessionScheduler
from octorank.services.store import Store

# Thursday
DEFAULT_NOW = datetime(2024, 10, 10, 12, 0, 0, tzinfo=timezone.utc)


class FakeClock:
    """Callable clock the tests move by hand."""

    def __init__(self, now: datetime = DEFAULT_NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now

    def set(self, now: datetime) -> datetime:
        self.now = now
        return now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
async def engine():
    """Fresh in-memory database per test. StaticPool keeps one shared connection."""
    test_engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        echo=False,
    )
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield test_engine
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await test_engine.dispose()


@pytest.fixture
def session_factory(engine):
    return create_session_factory(engine)


@pytest.fixture
def store(session_factory, clock):
    return Store(session_factory, clock=clock)


@pytest.fixture
def ranker(store):
    return LeaderboardRanker(store)


@pytest.fixture
def scheduler(store, ranker, clock):
    return SessionScheduler(store, ranker, clock=clock)


@pytest.fixture
async def engine_with_catalog(store, clock):
    """AchievementEngine with the catalog already seeded."""
    achievement_engine = AchievementEngine(store, clock=clock)
    await achievement_engine.seed_definitions()
    return achievement_engine


@pytest.fixture
def make_user(session_factory):
    """Factory that inserts a user row and returns it."""

    async def _make(
        user_id: str = "user-1",
        username: str | None = "octocat",
        github_created_at: datetime | None = None,
        **kwargs,
    ) -> User:
        async with session_factory() as db, db.begin():
            user = User(
                id=user_id,
                username=username,
                github_created_at=github_created_at,
                **kwargs,
            )
            db.add(user)
        return user

    return _make


@pytest.fixture
def make_snapshot(clock):
    """Factory for stats snapshots fetched 'now' unless told otherwise."""

    def _make(**overrides) -> UserStatsSnapshot:
        overrides.setdefault("last_fetched_at", clock())
        return UserStatsSnapshot(**overrides)

    return _make


@pytest.fixture
async def file_engine(tmp_path):
    """File-backed database with a connection per session, for concurrent writers."""
    test_engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'octorank.db'}",
        poolclass=NullPool,
        echo=False,
    )
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield test_engine
    await test_engine.dispose()


@pytest.fixture
async def file_runtime(file_engine, clock, make_snapshot):
    """Fully wired services over the file-backed database, catalog seeded.

    Username ``devN`` reports N daily contributions and 10*N points.
    """
    source = AsyncMock()
    source.fetch_user_data.side_effect = lambda username: GitHubProfile(
        github_id=int(username[3:]), login=username
    )
    source.fetch_user_stats.side_effect = lambda username: make_snapshot(
        points=10 * int(username[3:]), daily_contributions=int(username[3:])
    )
    config = OrchestratorConfig(interval_ms=60_000, batch_size=3, batch_delay_ms=0, initial_delay_ms=0)
    runtime = SessionBackgroundRuntime(file_engine, stats_source=source, config=config, clock=clock)
    await runtime.achievements.seed_definitions()
    return runtime
