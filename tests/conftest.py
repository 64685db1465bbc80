"""Shared fixtures: a real SQLite database, a stubbed TETR.IO client and a clock."""

from datetime import datetime, timedelta, timezone
from typing import Optional

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from uc_helper.core.config import Settings
from uc_helper.core.enums import RankTier
from uc_helper.core.models import Base
from uc_helper.core.tetrio.client import normalize_username
from uc_helper.core.tetrio.errors import NotFoundError, TetrioAPIError
from uc_helper.core.tetrio.models import LeagueStats, StatsSnapshot
from uc_helper.features.players import orm_models  # noqa: F401
from uc_helper.features.players.repository import PlayerRecordStore

ACCOUNT_FOO = "5e4979d4fad3ca55f6512458"
ACCOUNT_BAR = "5f0a1b2c3d4e5f6a7b8c9d0e"


class FakeClock:
    """Settable clock; every call returns the current fake time."""

    def __init__(self, start: Optional[datetime] = None):
        self.now = start or datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


class StubTetrioClient:
    """In-memory stand-in for ``TetrioAPIClient`` that counts calls."""

    def __init__(self, clock: FakeClock):
        self.clock = clock
        self.users: dict[str, dict] = {}
        self.errors: dict[str, TetrioAPIError] = {}
        self.username_calls: list[str] = []
        self.account_id_calls: list[str] = []

    @property
    def call_count(self) -> int:
        return len(self.username_calls) + len(self.account_id_calls)

    def add_user(self, account_id: str, username: str, **league) -> None:
        """Register or replace a TETR.IO user."""
        self.users[account_id] = {"username": username, **league}

    def rename(self, account_id: str, username: str) -> None:
        self.users[account_id]["username"] = username

    def _snapshot(self, account_id: str) -> StatsSnapshot:
        user = dict(self.users[account_id])
        username = user.pop("username")
        return make_snapshot(account_id, username, fetched_at=self.clock(), **user)

    async def fetch_by_username(self, name: str) -> StatsSnapshot:
        username = normalize_username(name)
        self.username_calls.append(username)
        if username in self.errors:
            raise self.errors[username]
        for account_id, user in self.users.items():
            if user["username"].lower() == username:
                return self._snapshot(account_id)
        raise NotFoundError("No such user", status_code=404)

    async def fetch_by_account_id(self, account_id: str) -> StatsSnapshot:
        self.account_id_calls.append(account_id)
        if account_id in self.errors:
            raise self.errors[account_id]
        if account_id not in self.users:
            raise NotFoundError("No such user", status_code=404)
        return self._snapshot(account_id)


def make_snapshot(
    account_id: str = ACCOUNT_FOO,
    username: str = "foo",
    fetched_at: Optional[datetime] = None,
    rating: float = 15234.5,
    rank: RankTier = RankTier.S,
    apm: float = 61.2,
    pps: float = 1.84,
    vs: float = 128.9,
) -> StatsSnapshot:
    """Build a snapshot with realistic league values."""
    return StatsSnapshot(
        account_id=account_id,
        username=username,
        stats=LeagueStats(
            apm=apm,
            pps=pps,
            vs=vs,
            rating=rating,
            rating_deviation=61.3,
            glicko=2103.7,
            rank_tier=rank,
            games_played=412,
            games_won=233,
            fetched_at=fetched_at or datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc),
        ),
    )


@pytest.fixture
def clock():
    """Fake clock starting at a fixed UTC time."""
    return FakeClock()


@pytest.fixture
def settings():
    """Settings independent of the environment and any .env file."""
    return Settings(
        _env_file=None,
        database_url_override="sqlite+aiosqlite://",
        api_max_retries=2,
        api_backoff_base_seconds=0.0,
        stale_after_minutes=45,
        link_conflict_retries=3,
        refresh_concurrency=3,
    )


@pytest_asyncio.fixture
async def engine(tmp_path):
    """File backed SQLite engine with the schema created."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'uc_helper.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(
        engine, class_=AsyncSession, expire_on_commit=False, autoflush=False
    )


@pytest.fixture
def store(session_factory, clock):
    return PlayerRecordStore(session_factory, timeout_seconds=10.0, clock=clock)


@pytest.fixture
def stub_client(clock):
    client = StubTetrioClient(clock)
    client.add_user(ACCOUNT_FOO, "Foo", rating=15234.5)
    client.add_user(ACCOUNT_BAR, "bar_baz", rating=8120.0, rank=RankTier.B)
    return client
