"""Pytest configuration and shared fixtures.

Organization:
    - Settings Fixtures: isolate cached settings between tests
    - Database Fixtures: SQLAlchemy engine and session factory on SQLite
    - Delivery Fixtures: fake clock and fake publisher

Database fixtures use a file-backed SQLite database per test (aiosqlite), so
separate sessions get separate connections just like against PostgreSQL.
Keep sessions short: SQLite serializes writers.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncGenerator
from typing import TYPE_CHECKING

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine

from reliable_delivery.core.settings import clear_all_caches
from reliable_delivery.infra.database.session import (
    create_session_factory,
    create_tables,
    drop_tables,
)

if TYPE_CHECKING:
    from pathlib import Path

    from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker


# ============================================================================
# Settings Fixtures
# ============================================================================


@pytest.fixture(autouse=True)
def _isolated_settings(monkeypatch: pytest.MonkeyPatch, tmp_path: Path):
    """Clear settings caches and point every YAML source at an empty directory."""
    empty_conf = tmp_path / "conf"
    empty_conf.mkdir()
    for domain in ("DB", "OUTBOX", "CIRCUIT_BREAKER", "RETRY", "WEBHOOK", "LOGGING"):
        monkeypatch.setenv(f"{domain}_CONFIG_DIR", str(empty_conf))

    clear_all_caches()
    yield
    clear_all_caches()


# ============================================================================
# Database Fixtures
# ============================================================================


@pytest.fixture
def database_url(tmp_path: Path) -> str:
    """SQLAlchemy URL of a fresh SQLite database file."""
    return f"sqlite+aiosqlite:///{tmp_path / 'delivery.db'}"


@pytest.fixture
async def db_engine(database_url: str) -> AsyncGenerator[AsyncEngine]:
    """Create async SQLAlchemy engine with the outbox and inbox tables.

    Example:
        async def test_with_db(db_engine):
            async with db_engine.begin() as conn:
                await conn.execute(text("SELECT 1"))
    """
    engine = create_async_engine(database_url, echo=False)
    await create_tables(engine)
    try:
        yield engine
    finally:
        await drop_tables(engine)
        await engine.dispose()


@pytest.fixture
def session_factory(db_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Session factory bound to the test engine (expire_on_commit=False)."""
    return create_session_factory(db_engine)


@pytest.fixture
async def db_session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession]:
    """Async session that is rolled back after the test.

    Example:
        async def test_append(db_session):
            message_id = await OutboxRepository().append(db_session, "x", {})
            await db_session.commit()
    """
    async with session_factory() as session:
        try:
            yield session
        finally:
            await session.rollback()


# ============================================================================
# Delivery Fixtures
# ============================================================================


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakePublisher:
    """Publisher double that records calls and raises scripted errors.

    ``errors[event_name]`` is consumed one exception per call; ``always``
    maps event names to an exception raised on every call. ``gate`` (when
    set) is awaited before each call returns.
    """

    def __init__(self) -> None:
        self.calls: list[tuple[str, str, str | None]] = []
        self.errors: dict[str, list[Exception]] = {}
        self.always: dict[str, Exception] = {}
        self.gate: asyncio.Event | None = None
        self.entered = asyncio.Event()

    async def publish(self, event_name: str, payload: str, *, message_id: str | None = None) -> None:
        self.calls.append((event_name, payload, message_id))
        self.entered.set()
        if self.gate is not None:
            await self.gate.wait()
        if event_name in self.always:
            raise self.always[event_name]
        scripted = self.errors.get(event_name)
        if scripted:
            raise scripted.pop(0)

    def calls_for(self, event_name: str) -> list[tuple[str, str, str | None]]:
        return [call for call in self.calls if call[0] == event_name]


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def fake_publisher() -> FakePublisher:
    return FakePublisher()
