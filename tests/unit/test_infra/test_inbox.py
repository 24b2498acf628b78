"""Tests for the inbox store and guard."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING

import pytest
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from reliable_delivery.infra.events.inbox import (
    DEFAULT_CONSUMER,
    InboxGuard,
    InboxRecord,
    InboxRepository,
    process_once,
)
from reliable_delivery.infra.events.outbox import OutboxMessage, OutboxRepository

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker


@pytest.fixture
def inbox() -> InboxRepository:
    return InboxRepository()


class HandlerError(Exception):
    pass


@pytest.mark.unit
class TestInboxRepository:
    async def test_mark_then_has_processed(
        self, db_session: AsyncSession, inbox: InboxRepository
    ) -> None:
        assert await inbox.has_processed(db_session, "evt_1") is False

        assert await inbox.mark_processed(db_session, "evt_1") is True

        assert await inbox.has_processed(db_session, "evt_1") is True

    async def test_duplicate_mark_returns_false(
        self, db_session: AsyncSession, inbox: InboxRepository
    ) -> None:
        assert await inbox.mark_processed(db_session, "evt_1") is True
        assert await inbox.mark_processed(db_session, "evt_1") is False

    async def test_consumers_are_independent(
        self, db_session: AsyncSession, inbox: InboxRepository
    ) -> None:
        assert await inbox.mark_processed(db_session, "evt_1", consumer="billing") is True
        assert await inbox.mark_processed(db_session, "evt_1", consumer="tracking") is True

        assert await inbox.has_processed(db_session, "evt_1", consumer="billing")
        assert not await inbox.has_processed(db_session, "evt_1")

    async def test_metadata_is_stored(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        inbox: InboxRepository,
    ) -> None:
        async with session_factory() as session:
            await inbox.mark_processed(session, "evt_1", {"source": "carrier-webhook"})
            await session.commit()

        async with session_factory() as session:
            record = await inbox.get(session, ("evt_1", DEFAULT_CONSUMER))

        assert isinstance(record, InboxRecord)
        assert record.context == {"source": "carrier-webhook"}
        assert record.processed_at is not None

    async def test_empty_event_id_is_rejected(
        self, db_session: AsyncSession, inbox: InboxRepository
    ) -> None:
        with pytest.raises(ValueError, match="event_id must not be empty"):
            await inbox.mark_processed(db_session, "")

    async def test_remove_processed(
        self, db_session: AsyncSession, inbox: InboxRepository
    ) -> None:
        await inbox.mark_processed(db_session, "evt_1")

        assert await inbox.remove_processed(db_session, "evt_1") is True
        assert await inbox.remove_processed(db_session, "evt_1") is False
        assert await inbox.has_processed(db_session, "evt_1") is False

    async def test_rollback_discards_record(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        inbox: InboxRepository,
    ) -> None:
        async with session_factory() as session:
            await inbox.mark_processed(session, "evt_1")
            await session.rollback()

        async with session_factory() as session:
            assert await inbox.has_processed(session, "evt_1") is False

    async def test_concurrent_marks_admit_exactly_one(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        inbox: InboxRepository,
    ) -> None:
        async def claim() -> bool:
            async with session_factory() as session:
                inserted = await inbox.mark_processed(session, "evt_race")
                await session.commit()
                return inserted

        results = await asyncio.gather(*(claim() for _ in range(5)))

        assert sorted(results) == [False, False, False, False, True]


@pytest.mark.unit
class TestInboxGuard:
    async def test_first_delivery_is_processed(self, db_session: AsyncSession) -> None:
        async with InboxGuard(db_session, "evt_1", consumer="billing") as guard:
            assert guard.should_process is True

        async with InboxGuard(db_session, "evt_1", consumer="billing") as guard:
            assert guard.should_process is False

    async def test_failure_releases_the_claim(
        self, db_session: AsyncSession, inbox: InboxRepository
    ) -> None:
        with pytest.raises(HandlerError):
            async with InboxGuard(db_session, "evt_1") as guard:
                assert guard.should_process
                raise HandlerError

        assert guard.should_process is False
        assert await inbox.has_processed(db_session, "evt_1") is False

    async def test_duplicate_failure_keeps_the_record(
        self, db_session: AsyncSession, inbox: InboxRepository
    ) -> None:
        await inbox.mark_processed(db_session, "evt_1")

        with pytest.raises(HandlerError):
            async with InboxGuard(db_session, "evt_1"):
                raise HandlerError

        assert await inbox.has_processed(db_session, "evt_1") is True

    async def test_database_error_in_handler_releases_the_claim(
        self, db_session: AsyncSession, inbox: InboxRepository
    ) -> None:
        await inbox.mark_processed(db_session, "evt_existing")

        with pytest.raises(IntegrityError):
            async with InboxGuard(db_session, "evt_1"):
                db_session.add(InboxRecord(id="evt_existing", consumer=DEFAULT_CONSUMER))
                await db_session.flush()

        assert await inbox.has_processed(db_session, "evt_1") is False
        assert await inbox.has_processed(db_session, "evt_existing") is True

    async def test_failure_discards_handler_writes(
        self, db_session: AsyncSession, inbox: InboxRepository
    ) -> None:
        with pytest.raises(HandlerError):
            async with InboxGuard(db_session, "evt_1"):
                await OutboxRepository().append(db_session, "invoice.charged", {"id": 1})
                raise HandlerError

        assert (await db_session.execute(select(OutboxMessage.id))).all() == []
        assert await inbox.has_processed(db_session, "evt_1") is False

    async def test_success_keeps_handler_writes(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        inbox: InboxRepository,
    ) -> None:
        async with session_factory() as session:
            async with InboxGuard(session, "evt_1") as guard:
                assert guard.should_process
                await OutboxRepository().append(session, "invoice.charged", {"id": 1})
            await session.commit()

        async with session_factory() as session:
            assert await inbox.has_processed(session, "evt_1") is True
            names = (await session.execute(select(OutboxMessage.event_name))).scalars().all()
        assert names == ["invoice.charged"]


@pytest.mark.unit
class TestProcessOnce:
    async def test_handler_runs_once(
        self,
        session_factory: async_sessionmaker[AsyncSession],
    ) -> None:
        calls = 0

        async def handler() -> None:
            nonlocal calls
            calls += 1

        for _ in range(3):
            async with session_factory() as session:
                await process_once(session, "evt_1", handler, consumer="billing")
                await session.commit()

        assert calls == 1

    async def test_returns_whether_handler_ran(self, db_session: AsyncSession) -> None:
        async def handler() -> None:
            return None

        assert await process_once(db_session, "evt_1", handler) is True
        assert await process_once(db_session, "evt_1", handler) is False

    async def test_handler_failure_allows_retry(
        self,
        session_factory: async_sessionmaker[AsyncSession],
    ) -> None:
        attempts = 0

        async def flaky() -> None:
            nonlocal attempts
            attempts += 1
            if attempts == 1:
                raise HandlerError

        async with session_factory() as session:
            with pytest.raises(HandlerError):
                await process_once(session, "evt_1", flaky, metadata={"try": 1})
            await session.commit()

        async with session_factory() as session:
            assert await process_once(session, "evt_1", flaky) is True
            await session.commit()

        assert attempts == 2
