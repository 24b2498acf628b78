"""Repository for InboxRecord operations.

``mark_processed`` is a single conflict-ignoring INSERT, never a
read-then-write, so two consumers racing on the same event id cannot both
record it. The caller owns the transaction.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from sqlalchemy import delete, select
from sqlalchemy.dialects import postgresql, sqlite

from reliable_delivery.core.database.base import utcnow
from reliable_delivery.core.database.exceptions import RepositoryError
from reliable_delivery.core.database.repository import BaseRepository
from reliable_delivery.infra.events.inbox.models import DEFAULT_CONSUMER, InboxRecord
from reliable_delivery.infra.metrics.tracking import track_inbox_result

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)

_INSERT_BY_DIALECT = {
    "postgresql": postgresql.insert,
    "sqlite": sqlite.insert,
}


class InboxRepository(BaseRepository[InboxRecord]):
    """Repository for processed-event markers."""

    def __init__(self) -> None:
        super().__init__(InboxRecord)

    async def has_processed(
        self,
        session: AsyncSession,
        event_id: str,
        *,
        consumer: str = DEFAULT_CONSUMER,
    ) -> bool:
        """True when ``event_id`` was already processed by ``consumer``."""
        stmt = (
            select(InboxRecord.id)
            .where(InboxRecord.id == event_id, InboxRecord.consumer == consumer)
            .limit(1)
        )
        result = await session.execute(stmt)
        return result.scalar_one_or_none() is not None

    async def mark_processed(
        self,
        session: AsyncSession,
        event_id: str,
        metadata: dict[str, Any] | None = None,
        *,
        consumer: str = DEFAULT_CONSUMER,
    ) -> bool:
        """Record ``event_id`` as processed by ``consumer``.

        Duplicates are ignored by the database (ON CONFLICT DO NOTHING).

        Args:
            session: Database session
            event_id: Event id to record
            metadata: Optional JSON context stored with the record
            consumer: Consumer name

        Returns:
            True if this call inserted the record, False for a duplicate

        Raises:
            ValueError: If event_id is empty
            RepositoryError: If the dialect has no conflict-ignoring insert
        """
        if not event_id:
            msg = "event_id must not be empty"
            raise ValueError(msg)

        dialect = session.get_bind().dialect.name
        insert = _INSERT_BY_DIALECT.get(dialect)
        if insert is None:
            msg = "Inbox deduplication is not supported on this database"
            raise RepositoryError(msg, {"dialect": dialect})

        stmt = (
            insert(InboxRecord)
            .values(
                id=event_id,
                consumer=consumer,
                context=metadata,
                processed_at=utcnow(),
            )
            .on_conflict_do_nothing(index_elements=[InboxRecord.id, InboxRecord.consumer])
        )
        result = await session.execute(stmt)
        inserted = result.rowcount == 1

        track_inbox_result(consumer, duplicate=not inserted)
        logger.debug(
            "Inbox record inserted" if inserted else "Inbox duplicate ignored",
            extra={"event_id": event_id, "consumer": consumer},
        )
        return inserted

    async def remove_processed(
        self,
        session: AsyncSession,
        event_id: str,
        *,
        consumer: str = DEFAULT_CONSUMER,
    ) -> bool:
        """Delete the record of ``event_id`` so the event can be processed again.

        Returns:
            True if a record was removed
        """
        stmt = delete(InboxRecord).where(
            InboxRecord.id == event_id,
            InboxRecord.consumer == consumer,
        )
        result = await session.execute(stmt)
        return result.rowcount == 1


__all__ = ["InboxRepository"]
