"""Repository for OutboxMessage operations.

Provides methods for:
- Appending messages inside the caller's business transaction
- Claiming due pending messages for processing
- Recording delivery outcomes with conditional, idempotent updates
- Inspecting and requeueing dead letters

Every method takes an explicit session. The caller owns the transaction.
"""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING, Any

from sqlalchemy import func, or_, select, update

from reliable_delivery.core.database.base import utcnow
from reliable_delivery.core.database.repository import BaseRepository
from reliable_delivery.infra.events.outbox.models import OutboxMessage, OutboxStatus
from reliable_delivery.infra.metrics.tracking import track_outbox_appended, track_outbox_requeued

if TYPE_CHECKING:
    import uuid
    from collections.abc import Sequence
    from datetime import datetime

    from sqlalchemy.ext.asyncio import AsyncSession

logger = logging.getLogger(__name__)

# Longest error text persisted in last_error
MAX_ERROR_LENGTH = 1000


def serialize_payload(payload: Any) -> str:
    """Serialize a payload once for storage.

    Strings are stored verbatim, bytes are decoded as UTF-8, and anything
    else is JSON-encoded.
    """
    if isinstance(payload, str):
        return payload
    if isinstance(payload, bytes):
        return payload.decode("utf-8")
    return json.dumps(payload, default=str, separators=(",", ":"))


class OutboxRepository(BaseRepository[OutboxMessage]):
    """Repository for outbox message operations.

    Terminal transitions (``mark_sent``, ``mark_failed``) and ``mark_retry``
    are single conditional UPDATEs on ``status = 'pending'``. They return
    False instead of raising when the message is no longer pending, so a
    repeated mark is a no-op.
    """

    def __init__(self, *, default_max_attempts: int = 5) -> None:
        """Initialize repository.

        Args:
            default_max_attempts: Dead-letter ceiling stamped on appended messages.
        """
        if default_max_attempts <= 0:
            msg = "default_max_attempts must be greater than 0"
            raise ValueError(msg)
        super().__init__(OutboxMessage)
        self.default_max_attempts = default_max_attempts

    async def append(
        self,
        session: AsyncSession,
        event_name: str,
        payload: Any,
        *,
        aggregate_id: str | None = None,
        max_attempts: int | None = None,
    ) -> uuid.UUID:
        """Append a pending message in the caller's transaction.

        The row is flushed, so database errors surface here and abort the
        enclosing transaction. Rolling the transaction back removes the
        message together with the business change.

        Args:
            session: Session of the business transaction
            event_name: Event discriminator
            payload: Event data (mapping/list JSON-encoded, str stored verbatim)
            aggregate_id: Optional correlation key
            max_attempts: Override of the dead-letter ceiling

        Returns:
            The new message id
        """
        if not event_name:
            msg = "event_name must not be empty"
            raise ValueError(msg)

        message = OutboxMessage(
            event_name=event_name,
            aggregate_id=aggregate_id,
            payload=serialize_payload(payload),
            status=OutboxStatus.PENDING.value,
            attempts=0,
            max_attempts=max_attempts or self.default_max_attempts,
        )
        await self.create(session, message)
        track_outbox_appended(event_name)

        logger.debug(
            "Outbox message appended",
            extra={
                "message_id": str(message.id),
                "event_name": event_name,
                "aggregate_id": aggregate_id,
            },
        )
        return message.id

    async def fetch_pending_batch(
        self,
        session: AsyncSession,
        limit: int,
        *,
        now: datetime | None = None,
    ) -> Sequence[OutboxMessage]:
        """Fetch up to ``limit`` due pending messages, oldest first.

        A message is due when ``next_attempt_at`` is NULL or not in the
        future. Ordering is ``created_at`` then ``id``. Rows are claimed with
        FOR UPDATE SKIP LOCKED where the dialect supports it, so concurrent
        processors never receive the same message.

        Args:
            session: Database session
            limit: Maximum number of messages to return
            now: Reference time (defaults to current UTC time)

        Returns:
            Sequence of pending OutboxMessage records
        """
        if limit <= 0:
            return []
        now = now or utcnow()

        stmt = (
            select(OutboxMessage)
            .where(OutboxMessage.status == OutboxStatus.PENDING.value)
            .where(
                or_(
                    OutboxMessage.next_attempt_at.is_(None),
                    OutboxMessage.next_attempt_at <= now,
                )
            )
            .order_by(OutboxMessage.created_at.asc(), OutboxMessage.id.asc())
            .limit(limit)
            .with_for_update(skip_locked=True)
        )

        result = await session.execute(stmt)
        return result.scalars().all()

    async def mark_sent(self, session: AsyncSession, message_id: uuid.UUID) -> bool:
        """Mark a pending message as delivered.

        Returns:
            True if the message was pending and is now sent, False otherwise
        """
        return await self._transition(
            session,
            message_id,
            status=OutboxStatus.SENT.value,
            sent_at=utcnow(),
            last_error=None,
            next_attempt_at=None,
        )

    async def mark_failed(self, session: AsyncSession, message_id: uuid.UUID, error: str) -> bool:
        """Mark a pending message as failed (dead letter).

        Args:
            session: Database session
            message_id: ID of the message
            error: Description of the failure (truncated to 1000 chars)

        Returns:
            True if the message was pending and is now failed, False otherwise
        """
        return await self._transition(
            session,
            message_id,
            status=OutboxStatus.FAILED.value,
            last_error=error[:MAX_ERROR_LENGTH],
            next_attempt_at=None,
        )

    async def mark_retry(
        self,
        session: AsyncSession,
        message_id: uuid.UUID,
        error: str,
        *,
        next_attempt_at: datetime | None = None,
    ) -> bool:
        """Record a failed attempt and keep the message pending.

        Args:
            session: Database session
            message_id: ID of the message
            error: Description of the failure (truncated to 1000 chars)
            next_attempt_at: Earliest time of the next attempt (None = next run)

        Returns:
            True if the message was pending, False otherwise
        """
        return await self._transition(
            session,
            message_id,
            last_error=error[:MAX_ERROR_LENGTH],
            next_attempt_at=next_attempt_at,
        )

    async def _transition(
        self,
        session: AsyncSession,
        message_id: uuid.UUID,
        **values: Any,
    ) -> bool:
        """Apply ``values`` and count an attempt if the message is still pending."""
        stmt = (
            update(OutboxMessage)
            .where(
                OutboxMessage.id == message_id,
                OutboxMessage.status == OutboxStatus.PENDING.value,
            )
            .values(attempts=OutboxMessage.attempts + 1, **values)
        )
        result = await session.execute(stmt)
        updated = result.rowcount == 1

        if not updated:
            logger.debug(
                "Outbox message not pending, update skipped",
                extra={"message_id": str(message_id), "target_status": values.get("status")},
            )
        return updated

    async def count_by_status(self, session: AsyncSession) -> dict[str, int]:
        """Count messages per status.

        Useful for monitoring and alerting. Every status is present in the
        result, with 0 when no message has it.
        """
        stmt = select(OutboxMessage.status, func.count()).group_by(OutboxMessage.status)
        result = await session.execute(stmt)

        counts = {status.value: 0 for status in OutboxStatus}
        for status, count in result.all():
            counts[status] = count
        return counts

    async def list_failed(
        self,
        session: AsyncSession,
        *,
        limit: int = 50,
        offset: int = 0,
        event_name: str | None = None,
    ) -> Sequence[OutboxMessage]:
        """List dead letters, oldest first.

        Args:
            session: Database session
            limit: Maximum results to return
            offset: Number of results to skip
            event_name: Only list messages of this event
        """
        stmt = select(OutboxMessage).where(OutboxMessage.status == OutboxStatus.FAILED.value)
        if event_name is not None:
            stmt = stmt.where(OutboxMessage.event_name == event_name)
        stmt = (
            stmt.order_by(OutboxMessage.created_at.asc(), OutboxMessage.id.asc())
            .limit(limit)
            .offset(offset)
        )
        result = await session.execute(stmt)
        return result.scalars().all()

    async def requeue_failed(
        self,
        session: AsyncSession,
        message_id: uuid.UUID,
        *,
        extra_attempts: int = 3,
    ) -> bool:
        """Return a dead letter to pending.

        ``attempts`` is kept. ``max_attempts`` is raised to
        ``attempts + extra_attempts`` so the message gets that many more
        processor runs.

        Returns:
            True if the message was failed and is now pending, False otherwise
        """
        stmt = (
            update(OutboxMessage)
            .where(
                OutboxMessage.id == message_id,
                OutboxMessage.status == OutboxStatus.FAILED.value,
            )
            .values(**self._requeue_values(extra_attempts))
        )
        result = await session.execute(stmt)
        requeued = result.rowcount == 1

        if requeued:
            track_outbox_requeued()
            logger.info(
                "Outbox dead letter requeued",
                extra={"message_id": str(message_id), "extra_attempts": extra_attempts},
            )
        return requeued

    async def requeue_all_failed(
        self,
        session: AsyncSession,
        *,
        event_name: str | None = None,
        extra_attempts: int = 3,
    ) -> int:
        """Return every dead letter (optionally of one event) to pending.

        Returns:
            Number of messages requeued
        """
        stmt = update(OutboxMessage).where(OutboxMessage.status == OutboxStatus.FAILED.value)
        if event_name is not None:
            stmt = stmt.where(OutboxMessage.event_name == event_name)
        stmt = stmt.values(**self._requeue_values(extra_attempts))

        result = await session.execute(stmt)
        count = result.rowcount or 0

        track_outbox_requeued(count)
        logger.info(
            "Outbox dead letters requeued",
            extra={"count": count, "event_name": event_name, "extra_attempts": extra_attempts},
        )
        return count

    @staticmethod
    def _requeue_values(extra_attempts: int) -> dict[str, Any]:
        if extra_attempts <= 0:
            msg = "extra_attempts must be greater than 0"
            raise ValueError(msg)
        return {
            "status": OutboxStatus.PENDING.value,
            "last_error": None,
            "next_attempt_at": None,
            "max_attempts": OutboxMessage.attempts + extra_attempts,
        }


__all__ = ["MAX_ERROR_LENGTH", "OutboxRepository", "serialize_payload"]
