"""Inbox guard.

Processes an event at most once per consumer. The guard claims the event id
with a conflict-ignoring insert before the handler runs, so of two racing
consumers only one proceeds. The claim lives in the caller's session: it
commits together with the handler's database side effects.

Usage:
    async with session.begin():
        async with InboxGuard(session, event_id, consumer="billing") as guard:
            if guard.should_process:
                await apply_charge(session, event)

The handler runs inside a SAVEPOINT. If it raises, the savepoint is rolled
back (discarding the handler's writes and clearing an aborted PostgreSQL
transaction) and the claim is removed so the event can be retried. The
handler's exception is what propagates.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Any

from sqlalchemy.exc import SQLAlchemyError

from reliable_delivery.infra.events.inbox.models import DEFAULT_CONSUMER
from reliable_delivery.infra.events.inbox.repository import InboxRepository

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable
    from types import TracebackType

    from sqlalchemy.ext.asyncio import AsyncSession, AsyncSessionTransaction

logger = logging.getLogger(__name__)


class InboxGuard:
    """Guards against duplicate event processing.

    Attributes:
        event_id: Event id being processed
        consumer: Consumer name
        should_process: True when this guard claimed the event
    """

    def __init__(
        self,
        session: AsyncSession,
        event_id: str,
        *,
        consumer: str = DEFAULT_CONSUMER,
        metadata: dict[str, Any] | None = None,
        repository: InboxRepository | None = None,
    ) -> None:
        self.session = session
        self.event_id = event_id
        self.consumer = consumer
        self.metadata = metadata
        self.repository = repository or InboxRepository()
        self.should_process = False
        self._savepoint: AsyncSessionTransaction | None = None

    async def __aenter__(self) -> InboxGuard:
        self.should_process = await self.repository.mark_processed(
            self.session,
            self.event_id,
            self.metadata,
            consumer=self.consumer,
        )
        if self.should_process:
            self._savepoint = await self.session.begin_nested()
            logger.debug(
                f"InboxGuard: event {self.event_id} claimed by {self.consumer}",
                extra={"event_id": self.event_id, "consumer": self.consumer},
            )
        else:
            logger.info(
                f"InboxGuard: event {self.event_id} already processed by {self.consumer}",
                extra={"event_id": self.event_id, "consumer": self.consumer},
            )
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> bool:
        savepoint, self._savepoint = self._savepoint, None
        if exc_type is None:
            if savepoint is not None and self.session.in_nested_transaction():
                await savepoint.commit()
            return False

        if self.should_process:
            self.should_process = False
            try:
                # Also closes a savepoint deactivated by a failed flush
                if savepoint is not None and self.session.in_nested_transaction():
                    await savepoint.rollback()
                await self.repository.remove_processed(
                    self.session,
                    self.event_id,
                    consumer=self.consumer,
                )
            except SQLAlchemyError:
                # The handler's error propagates; a rollback of the caller's
                # transaction drops the claim anyway
                logger.exception(
                    f"InboxGuard: could not release event {self.event_id}",
                    extra={"event_id": self.event_id, "consumer": self.consumer},
                )
                return False
            logger.warning(
                f"InboxGuard: released event {self.event_id} after failed processing",
                extra={
                    "event_id": self.event_id,
                    "consumer": self.consumer,
                    "exception_type": exc_type.__name__,
                },
            )
        return False


async def process_once(
    session: AsyncSession,
    event_id: str,
    handler: Callable[[], Awaitable[Any]],
    *,
    consumer: str = DEFAULT_CONSUMER,
    metadata: dict[str, Any] | None = None,
) -> bool:
    """Run ``handler`` unless ``event_id`` was already processed by ``consumer``.

    The caller commits the session. Handler errors propagate after the claim
    is released.

    Returns:
        True if the handler ran, False for a duplicate
    """
    async with InboxGuard(session, event_id, consumer=consumer, metadata=metadata) as guard:
        if not guard.should_process:
            return False
        await handler()
    return True


__all__ = ["InboxGuard", "process_once"]
