"""Outbox processor for reliable event publishing.

Each run:
1. Claims a batch of due pending messages (FOR UPDATE SKIP LOCKED)
2. Publishes them one at a time, in creation order, through the circuit
   breaker of the message's resource and the retry policy
3. Records the outcome of every message and commits once per batch

A message's failure never aborts the batch. At most one run is active per
processor; an overlapping call returns immediately with ``skipped=True``.

Outcomes:
    - published: ``sent``
    - circuit open: stays ``pending``, due again once the circuit admits a
      probe
    - non-retryable error: ``failed`` (dead letter)
    - transient error: stays ``pending`` with an exponential redelivery
      delay until ``max_attempts`` is reached, then ``failed``
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from datetime import timedelta
from typing import TYPE_CHECKING

from reliable_delivery.core.database.base import utcnow
from reliable_delivery.core.exceptions import AppException, ErrorKind
from reliable_delivery.infra.events.outbox.repository import OutboxRepository
from reliable_delivery.infra.metrics.tracking import (
    track_outbox_message,
    track_outbox_publish,
    track_outbox_run,
)
from reliable_delivery.infra.resilience.circuit_breaker import CircuitOpenError
from reliable_delivery.tasks.scheduler import (
    OUTBOX_JOB_ID,
    create_scheduler,
    schedule_outbox_processor,
    start_scheduler,
    stop_scheduler,
)

if TYPE_CHECKING:
    import uuid
    from collections.abc import Callable
    from datetime import datetime

    from apscheduler.schedulers.asyncio import AsyncIOScheduler
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from reliable_delivery.core.settings.outbox import OutboxSettings
    from reliable_delivery.infra.events.outbox.models import OutboxMessage
    from reliable_delivery.infra.events.outbox.publisher import Publisher
    from reliable_delivery.infra.resilience.circuit_breaker import CircuitBreakerRegistry
    from reliable_delivery.infra.resilience.retry import RetryPolicy

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProcessorRunResult:
    """Counts of one processor run.

    Attributes:
        sent: Messages published and marked sent
        failed: Messages not sent in this run (deferred, retried or dead-lettered)
        dead_lettered: Messages that became terminal ``failed``
        superseded: Messages whose outcome was not recorded because they
            were no longer pending (another writer got there first)
        skipped: True when the run did not execute because another was active
        duration: Run duration in seconds
    """

    sent: int = 0
    failed: int = 0
    dead_lettered: int = 0
    superseded: int = 0
    skipped: bool = False
    duration: float = 0.0

    @property
    def processed(self) -> int:
        return self.sent + self.failed + self.superseded


def _identity(event_name: str) -> str:
    return event_name


class OutboxProcessor:
    """Publishes pending outbox messages.

    Attributes:
        batch_size: Messages claimed per run
        publish_timeout: Upper bound in seconds for one publish attempt
        redelivery_delay: Base delay in seconds before a transient failure is
            retried by a later run
        max_redelivery_delay: Cap of the redelivery delay
        poll_interval: Seconds between scheduled runs
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        publisher: Publisher,
        registry: CircuitBreakerRegistry,
        retry_policy: RetryPolicy,
        repository: OutboxRepository | None = None,
        *,
        batch_size: int = 100,
        publish_timeout: float | None = 10.0,
        redelivery_delay: float = 30.0,
        max_redelivery_delay: float = 3600.0,
        poll_interval: float = 5.0,
        resource_resolver: Callable[[str], str] | None = None,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        """Initialize the outbox processor.

        Args:
            session_factory: Factory for the session of each run
            publisher: Downstream the messages are handed to
            registry: Circuit breakers keyed by resource name
            retry_policy: Policy shaping the attempts of one publish call
            repository: Outbox store (a default one is created when omitted)
            batch_size: Messages to fetch per run
            publish_timeout: Per-attempt publish timeout in seconds (None = unbounded)
            redelivery_delay: Base redelivery delay for transient failures
            max_redelivery_delay: Cap of the redelivery delay
            poll_interval: Seconds between scheduled runs
            resource_resolver: Maps an event name to its circuit breaker
                resource. Defaults to the event name itself.
            clock: Current UTC time source
        """
        if batch_size <= 0:
            msg = "batch_size must be greater than 0"
            raise ValueError(msg)
        if poll_interval <= 0:
            msg = "poll_interval must be greater than 0"
            raise ValueError(msg)

        self.session_factory = session_factory
        self.publisher = publisher
        self.registry = registry
        self.retry_policy = retry_policy
        self.repository = repository or OutboxRepository()
        self.batch_size = batch_size
        self.publish_timeout = publish_timeout
        self.redelivery_delay = redelivery_delay
        self.max_redelivery_delay = max_redelivery_delay
        self.poll_interval = poll_interval
        self.resource_resolver = resource_resolver or _identity
        self._clock = clock

        self._run_lock = asyncio.Lock()
        self._scheduler: AsyncIOScheduler | None = None
        self._owns_scheduler = False

    @classmethod
    def from_settings(
        cls,
        settings: OutboxSettings,
        *,
        session_factory: async_sessionmaker[AsyncSession],
        publisher: Publisher,
        registry: CircuitBreakerRegistry,
        retry_policy: RetryPolicy,
        resource_resolver: Callable[[str], str] | None = None,
    ) -> OutboxProcessor:
        """Build a processor from OutboxSettings."""
        return cls(
            session_factory,
            publisher,
            registry,
            retry_policy,
            OutboxRepository(default_max_attempts=settings.max_attempts),
            batch_size=settings.batch_size,
            publish_timeout=settings.publish_timeout_seconds,
            redelivery_delay=settings.redelivery_delay_seconds,
            max_redelivery_delay=settings.max_redelivery_delay_seconds,
            poll_interval=settings.poll_interval_seconds,
            resource_resolver=resource_resolver,
        )

    @property
    def is_running(self) -> bool:
        """True while a run is in progress."""
        return self._run_lock.locked()

    async def run_once(self) -> ProcessorRunResult:
        """Process one batch of pending messages.

        Returns immediately with ``skipped=True`` when a run is already in
        progress. The call never waits for the active run.

        Raises:
            Exception: Database errors abort the run; per-message publish
                errors never do.
        """
        if self._run_lock.locked():
            logger.debug("Outbox run already in progress, skipping")
            track_outbox_run("skipped")
            return ProcessorRunResult(skipped=True)

        async with self._run_lock:
            start_time = time.perf_counter()
            try:
                result = await self._process_batch()
            except Exception:
                track_outbox_run("error")
                logger.exception("Outbox run failed")
                raise

            duration = time.perf_counter() - start_time
            result = ProcessorRunResult(
                sent=result.sent,
                failed=result.failed,
                dead_lettered=result.dead_lettered,
                superseded=result.superseded,
                duration=duration,
            )
            track_outbox_run("completed", duration)

        if result.processed > 0:
            logger.info(
                "Outbox batch processed",
                extra={
                    "sent": result.sent,
                    "failed": result.failed,
                    "dead_lettered": result.dead_lettered,
                    "superseded": result.superseded,
                    "duration": round(duration, 4),
                },
            )
        return result

    async def _process_batch(self) -> ProcessorRunResult:
        sent = failed = dead_lettered = superseded = 0

        async with self.session_factory() as session:
            messages = await self.repository.fetch_pending_batch(
                session, self.batch_size, now=self._clock()
            )
            if not messages:
                return ProcessorRunResult()

            logger.debug("Processing outbox batch", extra={"batch_size": len(messages)})

            for message in messages:
                outcome = await self._process_message(session, message)
                if outcome == "sent":
                    sent += 1
                elif outcome == "skipped":
                    superseded += 1
                else:
                    failed += 1
                    if outcome == "dead_lettered":
                        dead_lettered += 1

            await session.commit()

        return ProcessorRunResult(
            sent=sent, failed=failed, dead_lettered=dead_lettered, superseded=superseded
        )

    async def _process_message(self, session: AsyncSession, message: OutboxMessage) -> str:
        """Publish one message and record the outcome.

        Returns:
            'sent', 'deferred', 'retry', 'dead_lettered', or 'skipped' when the
            message was no longer pending
        """
        # Captured before any UPDATE, the ORM instance is not refreshed afterwards
        message_id = message.id
        event_name = message.event_name
        payload = message.payload
        attempts = message.attempts
        max_attempts = message.max_attempts
        resource = self.resource_resolver(event_name)

        async def publish() -> None:
            await self.publisher.publish(event_name, payload, message_id=str(message_id))

        start_time = time.perf_counter()
        try:
            await self.registry.execute(
                resource,
                lambda: self.retry_policy.execute(
                    publish,
                    timeout=self.publish_timeout,
                    operation_name=f"outbox.publish.{event_name}",
                ),
            )
        except Exception as exc:
            publish_duration = time.perf_counter() - start_time
            error = self.retry_policy.normalize(exc, operation_name=f"outbox.publish.{event_name}")
            outcome = await self._record_failure(
                session,
                message_id,
                error,
                resource=resource,
                attempts=attempts,
                max_attempts=max_attempts,
            )
            log_extra = {
                "message_id": str(message_id),
                "event_name": event_name,
                "resource": resource,
                "error_kind": error.kind,
                "attempts": attempts + 1,
                "max_attempts": max_attempts,
                "outcome": outcome,
            }
            if outcome == "dead_lettered":
                logger.error(f"Outbox message dead-lettered: {error.detail}", extra=log_extra)
            else:
                logger.warning(f"Outbox message not delivered: {error.detail}", extra=log_extra)
        else:
            publish_duration = time.perf_counter() - start_time
            updated = await self.repository.mark_sent(session, message_id)
            outcome = "sent" if updated else "skipped"
            logger.debug(
                "Outbox message published",
                extra={"message_id": str(message_id), "event_name": event_name},
            )

        track_outbox_message(event_name, outcome)
        track_outbox_publish(event_name, outcome, publish_duration)
        return outcome

    async def _record_failure(
        self,
        session: AsyncSession,
        message_id: uuid.UUID,
        error: AppException,
        *,
        resource: str,
        attempts: int,
        max_attempts: int,
    ) -> str:
        error_text = error.as_error_text()

        if error.kind == ErrorKind.CIRCUIT_OPEN:
            # Out of the due set until the circuit can admit a probe
            next_attempt_at = self._clock() + timedelta(
                seconds=self.circuit_open_delay_for(resource, error)
            )
            updated = await self.repository.mark_retry(
                session, message_id, error_text, next_attempt_at=next_attempt_at
            )
            return "deferred" if updated else "skipped"

        if error.kind == ErrorKind.INTERNAL or attempts + 1 >= max_attempts:
            updated = await self.repository.mark_failed(session, message_id, error_text)
            return "dead_lettered" if updated else "skipped"

        delay = self.redelivery_delay_for(attempts)
        next_attempt_at = self._clock() + timedelta(seconds=delay) if delay > 0 else None
        updated = await self.repository.mark_retry(
            session, message_id, error_text, next_attempt_at=next_attempt_at
        )
        return "retry" if updated else "skipped"

    def redelivery_delay_for(self, attempts: int) -> float:
        """Delay before the next run may retry a message with ``attempts`` attempts."""
        delay = self.redelivery_delay * (2**attempts)
        return min(delay, self.max_redelivery_delay)

    def circuit_open_delay_for(self, resource: str, error: AppException) -> float:
        """Delay before a message rejected by an open circuit is due again.

        The circuit's ``retry_after`` when the rejection carries one, otherwise
        (half-open with a probe in flight) the circuit's open timeout.
        """
        retry_after = error.retry_after if isinstance(error, CircuitOpenError) else None
        if retry_after is not None:
            return retry_after
        return self.registry.get(resource).open_timeout

    # ------------------------------------------------------------------
    # Scheduling
    # ------------------------------------------------------------------

    async def start(self, scheduler: AsyncIOScheduler | None = None) -> None:
        """Run the processor every ``poll_interval`` seconds.

        Args:
            scheduler: Scheduler to register the job with. A private one is
                created (and owned) when omitted.
        """
        if self._scheduler is not None:
            logger.warning("Outbox processor already running")
            return

        self._owns_scheduler = scheduler is None
        self._scheduler = scheduler or create_scheduler()
        schedule_outbox_processor(self._scheduler, self, interval_seconds=self.poll_interval)
        await start_scheduler(self._scheduler)

        logger.info(
            "Outbox processor started",
            extra={
                "batch_size": self.batch_size,
                "poll_interval": self.poll_interval,
                "publish_timeout": self.publish_timeout,
            },
        )

    async def stop(self) -> None:
        """Stop scheduling runs and wait for the active run to finish."""
        if self._scheduler is None:
            return

        scheduler = self._scheduler
        self._scheduler = None
        if self._owns_scheduler:
            await stop_scheduler(scheduler)
        elif scheduler.get_job(OUTBOX_JOB_ID) is not None:
            scheduler.remove_job(OUTBOX_JOB_ID)

        # Let an in-flight run finish its batch
        async with self._run_lock:
            pass

        logger.info("Outbox processor stopped")

__all__ = ["OutboxProcessor", "ProcessorRunResult"]
