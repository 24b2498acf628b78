"""APScheduler integration for periodic outbox runs.

The outbox processor is triggered by an interval job on an
``AsyncIOScheduler`` that shares the application's event loop:

    APScheduler (in-process) -> OutboxProcessor.run_once() -> Publisher

Jobs are registered with ``max_instances=1`` and ``coalesce=True``, so a
tick that fires while the previous run is still active is dropped by the
scheduler. The processor's own single-run guard covers external callers.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

if TYPE_CHECKING:
    from reliable_delivery.infra.events.outbox.processor import OutboxProcessor

logger = logging.getLogger(__name__)

OUTBOX_JOB_ID = "outbox_processor"

# Event loop iterations to wait for a deferred shutdown
_SHUTDOWN_POLLS = 100


def create_scheduler(*, misfire_grace_time: int = 60) -> AsyncIOScheduler:
    """Create an APScheduler instance bound to the running event loop."""
    return AsyncIOScheduler(
        timezone="UTC",
        job_defaults={
            "coalesce": True,  # Combine multiple pending executions into one
            "max_instances": 1,  # Only one instance of each job at a time
            "misfire_grace_time": misfire_grace_time,
        },
    )


def schedule_outbox_processor(
    scheduler: AsyncIOScheduler,
    processor: OutboxProcessor,
    *,
    interval_seconds: float,
) -> None:
    """Register ``processor.run_once`` as an interval job."""
    scheduler.add_job(
        func=processor.run_once,
        trigger=IntervalTrigger(seconds=interval_seconds),
        id=OUTBOX_JOB_ID,
        name="Publish pending outbox messages",
        replace_existing=True,
    )
    logger.info(
        "Scheduled outbox processor",
        extra={"job_id": OUTBOX_JOB_ID, "interval_seconds": interval_seconds},
    )


async def start_scheduler(scheduler: AsyncIOScheduler) -> None:
    """Start the scheduler.

    Must be awaited from a running event loop.
    """
    if not scheduler.running:
        logger.info("Starting APScheduler")
        scheduler.start()
        logger.info(f"APScheduler started with {len(scheduler.get_jobs())} jobs")
    else:
        logger.warning("APScheduler is already running")


async def stop_scheduler(scheduler: AsyncIOScheduler) -> None:
    """Stop the scheduler without waiting for running jobs.

    Newer APScheduler 3.x releases hand the shutdown to the event loop with
    ``call_soon_threadsafe``; this returns only once it has taken effect.
    """
    if scheduler.running:
        logger.info("Stopping APScheduler")
        scheduler.shutdown(wait=False)
        for _ in range(_SHUTDOWN_POLLS):
            if not scheduler.running:
                break
            await asyncio.sleep(0)
        else:
            logger.warning("APScheduler still reports running after shutdown")
        logger.info("APScheduler stopped")
    else:
        logger.debug("APScheduler is not running")


def get_job_status(scheduler: AsyncIOScheduler) -> list[dict[str, Any]]:
    """Get status of all scheduled jobs.

    Returns:
        List of job information dictionaries.
    """
    return [
        {
            "id": job.id,
            "name": job.name,
            "next_run_time": job.next_run_time.isoformat() if job.next_run_time else None,
            "trigger": str(job.trigger),
        }
        for job in scheduler.get_jobs()
    ]


__all__ = [
    "OUTBOX_JOB_ID",
    "create_scheduler",
    "get_job_status",
    "schedule_outbox_processor",
    "start_scheduler",
    "stop_scheduler",
]
