"""Background scheduling for the outbox processor.

- scheduler.py: APScheduler integration for periodic processor runs
"""

from __future__ import annotations

from reliable_delivery.tasks.scheduler import (
    OUTBOX_JOB_ID,
    create_scheduler,
    get_job_status,
    schedule_outbox_processor,
    start_scheduler,
    stop_scheduler,
)

__all__ = [
    "OUTBOX_JOB_ID",
    "create_scheduler",
    "get_job_status",
    "schedule_outbox_processor",
    "start_scheduler",
    "stop_scheduler",
]
