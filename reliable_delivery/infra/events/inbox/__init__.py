"""Inbox pattern implementation.

Provides consumer-side deduplication: an event id is processed at most once
per consumer.

Usage:
    from reliable_delivery.infra.events.inbox import process_once

    ran = await process_once(session, event_id, handler, consumer="billing")
    await session.commit()
"""

from reliable_delivery.infra.events.inbox.guard import InboxGuard, process_once
from reliable_delivery.infra.events.inbox.models import DEFAULT_CONSUMER, InboxRecord
from reliable_delivery.infra.events.inbox.repository import InboxRepository

__all__ = [
    "DEFAULT_CONSUMER",
    "InboxGuard",
    "InboxRecord",
    "InboxRepository",
    "process_once",
]
