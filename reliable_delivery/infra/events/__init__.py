"""Event infrastructure for reliable event delivery.

This package provides:
- outbox: OutboxMessage model, repository, processor and publishers
  (producer side, at-least-once)
- inbox: InboxRecord model, repository and guard (consumer side,
  at-most-once effect per event id)
"""

from reliable_delivery.infra.events.inbox import InboxGuard, InboxRecord, InboxRepository, process_once
from reliable_delivery.infra.events.outbox import (
    OutboxMessage,
    OutboxProcessor,
    OutboxRepository,
    ProcessorRunResult,
    Publisher,
    WebhookPublisher,
)

__all__ = [
    "InboxGuard",
    "InboxRecord",
    "InboxRepository",
    "OutboxMessage",
    "OutboxProcessor",
    "OutboxRepository",
    "ProcessorRunResult",
    "Publisher",
    "WebhookPublisher",
    "process_once",
]
