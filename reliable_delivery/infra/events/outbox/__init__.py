"""Transactional outbox pattern implementation.

The outbox pattern ensures reliable event publishing by:
1. Writing events to a database table in the same transaction as domain changes
2. Processing the outbox table asynchronously to hand events to a publisher
3. Recording the delivery outcome on each message

This guarantees at-least-once delivery semantics.
"""

from reliable_delivery.infra.events.outbox.models import OutboxMessage, OutboxStatus
from reliable_delivery.infra.events.outbox.processor import OutboxProcessor, ProcessorRunResult
from reliable_delivery.infra.events.outbox.publisher import (
    Publisher,
    WebhookPublisher,
    compute_signature,
    verify_signature,
)
from reliable_delivery.infra.events.outbox.repository import OutboxRepository

__all__ = [
    "OutboxMessage",
    "OutboxProcessor",
    "OutboxRepository",
    "OutboxStatus",
    "ProcessorRunResult",
    "Publisher",
    "WebhookPublisher",
    "compute_signature",
    "verify_signature",
]
