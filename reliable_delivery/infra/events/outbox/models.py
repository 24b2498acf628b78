"""OutboxMessage SQLAlchemy model for the transactional outbox pattern.

The outbox table stores events that need to be delivered to a publisher.
Messages are written to this table in the same transaction as the business
change, so either both are committed or neither is.

A background processor reads pending messages, delivers them, and records
the outcome on the row. Rows are never deleted by the delivery core.
"""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum

from sqlalchemy import CheckConstraint, DateTime, Index, Integer, String, Text, text
from sqlalchemy.orm import Mapped, mapped_column

from reliable_delivery.core.database.base import Base, TimestampMixin, UUIDv7PKMixin, utcnow


class OutboxStatus(StrEnum):
    """Delivery status of an outbox message."""

    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"  # Terminal: dead letter


class OutboxMessage(Base, UUIDv7PKMixin, TimestampMixin):
    """Outbox table for reliable event delivery.

    Attributes:
        id: UUID v7 primary key (time-sortable)
        event_name: Event discriminator (e.g., "shipment.created")
        aggregate_id: Optional correlation key of the business entity
        payload: Opaque serialized event data
        status: pending, sent, or failed
        attempts: Processor-level delivery attempts (never decreases)
        max_attempts: Dead-letter ceiling for this message
        next_attempt_at: Earliest time of the next delivery attempt (NULL = due now)
        sent_at: When the message was delivered (set iff status is sent)
        last_error: Last delivery error as "<kind>: <detail>"
    """

    __tablename__ = "outbox_messages"

    event_name: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        index=True,
        comment="Event discriminator",
    )
    aggregate_id: Mapped[str | None] = mapped_column(
        String(100),
        nullable=True,
        comment="Correlation key of the business entity",
    )
    payload: Mapped[str] = mapped_column(
        Text,
        nullable=False,
        comment="Opaque serialized event data",
    )

    # Delivery state
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=OutboxStatus.PENDING.value,
        server_default=OutboxStatus.PENDING.value,
        comment="pending, sent, or failed",
    )
    attempts: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        server_default="0",
        comment="Processor-level delivery attempts",
    )
    max_attempts: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=5,
        server_default="5",
        comment="Attempts allowed before the message is dead-lettered",
    )
    next_attempt_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        comment="Earliest time of the next delivery attempt",
    )
    sent_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
        comment="When the message was delivered",
    )
    last_error: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
        comment="Last delivery error",
    )

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'sent', 'failed')",
            name="status",
        ),
        CheckConstraint("attempts >= 0", name="attempts_non_negative"),
        # Processor query: pending messages that are due, oldest first
        Index(
            "ix_outbox_messages_dispatch",
            "status",
            "next_attempt_at",
            "created_at",
            postgresql_where=text("status = 'pending'"),  # Partial index
        ),
        Index(
            "ix_outbox_messages_aggregate",
            "aggregate_id",
            "created_at",
        ),
    )

    @property
    def is_pending(self) -> bool:
        return self.status == OutboxStatus.PENDING

    @property
    def is_sent(self) -> bool:
        return self.status == OutboxStatus.SENT

    @property
    def is_dead_letter(self) -> bool:
        return self.status == OutboxStatus.FAILED

    def is_due(self, now: datetime | None = None) -> bool:
        """Check if a pending message may be attempted now."""
        if not self.is_pending:
            return False
        if self.next_attempt_at is None:
            return True
        now = now or utcnow()
        next_attempt_at = self.next_attempt_at
        # SQLite hands back naive datetimes (stored as UTC)
        if next_attempt_at.tzinfo is None:
            now = now.replace(tzinfo=None)
        return now >= next_attempt_at

    def __repr__(self) -> str:
        """Human-readable representation."""
        return (
            f"OutboxMessage("
            f"id={self.id}, "
            f"event_name={self.event_name!r}, "
            f"status={self.status}, "
            f"attempts={self.attempts}"
            f")"
        )


__all__ = ["OutboxMessage", "OutboxStatus"]
