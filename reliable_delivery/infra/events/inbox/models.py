"""InboxRecord SQLAlchemy model for consumer-side deduplication.

One row per ``(event id, consumer)`` that has been processed. The primary key
makes a second insert of the same pair a conflict, so the table itself
enforces at-most-once processing.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import JSON, DateTime, String, func
from sqlalchemy.orm import Mapped, mapped_column

from reliable_delivery.core.database.base import Base, utcnow

DEFAULT_CONSUMER = "default"


class InboxRecord(Base):
    """Processed event marker.

    Attributes:
        id: Event id being deduplicated
        consumer: Consumer name; consumers of the same event deduplicate
            independently
        context: Opaque JSON captured at processing time (column ``metadata``)
        processed_at: When the event was first processed
    """

    __tablename__ = "inbox_records"

    id: Mapped[str] = mapped_column(
        String(255),
        primary_key=True,
        comment="Event id",
    )
    consumer: Mapped[str] = mapped_column(
        String(100),
        primary_key=True,
        default=DEFAULT_CONSUMER,
        server_default=DEFAULT_CONSUMER,
        comment="Consumer that processed the event",
    )
    # "metadata" is reserved on declarative classes
    context: Mapped[dict[str, Any] | None] = mapped_column(
        "metadata",
        JSON,
        nullable=True,
    )
    processed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        server_default=func.now(),
        index=True,
    )

    def __repr__(self) -> str:
        return f"<InboxRecord(id={self.id}, consumer={self.consumer})>"


__all__ = ["DEFAULT_CONSUMER", "InboxRecord"]
