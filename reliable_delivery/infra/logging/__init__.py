"""Structured logging: dictConfig + QueueListener with a JSONL formatter.

Basic usage:
    import logging

    logger = logging.getLogger(__name__)
    logger.info("Outbox message sent", extra={"message_id": str(message.id)})
"""

from reliable_delivery.infra.logging.config import configure_logging, setup_logging, shutdown
from reliable_delivery.infra.logging.formatters import JSONFormatter, build_formatter

__all__ = [
    "JSONFormatter",
    "build_formatter",
    "configure_logging",
    "setup_logging",
    "shutdown",
]
