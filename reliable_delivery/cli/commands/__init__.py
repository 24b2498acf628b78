"""CLI command modules."""

from reliable_delivery.cli.commands import circuits, database, outbox

__all__ = ["circuits", "database", "outbox"]
