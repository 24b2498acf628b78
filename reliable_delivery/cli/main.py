"""Main CLI entry point for reliable-delivery management commands."""

import click

from reliable_delivery import __version__
from reliable_delivery.cli.commands import circuits, database, outbox
from reliable_delivery.infra.logging.config import setup_logging


@click.group()
@click.version_option(version=__version__, prog_name="reliable-delivery")
@click.pass_context
def cli(ctx: click.Context) -> None:
    """Reliable Delivery CLI - transactional outbox, inbox and circuit breakers.

    \b
    Command Groups:
      db         Table creation and connectivity checks
      outbox     Processor runs, statistics and dead letters
      circuits   Circuit breaker configuration

    \b
    Quick Start:
      reliable-delivery db init             # Create the tables
      reliable-delivery outbox process      # Deliver one batch
      reliable-delivery outbox run          # Deliver on the poll interval
      reliable-delivery outbox dead-letters # Inspect failed messages
    """
    ctx.ensure_object(dict)


cli.add_command(database.db)
cli.add_command(outbox.outbox)
cli.add_command(circuits.circuits)


def main() -> None:
    """Entry point for CLI."""
    setup_logging()
    cli(obj={})


if __name__ == "__main__":
    main()
