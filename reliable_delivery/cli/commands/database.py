"""Database management commands.

Example:bash
    # Verify connectivity
    reliable-delivery db check

    # Create the outbox and inbox tables (local runs; deployments use Alembic)
    reliable-delivery db init

    # Drop the tables (development only!)
    reliable-delivery db drop --yes
"""

from __future__ import annotations

import sys

import click

from reliable_delivery.cli.utils import cli_runtime, coro, error, info, success
from reliable_delivery.infra.database.session import check_connection, create_tables, drop_tables


@click.group(name="db")
def db() -> None:
    """Database management commands."""


@db.command()
@coro
async def check() -> None:
    """Verify that the configured database is reachable."""
    async with cli_runtime() as runtime:
        info(f"Connecting to {runtime.engine.dialect.name} database...")
        try:
            await check_connection(runtime.engine)
        except Exception as e:
            error(f"Failed to connect to database: {e}")
            sys.exit(1)
    success("Database connected successfully!")


@db.command()
@coro
async def init() -> None:
    """Create the outbox and inbox tables if they do not exist."""
    async with cli_runtime() as runtime:
        try:
            await create_tables(runtime.engine)
        except Exception as e:
            error(f"Failed to create tables: {e}")
            sys.exit(1)
    success("Tables outbox_messages and inbox_records are ready")


@db.command()
@click.option("--yes", is_flag=True, help="Confirm dropping the tables")
@coro
async def drop(yes: bool) -> None:
    """Drop the outbox and inbox tables."""
    if not yes:
        error("Refusing to drop tables without --yes")
        sys.exit(1)
    async with cli_runtime() as runtime:
        await drop_tables(runtime.engine)
    success("Tables dropped")
