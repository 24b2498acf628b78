"""Outbox commands: run the processor, inspect and requeue dead letters.

Example:bash
    # Poll forever (Ctrl+C to stop)
    reliable-delivery outbox run

    # One batch, then exit
    reliable-delivery outbox process

    # Dead letters
    reliable-delivery outbox dead-letters --limit 20
    reliable-delivery outbox requeue 01928f3e-...
    reliable-delivery outbox requeue --all --event-name shipment.created
"""

from __future__ import annotations

import asyncio
import signal
import sys
import uuid

import click

from reliable_delivery.cli.utils import (
    cli_runtime,
    coro,
    echo_json,
    echo_table,
    error,
    header,
    info,
    success,
    warning,
)
from reliable_delivery.runtime import build_runtime

OUTPUT_FORMAT = click.option(
    "--format",
    "output_format",
    type=click.Choice(["table", "json"]),
    default="table",
    help="Output format",
)


@click.group(name="outbox")
def outbox() -> None:
    """Transactional outbox commands."""


@outbox.command()
@coro
async def run() -> None:
    """Run the processor on its poll interval until interrupted."""
    runtime = build_runtime()
    stop_event = asyncio.Event()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, stop_event.set)

    try:
        await runtime.processor.start()
        info(
            f"Outbox processor running every {runtime.processor.poll_interval}s "
            "(Ctrl+C to stop)"
        )
        await stop_event.wait()
    finally:
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.remove_signal_handler(sig)
        await runtime.close()
    success("Outbox processor stopped")


@outbox.command()
@coro
async def process() -> None:
    """Process one batch of pending messages and print the counts."""
    async with cli_runtime() as runtime:
        result = await runtime.processor.run_once()

    if result.skipped:
        warning("A run is already in progress")
        return
    info(
        f"sent={result.sent} failed={result.failed} "
        f"dead_lettered={result.dead_lettered} superseded={result.superseded} "
        f"duration={result.duration:.3f}s"
    )


@outbox.command()
@OUTPUT_FORMAT
@coro
async def stats(output_format: str) -> None:
    """Show message counts per status."""
    async with cli_runtime() as runtime, runtime.session_factory() as session:
        counts = await runtime.outbox.count_by_status(session)

    if output_format == "json":
        echo_json(counts)
        return
    header("Outbox messages")
    echo_table(["status", "count"], sorted(counts.items()))


@outbox.command(name="dead-letters")
@click.option("--limit", default=50, show_default=True, type=click.IntRange(min=1))
@click.option("--offset", default=0, show_default=True, type=click.IntRange(min=0))
@click.option("--event-name", default=None, help="Only list this event")
@OUTPUT_FORMAT
@coro
async def dead_letters(limit: int, offset: int, event_name: str | None, output_format: str) -> None:
    """List failed (dead-lettered) messages, oldest first."""
    async with cli_runtime() as runtime, runtime.session_factory() as session:
        messages = await runtime.outbox.list_failed(
            session, limit=limit, offset=offset, event_name=event_name
        )

    rows = [
        {
            "id": str(message.id),
            "event_name": message.event_name,
            "attempts": message.attempts,
            "created_at": message.created_at,
            "last_error": message.last_error,
        }
        for message in messages
    ]
    if output_format == "json":
        echo_json(rows)
        return
    if not rows:
        success("No dead letters")
        return
    header(f"Dead letters ({len(rows)})")
    echo_table(
        ["id", "event_name", "attempts", "last_error"],
        [[r["id"], r["event_name"], r["attempts"], (r["last_error"] or "")[:80]] for r in rows],
    )


@outbox.command()
@click.argument("message_id", required=False)
@click.option("--all", "requeue_all", is_flag=True, help="Requeue every dead letter")
@click.option("--event-name", default=None, help="With --all, only requeue this event")
@click.option(
    "--extra-attempts",
    default=None,
    type=click.IntRange(min=1),
    help="Attempts granted to each requeued message (default from settings)",
)
@coro
async def requeue(
    message_id: str | None,
    requeue_all: bool,
    event_name: str | None,
    extra_attempts: int | None,
) -> None:
    """Return a dead letter (or all of them) to pending."""
    if bool(message_id) == requeue_all:
        error("Pass either MESSAGE_ID or --all")
        sys.exit(2)

    parsed_id: uuid.UUID | None = None
    if message_id:
        try:
            parsed_id = uuid.UUID(message_id)
        except ValueError:
            error(f"Invalid message id: {message_id}")
            sys.exit(2)

    async with cli_runtime() as runtime, runtime.session_factory() as session:
        extra = extra_attempts or runtime.outbox_settings.requeue_extra_attempts
        if parsed_id is not None:
            requeued = await runtime.outbox.requeue_failed(
                session, parsed_id, extra_attempts=extra
            )
            await session.commit()
            count = 1 if requeued else 0
        else:
            count = await runtime.outbox.requeue_all_failed(
                session, event_name=event_name, extra_attempts=extra
            )
            await session.commit()

    if parsed_id is not None and count == 0:
        error(f"Message {parsed_id} is not a dead letter")
        sys.exit(1)
    success(f"Requeued {count} message{'s' if count != 1 else ''}")
