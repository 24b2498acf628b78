"""Tests for the reliable-delivery CLI.

Testing approach:
- Uses Click's CliRunner for command invocation
- Runs against a real SQLite database file selected through DATABASE_URL
- Seeds and inspects the outbox directly through the repository
"""

from __future__ import annotations

import asyncio
import json
from typing import TYPE_CHECKING

import pytest
from click.testing import CliRunner
from sqlalchemy.ext.asyncio import create_async_engine

from reliable_delivery import __version__
from reliable_delivery.cli.main import cli
from reliable_delivery.infra.database.session import create_session_factory, create_tables
from reliable_delivery.infra.events.outbox import OutboxRepository

if TYPE_CHECKING:
    import uuid

# =============================================================================
# Test Fixtures
# =============================================================================


@pytest.fixture
def cli_runner():
    """Create Click CLI runner for testing commands."""
    return CliRunner()


@pytest.fixture
def invoke(cli_runner, database_url):
    """Invoke the CLI with DATABASE_URL pointing at the test database."""

    def _invoke(*args: str):
        return cli_runner.invoke(cli, list(args), env={"DATABASE_URL": database_url}, obj={})

    return _invoke


def seed(database_url: str, *messages: tuple[str, bool]) -> list[uuid.UUID]:
    """Create the tables and append messages; ``(event_name, dead_letter)``."""

    async def _seed() -> list[uuid.UUID]:
        engine = create_async_engine(database_url)
        await create_tables(engine)
        repository = OutboxRepository()
        ids = []
        async with create_session_factory(engine)() as session:
            for event_name, dead_letter in messages:
                message_id = await repository.append(session, event_name, {"n": len(ids)})
                if dead_letter:
                    await repository.mark_failed(session, message_id, "internal: rejected")
                ids.append(message_id)
            await session.commit()
        await engine.dispose()
        return ids

    return asyncio.run(_seed())


def statuses(database_url: str) -> dict[str, int]:
    async def _count() -> dict[str, int]:
        engine = create_async_engine(database_url)
        async with create_session_factory(engine)() as session:
            counts = await OutboxRepository().count_by_status(session)
        await engine.dispose()
        return counts

    return asyncio.run(_count())


# =============================================================================
# Top-level
# =============================================================================


@pytest.mark.unit
class TestMain:
    def test_help_lists_command_groups(self, cli_runner):
        result = cli_runner.invoke(cli, ["--help"])

        assert result.exit_code == 0
        for group in ("db", "outbox", "circuits"):
            assert group in result.output

    def test_version(self, cli_runner):
        result = cli_runner.invoke(cli, ["--version"])

        assert result.exit_code == 0
        assert __version__ in result.output


# =============================================================================
# db
# =============================================================================


@pytest.mark.unit
class TestDatabaseCommands:
    def test_init_then_check(self, invoke):
        result = invoke("db", "init")
        assert result.exit_code == 0, result.output
        assert "outbox_messages and inbox_records are ready" in result.output

        result = invoke("db", "check")
        assert result.exit_code == 0, result.output
        assert "Database connected successfully" in result.output

    def test_drop_requires_confirmation(self, invoke):
        result = invoke("db", "drop")

        assert result.exit_code == 1
        assert "--yes" in result.output

    def test_drop(self, invoke, database_url):
        seed(database_url)

        result = invoke("db", "drop", "--yes")

        assert result.exit_code == 0, result.output
        assert "Tables dropped" in result.output


# =============================================================================
# outbox
# =============================================================================


@pytest.mark.unit
class TestOutboxCommands:
    def test_stats_json(self, invoke, database_url):
        seed(database_url, ("shipment.created", False), ("label.created", True))

        result = invoke("outbox", "stats", "--format", "json")

        assert result.exit_code == 0, result.output
        assert json.loads(result.output) == {"pending": 1, "sent": 0, "failed": 1}

    def test_stats_table(self, invoke, database_url):
        seed(database_url, ("shipment.created", False))

        result = invoke("outbox", "stats")

        assert result.exit_code == 0, result.output
        assert "pending" in result.output
        assert "Outbox messages" in result.output

    def test_process_without_endpoint_dead_letters(self, invoke, database_url):
        """With no webhook endpoint configured, delivery fails permanently."""
        seed(database_url, ("shipment.created", False))

        result = invoke("outbox", "process")

        assert result.exit_code == 0, result.output
        assert "sent=0 failed=1 dead_lettered=1" in result.output
        assert statuses(database_url)["failed"] == 1

    def test_dead_letters_empty(self, invoke, database_url):
        seed(database_url, ("shipment.created", False))

        result = invoke("outbox", "dead-letters")

        assert result.exit_code == 0, result.output
        assert "No dead letters" in result.output

    def test_dead_letters_json(self, invoke, database_url):
        ids = seed(database_url, ("shipment.created", True), ("label.created", True))

        result = invoke("outbox", "dead-letters", "--format", "json", "--event-name", "label.created")

        assert result.exit_code == 0, result.output
        rows = json.loads(result.output)
        assert [row["id"] for row in rows] == [str(ids[1])]
        assert rows[0]["last_error"] == "internal: rejected"

    def test_dead_letters_table(self, invoke, database_url):
        seed(database_url, ("shipment.created", True))

        result = invoke("outbox", "dead-letters")

        assert result.exit_code == 0, result.output
        assert "Dead letters (1)" in result.output
        assert "internal: rejected" in result.output

    def test_requeue_one(self, invoke, database_url):
        ids = seed(database_url, ("shipment.created", True))

        result = invoke("outbox", "requeue", str(ids[0]))

        assert result.exit_code == 0, result.output
        assert "Requeued 1 message" in result.output
        assert statuses(database_url) == {"pending": 1, "sent": 0, "failed": 0}

    def test_requeue_not_a_dead_letter(self, invoke, database_url):
        ids = seed(database_url, ("shipment.created", False))

        result = invoke("outbox", "requeue", str(ids[0]))

        assert result.exit_code == 1
        assert "is not a dead letter" in result.output

    def test_requeue_all_by_event(self, invoke, database_url):
        seed(
            database_url,
            ("shipment.created", True),
            ("shipment.created", True),
            ("label.created", True),
        )

        result = invoke("outbox", "requeue", "--all", "--event-name", "shipment.created")

        assert result.exit_code == 0, result.output
        assert "Requeued 2 messages" in result.output
        assert statuses(database_url) == {"pending": 2, "sent": 0, "failed": 1}

    @pytest.mark.parametrize(
        "args",
        [
            ("outbox", "requeue"),
            ("outbox", "requeue", "--all", "01928f3e-0000-7000-8000-000000000000"),
            ("outbox", "requeue", "not-a-uuid"),
        ],
    )
    def test_requeue_argument_errors(self, invoke, database_url, args):
        seed(database_url)

        result = invoke(*args)

        assert result.exit_code == 2


# =============================================================================
# circuits
# =============================================================================


@pytest.mark.unit
class TestCircuitsCommand:
    def test_defaults(self, invoke):
        result = invoke("circuits")

        assert result.exit_code == 0, result.output
        assert "failure_threshold=5" in result.output

    def test_overrides_json(self, cli_runner, tmp_path):
        (tmp_path / "circuit_breaker.yaml").write_text(
            "overrides:\n  hooks.example.com:\n    failure_threshold: 9\n"
        )

        result = cli_runner.invoke(
            cli,
            ["circuits", "--format", "json"],
            env={"CIRCUIT_BREAKER_CONFIG_DIR": str(tmp_path)},
        )

        assert result.exit_code == 0, result.output
        data = json.loads(result.output)
        assert data["failure_threshold"] == 5
        circuit = data["circuits"]["hooks.example.com"]
        assert circuit["state"] == "closed"
        assert circuit["failure_threshold"] == 9
