"""Circuit breaker inspection command."""

from __future__ import annotations

import click

from reliable_delivery.cli.utils import echo_json, echo_table, header, info
from reliable_delivery.core.settings import get_circuit_breaker_settings
from reliable_delivery.infra.resilience.circuit_breaker import CircuitBreakerRegistry


@click.command()
@click.option(
    "--format",
    "output_format",
    type=click.Choice(["table", "json"]),
    default="table",
    help="Output format",
)
def circuits(output_format: str) -> None:
    """Show circuit breaker defaults and the configured per-resource overrides.

    Circuit state is kept in memory by each running processor, so a fresh
    registry reports every circuit as closed.
    """
    settings = get_circuit_breaker_settings()
    registry = CircuitBreakerRegistry.from_settings(settings)
    for name in settings.overrides:
        registry.get(name)

    metrics = registry.metrics()
    if output_format == "json":
        echo_json(
            {
                "failure_threshold": registry.failure_threshold,
                "open_timeout": registry.open_timeout,
                "circuits": metrics,
            }
        )
        return

    header("Circuit breakers")
    info(
        f"defaults: failure_threshold={registry.failure_threshold} "
        f"open_timeout={registry.open_timeout}s"
    )
    if metrics:
        echo_table(
            ["name", "state", "failure_threshold", "open_timeout"],
            [
                [m["name"], m["state"], m["failure_threshold"], m["open_timeout"]]
                for m in metrics.values()
            ],
        )
