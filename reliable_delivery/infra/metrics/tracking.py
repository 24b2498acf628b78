"""Helper functions for tracking delivery metrics."""

from __future__ import annotations

import logging

from reliable_delivery.infra.metrics import prometheus

logger = logging.getLogger(__name__)


# ============================================================================
# Outbox Tracking
# ============================================================================


def track_outbox_appended(event_name: str) -> None:
    """Track a message appended to the outbox.

    Example:
            track_outbox_appended("shipment.created")
    """
    prometheus.outbox_appended_total.labels(event_name=event_name).inc()


def track_outbox_message(event_name: str, outcome: str) -> None:
    """Track the outcome of one message within a processor run.

    Args:
        event_name: Event discriminator of the message
        outcome: One of 'sent', 'retry', 'deferred', 'dead_lettered', 'skipped'
    """
    prometheus.outbox_messages_total.labels(event_name=event_name, outcome=outcome).inc()


def track_outbox_run(result: str, duration: float | None = None) -> None:
    """Track a processor run.

    Args:
        result: 'completed', 'skipped', or 'error'
        duration: Run duration in seconds (completed runs only)
    """
    prometheus.outbox_runs_total.labels(result=result).inc()
    if duration is not None:
        prometheus.outbox_run_duration_seconds.observe(duration)


def track_outbox_requeued(count: int = 1) -> None:
    """Track dead letters returned to pending."""
    if count > 0:
        prometheus.outbox_requeued_total.inc(count)


def track_outbox_publish(event_name: str, outcome: str, duration: float) -> None:
    """Track how long publishing one message took, by its outcome."""
    prometheus.outbox_publish_duration_seconds.labels(
        event_name=event_name, outcome=outcome
    ).observe(duration)


# ============================================================================
# Webhook Tracking
# ============================================================================


def track_webhook_response(event_name: str, status_code: int | None, duration: float) -> None:
    """Track one webhook HTTP request.

    Args:
        event_name: Event discriminator of the delivery
        status_code: HTTP status, or None when the request failed in transport
        duration: Request duration in seconds
    """
    status = str(status_code) if status_code is not None else "error"
    prometheus.webhook_responses_total.labels(event_name=event_name, status_code=status).inc()
    prometheus.webhook_request_duration_seconds.labels(event_name=event_name).observe(duration)


# ============================================================================
# Circuit Breaker Tracking
# ============================================================================


def update_circuit_breaker_state(circuit_name: str, state: str) -> None:
    """Update circuit breaker state gauge.

    Args:
        circuit_name: Name of the circuit breaker
        state: Current state ('closed', 'half_open', 'open')

    Example:
            update_circuit_breaker_state("carrier.example.com", "open")
    """
    state_map = {"closed": 0, "half_open": 1, "open": 2}
    prometheus.circuit_breaker_state.labels(circuit_name=circuit_name).set(
        state_map.get(state, 0)
    )


def track_circuit_breaker_failure(circuit_name: str) -> None:
    """Track a circuit breaker failure."""
    prometheus.circuit_breaker_failures_total.labels(circuit_name=circuit_name).inc()


def track_circuit_breaker_success(circuit_name: str) -> None:
    """Track a circuit breaker success."""
    prometheus.circuit_breaker_successes_total.labels(circuit_name=circuit_name).inc()


def track_circuit_breaker_state_change(circuit_name: str, from_state: str, to_state: str) -> None:
    """Track a circuit breaker state change.

    Also updates the state gauge.

    Example:
            track_circuit_breaker_state_change("carrier.example.com", "closed", "open")
    """
    prometheus.circuit_breaker_state_changes_total.labels(
        circuit_name=circuit_name,
        from_state=from_state,
        to_state=to_state,
    ).inc()
    update_circuit_breaker_state(circuit_name, to_state)


def track_circuit_breaker_rejected(circuit_name: str) -> None:
    """Track a request rejected by circuit breaker."""
    prometheus.circuit_breaker_rejected_total.labels(circuit_name=circuit_name).inc()


# ============================================================================
# Retry Tracking
# ============================================================================


def track_retry_attempt(operation: str, attempt_number: int) -> None:
    """Track a retry attempt.

    Args:
        operation: Name of the operation being retried
        attempt_number: Attempt about to run (2 for the first retry)
    """
    prometheus.retry_attempts_total.labels(
        operation=operation,
        attempt_number=str(attempt_number),
    ).inc()


def track_retry_exhausted(operation: str) -> None:
    """Track when all retry attempts are exhausted."""
    prometheus.retry_exhausted_total.labels(operation=operation).inc()


def track_retry_success(operation: str, attempts_needed: int) -> None:
    """Track successful operation after retries."""
    prometheus.retry_success_after_failure_total.labels(
        operation=operation,
        attempts_needed=str(attempts_needed),
    ).inc()


# ============================================================================
# Inbox Tracking
# ============================================================================


def track_inbox_result(consumer: str, *, duplicate: bool) -> None:
    """Track an inbox mark: first processing or duplicate."""
    if duplicate:
        prometheus.inbox_duplicates_total.labels(consumer=consumer).inc()
        logger.debug("Duplicate inbox event skipped", extra={"consumer": consumer})
    else:
        prometheus.inbox_processed_total.labels(consumer=consumer).inc()
