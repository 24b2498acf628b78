"""Prometheus metrics for the delivery core."""

from __future__ import annotations

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram

# Create custom registry for better control
REGISTRY = CollectorRegistry()

# Covers processor runs from 10ms to 2min
RUN_DURATION_BUCKETS = (
    0.01,
    0.05,
    0.1,
    0.25,
    0.5,
    1.0,
    2.5,
    5.0,
    10.0,
    30.0,
    60.0,
    120.0,
)

# Covers single publish calls from 5ms to 1min
PUBLISH_DURATION_BUCKETS = (
    0.005,
    0.01,
    0.025,
    0.05,
    0.1,
    0.25,
    0.5,
    1.0,
    2.5,
    5.0,
    10.0,
    30.0,
    60.0,
)

# ============================================================================
# Outbox metrics
# ============================================================================

outbox_appended_total = Counter(
    "outbox_appended_total",
    "Total number of messages appended to the outbox",
    ["event_name"],
    registry=REGISTRY,
)

outbox_messages_total = Counter(
    "outbox_messages_total",
    "Outbox message outcomes per processor run (sent, retry, deferred, dead_lettered)",
    ["event_name", "outcome"],
    registry=REGISTRY,
)

outbox_runs_total = Counter(
    "outbox_runs_total",
    "Total number of outbox processor runs",
    ["result"],
    registry=REGISTRY,
)

outbox_run_duration_seconds = Histogram(
    "outbox_run_duration_seconds",
    "Duration of a completed outbox processor run in seconds",
    buckets=RUN_DURATION_BUCKETS,
    registry=REGISTRY,
)

outbox_requeued_total = Counter(
    "outbox_requeued_total",
    "Total number of dead letters returned to pending",
    registry=REGISTRY,
)

outbox_publish_duration_seconds = Histogram(
    "outbox_publish_duration_seconds",
    "Duration of one message's publish call (breaker, retries and backoff included)",
    ["event_name", "outcome"],
    buckets=PUBLISH_DURATION_BUCKETS,
    registry=REGISTRY,
)

# ============================================================================
# Webhook metrics
# ============================================================================

webhook_responses_total = Counter(
    "webhook_responses_total",
    "Webhook HTTP responses by status code ('error' for transport failures)",
    ["event_name", "status_code"],
    registry=REGISTRY,
)

webhook_request_duration_seconds = Histogram(
    "webhook_request_duration_seconds",
    "Duration of a single webhook HTTP request in seconds",
    ["event_name"],
    buckets=PUBLISH_DURATION_BUCKETS,
    registry=REGISTRY,
)

# ============================================================================
# Circuit breaker metrics
# ============================================================================

circuit_breaker_state = Gauge(
    "circuit_breaker_state",
    "Circuit breaker state (0=closed, 1=half_open, 2=open)",
    ["circuit_name"],
    registry=REGISTRY,
)

circuit_breaker_failures_total = Counter(
    "circuit_breaker_failures_total",
    "Total number of circuit breaker failures",
    ["circuit_name"],
    registry=REGISTRY,
)

circuit_breaker_successes_total = Counter(
    "circuit_breaker_successes_total",
    "Total number of circuit breaker successes",
    ["circuit_name"],
    registry=REGISTRY,
)

circuit_breaker_state_changes_total = Counter(
    "circuit_breaker_state_changes_total",
    "Total number of circuit breaker state changes",
    ["circuit_name", "from_state", "to_state"],
    registry=REGISTRY,
)

circuit_breaker_rejected_total = Counter(
    "circuit_breaker_rejected_total",
    "Total number of requests rejected by circuit breaker",
    ["circuit_name"],
    registry=REGISTRY,
)

# ============================================================================
# Retry metrics
# ============================================================================

retry_attempts_total = Counter(
    "retry_attempts_total",
    "Total number of retry attempts",
    ["operation", "attempt_number"],
    registry=REGISTRY,
)

retry_exhausted_total = Counter(
    "retry_exhausted_total",
    "Total number of operations that exhausted all retries",
    ["operation"],
    registry=REGISTRY,
)

retry_success_after_failure_total = Counter(
    "retry_success_after_failure_total",
    "Total number of operations that succeeded after retry",
    ["operation", "attempts_needed"],
    registry=REGISTRY,
)

# ============================================================================
# Inbox metrics
# ============================================================================

inbox_processed_total = Counter(
    "inbox_processed_total",
    "Total number of inbox events recorded as processed",
    ["consumer"],
    registry=REGISTRY,
)

inbox_duplicates_total = Counter(
    "inbox_duplicates_total",
    "Total number of duplicate inbox events skipped",
    ["consumer"],
    registry=REGISTRY,
)
