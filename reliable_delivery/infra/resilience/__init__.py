"""Resilience primitives: circuit breakers and retry policy."""

from reliable_delivery.infra.resilience.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerRegistry,
    CircuitOpenError,
    CircuitState,
)
from reliable_delivery.infra.resilience.retry import RetryDecision, RetryPolicy

__all__ = [
    "CircuitBreaker",
    "CircuitBreakerRegistry",
    "CircuitOpenError",
    "CircuitState",
    "RetryDecision",
    "RetryPolicy",
]
