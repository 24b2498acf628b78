"""Per-resource circuit breaker.

The circuit breaker stops calling a downstream resource after repeated
failures and probes it again after a cool-down period.

States:
    - CLOSED: Normal operation, requests pass through
    - OPEN: Failure threshold reached, requests fail immediately
    - HALF_OPEN: Cool-down elapsed, exactly one probe request allowed

Transitions:
    CLOSED -> OPEN: ``failure_count`` reaches ``failure_threshold``
    OPEN -> HALF_OPEN: first call at or after ``last_failure_time + open_timeout``
    HALF_OPEN -> CLOSED: the probe succeeds
    HALF_OPEN -> OPEN: the probe fails (``last_failure_time`` refreshed)

Counting and transitions happen under an ``asyncio.Lock``. The protected call
itself runs outside the lock.

Example:
    >>> registry = CircuitBreakerRegistry(failure_threshold=3, open_timeout=30.0)
    >>> try:
    ...     await registry.execute("carrier.example.com", lambda: publish(event))
    ... except CircuitOpenError as e:
    ...     logger.warning(f"Circuit breaker open: {e}")
"""

from __future__ import annotations

import asyncio
import logging
import time
from enum import StrEnum
from typing import TYPE_CHECKING, Any, NoReturn, ParamSpec, TypeVar

from reliable_delivery.core.exceptions import CircuitBreakerOpenException
from reliable_delivery.infra.metrics.tracking import (
    track_circuit_breaker_failure,
    track_circuit_breaker_rejected,
    track_circuit_breaker_state_change,
    track_circuit_breaker_success,
    update_circuit_breaker_state,
)

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Mapping

    from reliable_delivery.core.settings.circuit_breaker import CircuitBreakerSettings

logger = logging.getLogger(__name__)

# Type variables for generic function signatures
P = ParamSpec("P")
T = TypeVar("T")


class CircuitState(StrEnum):
    """Circuit breaker states."""

    CLOSED = "closed"  # Normal operation
    OPEN = "open"  # Failing fast
    HALF_OPEN = "half_open"  # Probing recovery


class CircuitOpenError(CircuitBreakerOpenException):
    """Raised when a circuit breaker rejects a call.

    The protected operation was not invoked.

    Attributes:
        circuit_name: Name of the rejecting circuit.
        retry_after: Seconds until a probe may be admitted, when known.
    """

    def __init__(
        self,
        circuit_name: str,
        message: str | None = None,
        *,
        retry_after: float | None = None,
    ) -> None:
        """Initialize circuit open error.

        Args:
            circuit_name: Name of the rejecting circuit.
            message: Human-readable error message.
            retry_after: Seconds until a probe may be admitted.
        """
        self.circuit_name = circuit_name
        self.retry_after = retry_after
        super().__init__(
            detail=message or f"Circuit breaker '{circuit_name}' is open",
            extra={"circuit_breaker": circuit_name, "retry_after": retry_after},
        )


class CircuitBreaker:
    """Circuit breaker guarding a single named resource.

    Attributes:
        name: Identifier for this circuit breaker instance.
        failure_threshold: Consecutive failures before opening the circuit.
        open_timeout: Seconds to stay OPEN before admitting a probe.
        total_failures: Total failures recorded since creation.
        total_successes: Total successes recorded since creation.
        total_rejections: Total rejected calls.

    Example:
        >>> breaker = CircuitBreaker(name="carrier_api", failure_threshold=3)
        >>>
        >>> @breaker.protected
        ... async def fetch_rates():
        ...     return await client.get("/rates")
        >>>
        >>> result = await breaker.call(fetch_rates)
    """

    def __init__(
        self,
        *,
        name: str,
        failure_threshold: int = 5,
        open_timeout: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize circuit breaker.

        Args:
            name: Unique identifier for this circuit breaker instance.
            failure_threshold: Number of consecutive failures before opening
                the circuit. Must be > 0. Default: 5.
            open_timeout: Seconds to wait in OPEN state before admitting a
                probe. Must be > 0. Default: 60.0.
            clock: Monotonic time source in seconds.

        Raises:
            ValueError: If a threshold or timeout value is invalid.
        """
        if failure_threshold <= 0:
            msg = "failure_threshold must be greater than 0"
            raise ValueError(msg)
        if open_timeout <= 0:
            msg = "open_timeout must be greater than 0"
            raise ValueError(msg)

        self.name = name
        self.failure_threshold = failure_threshold
        self.open_timeout = open_timeout
        self._clock = clock

        # State tracking (protected with lock)
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._last_failure_time: float | None = None
        self._probe_in_flight = False
        self._lock = asyncio.Lock()

        # Lifetime statistics
        self.total_failures = 0
        self.total_successes = 0
        self.total_rejections = 0

        update_circuit_breaker_state(self.name, self._state.value)

        logger.debug(
            f"Circuit breaker '{name}' initialized",
            extra={
                "circuit_breaker": name,
                "failure_threshold": failure_threshold,
                "open_timeout": open_timeout,
            },
        )

    @property
    def state(self) -> CircuitState:
        """Current stored state.

        OPEN -> HALF_OPEN happens lazily on the next call, so an expired OPEN
        circuit still reports OPEN here.
        """
        return self._state

    @property
    def failure_count(self) -> int:
        """Consecutive failures counted in CLOSED state."""
        return self._failure_count

    @property
    def last_failure_time(self) -> float | None:
        """Clock reading of the last counted failure."""
        return self._last_failure_time

    @property
    def is_open(self) -> bool:
        return self._state == CircuitState.OPEN

    @property
    def is_closed(self) -> bool:
        return self._state == CircuitState.CLOSED

    @property
    def is_half_open(self) -> bool:
        return self._state == CircuitState.HALF_OPEN

    def retry_after(self) -> float | None:
        """Seconds until an OPEN circuit admits a probe (None unless OPEN)."""
        if not self.is_open or self._last_failure_time is None:
            return None
        remaining = self._last_failure_time + self.open_timeout - self._clock()
        return max(0.0, remaining)

    async def call(self, func: Callable[P, Awaitable[T]], *args: P.args, **kwargs: P.kwargs) -> T:
        """Execute function with circuit breaker protection.

        Args:
            func: Async function to execute.
            *args: Positional arguments to pass to the function.
            **kwargs: Keyword arguments to pass to the function.

        Returns:
            Result returned by the function.

        Raises:
            CircuitOpenError: If the circuit is open, or half-open with the
                probe already in flight. ``func`` is not invoked.
            Exception: Any exception raised by the function (after recording failure).
        """
        probe = await self._admit()

        # Execute function outside lock to avoid blocking
        try:
            result = await func(*args, **kwargs)
        except Exception as e:
            await self._on_failure(e, probe=probe)
            raise
        except asyncio.CancelledError:
            if probe:
                # No verdict, let the next caller probe
                self._probe_in_flight = False
            raise

        await self._on_success(probe=probe)
        return result

    async def _admit(self) -> bool:
        """Admit or reject a call. Returns True when the call is the half-open probe."""
        async with self._lock:
            self._check_state()

            if self.is_open:
                self._reject(
                    f"Circuit breaker '{self.name}' is open",
                    retry_after=self.retry_after(),
                )

            if self.is_half_open:
                if self._probe_in_flight:
                    self._reject(
                        f"Circuit breaker '{self.name}' is half-open and already probing",
                    )
                self._probe_in_flight = True
                return True

            return False

    def _reject(self, msg: str, *, retry_after: float | None = None) -> NoReturn:
        """Count a rejection and raise CircuitOpenError. Call while holding the lock."""
        self.total_rejections += 1
        track_circuit_breaker_rejected(self.name)
        logger.warning(
            msg,
            extra={
                "circuit_breaker": self.name,
                "state": self._state.value,
                "retry_after": retry_after,
                "total_rejections": self.total_rejections,
            },
        )
        raise CircuitOpenError(self.name, msg, retry_after=retry_after)

    def _check_state(self) -> None:
        """Move OPEN -> HALF_OPEN once the open timeout has elapsed.

        Call while holding the lock.
        """
        if self.is_open and self._last_failure_time is not None:
            if self._clock() - self._last_failure_time >= self.open_timeout:
                self._transition_to(CircuitState.HALF_OPEN)

    async def _on_success(self, *, probe: bool) -> None:
        """Record a success. A successful probe closes the circuit."""
        async with self._lock:
            self.total_successes += 1
            track_circuit_breaker_success(self.name)

            if probe:
                self._probe_in_flight = False
                if self.is_half_open:
                    self._transition_to(CircuitState.CLOSED)
            elif self.is_closed and self._failure_count > 0:
                logger.debug(
                    f"Circuit breaker '{self.name}' resetting failure count",
                    extra={
                        "circuit_breaker": self.name,
                        "previous_failures": self._failure_count,
                    },
                )
                self._failure_count = 0

    async def _on_failure(self, exception: Exception, *, probe: bool) -> None:
        """Record a failure. May open the circuit.

        Failures of calls admitted before the circuit left CLOSED only update
        the lifetime counters, so racing failures cause one transition at most.
        """
        async with self._lock:
            self.total_failures += 1
            track_circuit_breaker_failure(self.name)

            if probe:
                self._probe_in_flight = False
                if self.is_half_open:
                    self._last_failure_time = self._clock()
                    logger.warning(
                        f"Circuit breaker '{self.name}' probe failed, reopening",
                        extra={
                            "circuit_breaker": self.name,
                            "exception_type": type(exception).__name__,
                            "exception_message": str(exception),
                        },
                    )
                    self._transition_to(CircuitState.OPEN)
                return

            if not self.is_closed:
                return

            self._failure_count += 1
            self._last_failure_time = self._clock()

            logger.warning(
                f"Circuit breaker '{self.name}' recorded failure",
                extra={
                    "circuit_breaker": self.name,
                    "failure_count": self._failure_count,
                    "failure_threshold": self.failure_threshold,
                    "exception_type": type(exception).__name__,
                    "exception_message": str(exception),
                },
            )

            if self._failure_count >= self.failure_threshold:
                self._transition_to(CircuitState.OPEN)

    def _transition_to(self, new_state: CircuitState) -> None:
        """Apply a state transition. Call while holding the lock."""
        old_state = self._state
        if old_state == new_state:
            return

        self._state = new_state
        if new_state == CircuitState.CLOSED:
            self._failure_count = 0
            self._last_failure_time = None
            self._probe_in_flight = False
        elif new_state == CircuitState.HALF_OPEN:
            self._probe_in_flight = False

        track_circuit_breaker_state_change(self.name, old_state.value, new_state.value)

        log = logger.error if new_state == CircuitState.OPEN else logger.info
        log(
            f"Circuit breaker '{self.name}' {old_state.value} -> {new_state.value}",
            extra={
                "circuit_breaker": self.name,
                "old_state": old_state.value,
                "new_state": new_state.value,
                "failure_count": self._failure_count,
                "open_timeout": self.open_timeout,
            },
        )

    def protected(self, func: Callable[P, Awaitable[T]]) -> Callable[P, Awaitable[T]]:
        """Decorator to protect an async function with this circuit breaker.

        Example:
            >>> @breaker.protected
            ... async def push_tracking_update(shipment_id: str):
            ...     return await carrier_api.post(shipment_id)
        """

        async def wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
            return await self.call(func, *args, **kwargs)

        wrapper.__name__ = func.__name__
        wrapper.__doc__ = func.__doc__
        wrapper.__module__ = func.__module__
        wrapper.__qualname__ = func.__qualname__

        return wrapper

    def get_metrics(self) -> dict[str, Any]:
        """Get circuit breaker metrics.

        Returns:
            Dictionary with state, counters, thresholds, ``retry_after`` and
            ``failure_rate``.
        """
        total_calls = self.total_failures + self.total_successes
        failure_rate = self.total_failures / total_calls if total_calls > 0 else 0.0

        return {
            "name": self.name,
            "state": self._state.value,
            "failure_count": self._failure_count,
            "failure_threshold": self.failure_threshold,
            "open_timeout": self.open_timeout,
            "total_failures": self.total_failures,
            "total_successes": self.total_successes,
            "total_rejections": self.total_rejections,
            "last_failure_time": self._last_failure_time,
            "retry_after": self.retry_after(),
            "failure_rate": failure_rate,
        }

    async def reset(self) -> None:
        """Manually reset circuit breaker to CLOSED state and clear counters."""
        async with self._lock:
            self._transition_to(CircuitState.CLOSED)
            self._failure_count = 0
            self._last_failure_time = None
            self._probe_in_flight = False
            self.total_failures = 0
            self.total_successes = 0
            self.total_rejections = 0
            logger.info(
                f"Circuit breaker '{self.name}' manually reset",
                extra={"circuit_breaker": self.name},
            )


class CircuitBreakerRegistry:
    """Lazily created circuit breakers, one per resource name.

    Each name gets its own breaker built from the registry defaults, or from a
    per-name override. Failures of one resource never affect another.

    Example:
        >>> registry = CircuitBreakerRegistry(
        ...     failure_threshold=5,
        ...     open_timeout=60.0,
        ...     overrides={"slow-carrier": {"open_timeout": 300.0}},
        ... )
        >>> await registry.execute("slow-carrier", lambda: client.post(url, json=body))
    """

    def __init__(
        self,
        *,
        failure_threshold: int = 5,
        open_timeout: float = 60.0,
        overrides: Mapping[str, Mapping[str, Any]] | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if failure_threshold <= 0:
            msg = "failure_threshold must be greater than 0"
            raise ValueError(msg)
        if open_timeout <= 0:
            msg = "open_timeout must be greater than 0"
            raise ValueError(msg)
        self.failure_threshold = failure_threshold
        self.open_timeout = open_timeout
        self._overrides = {name: dict(values) for name, values in (overrides or {}).items()}
        self._clock = clock
        self._breakers: dict[str, CircuitBreaker] = {}

    @classmethod
    def from_settings(
        cls,
        settings: CircuitBreakerSettings,
        *,
        clock: Callable[[], float] = time.monotonic,
    ) -> CircuitBreakerRegistry:
        """Build a registry from CircuitBreakerSettings."""
        overrides: dict[str, dict[str, Any]] = {}
        for name, override in settings.overrides.items():
            values: dict[str, Any] = {}
            if override.failure_threshold is not None:
                values["failure_threshold"] = override.failure_threshold
            if override.open_timeout_seconds is not None:
                values["open_timeout"] = override.open_timeout_seconds
            overrides[name] = values
        return cls(
            failure_threshold=settings.failure_threshold,
            open_timeout=settings.open_timeout_seconds,
            overrides=overrides,
            clock=clock,
        )

    def get(self, name: str) -> CircuitBreaker:
        """Return the breaker for ``name``, creating it on first use."""
        breaker = self._breakers.get(name)
        if breaker is None:
            override = self._overrides.get(name, {})
            breaker = CircuitBreaker(
                name=name,
                failure_threshold=override.get("failure_threshold", self.failure_threshold),
                open_timeout=override.get("open_timeout", self.open_timeout),
                clock=self._clock,
            )
            self._breakers[name] = breaker
        return breaker

    async def execute(self, name: str, operation: Callable[[], Awaitable[T]]) -> T:
        """Run ``operation`` through the breaker for ``name``.

        Raises:
            CircuitOpenError: If the circuit rejects the call.
        """
        return await self.get(name).call(operation)

    def states(self) -> dict[str, CircuitState]:
        """Current state of every known circuit."""
        return {name: breaker.state for name, breaker in self._breakers.items()}

    def metrics(self) -> dict[str, dict[str, Any]]:
        """``get_metrics()`` of every known circuit."""
        return {name: breaker.get_metrics() for name, breaker in self._breakers.items()}

    async def reset(self, name: str | None = None) -> None:
        """Reset one circuit, or all of them when ``name`` is None."""
        if name is not None:
            breaker = self._breakers.get(name)
            if breaker is not None:
                await breaker.reset()
            return
        for breaker in list(self._breakers.values()):
            await breaker.reset()

    def __contains__(self, name: object) -> bool:
        return name in self._breakers

    def __len__(self) -> int:
        return len(self._breakers)


__all__ = [
    "CircuitBreaker",
    "CircuitBreakerRegistry",
    "CircuitOpenError",
    "CircuitState",
]
