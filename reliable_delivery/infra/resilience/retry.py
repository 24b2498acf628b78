"""Retry policy for calls made against a publisher.

The policy answers three questions about a failed attempt:

- is the error worth retrying (``is_retryable``),
- how long to wait before the next attempt (``compute_delay`` / ``decide``),
- which stable error kind to surface once we give up (``normalize``).

``execute`` combines them into an async retry loop. Backoff waits are awaited
(``asyncio.sleep`` by default) so the event loop stays free between attempts.
"""

from __future__ import annotations

import asyncio
import errno
import logging
import random
import socket
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, TypeVar

import httpx

from reliable_delivery.core.exceptions import (
    AppException,
    ErrorKind,
    InternalServerException,
    RequestTimeoutException,
    ServiceUnavailableException,
)
from reliable_delivery.core.settings.retry import (
    DEFAULT_RETRYABLE_STATUS_CODES,
    DEFAULT_TRANSIENT_ERROR_CODES,
)
from reliable_delivery.infra.metrics.tracking import (
    track_retry_attempt,
    track_retry_exhausted,
    track_retry_success,
)

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from reliable_delivery.core.settings.retry import RetrySettings

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Exception classes that stand for a transient network error code
_ERROR_CODE_CLASSES: tuple[tuple[type[BaseException], str], ...] = (
    (ConnectionResetError, "ECONNRESET"),
    (ConnectionRefusedError, "ECONNREFUSED"),
    (socket.gaierror, "ENOTFOUND"),
    (httpx.ConnectError, "ECONNREFUSED"),
    (httpx.ReadError, "ECONNRESET"),
    (httpx.WriteError, "ECONNRESET"),
    (httpx.RemoteProtocolError, "ECONNRESET"),
)

_TIMEOUT_TYPES: tuple[type[BaseException], ...] = (TimeoutError, httpx.TimeoutException)


@dataclass(frozen=True)
class RetryDecision:
    """Outcome of ``RetryPolicy.decide``."""

    retry: bool
    delay: float = 0.0


def _describe(error: BaseException) -> str:
    return str(error) or error.__class__.__name__


def _error_chain(error: BaseException) -> list[BaseException]:
    """The error and its explicit ``raise ... from`` cause.

    The implicit ``__context__`` is ignored: an error raised while handling
    another one does not inherit its classification.
    """
    cause = error.__cause__
    if cause is None or cause is error:
        return [error]
    return [error, cause]


def status_code_of(error: BaseException) -> int | None:
    """HTTP-like status code carried by an error, if any.

    Looks at ``error.status_code`` then ``error.response.status_code``.
    """
    status = getattr(error, "status_code", None)
    if isinstance(status, int):
        return status
    response = getattr(error, "response", None)
    status = getattr(response, "status_code", None)
    if isinstance(status, int):
        return status
    return None


def error_code_of(error: BaseException) -> str | None:
    """Symbolic network error code carried by an error, if any.

    Checks a string ``code`` attribute, the ``errno`` of an ``OSError``, and
    the builtin connection exception classes.
    """
    code = getattr(error, "code", None)
    if isinstance(code, str) and code:
        return code.upper()
    if isinstance(error, OSError) and isinstance(error.errno, int) and error.errno > 0:
        name = errno.errorcode.get(error.errno)
        if name:
            return name
    for exc_type, name in _ERROR_CODE_CLASSES:
        if isinstance(error, exc_type):
            return name
    return None


@dataclass
class RetryPolicy:
    """Exponential backoff retry policy with error classification.

    The delay before attempt ``n + 1`` is
    ``base_delay * backoff_multiplier ** (n - 1)``, optionally capped by
    ``max_delay`` and jittered. With the defaults, a call is attempted at most
    three times with waits of 1s and 2s in between.

    Example:
        policy = RetryPolicy(max_attempts=3, base_delay=1.0)
        await policy.execute(lambda: publisher.publish(name, payload))
    """

    max_attempts: int = 3
    base_delay: float = 1.0
    backoff_multiplier: float = 2.0
    max_delay: float | None = None
    jitter: bool = False
    retryable_status_codes: frozenset[int] = field(
        default_factory=lambda: frozenset(DEFAULT_RETRYABLE_STATUS_CODES)
    )
    transient_error_codes: frozenset[str] = field(
        default_factory=lambda: frozenset(DEFAULT_TRANSIENT_ERROR_CODES)
    )

    def __post_init__(self) -> None:
        if self.max_attempts <= 0:
            msg = "max_attempts must be greater than 0"
            raise ValueError(msg)
        if self.base_delay < 0:
            msg = "base_delay must be greater than or equal to 0"
            raise ValueError(msg)
        if self.backoff_multiplier < 1:
            msg = "backoff_multiplier must be greater than or equal to 1"
            raise ValueError(msg)
        if self.max_delay is not None and self.max_delay < 0:
            msg = "max_delay must be greater than or equal to 0"
            raise ValueError(msg)
        self.retryable_status_codes = frozenset(self.retryable_status_codes)
        self.transient_error_codes = frozenset(c.upper() for c in self.transient_error_codes)

    @classmethod
    def from_settings(cls, settings: RetrySettings) -> RetryPolicy:
        """Build a policy from RetrySettings."""
        return cls(
            max_attempts=settings.max_attempts,
            base_delay=settings.base_delay_seconds,
            backoff_multiplier=settings.backoff_multiplier,
            max_delay=settings.max_delay_seconds,
            jitter=settings.jitter,
            retryable_status_codes=frozenset(settings.retryable_status_codes),
            transient_error_codes=frozenset(settings.transient_error_codes),
        )

    # ------------------------------------------------------------------
    # Classification
    # ------------------------------------------------------------------

    def is_timeout(self, error: BaseException) -> bool:
        """True for timeouts: timeout exceptions, status 408, or ETIMEDOUT."""
        if isinstance(error, AppException):
            return error.kind == ErrorKind.REQUEST_TIMEOUT
        for item in _error_chain(error):
            if isinstance(item, _TIMEOUT_TYPES):
                return True
            if status_code_of(item) == 408:
                return True
            if error_code_of(item) == "ETIMEDOUT":
                return True
        return False

    def is_retryable(self, error: BaseException) -> bool:
        """True when the error is transient and another attempt may succeed.

        Already normalized errors keep their kind: ``service-unavailable`` and
        ``request-timeout`` are retryable, ``internal`` and ``circuit-open``
        are not.
        """
        if isinstance(error, AppException):
            return error.kind in (ErrorKind.SERVICE_UNAVAILABLE, ErrorKind.REQUEST_TIMEOUT)
        if self.is_timeout(error):
            return True
        for item in _error_chain(error):
            status = status_code_of(item)
            if status is not None and status in self.retryable_status_codes:
                return True
            code = error_code_of(item)
            if code is not None and code in self.transient_error_codes:
                return True
        return False

    # ------------------------------------------------------------------
    # Delays
    # ------------------------------------------------------------------

    def compute_delay(self, attempt: int) -> float:
        """Delay in seconds after the given failed attempt (1-indexed)."""
        delay = self.base_delay * (self.backoff_multiplier ** (max(attempt, 1) - 1))
        if self.max_delay is not None:
            delay = min(delay, self.max_delay)
        if self.jitter:
            delay = delay * random.uniform(0.5, 1.0)
        return delay

    def decide(self, error: BaseException, attempt: int) -> RetryDecision:
        """Decide whether to retry after ``attempt`` failed with ``error``."""
        if attempt >= self.max_attempts or not self.is_retryable(error):
            return RetryDecision(retry=False)
        return RetryDecision(retry=True, delay=self.compute_delay(attempt))

    # ------------------------------------------------------------------
    # Normalization
    # ------------------------------------------------------------------

    def normalize(
        self,
        error: BaseException,
        *,
        attempts: int | None = None,
        operation_name: str | None = None,
    ) -> AppException:
        """Map an arbitrary error onto the stable error kinds.

        ``AppException`` instances (including ``circuit-open``) are returned
        unchanged.
        """
        if isinstance(error, AppException):
            return error

        extra: dict[str, Any] = {"error_type": error.__class__.__name__}
        if attempts is not None:
            extra["attempts"] = attempts
        if operation_name is not None:
            extra["operation"] = operation_name
        status = status_code_of(error)
        if status is not None:
            extra["status_code"] = status

        prefix = f"{operation_name} failed" if operation_name else "Operation failed"
        if attempts is not None:
            prefix = f"{prefix} after {attempts} attempt{'s' if attempts != 1 else ''}"
        detail = f"{prefix}: {_describe(error)}"

        if self.is_timeout(error):
            return RequestTimeoutException(detail=detail, extra=extra)
        if self.is_retryable(error):
            return ServiceUnavailableException(detail=detail, extra=extra)
        return InternalServerException(detail=detail, extra=extra)

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    async def execute(
        self,
        operation: Callable[[], Awaitable[T]],
        *,
        timeout: float | None = None,
        operation_name: str = "operation",
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> T:
        """Run ``operation`` with retries.

        Args:
            operation: Zero-argument coroutine factory, invoked once per attempt.
            timeout: Optional per-attempt timeout in seconds.
            operation_name: Name used in logs, metrics, and error details.
            sleep: Awaitable used for backoff waits.

        Returns:
            The operation's result.

        Raises:
            AppException: The normalized terminal error, chained to the
                original exception.
        """
        attempt = 0
        while True:
            attempt += 1
            try:
                if timeout is not None:
                    result = await asyncio.wait_for(operation(), timeout)
                else:
                    result = await operation()
            except Exception as exc:
                decision = self.decide(exc, attempt)
                if not decision.retry:
                    error = self.normalize(exc, attempts=attempt, operation_name=operation_name)
                    if self.is_retryable(exc):
                        track_retry_exhausted(operation_name)
                        logger.error(
                            f"All retry attempts exhausted for {operation_name}",
                            extra={
                                "operation": operation_name,
                                "attempts": attempt,
                                "error_kind": error.kind,
                                "last_exception": _describe(exc),
                            },
                        )
                    else:
                        logger.warning(
                            f"Non-retryable exception in {operation_name}: {_describe(exc)}",
                            extra={
                                "operation": operation_name,
                                "attempt": attempt,
                                "error_kind": error.kind,
                            },
                        )
                    if error is exc:
                        raise
                    raise error from exc

                logger.warning(
                    f"Retrying {operation_name} after {decision.delay:.2f}s "
                    f"(attempt {attempt}/{self.max_attempts})",
                    extra={
                        "operation": operation_name,
                        "attempt": attempt,
                        "max_attempts": self.max_attempts,
                        "delay": decision.delay,
                        "exception": _describe(exc),
                    },
                )
                track_retry_attempt(operation_name, attempt + 1)
                await sleep(decision.delay)
                continue

            if attempt > 1:
                track_retry_success(operation_name, attempt)
            return result


__all__ = ["RetryDecision", "RetryPolicy", "error_code_of", "status_code_of"]
