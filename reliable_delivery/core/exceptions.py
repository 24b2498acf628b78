"""Custom exception classes for the delivery core.

Every error that crosses a component boundary is an ``AppException`` whose
``type`` is a stable kind identifier. Callers branch on the kind, never on the
message text:

- ``circuit-open``: a call was rejected by a circuit breaker without reaching
  the downstream.
- ``service-unavailable``: network or transient downstream failure.
- ``request-timeout``: the downstream did not answer in time.
- ``internal``: anything else (e.g. a payload rejected by the publisher).
"""

from __future__ import annotations

from enum import StrEnum
from typing import Any


class ErrorKind(StrEnum):
    """Stable error kinds surfaced by the delivery core."""

    CIRCUIT_OPEN = "circuit-open"
    SERVICE_UNAVAILABLE = "service-unavailable"
    REQUEST_TIMEOUT = "request-timeout"
    INTERNAL = "internal"


class AppException(Exception):
    """Base application exception.

    All custom exceptions should inherit from this class.
    Follows RFC 7807 Problem Details naming.

    Attributes:
        status_code: HTTP-equivalent status code for the error.
        detail: Human-readable error message.
        type: Error kind identifier.
        title: Short, human-readable summary of the problem type.
        instance: Reference that identifies the specific occurrence of the problem.
        extra: Additional context-specific information about the error.

    Example:
            raise AppException(
            status_code=503,
            detail="Carrier API unavailable",
            type="service-unavailable",
            extra={"resource": "carrier.example.com"}
        )
    """

    def __init__(
        self,
        status_code: int,
        detail: str,
        type: str = "about:blank",
        title: str | None = None,
        instance: str | None = None,
        extra: dict[str, Any] | None = None,
    ) -> None:
        """Initialize application exception.

        Args:
            status_code: HTTP-equivalent status code.
            detail: Human-readable error message.
            type: Error kind identifier.
            title: Short summary of the problem type.
            instance: Reference identifying this specific occurrence.
            extra: Additional context about the error.
        """
        self.status_code = status_code
        self.detail = detail
        self.type = type
        self.title = title or self._default_title(status_code)
        self.instance = instance
        self.extra = extra or {}
        super().__init__(detail)

    @property
    def kind(self) -> str:
        """Error kind identifier (alias of ``type``)."""
        return self.type

    def as_error_text(self) -> str:
        """Render the error as ``"<kind>: <detail>"`` for persistence."""
        return f"{self.type}: {self.detail}"

    @staticmethod
    def _default_title(status_code: int) -> str:
        """Get default title for a status code.

        Args:
            status_code: HTTP-equivalent status code.

        Returns:
            Human-readable title for the status code.
        """
        titles = {
            400: "Bad Request",
            404: "Not Found",
            408: "Request Timeout",
            409: "Conflict",
            429: "Too Many Requests",
            500: "Internal Server Error",
            502: "Bad Gateway",
            503: "Service Unavailable",
            504: "Gateway Timeout",
        }
        return titles.get(status_code, "Error")


class CircuitBreakerOpenException(AppException):
    """Exception raised when a circuit breaker rejects a call.

    This is not a downstream failure: the protected operation was never
    invoked. It is deliberately not a ``DeliveryError`` so that callers can
    alert on it separately.

    Example:
            raise CircuitBreakerOpenException(
            detail="Circuit 'carrier.example.com' is open",
            extra={"circuit_breaker": "carrier.example.com", "retry_after": 42.0}
        )
    """

    def __init__(
        self,
        detail: str,
        instance: str | None = None,
        extra: dict[str, Any] | None = None,
    ) -> None:
        """Initialize circuit breaker open exception.

        Args:
            detail: Human-readable error message.
            instance: Reference identifying this specific occurrence.
            extra: Additional context about the error.
        """
        super().__init__(
            status_code=503,
            detail=detail,
            type=ErrorKind.CIRCUIT_OPEN.value,
            title="Circuit Open",
            instance=instance,
            extra=extra,
        )


class DeliveryError(AppException):
    """Normalized terminal error of a delivery attempt.

    Raised by the retry policy once it gives up. The original exception is
    available as ``__cause__``.
    """


class ServiceUnavailableException(DeliveryError):
    """Downstream temporarily unavailable (network error, 5xx, 429).

    Example:
            raise ServiceUnavailableException(
            detail="Publisher unavailable after 3 attempts",
            extra={"attempts": 3}
        )
    """

    def __init__(
        self,
        detail: str,
        instance: str | None = None,
        extra: dict[str, Any] | None = None,
    ) -> None:
        """Initialize service unavailable exception.

        Args:
            detail: Human-readable error message.
            instance: Reference identifying this specific occurrence.
            extra: Additional context about the error.
        """
        super().__init__(
            status_code=503,
            detail=detail,
            type=ErrorKind.SERVICE_UNAVAILABLE.value,
            title="Service Unavailable",
            instance=instance,
            extra=extra,
        )


class RequestTimeoutException(DeliveryError):
    """Downstream did not respond within the allotted time."""

    def __init__(
        self,
        detail: str,
        instance: str | None = None,
        extra: dict[str, Any] | None = None,
    ) -> None:
        """Initialize request timeout exception.

        Args:
            detail: Human-readable error message.
            instance: Reference identifying this specific occurrence.
            extra: Additional context about the error.
        """
        super().__init__(
            status_code=408,
            detail=detail,
            type=ErrorKind.REQUEST_TIMEOUT.value,
            title="Request Timeout",
            instance=instance,
            extra=extra,
        )


class InternalServerException(DeliveryError):
    """Non-retryable failure.

    Example:
            raise InternalServerException(
            detail="Publisher rejected payload: 422 Unprocessable Entity",
            extra={"status_code": 422}
        )
    """

    def __init__(
        self,
        detail: str,
        instance: str | None = None,
        extra: dict[str, Any] | None = None,
    ) -> None:
        """Initialize internal server exception.

        Args:
            detail: Human-readable error message.
            instance: Reference identifying this specific occurrence.
            extra: Additional context about the error.
        """
        super().__init__(
            status_code=500,
            detail=detail,
            type=ErrorKind.INTERNAL.value,
            title="Internal Server Error",
            instance=instance,
            extra=extra,
        )


__all__ = [
    "AppException",
    "CircuitBreakerOpenException",
    "DeliveryError",
    "ErrorKind",
    "InternalServerException",
    "RequestTimeoutException",
    "ServiceUnavailableException",
]
