"""Publishers used by the outbox processor.

A publisher hands one serialized event to a downstream. The processor only
depends on the ``Publisher`` protocol. ``WebhookPublisher`` is the bundled
implementation: it POSTs the payload to an HTTP endpoint with an
HMAC-SHA256 signature.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import time
from typing import TYPE_CHECKING, Protocol, runtime_checkable
from urllib.parse import urlsplit

import httpx

from reliable_delivery.core.exceptions import InternalServerException
from reliable_delivery.infra.metrics.tracking import track_webhook_response

if TYPE_CHECKING:
    from collections.abc import Mapping
    from types import TracebackType

    from reliable_delivery.core.settings.webhooks import WebhookSettings

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "X-Webhook-Signature"
EVENT_HEADER = "X-Webhook-Event"
ID_HEADER = "X-Webhook-Id"
TIMESTAMP_HEADER = "X-Webhook-Timestamp"

SIGNATURE_PREFIX = "sha256="


@runtime_checkable
class Publisher(Protocol):
    """Downstream that accepts serialized events.

    ``publish`` returns normally once the downstream has accepted the event
    and raises otherwise. ``message_id`` is the outbox message id, stable
    across redeliveries, so consumers can deduplicate.
    """

    async def publish(
        self,
        event_name: str,
        payload: str,
        *,
        message_id: str | None = None,
    ) -> None: ...


def compute_signature(secret: str, timestamp: str, payload: str) -> str:
    """Generate the HMAC-SHA256 signature for a webhook payload.

    The signed message is ``"{timestamp}.{payload}"``.

    Args:
        secret: HMAC secret key
        timestamp: Value of the timestamp header (epoch milliseconds)
        payload: Raw request body

    Returns:
        ``"sha256="`` followed by the hex digest
    """
    message = f"{timestamp}.{payload}"
    digest = hmac.new(
        secret.encode("utf-8"),
        message.encode("utf-8"),
        hashlib.sha256,
    ).hexdigest()
    return f"{SIGNATURE_PREFIX}{digest}"


def verify_signature(
    secret: str,
    timestamp: str,
    payload: str,
    signature: str,
    *,
    tolerance_seconds: float | None = None,
    now: float | None = None,
) -> bool:
    """Check a webhook signature in constant time.

    Args:
        secret: HMAC secret key
        timestamp: Received timestamp header (epoch milliseconds)
        payload: Received raw body
        signature: Received signature header
        tolerance_seconds: Reject timestamps older or newer than this
        now: Current epoch seconds (defaults to ``time.time()``)

    Returns:
        True when the signature matches (and the timestamp is fresh)
    """
    if tolerance_seconds is not None:
        try:
            sent_at = int(timestamp) / 1000
        except ValueError:
            return False
        current = time.time() if now is None else now
        if abs(current - sent_at) > tolerance_seconds:
            return False

    expected = compute_signature(secret, timestamp, payload)
    return hmac.compare_digest(expected.encode("utf-8"), signature.encode("utf-8"))


class WebhookPublisher:
    """Publish outbox messages as signed HTTP POST requests.

    Endpoints are looked up per event name, falling back to ``default_url``.
    Non-2xx responses raise ``httpx.HTTPStatusError``, so the retry policy
    classifies them by status code. Oversized payloads and events without an
    endpoint raise ``InternalServerException`` and are never retried.

    Example:
        async with WebhookPublisher(default_url="https://hooks.example.com/events") as pub:
            await pub.publish("shipment.created", '{"id": "S-1"}', message_id="0192...")
    """

    def __init__(
        self,
        *,
        default_url: str | None = None,
        endpoints: Mapping[str, str] | None = None,
        secret: str | None = None,
        enable_signature: bool = True,
        timeout_seconds: float = 30.0,
        connect_timeout_seconds: float = 10.0,
        user_agent: str = "reliable-delivery-webhook/1.0",
        max_payload_size_bytes: int = 1_048_576,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        """Initialize webhook publisher.

        Args:
            default_url: Endpoint for events without an explicit mapping
            endpoints: Event name to endpoint URL mapping
            secret: HMAC secret. No signature header is sent without one.
            enable_signature: Send the signature header when a secret is set
            timeout_seconds: Overall request timeout
            connect_timeout_seconds: Connection timeout
            user_agent: User-Agent header value
            max_payload_size_bytes: Largest body accepted for delivery
            client: Pre-built client (tests pass one with a MockTransport)
        """
        self.default_url = default_url
        self.endpoints = dict(endpoints or {})
        self.secret = secret
        self.enable_signature = enable_signature
        self.user_agent = user_agent
        self.max_payload_size_bytes = max_payload_size_bytes

        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(timeout_seconds, connect=connect_timeout_seconds),
        )

    @classmethod
    def from_settings(
        cls,
        settings: WebhookSettings,
        *,
        client: httpx.AsyncClient | None = None,
    ) -> WebhookPublisher:
        """Build a publisher from WebhookSettings."""
        return cls(
            default_url=settings.default_url,
            endpoints=settings.endpoints,
            secret=settings.secret.get_secret_value() if settings.secret else None,
            enable_signature=settings.enable_signature,
            timeout_seconds=settings.timeout_seconds,
            connect_timeout_seconds=settings.connect_timeout_seconds,
            user_agent=settings.user_agent,
            max_payload_size_bytes=settings.max_payload_size_bytes,
            client=client,
        )

    def endpoint_for(self, event_name: str) -> str | None:
        """Endpoint URL for an event, or None when none is configured."""
        return self.endpoints.get(event_name, self.default_url)

    def resource_for(self, event_name: str) -> str:
        """Circuit breaker resource name for an event: the endpoint host.

        Events going to the same host share a circuit. Events without an
        endpoint fall back to their own name.
        """
        url = self.endpoint_for(event_name)
        if not url:
            return event_name
        return urlsplit(url).netloc or url

    def build_headers(
        self,
        event_name: str,
        payload: str,
        *,
        message_id: str | None = None,
        timestamp: str | None = None,
    ) -> dict[str, str]:
        """Headers sent with a delivery."""
        timestamp = timestamp or str(int(time.time() * 1000))
        headers = {
            "Content-Type": "application/json",
            "User-Agent": self.user_agent,
            EVENT_HEADER: event_name,
            TIMESTAMP_HEADER: timestamp,
        }
        if message_id:
            headers[ID_HEADER] = message_id
        if self.enable_signature and self.secret:
            headers[SIGNATURE_HEADER] = compute_signature(self.secret, timestamp, payload)
        return headers

    async def publish(
        self,
        event_name: str,
        payload: str,
        *,
        message_id: str | None = None,
    ) -> None:
        """POST one event to its endpoint.

        Raises:
            InternalServerException: No endpoint configured or payload too large
            httpx.HTTPStatusError: The endpoint answered with a non-2xx status
            httpx.RequestError: Transport failure (connect, read, timeout)
        """
        url = self.endpoint_for(event_name)
        if not url:
            msg = f"No webhook endpoint configured for event '{event_name}'"
            raise InternalServerException(detail=msg, extra={"event_name": event_name})

        body = payload.encode("utf-8")
        if len(body) > self.max_payload_size_bytes:
            msg = (
                f"Payload of {len(body)} bytes exceeds the limit of "
                f"{self.max_payload_size_bytes} bytes"
            )
            raise InternalServerException(
                detail=msg,
                extra={"event_name": event_name, "payload_size": len(body)},
            )

        headers = self.build_headers(event_name, payload, message_id=message_id)

        logger.debug(
            "Delivering webhook",
            extra={"event_name": event_name, "message_id": message_id, "url": url},
        )

        start_time = time.perf_counter()
        try:
            response = await self._client.post(url, content=body, headers=headers)
        except httpx.RequestError:
            track_webhook_response(event_name, None, time.perf_counter() - start_time)
            raise
        elapsed = time.perf_counter() - start_time
        response_time_ms = int(elapsed * 1000)
        track_webhook_response(event_name, response.status_code, elapsed)

        if response.is_success:
            logger.info(
                "Webhook delivered successfully",
                extra={
                    "event_name": event_name,
                    "message_id": message_id,
                    "status_code": response.status_code,
                    "response_time_ms": response_time_ms,
                },
            )
            return

        logger.warning(
            "Webhook delivery failed with non-2xx status",
            extra={
                "event_name": event_name,
                "message_id": message_id,
                "status_code": response.status_code,
                "response_time_ms": response_time_ms,
            },
        )
        response.raise_for_status()

    async def aclose(self) -> None:
        """Close the HTTP client if this publisher created it."""
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> WebhookPublisher:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.aclose()


__all__ = [
    "EVENT_HEADER",
    "ID_HEADER",
    "SIGNATURE_HEADER",
    "TIMESTAMP_HEADER",
    "Publisher",
    "WebhookPublisher",
    "compute_signature",
    "verify_signature",
]
