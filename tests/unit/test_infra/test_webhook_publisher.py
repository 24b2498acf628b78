"""Tests for the webhook publisher and its signatures."""

from __future__ import annotations

import httpx
import pytest

from reliable_delivery.core.exceptions import InternalServerException
from reliable_delivery.core.settings import WebhookSettings
from reliable_delivery.infra.events.outbox import Publisher, WebhookPublisher
from reliable_delivery.infra.events.outbox.publisher import (
    EVENT_HEADER,
    ID_HEADER,
    SIGNATURE_HEADER,
    TIMESTAMP_HEADER,
    compute_signature,
    verify_signature,
)
from reliable_delivery.infra.metrics import REGISTRY

SECRET = "whsec_test"


def sample(name: str, labels: dict[str, str]) -> float:
    return REGISTRY.get_sample_value(name, labels) or 0.0


class RecordingTransport:
    """Callable handler for httpx.MockTransport that records requests."""

    def __init__(self, status_code: int = 200) -> None:
        self.status_code = status_code
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return httpx.Response(self.status_code, json={"ok": self.status_code < 400})


def make_publisher(transport: RecordingTransport, **kwargs) -> WebhookPublisher:
    kwargs.setdefault("default_url", "https://hooks.example.com/events")
    kwargs.setdefault("secret", SECRET)
    client = httpx.AsyncClient(transport=httpx.MockTransport(transport))
    return WebhookPublisher(client=client, **kwargs)


@pytest.mark.unit
class TestSignatures:
    def test_compute_signature_format(self) -> None:
        signature = compute_signature(SECRET, "1700000000000", '{"id":1}')

        assert signature.startswith("sha256=")
        assert len(signature) == len("sha256=") + 64

    def test_verify_accepts_matching_signature(self) -> None:
        signature = compute_signature(SECRET, "1700000000000", '{"id":1}')

        assert verify_signature(SECRET, "1700000000000", '{"id":1}', signature)

    def test_verify_rejects_tampered_payload_or_secret(self) -> None:
        signature = compute_signature(SECRET, "1700000000000", '{"id":1}')

        assert not verify_signature(SECRET, "1700000000000", '{"id":2}', signature)
        assert not verify_signature("other", "1700000000000", '{"id":1}', signature)

    def test_verify_tolerance(self) -> None:
        timestamp = "1700000000000"
        signature = compute_signature(SECRET, timestamp, "{}")

        assert verify_signature(
            SECRET, timestamp, "{}", signature, tolerance_seconds=300, now=1_700_000_100.0
        )
        assert not verify_signature(
            SECRET, timestamp, "{}", signature, tolerance_seconds=300, now=1_700_000_400.0
        )

    def test_verify_rejects_malformed_timestamp(self) -> None:
        signature = compute_signature(SECRET, "yesterday", "{}")

        assert not verify_signature(SECRET, "yesterday", "{}", signature, tolerance_seconds=300)


@pytest.mark.unit
class TestWebhookPublisher:
    def test_satisfies_publisher_protocol(self) -> None:
        assert isinstance(make_publisher(RecordingTransport()), Publisher)

    async def test_posts_signed_payload(self) -> None:
        transport = RecordingTransport()
        async with make_publisher(transport) as publisher:
            await publisher.publish("shipment.created", '{"id":1}', message_id="msg-1")

        [request] = transport.requests
        assert request.method == "POST"
        assert str(request.url) == "https://hooks.example.com/events"
        assert request.content == b'{"id":1}'
        assert request.headers[EVENT_HEADER] == "shipment.created"
        assert request.headers[ID_HEADER] == "msg-1"
        assert request.headers["content-type"] == "application/json"
        assert verify_signature(
            SECRET,
            request.headers[TIMESTAMP_HEADER],
            request.content.decode(),
            request.headers[SIGNATURE_HEADER],
        )

    async def test_no_signature_without_secret(self) -> None:
        transport = RecordingTransport()
        async with make_publisher(transport, secret=None) as publisher:
            await publisher.publish("shipment.created", "{}")

        assert SIGNATURE_HEADER not in transport.requests[0].headers
        assert ID_HEADER not in transport.requests[0].headers

    async def test_signature_can_be_disabled(self) -> None:
        transport = RecordingTransport()
        async with make_publisher(transport, enable_signature=False) as publisher:
            await publisher.publish("shipment.created", "{}")

        assert SIGNATURE_HEADER not in transport.requests[0].headers

    async def test_event_endpoint_mapping(self) -> None:
        transport = RecordingTransport()
        endpoints = {"label.created": "https://labels.example.com/hook"}
        async with make_publisher(transport, endpoints=endpoints) as publisher:
            await publisher.publish("label.created", "{}")
            await publisher.publish("shipment.created", "{}")

        assert [str(r.url) for r in transport.requests] == [
            "https://labels.example.com/hook",
            "https://hooks.example.com/events",
        ]

    async def test_non_2xx_raises_http_status_error(self) -> None:
        async with make_publisher(RecordingTransport(status_code=503)) as publisher:
            with pytest.raises(httpx.HTTPStatusError) as exc_info:
                await publisher.publish("shipment.created", "{}")

        assert exc_info.value.response.status_code == 503

    async def test_response_codes_are_counted(self) -> None:
        labels = {"event_name": "metrics.webhook", "status_code": "503"}
        before = sample("webhook_responses_total", labels)
        before_requests = sample(
            "webhook_request_duration_seconds_count", {"event_name": "metrics.webhook"}
        )

        async with make_publisher(RecordingTransport(status_code=503)) as publisher:
            with pytest.raises(httpx.HTTPStatusError):
                await publisher.publish("metrics.webhook", "{}")

        assert sample("webhook_responses_total", labels) == before + 1
        assert (
            sample("webhook_request_duration_seconds_count", {"event_name": "metrics.webhook"})
            == before_requests + 1
        )

    async def test_transport_failure_is_counted_as_error(self) -> None:
        labels = {"event_name": "metrics.webhook", "status_code": "error"}
        before = sample("webhook_responses_total", labels)

        def refuse(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        client = httpx.AsyncClient(transport=httpx.MockTransport(refuse))
        async with WebhookPublisher(
            default_url="https://hooks.example.com/events", client=client
        ) as publisher:
            with pytest.raises(httpx.ConnectError):
                await publisher.publish("metrics.webhook", "{}")
        await client.aclose()

        assert sample("webhook_responses_total", labels) == before + 1

    async def test_missing_endpoint_is_internal(self) -> None:
        transport = RecordingTransport()
        async with make_publisher(transport, default_url=None) as publisher:
            with pytest.raises(InternalServerException, match="No webhook endpoint"):
                await publisher.publish("shipment.created", "{}")

        assert transport.requests == []

    async def test_oversized_payload_is_internal(self) -> None:
        transport = RecordingTransport()
        async with make_publisher(transport, max_payload_size_bytes=1024) as publisher:
            with pytest.raises(InternalServerException, match="exceeds the limit"):
                await publisher.publish("shipment.created", "x" * 2048)

        assert transport.requests == []

    def test_resource_is_the_endpoint_host(self) -> None:
        publisher = make_publisher(
            RecordingTransport(),
            endpoints={"label.created": "https://labels.example.com:8443/hook"},
        )

        assert publisher.resource_for("shipment.created") == "hooks.example.com"
        assert publisher.resource_for("label.created") == "labels.example.com:8443"

    def test_resource_falls_back_to_event_name(self) -> None:
        publisher = make_publisher(RecordingTransport(), default_url=None)

        assert publisher.resource_for("shipment.created") == "shipment.created"

    def test_from_settings(self) -> None:
        settings = WebhookSettings(
            default_url="https://hooks.example.com/events",
            secret=SECRET,
            endpoints={"a": "https://a.example.com/"},
        )

        publisher = WebhookPublisher.from_settings(settings)

        assert publisher.secret == SECRET
        assert publisher.endpoint_for("a") == "https://a.example.com/"
        assert publisher.endpoint_for("b") == "https://hooks.example.com/events"
