"""Composition root.

Builds the engine, session factory, publisher, circuit breaker registry,
retry policy and outbox processor from settings, in dependency order. The
registry is created here and injected; nothing in the package holds a
module-level singleton.

Shutdown order is the reverse of startup: processor, publisher, engine.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from reliable_delivery.core.settings import (
    get_circuit_breaker_settings,
    get_db_settings,
    get_outbox_settings,
    get_retry_settings,
    get_webhook_settings,
)
from reliable_delivery.infra.database.session import (
    create_engine_from_settings,
    create_session_factory,
)
from reliable_delivery.infra.events.inbox.repository import InboxRepository
from reliable_delivery.infra.events.outbox.processor import OutboxProcessor
from reliable_delivery.infra.events.outbox.publisher import WebhookPublisher
from reliable_delivery.infra.events.outbox.repository import OutboxRepository
from reliable_delivery.infra.resilience.circuit_breaker import CircuitBreakerRegistry
from reliable_delivery.infra.resilience.retry import RetryPolicy

if TYPE_CHECKING:
    from collections.abc import AsyncGenerator

    from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

    from reliable_delivery.core.settings import (
        CircuitBreakerSettings,
        DatabaseSettings,
        OutboxSettings,
        RetrySettings,
        WebhookSettings,
    )
    from reliable_delivery.infra.events.outbox.publisher import Publisher

logger = logging.getLogger(__name__)


@dataclass
class Runtime:
    """Wired components of the delivery core."""

    engine: AsyncEngine
    session_factory: async_sessionmaker[AsyncSession]
    publisher: Publisher
    registry: CircuitBreakerRegistry
    retry_policy: RetryPolicy
    outbox: OutboxRepository
    inbox: InboxRepository
    processor: OutboxProcessor
    outbox_settings: OutboxSettings
    _closed: bool = field(default=False, repr=False)

    async def close(self) -> None:
        """Stop the processor and release the publisher and the engine."""
        if self._closed:
            return
        self._closed = True

        await self.processor.stop()
        aclose = getattr(self.publisher, "aclose", None)
        if aclose is not None:
            await aclose()
        await self.engine.dispose()
        logger.info("Delivery runtime closed")


def build_runtime(
    *,
    db_settings: DatabaseSettings | None = None,
    outbox_settings: OutboxSettings | None = None,
    circuit_breaker_settings: CircuitBreakerSettings | None = None,
    retry_settings: RetrySettings | None = None,
    webhook_settings: WebhookSettings | None = None,
    publisher: Publisher | None = None,
) -> Runtime:
    """Wire the delivery core from settings.

    Settings default to the cached loaders. A custom ``publisher`` replaces
    the webhook publisher; its ``resource_for`` method, when present, names
    the circuit breaker of each event.
    """
    db_settings = db_settings or get_db_settings()
    outbox_settings = outbox_settings or get_outbox_settings()
    circuit_breaker_settings = circuit_breaker_settings or get_circuit_breaker_settings()
    retry_settings = retry_settings or get_retry_settings()

    if publisher is None:
        publisher = WebhookPublisher.from_settings(webhook_settings or get_webhook_settings())

    engine = create_engine_from_settings(db_settings)
    session_factory = create_session_factory(engine)
    registry = CircuitBreakerRegistry.from_settings(circuit_breaker_settings)
    retry_policy = RetryPolicy.from_settings(retry_settings)

    processor = OutboxProcessor.from_settings(
        outbox_settings,
        session_factory=session_factory,
        publisher=publisher,
        registry=registry,
        retry_policy=retry_policy,
        resource_resolver=getattr(publisher, "resource_for", None),
    )

    logger.info(
        "Delivery runtime built",
        extra={
            "dialect": engine.dialect.name,
            "publisher": type(publisher).__name__,
            "batch_size": outbox_settings.batch_size,
            "poll_interval": outbox_settings.poll_interval_seconds,
        },
    )

    return Runtime(
        engine=engine,
        session_factory=session_factory,
        publisher=publisher,
        registry=registry,
        retry_policy=retry_policy,
        outbox=processor.repository,
        inbox=InboxRepository(),
        processor=processor,
        outbox_settings=outbox_settings,
    )


@asynccontextmanager
async def runtime_context(**kwargs) -> AsyncGenerator[Runtime]:
    """Build a runtime, start the processor when enabled, and close it on exit.

    Example:
        async with runtime_context() as runtime:
            async with session_scope(runtime.session_factory) as session:
                await runtime.outbox.append(session, "shipment.created", payload)
    """
    runtime = build_runtime(**kwargs)
    try:
        if runtime.outbox_settings.enabled:
            await runtime.processor.start()
        else:
            logger.info("Outbox processor disabled")
        yield runtime
    finally:
        await runtime.close()


__all__ = ["Runtime", "build_runtime", "runtime_context"]
