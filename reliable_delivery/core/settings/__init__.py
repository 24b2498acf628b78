"""Modular Pydantic Settings v2 configuration.

One frozen settings model per domain (db/outbox/circuit_breaker/retry/
webhook/logging), each exposed through an LRU-cached loader.

Configuration precedence (highest to lowest):
    1. init kwargs (testing/overrides)
    2. YAML/conf.d files (optional, local/dev)
    3. Environment variables (production)
    4. .env file (development only)
    5. secrets_dir (Kubernetes/Docker secrets)
"""

from __future__ import annotations

from .circuit_breaker import CircuitBreakerOverride, CircuitBreakerSettings
from .db import DatabaseSettings
from .loader import (
    clear_all_caches,
    get_circuit_breaker_settings,
    get_db_settings,
    get_logging_settings,
    get_outbox_settings,
    get_retry_settings,
    get_webhook_settings,
)
from .logs import LoggingSettings
from .outbox import OutboxSettings
from .retry import RetrySettings
from .webhooks import WebhookSettings

__all__ = [
    "CircuitBreakerOverride",
    "CircuitBreakerSettings",
    "DatabaseSettings",
    "LoggingSettings",
    "OutboxSettings",
    "RetrySettings",
    "WebhookSettings",
    "clear_all_caches",
    "get_circuit_breaker_settings",
    "get_db_settings",
    "get_logging_settings",
    "get_outbox_settings",
    "get_retry_settings",
    "get_webhook_settings",
]
