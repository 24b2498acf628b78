"""LRU-cached settings loaders.

Settings are loaded and validated once, then cached for the lifetime of the
process.

Usage:
    from reliable_delivery.core.settings import get_outbox_settings

    settings = get_outbox_settings()  # First call: loads and validates
    settings = get_outbox_settings()  # Subsequent calls: returns cached instance

Testing:
    In tests, clear the cache to force reload:
    clear_all_caches()
"""

from __future__ import annotations

from functools import lru_cache

from .circuit_breaker import CircuitBreakerSettings
from .db import DatabaseSettings
from .logs import LoggingSettings
from .outbox import OutboxSettings
from .retry import RetrySettings
from .webhooks import WebhookSettings


@lru_cache(maxsize=1)
def get_db_settings() -> DatabaseSettings:
    """Get cached database settings.

    Returns:
        Validated and frozen DatabaseSettings instance.
    """
    return DatabaseSettings()


@lru_cache(maxsize=1)
def get_outbox_settings() -> OutboxSettings:
    """Get cached outbox processor settings.

    Returns:
        Validated and frozen OutboxSettings instance.
    """
    return OutboxSettings()


@lru_cache(maxsize=1)
def get_circuit_breaker_settings() -> CircuitBreakerSettings:
    """Get cached circuit breaker settings.

    Returns:
        Validated and frozen CircuitBreakerSettings instance.
    """
    return CircuitBreakerSettings()


@lru_cache(maxsize=1)
def get_retry_settings() -> RetrySettings:
    """Get cached retry policy settings.

    Returns:
        Validated and frozen RetrySettings instance.
    """
    return RetrySettings()


@lru_cache(maxsize=1)
def get_webhook_settings() -> WebhookSettings:
    """Get cached webhook publisher settings.

    Returns:
        Validated and frozen WebhookSettings instance.
    """
    return WebhookSettings()


@lru_cache(maxsize=1)
def get_logging_settings() -> LoggingSettings:
    """Get cached logging settings.

    Returns:
        Validated and frozen LoggingSettings instance.
    """
    return LoggingSettings()


def clear_all_caches() -> None:
    """Clear all settings caches.

    Useful for testing or when you need to force reload settings.
    In production, prefer process restarts over cache clearing.
    """
    get_db_settings.cache_clear()
    get_outbox_settings.cache_clear()
    get_circuit_breaker_settings.cache_clear()
    get_retry_settings.cache_clear()
    get_webhook_settings.cache_clear()
    get_logging_settings.cache_clear()
