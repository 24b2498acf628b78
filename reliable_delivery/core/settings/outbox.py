"""Outbox processor settings."""

from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from .yaml_sources import create_outbox_yaml_source


class OutboxSettings(BaseSettings):
    """Polling, batching, and dead-letter configuration for the outbox.

    Environment variables use OUTBOX_ prefix.
    Example: OUTBOX_BATCH_SIZE=50, OUTBOX_MAX_ATTEMPTS=10
    """

    enabled: bool = Field(
        default=True,
        description="Start the background processor with the runtime.",
    )
    batch_size: int = Field(
        default=100,
        ge=1,
        le=10_000,
        description="Maximum number of pending messages claimed per run.",
    )
    poll_interval_seconds: float = Field(
        default=5.0,
        gt=0.0,
        le=3600.0,
        description="Interval between scheduled processor runs.",
    )
    publish_timeout_seconds: float = Field(
        default=10.0,
        gt=0.0,
        le=600.0,
        description="Upper bound for a single publish attempt.",
    )
    max_attempts: int = Field(
        default=5,
        ge=1,
        le=1000,
        description="Processor runs a message may take part in before it is dead-lettered.",
    )
    redelivery_delay_seconds: float = Field(
        default=30.0,
        ge=0.0,
        description="Base delay before a transiently failed message is retried by a later run.",
    )
    max_redelivery_delay_seconds: float = Field(
        default=3600.0,
        ge=0.0,
        description="Upper bound for the redelivery delay.",
    )
    requeue_extra_attempts: int = Field(
        default=3,
        ge=1,
        le=1000,
        description="Attempts granted to a dead letter when it is requeued.",
    )

    model_config = SettingsConfigDict(
        env_prefix="OUTBOX_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        frozen=True,
        extra="ignore",
        env_ignore_empty=True,
    )

    @classmethod
    def settings_customise_sources(
        cls, settings_cls, init_settings, env_settings, dotenv_settings, file_secret_settings
    ):
        """Customize settings source precedence: init > yaml > env > dotenv > secrets."""
        return (
            init_settings,
            create_outbox_yaml_source(settings_cls),
            env_settings,
            dotenv_settings,
            file_secret_settings,
        )


__all__ = ["OutboxSettings"]
