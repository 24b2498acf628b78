"""Webhook publisher settings.

Controls where outbox messages are POSTed, how they are signed, and the
HTTP timeouts used by the webhook publisher.
"""

from __future__ import annotations

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict

from .yaml_sources import create_webhook_yaml_source


class WebhookSettings(BaseSettings):
    """Configuration for the webhook publisher.

    Environment variables use WEBHOOK_ prefix.
    Example: WEBHOOK_DEFAULT_URL=https://hooks.example.com/events
    """

    default_url: str | None = Field(
        default=None,
        description="Endpoint used for events without an explicit mapping.",
    )
    endpoints: dict[str, str] = Field(
        default_factory=dict,
        description="Event name to endpoint URL mapping.",
    )
    secret: SecretStr | None = Field(
        default=None,
        description="Shared secret used for the HMAC-SHA256 signature header.",
    )
    enable_signature: bool = Field(
        default=True,
        description="Include HMAC signature in webhook requests",
    )
    timeout_seconds: float = Field(
        default=30.0,
        gt=0.0,
        le=300.0,
        description="Timeout for webhook HTTP requests (seconds)",
    )
    connect_timeout_seconds: float = Field(
        default=10.0,
        gt=0.0,
        le=60.0,
        description="Connection timeout for webhook HTTP requests (seconds)",
    )
    user_agent: str = Field(
        default="reliable-delivery-webhook/1.0",
        description="User-Agent header sent with each delivery.",
    )
    max_payload_size_bytes: int = Field(
        default=1_048_576,  # 1MB
        ge=1024,
        le=10_485_760,  # 10MB max
        description="Maximum webhook payload size in bytes",
    )

    model_config = SettingsConfigDict(
        env_prefix="WEBHOOK_",
        env_file=".env",
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
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
            create_webhook_yaml_source(settings_cls),
            env_settings,
            dotenv_settings,
            file_secret_settings,
        )

    @property
    def is_configured(self) -> bool:
        """True when at least one endpoint is known."""
        return bool(self.default_url or self.endpoints)


__all__ = ["WebhookSettings"]
