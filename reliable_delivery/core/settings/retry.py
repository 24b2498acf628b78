"""Retry policy settings."""

from __future__ import annotations

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .yaml_sources import create_retry_yaml_source

DEFAULT_RETRYABLE_STATUS_CODES = [408, 429, 500, 502, 503, 504]
DEFAULT_TRANSIENT_ERROR_CODES = ["ECONNRESET", "ENOTFOUND", "ECONNREFUSED", "ETIMEDOUT"]


class RetrySettings(BaseSettings):
    """Shape of the attempts made against a publisher within one call.

    Environment variables use RETRY_ prefix.
    Example: RETRY_MAX_ATTEMPTS=5, RETRY_BASE_DELAY_SECONDS=0.5
    """

    max_attempts: int = Field(
        default=3,
        ge=1,
        le=100,
        description="Total attempts per call, including the first one.",
    )
    base_delay_seconds: float = Field(
        default=1.0,
        ge=0.0,
        description="Delay before the second attempt.",
    )
    backoff_multiplier: float = Field(
        default=2.0,
        ge=1.0,
        le=10.0,
        description="Exponential backoff multiplier.",
    )
    max_delay_seconds: float | None = Field(
        default=None,
        ge=0.0,
        description="Optional cap for a single backoff delay.",
    )
    jitter: bool = Field(
        default=False,
        description="Randomize each delay between 50% and 100% of its computed value.",
    )
    retryable_status_codes: list[int] = Field(
        default_factory=lambda: list(DEFAULT_RETRYABLE_STATUS_CODES),
        description="HTTP status codes treated as transient.",
    )
    transient_error_codes: list[str] = Field(
        default_factory=lambda: list(DEFAULT_TRANSIENT_ERROR_CODES),
        description="Network error codes treated as transient.",
    )

    model_config = SettingsConfigDict(
        env_prefix="RETRY_",
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
            create_retry_yaml_source(settings_cls),
            env_settings,
            dotenv_settings,
            file_secret_settings,
        )

    @model_validator(mode="after")
    def _check_delay_cap(self) -> RetrySettings:
        if self.max_delay_seconds is not None and self.max_delay_seconds < self.base_delay_seconds:
            msg = "max_delay_seconds must be greater than or equal to base_delay_seconds"
            raise ValueError(msg)
        return self


__all__ = [
    "DEFAULT_RETRYABLE_STATUS_CODES",
    "DEFAULT_TRANSIENT_ERROR_CODES",
    "RetrySettings",
]
