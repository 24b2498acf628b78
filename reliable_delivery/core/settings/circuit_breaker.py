"""Circuit breaker settings."""

from __future__ import annotations

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from .yaml_sources import create_circuit_breaker_yaml_source


class CircuitBreakerOverride(BaseModel):
    """Per-resource override of the registry defaults."""

    model_config = {"frozen": True}

    failure_threshold: int | None = Field(default=None, ge=1)
    open_timeout_seconds: float | None = Field(default=None, gt=0.0)


class CircuitBreakerSettings(BaseSettings):
    """Defaults for every circuit created by the registry.

    Environment variables use CIRCUIT_BREAKER_ prefix.
    Example: CIRCUIT_BREAKER_FAILURE_THRESHOLD=3

    Per-resource overrides are easiest to express in YAML:

        overrides:
          carrier.example.com:
            failure_threshold: 10
    """

    failure_threshold: int = Field(
        default=5,
        ge=1,
        le=1000,
        description="Consecutive failures that open a circuit.",
    )
    open_timeout_seconds: float = Field(
        default=60.0,
        gt=0.0,
        le=86_400.0,
        description="Seconds an open circuit waits before admitting a probe.",
    )
    overrides: dict[str, CircuitBreakerOverride] = Field(
        default_factory=dict,
        description="Per-resource overrides keyed by resource name.",
    )

    model_config = SettingsConfigDict(
        env_prefix="CIRCUIT_BREAKER_",
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
            create_circuit_breaker_yaml_source(settings_cls),
            env_settings,
            dotenv_settings,
            file_secret_settings,
        )


__all__ = ["CircuitBreakerOverride", "CircuitBreakerSettings"]
