"""YAML config source with conf.d directory support.

Extends pydantic-settings YamlConfigSettingsSource to support:
- Main YAML file (e.g., conf/outbox.yaml)
- conf.d directory merging (e.g., conf/outbox.d/*.yaml), alphabetical order

Each settings domain resolves its own base directory from an environment
variable (``OUTBOX_CONFIG_DIR``, ``DB_CONFIG_DIR``, ...) and falls back to
``conf/``.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import TYPE_CHECKING

from pydantic_settings.sources.providers.yaml import YamlConfigSettingsSource

if TYPE_CHECKING:
    from pydantic_settings import BaseSettings


class ConfDYamlConfigSettingsSource(YamlConfigSettingsSource):
    """YAML settings source with conf.d directory support.

    Supports the standard Linux conf.d pattern:
    - conf/outbox.yaml        (base configuration)
    - conf/outbox.d/*.yaml    (override files, merged alphabetically)
    """

    def __init__(
        self,
        settings_cls: type[BaseSettings],
        yaml_file: str,
        confd_dir: str | None = None,
        config_dir_env: str = "CONFIG_DIR",
        base_dir: str = "conf",
        yaml_file_encoding: str | None = "utf-8",
    ) -> None:
        """Initialize the conf.d YAML source.

        Args:
            settings_cls: The settings class being configured.
            yaml_file: Main YAML file name (e.g., "outbox.yaml").
            confd_dir: conf.d subdirectory name (e.g., "outbox.d"), or None to disable.
            config_dir_env: Environment variable to override base directory.
            base_dir: Default base directory for config files.
            yaml_file_encoding: File encoding for YAML files.
        """
        config_base = Path(os.getenv(config_dir_env, base_dir))

        yaml_files: list[Path] = []

        main_file = config_base / yaml_file
        if main_file.exists():
            yaml_files.append(main_file)

        if confd_dir:
            confd_path = config_base / confd_dir
            if confd_path.exists() and confd_path.is_dir():
                yaml_files.extend(sorted(confd_path.glob("*.yaml")))
                yaml_files.extend(sorted(confd_path.glob("*.yml")))

        self._yaml_files = yaml_files

        super().__init__(
            settings_cls=settings_cls,
            yaml_file=yaml_files if yaml_files else None,
            yaml_file_encoding=yaml_file_encoding,
        )

    def __repr__(self) -> str:
        """Return human-readable summary of configured YAML files."""
        files_str = ", ".join(str(f) for f in self._yaml_files)
        return f"{self.__class__.__name__}(yaml_files=[{files_str}])"


def create_yaml_source(
    settings_cls: type[BaseSettings], domain: str
) -> ConfDYamlConfigSettingsSource:
    """Create the YAML source for one settings domain.

    Loads from ``conf/<domain>.yaml`` and ``conf/<domain>.d/*.yaml``.
    Override the directory with ``<DOMAIN>_CONFIG_DIR=/custom/path``.

    Args:
        settings_cls: The settings class being configured.
        domain: Domain name, e.g. ``"outbox"`` or ``"db"``.
    """
    return ConfDYamlConfigSettingsSource(
        settings_cls,
        yaml_file=f"{domain}.yaml",
        confd_dir=f"{domain}.d",
        config_dir_env=f"{domain.upper()}_CONFIG_DIR",
    )


def create_db_yaml_source(settings_cls: type[BaseSettings]) -> ConfDYamlConfigSettingsSource:
    """Create YAML source for DatabaseSettings (DB_CONFIG_DIR)."""
    return create_yaml_source(settings_cls, "db")


def create_outbox_yaml_source(settings_cls: type[BaseSettings]) -> ConfDYamlConfigSettingsSource:
    """Create YAML source for OutboxSettings (OUTBOX_CONFIG_DIR)."""
    return create_yaml_source(settings_cls, "outbox")


def create_circuit_breaker_yaml_source(
    settings_cls: type[BaseSettings],
) -> ConfDYamlConfigSettingsSource:
    """Create YAML source for CircuitBreakerSettings (CIRCUIT_BREAKER_CONFIG_DIR)."""
    return create_yaml_source(settings_cls, "circuit_breaker")


def create_retry_yaml_source(settings_cls: type[BaseSettings]) -> ConfDYamlConfigSettingsSource:
    """Create YAML source for RetrySettings (RETRY_CONFIG_DIR)."""
    return create_yaml_source(settings_cls, "retry")


def create_webhook_yaml_source(settings_cls: type[BaseSettings]) -> ConfDYamlConfigSettingsSource:
    """Create YAML source for WebhookSettings (WEBHOOK_CONFIG_DIR)."""
    return create_yaml_source(settings_cls, "webhook")


def create_logging_yaml_source(settings_cls: type[BaseSettings]) -> ConfDYamlConfigSettingsSource:
    """Create YAML source for LoggingSettings (LOGGING_CONFIG_DIR)."""
    return create_yaml_source(settings_cls, "logging")
