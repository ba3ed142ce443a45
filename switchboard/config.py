"""
Switchboard - Configuration

Two layers of configuration:
- SwitchboardSettings: process settings from SWITCHBOARD_* environment
  variables and .env
- RouterConfig files: YAML or JSON provider registry documents
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from adapters.base import ProviderConfig, ProviderType, RouterConfig
from switchboard.errors import ProviderConfigError

logger = logging.getLogger("switchboard.config")

MIGRATED_GEMINI_ID = "gemini_migrated"


class SwitchboardSettings(BaseSettings):
    """Process-level settings."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="SWITCHBOARD_",
        extra="ignore",
    )

    # Storage
    store_url: str = "file://.switchboard"
    log_level: str = "WARNING"

    # Router defaults for a fresh config
    fallback_enabled: bool = True
    timeout_ms: int = 30000
    retry_attempts: int = 3

    # Backends
    gemini_base_url: str | None = None
    openrouter_base_url: str | None = None
    app_url: str = "http://localhost"
    app_title: str = "Switchboard"

    # Legacy single-key setup, migrated into a provider entry
    gemini_api_key: str | None = None

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        level = v.upper()
        if level not in ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]:
            raise ValueError("log_level must be DEBUG, INFO, WARNING, ERROR or CRITICAL")
        return level

    def adapter_options(self) -> dict[ProviderType, dict[str, Any]]:
        """Per-type keyword arguments for adapter construction."""
        return {
            ProviderType.GEMINI: {"base_url": self.gemini_base_url},
            ProviderType.OPENROUTER: {
                "base_url": self.openrouter_base_url,
                "app_url": self.app_url,
                "app_title": self.app_title,
            },
        }


_settings: SwitchboardSettings | None = None


def get_settings() -> SwitchboardSettings:
    """Get the process-wide settings instance."""
    global _settings
    if _settings is None:
        _settings = SwitchboardSettings()
    return _settings


def default_router_config(settings: SwitchboardSettings | None = None) -> RouterConfig:
    """
    Build the config used when nothing is stored yet.

    A legacy Gemini key in the settings seeds a single migrated provider.
    """
    settings = settings or get_settings()
    config = RouterConfig(
        fallback_enabled=settings.fallback_enabled,
        timeout_ms=settings.timeout_ms,
        retry_attempts=settings.retry_attempts,
    )

    if settings.gemini_api_key:
        logger.info("Migrating legacy Gemini API key into provider config")
        config.providers.append(
            ProviderConfig(
                id=MIGRATED_GEMINI_ID,
                name="Gemini (migrated)",
                type=ProviderType.GEMINI,
                enabled=True,
                api_key=settings.gemini_api_key,
                model="gemini-2.5-flash",
                description="Migrated from the legacy single-key setting",
                settings={
                    "responseMimeType": "application/json",
                    "temperature": 0.7,
                    "maxOutputTokens": 8192,
                },
            )
        )
        config.default_provider_id = MIGRATED_GEMINI_ID

    return config


def load_config_file(path: str | Path) -> RouterConfig:
    """
    Load a RouterConfig from a YAML or JSON file.

    Args:
        path: File path, ``.json`` is parsed as JSON and anything else as YAML

    Returns:
        Validated config

    Raises:
        ProviderConfigError: If the file is unreadable or invalid
    """
    path = Path(path)
    try:
        content = path.read_text(encoding="utf-8")
        if path.suffix == ".json":
            data = json.loads(content)
        else:
            data = yaml.safe_load(content)
    except (OSError, ValueError, yaml.YAMLError) as e:
        raise ProviderConfigError(f"Cannot read config file {path}: {e}", cause=e) from e

    if not isinstance(data, dict):
        raise ProviderConfigError(f"Config file {path} must contain a mapping")

    try:
        return RouterConfig.model_validate(data)
    except ValidationError as e:
        raise ProviderConfigError(f"Invalid config file {path}: {e}", cause=e) from e
