"""
Tests for settings and router config documents.
"""

from __future__ import annotations

import json

import pytest
from pydantic import ValidationError

from adapters.base import ProviderType
from switchboard.config import (
    MIGRATED_GEMINI_ID,
    RouterConfig,
    SwitchboardSettings,
    default_router_config,
    load_config_file,
)
from switchboard.errors import ProviderConfigError


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    """Remove Switchboard variables from the environment."""
    for name in ("SWITCHBOARD_GEMINI_API_KEY", "SWITCHBOARD_TIMEOUT_MS", "SWITCHBOARD_LOG_LEVEL"):
        monkeypatch.delenv(name, raising=False)


class TestSettings:
    """Tests for SwitchboardSettings."""

    def test_defaults(self):
        """Test default values."""
        settings = SwitchboardSettings(_env_file=None)

        assert settings.store_url == "file://.switchboard"
        assert settings.fallback_enabled is True
        assert settings.timeout_ms == 30000
        assert settings.gemini_api_key is None

    def test_env_prefix(self, monkeypatch):
        """Test SWITCHBOARD_ environment overrides."""
        monkeypatch.setenv("SWITCHBOARD_TIMEOUT_MS", "5000")
        monkeypatch.setenv("SWITCHBOARD_LOG_LEVEL", "debug")

        settings = SwitchboardSettings(_env_file=None)

        assert settings.timeout_ms == 5000
        assert settings.log_level == "DEBUG"

    def test_invalid_log_level(self):
        """Test unknown log levels are rejected."""
        with pytest.raises(ValidationError):
            SwitchboardSettings(_env_file=None, log_level="chatty")

    def test_adapter_options(self):
        """Test per-type adapter options."""
        settings = SwitchboardSettings(
            _env_file=None,
            openrouter_base_url="http://proxy/api/v1",
            app_title="Quiz Builder",
        )
        options = settings.adapter_options()

        assert options[ProviderType.OPENROUTER]["base_url"] == "http://proxy/api/v1"
        assert options[ProviderType.OPENROUTER]["app_title"] == "Quiz Builder"
        assert options[ProviderType.GEMINI]["base_url"] is None


class TestDefaultRouterConfig:
    """Tests for the config used when nothing is stored."""

    def test_empty(self):
        """Test no legacy key means no providers."""
        config = default_router_config(SwitchboardSettings(_env_file=None, timeout_ms=1000))

        assert config.providers == []
        assert config.default_provider_id is None
        assert config.timeout_ms == 1000

    def test_legacy_key_migration(self):
        """Test a legacy Gemini key seeds a provider."""
        config = default_router_config(
            SwitchboardSettings(_env_file=None, gemini_api_key="legacy-key")
        )

        assert len(config.providers) == 1
        provider = config.providers[0]
        assert provider.id == MIGRATED_GEMINI_ID
        assert provider.type == ProviderType.GEMINI
        assert provider.api_key == "legacy-key"
        assert provider.model == "gemini-2.5-flash"
        assert provider.settings["responseMimeType"] == "application/json"
        assert provider.settings["maxOutputTokens"] == 8192
        assert config.default_provider_id == MIGRATED_GEMINI_ID


class TestRouterConfig:
    """Tests for RouterConfig documents and files."""

    def test_accepts_camel_case(self):
        """Test documents validate from camelCase keys."""
        config = RouterConfig.model_validate(
            {
                "providers": [
                    {"id": "or-1", "name": "OR", "type": "openrouter", "apiKey": "k"}
                ],
                "defaultProviderId": "or-1",
                "fallbackEnabled": False,
                "timeoutMs": 1200,
                "retryAttempts": 1,
            }
        )

        assert config.providers[0].api_key == "k"
        assert config.fallback_enabled is False
        assert config.get_provider("or-1").type == ProviderType.OPENROUTER
        assert config.get_provider("missing") is None

    def test_rejects_bad_timeout(self):
        """Test timeout must be positive."""
        with pytest.raises(ValidationError):
            RouterConfig(timeout_ms=0)

    def test_load_yaml(self, tmp_path):
        """Test loading a YAML config file."""
        path = tmp_path / "router.yaml"
        path.write_text(
            "providers:\n"
            "  - id: gem\n"
            "    name: Gemini\n"
            "    type: gemini\n"
            "    apiKey: abc\n"
            "    settings:\n"
            "      temperature: 0.3\n"
            "defaultProviderId: gem\n"
            "fallbackEnabled: false\n"
        )

        config = load_config_file(path)

        assert config.default_provider_id == "gem"
        assert config.fallback_enabled is False
        assert config.providers[0].settings == {"temperature": 0.3}

    def test_load_json(self, tmp_path):
        """Test loading a JSON config file."""
        path = tmp_path / "router.json"
        path.write_text(json.dumps({"providers": [], "timeoutMs": 9000}))

        assert load_config_file(path).timeout_ms == 9000

    @pytest.mark.parametrize(
        "content",
        ["- just\n- a list\n", "providers: nope\n", "key: [unclosed\n"],
    )
    def test_load_invalid(self, tmp_path, content):
        """Test invalid files raise ProviderConfigError."""
        path = tmp_path / "router.yaml"
        path.write_text(content)

        with pytest.raises(ProviderConfigError):
            load_config_file(path)

    def test_load_missing(self, tmp_path):
        """Test a missing file raises ProviderConfigError."""
        with pytest.raises(ProviderConfigError):
            load_config_file(tmp_path / "absent.yaml")
