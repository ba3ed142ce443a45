"""
Tests for the Switchboard CLI.

Only commands that stay off the network are exercised here.
"""

from __future__ import annotations

import json

import pytest
from typer.testing import CliRunner

from switchboard.cli import app, parse_settings

runner = CliRunner()

ROUTER_YAML = """\
providers:
  - id: gem
    name: Gemini
    type: gemini
    apiKey: gem-secret-key
    model: gemini-2.5-flash
  - id: router
    name: OpenRouter
    type: openrouter
    apiKey: or-secret-key
defaultProviderId: gem
"""


@pytest.fixture
def store_dir(tmp_path, monkeypatch):
    """Point the CLI at a temporary file store."""
    store = tmp_path / "store"
    monkeypatch.setenv("SWITCHBOARD_STORE_URL", f"file://{store}")
    monkeypatch.delenv("SWITCHBOARD_GEMINI_API_KEY", raising=False)
    monkeypatch.chdir(tmp_path)
    return store


@pytest.fixture
def loaded(store_dir, tmp_path):
    """Load a two-provider config through the CLI."""
    path = tmp_path / "router.yaml"
    path.write_text(ROUTER_YAML)
    result = runner.invoke(app, ["load", str(path)])
    assert result.exit_code == 0, result.output
    return store_dir


def stored_config(store_dir) -> dict:
    return json.loads((store_dir / "provider_manager_config.json").read_text())


class TestCli:
    """Tests for CLI commands."""

    def test_providers_empty(self, store_dir):
        """Test listing with nothing configured."""
        result = runner.invoke(app, ["providers"])

        assert result.exit_code == 0
        assert "No providers configured" in result.output

    def test_load_and_list(self, loaded):
        """Test a loaded config is persisted and listed."""
        assert [p["id"] for p in stored_config(loaded)["providers"]] == ["gem", "router"]

        result = runner.invoke(app, ["providers"])

        assert result.exit_code == 0
        assert "gem" in result.output
        assert "gem-secret-key" not in result.output

    def test_load_invalid(self, store_dir, tmp_path):
        """Test an invalid file exits with an error."""
        path = tmp_path / "bad.yaml"
        path.write_text("providers: nope\n")

        result = runner.invoke(app, ["load", str(path)])

        assert result.exit_code == 1
        assert "Error" in result.output

    def test_default(self, loaded):
        """Test changing the default provider."""
        result = runner.invoke(app, ["default", "router"])

        assert result.exit_code == 0
        assert stored_config(loaded)["defaultProviderId"] == "router"

    def test_default_unknown(self, loaded):
        """Test an unknown id exits with an error."""
        result = runner.invoke(app, ["default", "ghost"])

        assert result.exit_code == 1

    def test_disable_and_enable(self, loaded):
        """Test toggling persists without a validation call."""
        result = runner.invoke(app, ["disable", "gem"])
        assert result.exit_code == 0
        assert stored_config(loaded)["providers"][0]["enabled"] is False

        result = runner.invoke(app, ["enable", "gem"])
        assert result.exit_code == 0
        assert stored_config(loaded)["providers"][0]["enabled"] is True

    def test_remove(self, loaded):
        """Test removing a provider."""
        result = runner.invoke(app, ["remove", "router"])

        assert result.exit_code == 0
        assert [p["id"] for p in stored_config(loaded)["providers"]] == ["gem"]

    def test_export(self, loaded, tmp_path):
        """Test export writes a credential-free document."""
        output = tmp_path / "export.json"

        result = runner.invoke(app, ["export", "--output", str(output)])

        assert result.exit_code == 0
        text = output.read_text()
        assert "secret" not in text
        assert [c["id"] for c in json.loads(text)["configs"]] == ["gem", "router"]

    def test_stats_empty(self, loaded):
        """Test stats with no usage recorded."""
        result = runner.invoke(app, ["stats"])

        assert result.exit_code == 0
        assert "No usage recorded yet" in result.output

    def test_clear_stats(self, loaded):
        """Test clearing stats succeeds on an empty store."""
        result = runner.invoke(app, ["clear-stats"])

        assert result.exit_code == 0
        assert "cleared" in result.output

    def test_test_unknown_as_json(self, loaded):
        """Test --json prints serialized results and fails on errors."""
        result = runner.invoke(app, ["test", "ghost", "--json"])

        assert result.exit_code == 1
        payload = json.loads(result.output)
        assert len(payload) == 1
        assert payload[0]["providerId"] == "ghost"
        assert payload[0]["status"] == "error"
        assert payload[0]["error"] == "Provider not found"
        assert payload[0]["responseTime"] is None

    def test_metrics(self, store_dir):
        """Test metrics are printed in exposition format."""
        result = runner.invoke(app, ["metrics"])

        assert result.exit_code == 0
        assert "switchboard_provider_requests_total" in result.output

    def test_parse_settings(self):
        """Test key=value settings are typed as YAML scalars."""
        assert parse_settings(["temperature=0.3", "stream=false", "label=quiz"]) == {
            "temperature": 0.3,
            "stream": False,
            "label": "quiz",
        }
