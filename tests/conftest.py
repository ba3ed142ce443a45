"""Fixtures and configuration for Switchboard tests."""

from __future__ import annotations

import json
import sys
from pathlib import Path
from typing import Any

import pytest

# Add project root to path for imports
PROJECT_ROOT = Path(__file__).parent.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from adapters.base import (  # noqa: E402
    GEMINI_INFO,
    BackendCallError,
    GenerationRequest,
    GenerationUsage,
    ModelInfo,
    ProviderAdapter,
    ProviderConfig,
    ProviderInfo,
    ProviderType,
    parse_model_output,
)
from adapters.router import ProviderRouter  # noqa: E402
from switchboard.config import RouterConfig  # noqa: E402
from switchboard.store import ConfigStore, MemoryBackend  # noqa: E402


class FakeClock:
    """Manually advanced monotonic clock, in seconds."""

    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now

    def advance_ms(self, ms: float) -> None:
        self.now += ms / 1000


class ScriptedAdapter(ProviderAdapter):
    """
    Adapter whose backend behavior comes from its config settings.

    Settings:
        latencyMs: simulated round trip, advances the fake clock
        failWith: backend error message to raise instead of answering
        data: value returned by the backend (JSON encoded unless a string)
        tokens: total tokens reported on success
    """

    provider_type = ProviderType.GEMINI
    default_model = "scripted-model"
    display_name = "Scripted"

    def __init__(self, config: ProviderConfig, *, clock: FakeClock, **kwargs: Any) -> None:
        super().__init__(config, timeout=kwargs.get("timeout", 30.0))
        self.clock = clock
        self.calls = 0
        self.latency_ms = config.settings.get("latencyMs", 10)
        self.fail_with = config.settings.get("failWith")
        self.data = config.settings.get("data", {"ok": True})
        self.tokens = config.settings.get("tokens", 0)

    def build_payload(self, request: GenerationRequest) -> dict[str, Any]:
        return {"prompt": request.prompt}

    async def execute(self, payload: dict[str, Any], model: str) -> dict[str, Any]:
        self.calls += 1
        self.clock.advance_ms(self.latency_ms)
        if self.fail_with:
            raise BackendCallError(self.fail_with)
        text = self.data if isinstance(self.data, str) else json.dumps(self.data)
        return {"text": text}

    def parse_response(
        self, raw: dict[str, Any]
    ) -> tuple[Any, GenerationUsage | None, str | None]:
        usage = GenerationUsage(total_tokens=self.tokens) if self.tokens else None
        return parse_model_output(raw["text"]), usage, "stop"

    async def list_models(self) -> list[ModelInfo]:
        return [ModelInfo(id="scripted-model", name="Scripted Model")]

    @classmethod
    def get_provider_info(cls) -> ProviderInfo:
        return GEMINI_INFO


@pytest.fixture
def clock():
    """Create a fake clock."""
    return FakeClock()


@pytest.fixture
def store():
    """Create an in-memory config store."""
    return ConfigStore(MemoryBackend())


@pytest.fixture
def make_provider():
    """Factory for provider configs driven by ScriptedAdapter settings."""

    def _make(
        provider_id: str,
        *,
        enabled: bool = True,
        api_key: str = "test-key",
        model: str = "",
        **settings: Any,
    ) -> ProviderConfig:
        return ProviderConfig(
            id=provider_id,
            name=f"Provider {provider_id}",
            type=ProviderType.GEMINI,
            enabled=enabled,
            api_key=api_key,
            model=model,
            settings=settings,
        )

    return _make


@pytest.fixture
def adapter_factory(clock):
    """Adapter factory producing ScriptedAdapters on the fake clock."""

    def _factory(config: ProviderConfig, **kwargs: Any) -> ScriptedAdapter:
        return ScriptedAdapter(config, clock=clock, **kwargs)

    return _factory


@pytest.fixture
def make_router(clock, store, adapter_factory):
    """Factory for routers over scripted providers, bypassing validation."""

    def _make(*providers: ProviderConfig, **config_kwargs: Any) -> ProviderRouter:
        return ProviderRouter(
            RouterConfig(providers=list(providers), **config_kwargs),
            store=store,
            adapter_factory=adapter_factory,
            clock=clock,
        )

    return _make
