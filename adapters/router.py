"""
Provider Router - Strategy-based provider selection and fallback.

Features:
- Ordered provider registry with validate-on-add/update
- Default, fastest, fallback and round-robin selection
- One-shot fallback to a different provider on failure
- Rolling usage statistics with write-through persistence
- Configuration export/import without credentials
"""

from __future__ import annotations

import json
import logging
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable

from pydantic import ValidationError

from adapters.base import (
    ADAPTER_TYPES,
    GenerationRequest,
    GenerationResult,
    GenerationUsage,
    ModelInfo,
    ProviderAdapter,
    ProviderConfig,
    ProviderInfo,
    ProviderType,
    ResponseFormat,
    RouterConfig,
    create_adapter,
)
from switchboard.errors import (
    NoProviderAvailableError,
    ProviderConfigError,
    ProviderError,
    ProviderNotFoundError,
    ProviderValidationError,
)
from switchboard.metrics import get_metrics
from switchboard.stats import UsageStats, UsageStatsTracker
from switchboard.store import ConfigStore

logger = logging.getLogger("switchboard.adapters.router")

EXPORT_VERSION = "1.0.0"
APP_VERSION = "1.0.0"

TEST_PROMPT = 'Connection test: reply with "OK".'
TEST_MAX_TOKENS = 500


class SelectionStrategy(str, Enum):
    """Strategies for choosing a provider per request."""

    DEFAULT = "default"            # Configured default, else first enabled
    FASTEST = "fastest"            # Lowest recorded average latency
    FALLBACK = "fallback"          # First enabled in config order
    LOAD_BALANCE = "load_balance"  # Round robin over enabled providers


class ProviderStatus(str, Enum):
    """Outcome of a provider connection test."""

    ACTIVE = "active"
    ERROR = "error"


@dataclass
class ProviderTestResult:
    """Result of a provider connection test."""

    provider_id: str
    status: ProviderStatus
    response_time_ms: float | None = None
    error: str | None = None
    tested_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict[str, Any]:
        return {
            "providerId": self.provider_id,
            "status": self.status.value,
            "responseTime": self.response_time_ms,
            "error": self.error,
            "testedAt": self.tested_at.isoformat(),
        }


@dataclass
class ResponseMetadata:
    """Where and how a response was produced."""

    model: str
    provider: str
    response_time_ms: float
    finish_reason: str = "stop"


@dataclass
class GenerationResponse:
    """Router-level successful response."""

    content: Any
    metadata: ResponseMetadata
    usage: GenerationUsage | None = None


# ============================================================================
# Selection Strategies
# ============================================================================


@dataclass
class SelectionContext:
    """Router state visible to selection handlers."""

    default_provider_id: str | None
    provider_order: list[str]
    stats: UsageStatsTracker
    round_robin: int = 0


SelectionHandler = Callable[[list[ProviderAdapter], SelectionContext], ProviderAdapter]


def select_default(enabled: list[ProviderAdapter], ctx: SelectionContext) -> ProviderAdapter:
    for adapter in enabled:
        if adapter.id == ctx.default_provider_id:
            return adapter
    return enabled[0]


def select_fastest(enabled: list[ProviderAdapter], ctx: SelectionContext) -> ProviderAdapter:
    # min() keeps the first of equal keys, so registry order breaks ties
    return min(enabled, key=lambda adapter: ctx.stats.average_response_time(adapter.id))


def select_fallback(enabled: list[ProviderAdapter], ctx: SelectionContext) -> ProviderAdapter:
    by_id = {adapter.id: adapter for adapter in enabled}
    for provider_id in ctx.provider_order:
        if provider_id in by_id:
            return by_id[provider_id]
    return enabled[0]


def select_load_balance(enabled: list[ProviderAdapter], ctx: SelectionContext) -> ProviderAdapter:
    return enabled[ctx.round_robin % len(enabled)]


SELECTION_HANDLERS: dict[SelectionStrategy, SelectionHandler] = {
    SelectionStrategy.DEFAULT: select_default,
    SelectionStrategy.FASTEST: select_fastest,
    SelectionStrategy.FALLBACK: select_fallback,
    SelectionStrategy.LOAD_BALANCE: select_load_balance,
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_provider_id(provider_type: ProviderType | str) -> str:
    """Generate a provider id such as ``gemini_1a2b3c4d``."""
    type_value = provider_type.value if isinstance(provider_type, ProviderType) else provider_type
    return f"{type_value}_{uuid.uuid4().hex[:8]}"


# ============================================================================
# Router
# ============================================================================


class ProviderRouter:
    """
    Routes generation requests across configured providers.

    Handles:
    - Provider registry lifecycle
    - Strategy-based selection
    - One-shot fallback
    - Usage statistics and persistence
    """

    def __init__(
        self,
        config: RouterConfig | None = None,
        *,
        store: ConfigStore | None = None,
        stats: UsageStatsTracker | None = None,
        adapter_factory: Callable[..., ProviderAdapter] = create_adapter,
        adapter_options: dict[ProviderType, dict[str, Any]] | None = None,
        clock: Callable[[], float] = time.perf_counter,
    ) -> None:
        self._store = store
        self._stats = stats if stats is not None else UsageStatsTracker()
        self._adapter_factory = adapter_factory
        self._adapter_options = adapter_options or {}
        self._clock = clock
        self._metrics = get_metrics()

        self._config = RouterConfig()
        self._adapters: dict[str, ProviderAdapter] = {}
        self._round_robin = 0

        self.reconfigure(config or RouterConfig())

    # =========================================================================
    # Configuration
    # =========================================================================

    @property
    def config(self) -> RouterConfig:
        """A copy of the current configuration."""
        return self._config.model_copy(deep=True)

    @property
    def store(self) -> ConfigStore | None:
        return self._store

    def reconfigure(self, config: RouterConfig) -> None:
        """
        Atomically replace the whole configuration.

        Adapters are rebuilt from the new provider list; usage statistics
        are kept.

        Raises:
            ProviderConfigError: If the config contains duplicate ids
        """
        config = config.model_copy(deep=True)

        adapters: dict[str, ProviderAdapter] = {}
        for provider in config.providers:
            if provider.id in adapters:
                raise ProviderConfigError(
                    f"Duplicate provider id: {provider.id}",
                    provider_id=provider.id,
                )
            adapters[provider.id] = self._build_adapter(provider, config.timeout_ms)

        self._config = config
        self._adapters = adapters
        self._round_robin = 0
        logger.info(
            f"Router configured with {len(adapters)} providers, "
            f"default={config.default_provider_id}, fallback={config.fallback_enabled}"
        )

    def _build_adapter(
        self,
        provider: ProviderConfig,
        timeout_ms: int | None = None,
    ) -> ProviderAdapter:
        timeout_ms = timeout_ms if timeout_ms is not None else self._config.timeout_ms
        options = self._adapter_options.get(provider.type, {})
        return self._adapter_factory(provider, timeout=timeout_ms / 1000, **options)

    async def save_config(self) -> None:
        """Write the current config through to the store, if any."""
        if self._store is not None:
            await self._store.save_config(self._config)

    async def _save_stats(self) -> None:
        if self._store is not None:
            await self._store.save_usage_stats(self._stats)

    # =========================================================================
    # Registry
    # =========================================================================

    def get_providers(self) -> list[ProviderConfig]:
        return [provider.model_copy(deep=True) for provider in self._config.providers]

    def get_provider(self, provider_id: str) -> ProviderConfig | None:
        provider = self._config.get_provider(provider_id)
        return provider.model_copy(deep=True) if provider else None

    def get_adapter(self, provider_id: str) -> ProviderAdapter | None:
        return self._adapters.get(provider_id)

    async def add_provider(self, config: ProviderConfig) -> None:
        """
        Validate and register a new provider.

        Args:
            config: Provider configuration with a unique id

        Raises:
            ProviderConfigError: If the id is already registered
            ProviderValidationError: If the validation call fails
        """
        if config.id in self._adapters:
            raise ProviderConfigError(
                f"Provider already exists: {config.id}",
                provider_id=config.id,
            )

        config = config.model_copy(deep=True)
        adapter = self._build_adapter(config)

        result = await self.test_provider(config.id, adapter=adapter)
        if result.status == ProviderStatus.ERROR:
            logger.error(f"Adding provider {config.id} failed: {result.error}")
            raise ProviderValidationError(config.id, result)

        # Registry may have changed while the validation call was in flight
        if config.id in self._adapters:
            raise ProviderConfigError(
                f"Provider already exists: {config.id}",
                provider_id=config.id,
            )

        self._adapters[config.id] = adapter
        self._config.providers.append(config)
        await self.save_config()
        logger.info(f"Provider {config.id} added")

    async def update_provider(self, config: ProviderConfig, *, validate: bool = True) -> None:
        """
        Validate and replace an existing provider in place.

        Args:
            config: New configuration for a registered id
            validate: Run the validation call before replacing

        Raises:
            ProviderNotFoundError: If the id is not registered
            ProviderValidationError: If the validation call fails
        """
        existing = self._config.get_provider(config.id)
        if existing is None:
            raise ProviderNotFoundError(config.id)

        config = config.model_copy(
            deep=True,
            update={"created_at": existing.created_at, "updated_at": _utcnow()},
        )
        adapter = self._build_adapter(config)

        if validate:
            result = await self.test_provider(config.id, adapter=adapter)
            if result.status == ProviderStatus.ERROR:
                logger.error(f"Updating provider {config.id} failed: {result.error}")
                raise ProviderValidationError(config.id, result)

        index = next(
            (i for i, p in enumerate(self._config.providers) if p.id == config.id),
            None,
        )
        if index is None:
            raise ProviderNotFoundError(config.id)

        previous = self._adapters.get(config.id)
        if previous is not None:
            adapter.set_enabled(previous.runtime_enabled)

        self._config.providers[index] = config
        self._adapters[config.id] = adapter
        await self.save_config()
        logger.info(f"Provider {config.id} updated")

    async def remove_provider(self, provider_id: str) -> None:
        """
        Remove a provider, its config entry and its statistics.

        Raises:
            ProviderNotFoundError: If the id is not registered
        """
        if provider_id not in self._adapters:
            raise ProviderNotFoundError(provider_id)

        del self._adapters[provider_id]
        self._config.providers = [p for p in self._config.providers if p.id != provider_id]
        if self._config.default_provider_id == provider_id:
            self._config.default_provider_id = None
        self._stats.remove(provider_id)

        await self.save_config()
        await self._save_stats()
        logger.info(f"Provider {provider_id} removed")

    async def set_default_provider(self, provider_id: str) -> None:
        if provider_id not in self._adapters:
            raise ProviderNotFoundError(provider_id)
        self._config.default_provider_id = provider_id
        await self.save_config()

    def set_provider_enabled(self, provider_id: str, enabled: bool) -> None:
        """Switch a provider on or off for this process only."""
        adapter = self._adapters.get(provider_id)
        if adapter is None:
            raise ProviderNotFoundError(provider_id)
        adapter.set_enabled(enabled)
        logger.info(f"Provider {provider_id} {'enabled' if enabled else 'disabled'}")

    # =========================================================================
    # Testing
    # =========================================================================

    async def test_provider(
        self,
        provider_id: str,
        *,
        adapter: ProviderAdapter | None = None,
    ) -> ProviderTestResult:
        """
        Send a minimal prompt and measure the round trip.

        Args:
            provider_id: Registered provider id
            adapter: Unregistered adapter to test instead of the registered one

        Returns:
            Test result; never raises
        """
        adapter = adapter or self._adapters.get(provider_id)
        if adapter is None:
            return ProviderTestResult(
                provider_id=provider_id,
                status=ProviderStatus.ERROR,
                error="Provider not found",
            )

        request = GenerationRequest(
            prompt=TEST_PROMPT,
            max_tokens=TEST_MAX_TOKENS,
            response_format=ResponseFormat.TEXT,
        )

        start = self._clock()
        result = await self._call_adapter(adapter, request)
        elapsed_ms = (self._clock() - start) * 1000

        if result.success:
            logger.debug(f"Provider {provider_id} test passed in {elapsed_ms:.0f}ms")
            return ProviderTestResult(
                provider_id=provider_id,
                status=ProviderStatus.ACTIVE,
                response_time_ms=elapsed_ms,
            )

        logger.warning(f"Provider {provider_id} test failed: {result.error}")
        return ProviderTestResult(
            provider_id=provider_id,
            status=ProviderStatus.ERROR,
            response_time_ms=elapsed_ms,
            error=result.error,
        )

    async def test_all_providers(self) -> list[ProviderTestResult]:
        """Test every registered provider, one after another."""
        results = []
        for provider_id in list(self._adapters):
            results.append(await self.test_provider(provider_id))
        return results

    # =========================================================================
    # Selection & Generation
    # =========================================================================

    def select_provider(
        self,
        strategy: SelectionStrategy = SelectionStrategy.DEFAULT,
        *,
        exclude: set[str] | None = None,
    ) -> ProviderAdapter | None:
        """
        Select an enabled provider under a strategy.

        Args:
            strategy: Selection strategy
            exclude: Provider ids that must not be selected

        Returns:
            Selected adapter, or None if no provider is eligible
        """
        exclude = exclude or set()
        enabled = [
            adapter
            for adapter in self._adapters.values()
            if adapter.is_enabled() and adapter.id not in exclude
        ]
        if not enabled:
            return None

        ctx = SelectionContext(
            default_provider_id=self._config.default_provider_id,
            provider_order=[p.id for p in self._config.providers],
            stats=self._stats,
        )
        if strategy == SelectionStrategy.LOAD_BALANCE:
            ctx.round_robin = self._round_robin
            self._round_robin += 1

        return SELECTION_HANDLERS[strategy](enabled, ctx)

    async def generate_content(
        self,
        request: GenerationRequest,
        strategy: SelectionStrategy = SelectionStrategy.DEFAULT,
    ) -> GenerationResponse:
        """
        Generate content through a selected provider.

        Args:
            request: Generation request
            strategy: Selection strategy for the primary attempt

        Returns:
            Response from the first provider that succeeded

        Raises:
            NoProviderAvailableError: If no provider is enabled
            ProviderError: If the primary (and fallback) attempt failed
        """
        adapter = self.select_provider(strategy)
        if adapter is None:
            raise NoProviderAvailableError()

        try:
            return await self._attempt(adapter, request)
        except ProviderError:
            if not self._config.fallback_enabled or strategy == SelectionStrategy.FALLBACK:
                raise

            fallback = self.select_provider(SelectionStrategy.FALLBACK, exclude={adapter.id})
            if fallback is None:
                raise

            logger.warning(f"Provider {adapter.id} failed, falling back to {fallback.id}")
            self._metrics.fallback(adapter.id, fallback.id)

        return await self._attempt(fallback, request)

    async def _attempt(
        self,
        adapter: ProviderAdapter,
        request: GenerationRequest,
    ) -> GenerationResponse:
        start = self._clock()
        result = await self._call_adapter(adapter, request)
        elapsed_ms = (self._clock() - start) * 1000

        tokens = 0
        if result.success and result.usage and result.usage.total_tokens:
            tokens = result.usage.total_tokens

        self._stats.record(adapter.id, result.success, elapsed_ms, tokens)
        self._metrics.attempt(adapter.id, result.success, elapsed_ms / 1000, tokens)
        await self._save_stats()

        if not result.success:
            error = ProviderError.from_message(
                result.error or "Unknown error",
                provider=result.provider,
                model=result.model,
            )
            self._metrics.provider_error(adapter.id, error.kind.value)
            logger.warning(f"Provider {adapter.id} failed ({error.kind.value}): {error.message}")
            raise error

        return GenerationResponse(
            content=result.data,
            usage=result.usage,
            metadata=ResponseMetadata(
                model=result.model,
                provider=result.provider,
                response_time_ms=elapsed_ms,
                finish_reason=result.finish_reason or "stop",
            ),
        )

    async def _call_adapter(
        self,
        adapter: ProviderAdapter,
        request: GenerationRequest,
    ) -> GenerationResult:
        try:
            return await adapter.generate_content(request)
        except Exception as e:
            logger.error(f"Adapter {adapter.id} raised unexpectedly: {e}")
            return GenerationResult(
                success=False,
                provider=adapter.name,
                model=adapter.get_effective_model(request),
                error=str(e) or e.__class__.__name__,
            )

    # =========================================================================
    # Statistics
    # =========================================================================

    def get_usage_stats(self) -> list[UsageStats]:
        return self._stats.all()

    async def clear_usage_stats(self) -> None:
        self._stats.clear()
        if self._store is not None:
            await self._store.clear_usage_stats()

    # =========================================================================
    # Models
    # =========================================================================

    async def list_models(self, provider_id: str) -> list[ModelInfo]:
        adapter = self._adapters.get(provider_id)
        if adapter is None:
            raise ProviderNotFoundError(provider_id)
        return await adapter.list_models()

    @staticmethod
    def get_provider_info(provider_type: ProviderType) -> ProviderInfo:
        return ADAPTER_TYPES[provider_type].get_provider_info()

    # =========================================================================
    # Export / Import
    # =========================================================================

    def export_config(self) -> str:
        """Serialize the provider list without credentials."""
        document = {
            "version": EXPORT_VERSION,
            "exportedAt": _utcnow().isoformat(),
            "configs": [
                provider.to_document(include_credential=False)
                for provider in self._config.providers
            ],
            "metadata": {
                "appVersion": APP_VERSION,
                "description": "Provider configuration export",
            },
        }
        return json.dumps(document, indent=2, ensure_ascii=False)

    async def import_config(
        self,
        document: str | dict[str, Any],
        api_keys: dict[str, str] | None = None,
    ) -> list[ProviderConfig]:
        """
        Re-add exported providers through the validated add path.

        Args:
            document: Export document as a JSON string or dict
            api_keys: Credentials keyed by provider id or provider type

        Returns:
            Configs that were added

        Raises:
            ProviderConfigError: If the document is malformed
            ProviderValidationError: If an entry fails validation
        """
        if isinstance(document, str):
            try:
                data = json.loads(document)
            except json.JSONDecodeError as e:
                raise ProviderConfigError(f"Invalid configuration document: {e}", cause=e) from e
        else:
            data = document

        configs = data.get("configs") if isinstance(data, dict) else None
        if not isinstance(configs, list):
            raise ProviderConfigError("Invalid configuration format: missing configs list")

        api_keys = api_keys or {}
        imported: list[ProviderConfig] = []

        for entry in configs:
            if not isinstance(entry, dict):
                raise ProviderConfigError("Invalid configuration format: entry is not an object")

            provider_id = entry.get("id")
            provider_type = entry.get("type")
            api_key = (
                entry.get("apiKey")
                or api_keys.get(provider_id)
                or api_keys.get(provider_type)
            )
            if not api_key:
                logger.warning(f"Skipping {entry.get('name', provider_id)}: missing API key")
                continue

            if not provider_id or provider_id in self._adapters:
                provider_id = new_provider_id(provider_type or "provider")

            now = _utcnow()
            try:
                config = ProviderConfig.model_validate(
                    {
                        **entry,
                        "id": provider_id,
                        "apiKey": api_key,
                        "createdAt": now,
                        "updatedAt": now,
                    }
                )
            except ValidationError as e:
                raise ProviderConfigError(
                    f"Invalid provider entry: {e}",
                    provider_id=provider_id,
                    cause=e,
                ) from e

            await self.add_provider(config)
            imported.append(config)

        logger.info(f"Imported {len(imported)} of {len(configs)} providers")
        return imported

    def __repr__(self) -> str:
        return (
            f"<ProviderRouter providers={list(self._adapters)} "
            f"default={self._config.default_provider_id!r}>"
        )
