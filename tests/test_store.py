"""
Tests for config/stats persistence.

Covers the key-value backends and ConfigStore's tolerant load/save paths.
"""

from __future__ import annotations

import json
from typing import Any

import pytest

from adapters.base import ProviderConfig, ProviderType
from switchboard.config import RouterConfig
from switchboard.stats import UsageStatsTracker
from switchboard.store import (
    CONFIG_KEY,
    STATS_KEY,
    ConfigStore,
    FileBackend,
    KeyValueBackend,
    MemoryBackend,
    RedisBackend,
    open_backend,
)


class BrokenBackend(KeyValueBackend):
    """Backend whose every operation fails."""

    async def get(self, key: str) -> Any:
        raise OSError("disk on fire")

    async def set(self, key: str, value: Any) -> None:
        raise OSError("disk on fire")

    async def delete(self, key: str) -> bool:
        raise OSError("disk on fire")


@pytest.fixture
def router_config():
    """Create a config with one provider."""
    return RouterConfig(
        providers=[
            ProviderConfig(
                id="gemini-1",
                name="Gemini",
                type=ProviderType.GEMINI,
                api_key="secret",
                model="gemini-2.5-flash",
                settings={"temperature": 0.2},
            )
        ],
        default_provider_id="gemini-1",
        timeout_ms=15000,
    )


class TestBackends:
    """Tests for key-value backends."""

    @pytest.mark.asyncio
    async def test_memory_backend(self):
        """Test set/get/delete on the memory backend."""
        backend = MemoryBackend()
        await backend.set("k", {"a": [1, 2]})

        assert await backend.get("k") == {"a": [1, 2]}
        assert await backend.delete("k") is True
        assert await backend.delete("k") is False
        assert await backend.get("k") is None

    @pytest.mark.asyncio
    async def test_file_backend(self, tmp_path):
        """Test the file backend writes one JSON file per key."""
        backend = FileBackend(tmp_path / "store")
        await backend.set("k", {"a": 1})

        path = tmp_path / "store" / "k.json"
        assert json.loads(path.read_text()) == {"a": 1}
        assert [p.name for p in (tmp_path / "store").iterdir()] == ["k.json"]

        await backend.set("k", {"a": 2})
        assert await backend.get("k") == {"a": 2}

        assert await backend.delete("k") is True
        assert await backend.get("k") is None

    def test_open_backend(self, tmp_path):
        """Test store URL dispatch."""
        assert isinstance(open_backend("memory://"), MemoryBackend)

        file_backend = open_backend(f"file://{tmp_path}")
        assert isinstance(file_backend, FileBackend)
        assert file_backend.directory == tmp_path

        assert isinstance(open_backend(str(tmp_path)), FileBackend)

        redis_backend = open_backend("redis://localhost:6379/0")
        assert isinstance(redis_backend, RedisBackend)
        assert redis_backend.prefix == "switchboard:"


class TestConfigStore:
    """Tests for ConfigStore."""

    @pytest.mark.asyncio
    async def test_config_roundtrip(self, router_config):
        """Test the config survives a save/load cycle."""
        store = ConfigStore(MemoryBackend())

        assert await store.save_config(router_config) is True
        loaded = await store.load_config()

        assert loaded == router_config

    @pytest.mark.asyncio
    async def test_config_document_shape(self, router_config):
        """Test the stored document uses camelCase keys."""
        backend = MemoryBackend()
        await ConfigStore(backend).save_config(router_config)

        document = await backend.get(CONFIG_KEY)
        assert document["defaultProviderId"] == "gemini-1"
        assert document["fallbackEnabled"] is True
        assert document["timeoutMs"] == 15000
        assert document["retryAttempts"] == 3
        assert document["providers"][0]["apiKey"] == "secret"
        assert "createdAt" in document["providers"][0]

    @pytest.mark.asyncio
    async def test_missing_config(self):
        """Test an empty store yields no config."""
        assert await ConfigStore(MemoryBackend()).load_config() is None

    @pytest.mark.asyncio
    async def test_corrupt_config(self):
        """Test an invalid document is ignored."""
        backend = MemoryBackend()
        await backend.set(CONFIG_KEY, {"providers": "not-a-list"})

        assert await ConfigStore(backend).load_config() is None

    @pytest.mark.asyncio
    async def test_corrupt_file(self, tmp_path):
        """Test unparseable JSON on disk is ignored."""
        (tmp_path / f"{CONFIG_KEY}.json").write_text("{not json")
        (tmp_path / f"{STATS_KEY}.json").write_text("[[[")
        store = ConfigStore(FileBackend(tmp_path))

        assert await store.load_config() is None
        assert len(await store.load_usage_stats()) == 0

    @pytest.mark.asyncio
    async def test_stats_roundtrip(self):
        """Test stats survive a save/load cycle."""
        store = ConfigStore(MemoryBackend())
        tracker = UsageStatsTracker()
        tracker.record("a", True, 100, tokens=7)
        tracker.record("a", False, 50)

        await store.save_usage_stats(tracker)
        loaded = await store.load_usage_stats()

        assert loaded.get("a") == tracker.get("a")

    @pytest.mark.asyncio
    async def test_stats_with_utc_suffix(self):
        """Test "Z"-suffixed timestamps from existing stores are accepted."""
        backend = MemoryBackend()
        await backend.set(
            STATS_KEY,
            {
                "a": {
                    "providerId": "a",
                    "totalRequests": 2,
                    "successfulRequests": 1,
                    "failedRequests": 1,
                    "averageResponseTime": 150.5,
                    "totalTokensUsed": 40,
                    "lastUsed": "2025-03-04T05:06:07.890Z",
                }
            },
        )

        loaded = await ConfigStore(backend).load_usage_stats()

        stats = loaded.get("a")
        assert stats is not None
        assert stats.total_requests == 2
        assert stats.last_used_at.tzinfo is not None
        assert stats.last_used_at.utcoffset().total_seconds() == 0

    @pytest.mark.asyncio
    async def test_corrupt_stats(self):
        """Test malformed stats entries yield an empty tracker."""
        backend = MemoryBackend()
        await backend.set(STATS_KEY, {"a": {"totalRequests": 3}})

        loaded = await ConfigStore(backend).load_usage_stats()
        assert len(loaded) == 0

    @pytest.mark.asyncio
    async def test_clear(self, router_config):
        """Test clearing stats and everything."""
        backend = MemoryBackend()
        store = ConfigStore(backend)
        tracker = UsageStatsTracker()
        tracker.record("a", True, 1)
        await store.save_config(router_config)
        await store.save_usage_stats(tracker)

        await store.clear_usage_stats()
        assert await backend.get(STATS_KEY) is None
        assert await backend.get(CONFIG_KEY) is not None

        await store.clear_all()
        assert await backend.get(CONFIG_KEY) is None

    @pytest.mark.asyncio
    async def test_failures_do_not_raise(self, router_config):
        """Test storage failures are logged, never raised."""
        store = ConfigStore(BrokenBackend())

        assert await store.save_config(router_config) is False
        assert await store.save_usage_stats(UsageStatsTracker()) is False
        assert await store.load_config() is None
        assert len(await store.load_usage_stats()) == 0
        await store.clear_usage_stats()
        await store.clear_all()
