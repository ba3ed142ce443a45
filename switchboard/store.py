"""
Switchboard - Durable Configuration Store

Persists the router configuration and usage statistics to key-value storage:
- MemoryBackend: in-process dict, for tests and ephemeral runs
- FileBackend: one JSON file per key with atomic replace
- RedisBackend: redis.asyncio with a key prefix

Save paths never raise; a failed write is logged and the in-memory state
stays authoritative. Load paths return empty results on missing or corrupt
data.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, TYPE_CHECKING

import redis.asyncio as redis
from pydantic import ValidationError

from switchboard.stats import UsageStatsTracker

if TYPE_CHECKING:
    from adapters.base import RouterConfig

logger = logging.getLogger("switchboard.store")

CONFIG_KEY = "provider_manager_config"
STATS_KEY = "provider_usage_stats"


# ============================================================================
# Key-Value Backends
# ============================================================================


class KeyValueBackend(ABC):
    """Async key-value storage for JSON-serializable values."""

    @abstractmethod
    async def get(self, key: str) -> Any:
        """Return the stored value, or None if missing."""
        pass

    @abstractmethod
    async def set(self, key: str, value: Any) -> None:
        """Overwrite the value stored under key."""
        pass

    @abstractmethod
    async def delete(self, key: str) -> bool:
        """Delete a key. Returns whether it existed."""
        pass

    async def close(self) -> None:
        """Release any held connections."""
        return None


class MemoryBackend(KeyValueBackend):
    """Process-local storage. Values are copied through JSON on write."""

    def __init__(self) -> None:
        self._data: dict[str, str] = {}

    async def get(self, key: str) -> Any:
        raw = self._data.get(key)
        return json.loads(raw) if raw is not None else None

    async def set(self, key: str, value: Any) -> None:
        self._data[key] = json.dumps(value)

    async def delete(self, key: str) -> bool:
        return self._data.pop(key, None) is not None


class FileBackend(KeyValueBackend):
    """Stores each key as ``<directory>/<key>.json``."""

    def __init__(self, directory: str | Path) -> None:
        self.directory = Path(directory).expanduser()

    def _path(self, key: str) -> Path:
        return self.directory / f"{key}.json"

    async def get(self, key: str) -> Any:
        path = self._path(key)
        if not path.exists():
            return None
        return json.loads(await asyncio.to_thread(path.read_text, "utf-8"))

    async def set(self, key: str, value: Any) -> None:
        serialized = json.dumps(value, indent=2)
        await asyncio.to_thread(self._write_atomic, self._path(key), serialized)

    async def delete(self, key: str) -> bool:
        path = self._path(key)
        if not path.exists():
            return False
        path.unlink()
        return True

    def _write_atomic(self, path: Path, content: str) -> None:
        self.directory.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=self.directory, prefix=f".{path.stem}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(content)
            os.replace(tmp_name, path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise


class RedisBackend(KeyValueBackend):
    """Redis-backed storage with a namespace prefix."""

    def __init__(
        self,
        url: str = "redis://localhost:6379",
        *,
        prefix: str = "switchboard:",
        connect_timeout: float = 5.0,
    ) -> None:
        self.url = url
        self.prefix = prefix
        self._redis = redis.from_url(url, socket_connect_timeout=connect_timeout)

    async def get(self, key: str) -> Any:
        value = await self._redis.get(f"{self.prefix}{key}")
        if value is None:
            return None
        if isinstance(value, bytes):
            value = value.decode("utf-8")
        return json.loads(value)

    async def set(self, key: str, value: Any) -> None:
        await self._redis.set(f"{self.prefix}{key}", json.dumps(value))

    async def delete(self, key: str) -> bool:
        result = await self._redis.delete(f"{self.prefix}{key}")
        return result > 0

    async def close(self) -> None:
        await self._redis.aclose()


def open_backend(url: str) -> KeyValueBackend:
    """
    Create a backend from a store URL.

    Args:
        url: ``memory://``, ``redis://...``, ``file://<dir>`` or a plain
            directory path

    Returns:
        Configured backend
    """
    if url.startswith("memory://"):
        return MemoryBackend()
    if url.startswith(("redis://", "rediss://", "unix://")):
        return RedisBackend(url)
    if url.startswith("file://"):
        return FileBackend(url[len("file://") :])
    return FileBackend(url)


# ============================================================================
# Config Store
# ============================================================================


class ConfigStore:
    """Persistence for RouterConfig and the usage statistics map."""

    def __init__(self, backend: KeyValueBackend) -> None:
        self.backend = backend

    async def save_config(self, config: RouterConfig) -> bool:
        """Persist the whole router config. Returns False if the write failed."""
        try:
            await self.backend.set(CONFIG_KEY, config.to_document())
        except Exception as e:
            logger.error(f"Failed to save provider config: {e}")
            return False
        logger.debug(f"Saved config with {len(config.providers)} providers")
        return True

    async def load_config(self) -> RouterConfig | None:
        """Load the stored router config, None when missing or unreadable."""
        from adapters.base import RouterConfig

        try:
            data = await self.backend.get(CONFIG_KEY)
        except Exception as e:
            logger.error(f"Failed to read provider config: {e}")
            return None

        if data is None:
            return None

        try:
            return RouterConfig.model_validate(data)
        except ValidationError as e:
            logger.error(f"Stored provider config is corrupt, ignoring: {e}")
            return None

    async def save_usage_stats(self, stats: UsageStatsTracker) -> bool:
        """Persist the stats map. Returns False if the write failed."""
        try:
            await self.backend.set(STATS_KEY, stats.to_dict())
        except Exception as e:
            logger.error(f"Failed to save usage stats: {e}")
            return False
        return True

    async def load_usage_stats(self) -> UsageStatsTracker:
        """Load the stored stats map, empty when missing or unreadable."""
        try:
            data = await self.backend.get(STATS_KEY)
        except Exception as e:
            logger.error(f"Failed to read usage stats: {e}")
            return UsageStatsTracker()

        if not data:
            return UsageStatsTracker()

        try:
            return UsageStatsTracker.from_dict(data)
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            logger.error(f"Stored usage stats are corrupt, ignoring: {e}")
            return UsageStatsTracker()

    async def clear_usage_stats(self) -> None:
        try:
            await self.backend.delete(STATS_KEY)
        except Exception as e:
            logger.error(f"Failed to clear usage stats: {e}")

    async def clear_all(self) -> None:
        """Remove both the config and the stats records."""
        for key in (CONFIG_KEY, STATS_KEY):
            try:
                await self.backend.delete(key)
            except Exception as e:
                logger.error(f"Failed to delete {key}: {e}")

    async def close(self) -> None:
        await self.backend.close()
