"""
Switchboard - Usage Statistics

Rolling per-provider counters used for monitoring and for the
fastest-provider selection strategy. Averages are maintained incrementally;
raw latency history is never stored.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

logger = logging.getLogger("switchboard.stats")


@dataclass
class UsageStats:
    """Usage counters for a single provider."""

    provider_id: str
    total_requests: int = 0
    successful_requests: int = 0
    failed_requests: int = 0
    average_response_time_ms: float = 0.0
    total_tokens_used: int = 0
    last_used_at: datetime | None = None

    @property
    def success_rate(self) -> float:
        """Fraction of successful requests (0.0 when unused)."""
        if self.total_requests == 0:
            return 0.0
        return self.successful_requests / self.total_requests

    def record(
        self,
        success: bool,
        response_time_ms: float,
        tokens: int = 0,
        now: datetime | None = None,
    ) -> None:
        """
        Fold one attempt into the counters.

        The average is updated as (old * (n - 1) + latency) / n.
        """
        self.total_requests += 1
        if success:
            self.successful_requests += 1
        else:
            self.failed_requests += 1

        n = self.total_requests
        self.average_response_time_ms = (
            self.average_response_time_ms * (n - 1) + response_time_ms
        ) / n

        self.total_tokens_used += tokens
        self.last_used_at = now or datetime.now(timezone.utc)

    def to_dict(self) -> dict[str, Any]:
        """Convert to the persisted camelCase document."""
        return {
            "providerId": self.provider_id,
            "totalRequests": self.total_requests,
            "successfulRequests": self.successful_requests,
            "failedRequests": self.failed_requests,
            "averageResponseTime": self.average_response_time_ms,
            "totalTokensUsed": self.total_tokens_used,
            "lastUsed": self.last_used_at.isoformat() if self.last_used_at else None,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> UsageStats:
        """Create from a persisted document."""
        last_used = data.get("lastUsed")
        return cls(
            provider_id=data["providerId"],
            total_requests=int(data.get("totalRequests", 0)),
            successful_requests=int(data.get("successfulRequests", 0)),
            failed_requests=int(data.get("failedRequests", 0)),
            average_response_time_ms=float(data.get("averageResponseTime", 0.0)),
            total_tokens_used=int(data.get("totalTokensUsed", 0)),
            last_used_at=_parse_timestamp(last_used) if last_used else None,
        )


def _parse_timestamp(value: str) -> datetime:
    # fromisoformat only accepts a "Z" suffix from 3.11 on
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    return datetime.fromisoformat(value)


class UsageStatsTracker:
    """
    Per-provider usage statistics.

    Entries are created lazily on the first recorded attempt. Each update is
    a synchronous read-modify-write, so it is atomic under a single asyncio
    event loop. Threaded callers need a lock per provider id.
    """

    def __init__(self, stats: dict[str, UsageStats] | None = None) -> None:
        self._stats: dict[str, UsageStats] = dict(stats or {})

    def record(
        self,
        provider_id: str,
        success: bool,
        response_time_ms: float,
        tokens: int = 0,
    ) -> UsageStats:
        """Record one attempt for a provider and return its updated stats."""
        stats = self._stats.get(provider_id)
        if stats is None:
            stats = UsageStats(provider_id=provider_id)
            self._stats[provider_id] = stats

        stats.record(success, response_time_ms, tokens)
        logger.debug(
            f"Stats for {provider_id}: total={stats.total_requests} "
            f"avg={stats.average_response_time_ms:.1f}ms"
        )
        return stats

    def get(self, provider_id: str) -> UsageStats | None:
        return self._stats.get(provider_id)

    def average_response_time(self, provider_id: str) -> float:
        """Recorded average latency, infinity when the provider has no stats."""
        stats = self._stats.get(provider_id)
        if stats is None:
            return float("inf")
        return stats.average_response_time_ms

    def remove(self, provider_id: str) -> None:
        self._stats.pop(provider_id, None)

    def clear(self) -> None:
        self._stats.clear()

    def all(self) -> list[UsageStats]:
        return list(self._stats.values())

    def to_dict(self) -> dict[str, dict[str, Any]]:
        """Serialize the full stats map, keyed by provider id."""
        return {pid: stats.to_dict() for pid, stats in self._stats.items()}

    @classmethod
    def from_dict(cls, data: dict[str, dict[str, Any]]) -> UsageStatsTracker:
        return cls({pid: UsageStats.from_dict(entry) for pid, entry in data.items()})

    def __len__(self) -> int:
        return len(self._stats)

    def __contains__(self, provider_id: object) -> bool:
        return provider_id in self._stats
