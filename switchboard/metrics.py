"""
Switchboard - Prometheus Metrics

Provides Prometheus instrumentation for provider routing:
- Generation attempts by provider and outcome
- Attempt latency
- Token usage
- Fallback hops

Print the current values with:
    switchboard metrics
"""

from __future__ import annotations

import logging

from prometheus_client import (
    CollectorRegistry,
    Counter,
    Histogram,
    generate_latest,
)

logger = logging.getLogger("switchboard.metrics")


# ============================================================================
# Registry
# ============================================================================

# Custom registry to avoid conflicts with the process default
REGISTRY = CollectorRegistry()

PROVIDER_REQUESTS = Counter(
    "switchboard_provider_requests_total",
    "Total number of generation attempts",
    ["provider", "status"],
    registry=REGISTRY,
)

PROVIDER_LATENCY = Histogram(
    "switchboard_provider_latency_seconds",
    "Generation attempt latency in seconds",
    ["provider"],
    buckets=(0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0),
    registry=REGISTRY,
)

PROVIDER_TOKENS = Counter(
    "switchboard_provider_tokens_total",
    "Total tokens reported by providers",
    ["provider"],
    registry=REGISTRY,
)

PROVIDER_ERRORS = Counter(
    "switchboard_provider_errors_total",
    "Total classified provider failures",
    ["provider", "kind"],
    registry=REGISTRY,
)

FALLBACKS = Counter(
    "switchboard_fallbacks_total",
    "Total fallback hops after a failed primary attempt",
    ["from_provider", "to_provider"],
    registry=REGISTRY,
)


# ============================================================================
# Instrumentation Helpers
# ============================================================================


class MetricsCollector:
    """
    Centralized metrics collector for the router.

    Usage:
        metrics = get_metrics()
        metrics.attempt("gemini-1", success=True, latency_seconds=0.4, tokens=120)
    """

    def attempt(
        self,
        provider: str,
        success: bool,
        latency_seconds: float,
        tokens: int = 0,
    ) -> None:
        """Record one generation attempt."""
        status = "success" if success else "failure"
        PROVIDER_REQUESTS.labels(provider=provider, status=status).inc()
        PROVIDER_LATENCY.labels(provider=provider).observe(latency_seconds)
        if tokens > 0:
            PROVIDER_TOKENS.labels(provider=provider).inc(tokens)

    def provider_error(self, provider: str, kind: str) -> None:
        """Record a classified failure."""
        PROVIDER_ERRORS.labels(provider=provider, kind=kind).inc()

    def fallback(self, from_provider: str, to_provider: str) -> None:
        """Record a fallback hop."""
        FALLBACKS.labels(from_provider=from_provider, to_provider=to_provider).inc()


_metrics: MetricsCollector | None = None


def get_metrics() -> MetricsCollector:
    """Get global metrics collector."""
    global _metrics
    if _metrics is None:
        _metrics = MetricsCollector()
    return _metrics


def get_metrics_text() -> str:
    """Current metrics in the Prometheus text exposition format."""
    return generate_latest(REGISTRY).decode("utf-8")

