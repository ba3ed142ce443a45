"""
Provider Adapters - Backend-agnostic generation layer.

Provides a unified interface for multiple generative backends:
- Google Gemini
- OpenRouter

and a router that selects between them per request.
"""

from adapters.base import (
    GenerationRequest,
    GenerationResult,
    ProviderAdapter,
    ProviderConfig,
    ProviderType,
    ResponseFormat,
    RouterConfig,
    create_adapter,
)
from adapters.router import (
    GenerationResponse,
    ProviderRouter,
    ProviderTestResult,
    SelectionStrategy,
)

__all__ = [
    "GenerationRequest",
    "GenerationResult",
    "GenerationResponse",
    "ProviderAdapter",
    "ProviderConfig",
    "ProviderRouter",
    "ProviderTestResult",
    "ProviderType",
    "ResponseFormat",
    "RouterConfig",
    "SelectionStrategy",
    "create_adapter",
]
