"""
Switchboard - Generative provider routing

Routes generation requests across configured backends with strategy-based
selection, one-shot fallback, usage statistics and durable configuration.

Sub-modules:
- switchboard.errors: Error taxonomy and classifier
- switchboard.stats: Usage statistics
- switchboard.store: Config/stats persistence
- switchboard.config: Settings and RouterConfig
- switchboard.service: Router bootstrap
- switchboard.cli: Operator CLI
"""

from switchboard.errors import ErrorKind, ProviderError, SwitchboardError, classify_error
from switchboard.stats import UsageStats, UsageStatsTracker

__version__ = "1.0.0"

__all__ = [
    "ErrorKind",
    "ProviderError",
    "SwitchboardError",
    "UsageStats",
    "UsageStatsTracker",
    "classify_error",
    "__version__",
]
