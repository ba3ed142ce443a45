"""
Switchboard - Error Hierarchy

Provides the closed failure taxonomy for provider calls and the structured
exceptions raised by the routing layer:
- ErrorKind: classified failure categories surfaced to callers
- classify_error(): keyword classifier for raw backend messages
- ProviderError: the single structured generation failure
- Registry errors raised by add/update/remove operations
"""

from __future__ import annotations

from enum import Enum
from typing import Any, TYPE_CHECKING

if TYPE_CHECKING:
    from adapters.router import ProviderTestResult


class ErrorKind(str, Enum):
    """Classified provider failure categories."""

    INVALID_CREDENTIAL = "invalid_credential"
    QUOTA_EXCEEDED = "quota_exceeded"
    RATE_LIMITED = "rate_limited"
    MODEL_UNAVAILABLE = "model_unavailable"
    NETWORK_ERROR = "network_error"
    PARSING_ERROR = "parsing_error"
    UNKNOWN_ERROR = "unknown_error"


# Order matters: categories overlap, the first match wins.
_CLASSIFICATION_RULES: list[tuple[tuple[str, ...], ErrorKind]] = [
    (("api key", "invalid"), ErrorKind.INVALID_CREDENTIAL),
    (("quota", "exhausted"), ErrorKind.QUOTA_EXCEEDED),
    (("rate limit",), ErrorKind.RATE_LIMITED),
    (("model", "not found"), ErrorKind.MODEL_UNAVAILABLE),
    (("network", "connection"), ErrorKind.NETWORK_ERROR),
    (("json", "parsing"), ErrorKind.PARSING_ERROR),
]


def classify_error(message: str) -> ErrorKind:
    """
    Map a raw error message onto the closed ErrorKind taxonomy.

    Args:
        message: Error text as produced by an adapter or backend

    Returns:
        The first matching ErrorKind, UNKNOWN_ERROR if nothing matches
    """
    lowered = (message or "").lower()
    for needles, kind in _CLASSIFICATION_RULES:
        if any(needle in lowered for needle in needles):
            return kind
    return ErrorKind.UNKNOWN_ERROR


class SwitchboardError(Exception):
    """
    Base exception for all Switchboard errors.

    Carries a stable error code and whether the caller may retry.
    """

    def __init__(
        self,
        message: str,
        *,
        code: str = "SWITCHBOARD_ERROR",
        recoverable: bool = True,
        cause: Exception | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code
        self.recoverable = recoverable
        self.cause = cause

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for logging/serialization."""
        return {
            "error_type": self.__class__.__name__,
            "code": self.code,
            "message": self.message,
            "recoverable": self.recoverable,
            "cause": str(self.cause) if self.cause else None,
        }

    def __str__(self) -> str:
        return f"[{self.code}] {self.message}"

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}("
            f"code={self.code!r}, "
            f"message={self.message!r})"
        )


class ProviderError(SwitchboardError):
    """A generation call failed on a provider."""

    def __init__(
        self,
        message: str,
        *,
        kind: ErrorKind,
        provider: str,
        model: str | None = None,
        retryable: bool = True,
        **kwargs: Any,
    ) -> None:
        kwargs.setdefault("code", f"PROVIDER_{kind.name}")
        super().__init__(message, recoverable=retryable, **kwargs)
        self.kind = kind
        self.provider = provider
        self.model = model
        self.retryable = retryable

    @classmethod
    def from_message(
        cls,
        message: str,
        *,
        provider: str,
        model: str | None = None,
    ) -> ProviderError:
        """Build a classified, retryable error from an adapter failure message."""
        return cls(
            message,
            kind=classify_error(message),
            provider=provider,
            model=model,
            retryable=True,
        )

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data.update(
            {
                "kind": self.kind.value,
                "provider": self.provider,
                "model": self.model,
                "retryable": self.retryable,
            }
        )
        return data


class NoProviderAvailableError(ProviderError):
    """No enabled provider could be selected. Fatal, never retried."""

    def __init__(self, **kwargs: Any) -> None:
        super().__init__(
            "No provider available",
            kind=ErrorKind.UNKNOWN_ERROR,
            provider="none",
            retryable=False,
            code="NO_PROVIDER_AVAILABLE",
            **kwargs,
        )


class ProviderConfigError(SwitchboardError):
    """Invalid provider configuration or registry operation."""

    def __init__(self, message: str, *, provider_id: str | None = None, **kwargs: Any) -> None:
        kwargs.setdefault("code", "PROVIDER_CONFIG_ERROR")
        super().__init__(message, recoverable=False, **kwargs)
        self.provider_id = provider_id


class ProviderNotFoundError(ProviderConfigError):
    """Provider with the given id is not registered."""

    def __init__(self, provider_id: str, **kwargs: Any) -> None:
        super().__init__(
            f"Provider not found: {provider_id}",
            provider_id=provider_id,
            code="PROVIDER_NOT_FOUND",
            **kwargs,
        )


class ProviderValidationError(ProviderConfigError):
    """The validation call for a new or updated provider failed."""

    def __init__(self, provider_id: str, result: ProviderTestResult, **kwargs: Any) -> None:
        super().__init__(
            f"Provider test failed: {result.error}",
            provider_id=provider_id,
            code="PROVIDER_VALIDATION_FAILED",
            **kwargs,
        )
        self.result = result
