"""
Provider Adapter Base - Uniform interface for generative-content backends.

Provides a unified API for:
- Content generation from a single prompt
- Connection testing
- Model discovery
- Backend error translation into user-facing messages

Adapters never raise from generate_content(); every failure is returned as
an unsuccessful GenerationResult.
"""

from __future__ import annotations

import json
import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, ClassVar

import httpx
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from switchboard.errors import ProviderConfigError

logger = logging.getLogger("switchboard.adapters")


class ProviderType(str, Enum):
    """Supported provider backends."""

    GEMINI = "gemini"
    OPENROUTER = "openrouter"


class ResponseFormat(str, Enum):
    """Desired response format for a generation request."""

    JSON = "json"
    TEXT = "text"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ProviderConfig(BaseModel):
    """
    Persisted configuration for a single provider.

    Serialized with camelCase keys so stored and exported documents keep
    their established shape.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: str = Field(..., min_length=1)
    name: str
    type: ProviderType
    enabled: bool = True
    api_key: str = ""
    model: str = ""
    description: str | None = None
    settings: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)

    def has_credential(self) -> bool:
        """Whether a non-blank API key is configured."""
        return bool(self.api_key and self.api_key.strip())

    def to_document(self, include_credential: bool = True) -> dict[str, Any]:
        """Convert to a JSON-safe camelCase document."""
        data = self.model_dump(mode="json", by_alias=True, exclude_none=True)
        if not include_credential:
            data.pop("apiKey", None)
        return data


class RouterConfig(BaseModel):
    """The persisted router configuration document."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    providers: list[ProviderConfig] = Field(default_factory=list)
    default_provider_id: str | None = None
    fallback_enabled: bool = True
    timeout_ms: int = Field(default=30000, gt=0)
    retry_attempts: int = Field(default=3, ge=0)

    def to_document(self) -> dict[str, Any]:
        """Convert to the camelCase storage document."""
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)

    def get_provider(self, provider_id: str) -> ProviderConfig | None:
        for provider in self.providers:
            if provider.id == provider_id:
                return provider
        return None


@dataclass
class GenerationRequest:
    """A generic generation request."""

    prompt: str
    model: str | None = None  # overrides the configured model
    max_tokens: int | None = None
    temperature: float | None = None
    response_format: ResponseFormat | None = None


@dataclass
class GenerationUsage:
    """Token accounting reported by a backend."""

    prompt_tokens: int | None = None
    completion_tokens: int | None = None
    total_tokens: int | None = None

    def to_dict(self) -> dict[str, int | None]:
        return {
            "promptTokens": self.prompt_tokens,
            "completionTokens": self.completion_tokens,
            "totalTokens": self.total_tokens,
        }


@dataclass
class GenerationResult:
    """
    Adapter-level result.

    On success ``data`` holds either a parsed JSON value or the raw response
    text; callers must accept both.
    """

    success: bool
    provider: str
    model: str
    data: Any = None
    error: str | None = None
    usage: GenerationUsage | None = None
    finish_reason: str | None = None


@dataclass
class ModelInfo:
    """A model offered by a provider."""

    id: str
    name: str
    description: str = ""
    context_length: int = 0
    pricing: dict[str, float] | None = None  # USD per 1K tokens


@dataclass
class ProviderCapabilities:
    """Static capability flags for a provider type."""

    supported_formats: list[ResponseFormat]
    supports_functions: bool
    supports_vision: bool
    supports_streaming: bool
    max_tokens: int


@dataclass
class ProviderInfo:
    """Catalog entry describing a provider type."""

    type: ProviderType
    name: str
    description: str
    capabilities: ProviderCapabilities
    models: list[ModelInfo] = field(default_factory=list)
    documentation_url: str | None = None
    website_url: str | None = None


class BackendCallError(Exception):
    """Raised inside adapters when a backend call or its response is unusable."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


# ============================================================================
# Response Parsing
# ============================================================================

_FENCE_RE = re.compile(r"^```(\w*)?\s*\n?(.*?)\n?\s*```$", re.DOTALL)


def strip_code_fences(text: str) -> str:
    """Remove a surrounding Markdown code fence, if any."""
    stripped = text.strip()
    match = _FENCE_RE.match(stripped)
    if match and match.group(2):
        return match.group(2).strip()
    return stripped


def extract_json_block(text: str) -> str:
    """
    Slice the outermost JSON object or array out of surrounding prose.

    Text that already starts with a brace/bracket, or contains none, is
    returned unchanged.
    """
    if text.startswith(("{", "[")) or ("{" not in text and "[" not in text):
        return text

    obj_start = text.find("{")
    arr_start = text.find("[")
    if obj_start != -1 and (arr_start == -1 or obj_start < arr_start):
        start, end = obj_start, text.rfind("}")
    else:
        start, end = arr_start, text.rfind("]")

    if end > start:
        return text[start : end + 1]
    return text


def parse_model_output(text: str) -> Any:
    """
    Parse model output as JSON, falling back to the raw text.

    Args:
        text: Raw text returned by the backend

    Returns:
        Parsed JSON value, or ``text`` unchanged if it is not valid JSON
    """
    candidate = extract_json_block(strip_code_fences(text))
    try:
        return json.loads(candidate)
    except json.JSONDecodeError:
        logger.debug("Response is not valid JSON, returning raw text")
        return text


def _drop_none(values: dict[str, Any]) -> dict[str, Any]:
    return {key: value for key, value in values.items() if value is not None}


def _first_set(*values: Any) -> Any:
    for value in values:
        if value is not None:
            return value
    return None


# ============================================================================
# Failure Messages
# ============================================================================

GENERIC_FAILURE_MESSAGE = "Unable to generate content."
MISSING_CREDENTIAL_MESSAGE = "API key is missing. Please check your provider settings."

CREDENTIAL_MESSAGE = "{provider} API key is invalid. Please check your settings."
QUOTA_MESSAGE = "API quota exceeded. Please try again later."
RATE_LIMIT_MESSAGE = "API rate limit exceeded. Please try again later."
MODEL_MESSAGE = "The selected model is unavailable. Please try another model."
NETWORK_MESSAGE = "Network connection timed out. Please check your network and retry."
PARSING_MESSAGE = (
    "The response could not be parsed as JSON. "
    "Try rephrasing the topic or retry."
)

FailureHints = list[tuple[tuple[str, ...], str]]

DEFAULT_FAILURE_HINTS: FailureHints = [
    (("api key", "unauthorized", "401"), CREDENTIAL_MESSAGE),
    (("quota",), QUOTA_MESSAGE),
    (("rate limit", "429"), RATE_LIMIT_MESSAGE),
    (("model", "not found"), MODEL_MESSAGE),
    (("timeout", "timed out", "network", "connect"), NETWORK_MESSAGE),
    (("json", "unexpected token"), PARSING_MESSAGE),
]


def _error_text(error: Exception | str) -> str:
    """Flatten an exception into text the keyword heuristics can inspect."""
    if isinstance(error, str):
        return error
    if isinstance(error, httpx.TimeoutException):
        return f"Network timeout: {error}"
    if isinstance(error, httpx.TransportError):
        return f"Network connection error: {error}"
    return str(error) or error.__class__.__name__


def _http_error_message(response: httpx.Response) -> str:
    """Extract the backend's error message from a failed HTTP response."""
    detail = ""
    try:
        body = response.json()
    except ValueError:
        body = None

    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict):
            detail = error.get("message") or ""
            status = error.get("status")
            if status:
                detail = f"{detail} ({status})" if detail else status
        elif isinstance(error, str):
            detail = error

    return f"HTTP {response.status_code}: {detail or response.reason_phrase}"


# ============================================================================
# Adapter Base
# ============================================================================


class ProviderAdapter(ABC):
    """
    Abstract base class for provider adapters.

    Implementations must provide:
    - build_payload(): backend-specific request body
    - execute(): the network call
    - parse_response(): data/usage extraction from the raw response
    - list_models(): model discovery
    - get_provider_info(): static catalog entry
    """

    provider_type: ClassVar[ProviderType]
    default_model: ClassVar[str]
    display_name: ClassVar[str]
    failure_hints: ClassVar[FailureHints] = DEFAULT_FAILURE_HINTS

    def __init__(
        self,
        config: ProviderConfig,
        *,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.config = config
        self.timeout = timeout
        self._transport = transport
        self._enabled = True

    @property
    def id(self) -> str:
        return self.config.id

    @property
    def name(self) -> str:
        return self.config.name

    @property
    def type(self) -> ProviderType:
        return self.config.type

    @property
    def runtime_enabled(self) -> bool:
        return self._enabled

    def is_enabled(self) -> bool:
        """Enabled in config and not switched off at runtime."""
        return self._enabled and self.config.enabled

    def set_enabled(self, enabled: bool) -> None:
        self._enabled = enabled

    def get_default_model(self) -> str:
        return self.config.model or self.default_model

    def get_effective_model(self, request: GenerationRequest) -> str:
        """Request override first, then the configured default."""
        return request.model or self.get_default_model()

    async def generate_content(self, request: GenerationRequest) -> GenerationResult:
        """
        Generate content for a request.

        Args:
            request: Generic generation request

        Returns:
            Successful result with parsed data, or a failed result carrying a
            user-facing error message
        """
        model = self.get_effective_model(request)

        if not self.config.has_credential():
            logger.warning(f"{self.name}: API key missing, call rejected locally")
            return self._failure(MISSING_CREDENTIAL_MESSAGE, model)

        try:
            payload = self.build_payload(request)
            raw = await self.execute(payload, model)
            data, usage, finish_reason = self.parse_response(raw)
        except Exception as e:
            logger.error(f"{self.name} - generate content failed: {e}")
            return self._failure(self.describe_failure(e), model)

        return GenerationResult(
            success=True,
            provider=self.name,
            model=model,
            data=data,
            usage=usage,
            finish_reason=finish_reason or "stop",
        )

    async def test_connection(self) -> bool:
        """Issue one minimal JSON call and check for a structured success."""
        result = await self.generate_content(
            GenerationRequest(
                prompt='Connection test: respond in JSON format with {"status": "OK"}',
                max_tokens=100,
                response_format=ResponseFormat.JSON,
            )
        )
        return result.success and isinstance(result.data, (dict, list))

    def describe_failure(self, error: Exception | str) -> str:
        """Translate a raw error into a user-facing message."""
        text = _error_text(error)
        lowered = text.lower()
        for needles, message in self.failure_hints:
            if any(needle in lowered for needle in needles):
                return message.format(provider=self.display_name)
        return f"{GENERIC_FAILURE_MESSAGE} Details: {text}"

    def _failure(self, message: str, model: str) -> GenerationResult:
        return GenerationResult(
            success=False,
            provider=self.name,
            model=model,
            error=message,
        )

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self.timeout, transport=self._transport)

    async def _post_json(
        self,
        url: str,
        *,
        headers: dict[str, str],
        payload: dict[str, Any],
    ) -> dict[str, Any]:
        async with self._client() as client:
            response = await client.post(url, headers=headers, json=payload)
            if response.is_error:
                raise BackendCallError(
                    _http_error_message(response),
                    status_code=response.status_code,
                )
            return response.json()

    async def _get_json(self, url: str, *, headers: dict[str, str]) -> dict[str, Any]:
        async with self._client() as client:
            response = await client.get(url, headers=headers)
            if response.is_error:
                raise BackendCallError(
                    _http_error_message(response),
                    status_code=response.status_code,
                )
            return response.json()

    @abstractmethod
    def build_payload(self, request: GenerationRequest) -> dict[str, Any]:
        """Build the backend request body, dropping unset fields."""
        pass

    @abstractmethod
    async def execute(self, payload: dict[str, Any], model: str) -> dict[str, Any]:
        """Send the request and return the decoded response body."""
        pass

    @abstractmethod
    def parse_response(
        self, raw: dict[str, Any]
    ) -> tuple[Any, GenerationUsage | None, str | None]:
        """
        Extract generated content from a raw response.

        Returns:
            Tuple of (data, usage, finish_reason)
        """
        pass

    @abstractmethod
    async def list_models(self) -> list[ModelInfo]:
        """List models available to this provider's credential."""
        pass

    @classmethod
    @abstractmethod
    def get_provider_info(cls) -> ProviderInfo:
        """Static catalog entry for this provider type."""
        pass

    def __repr__(self) -> str:
        return (
            f"<{self.__class__.__name__} id={self.id!r} "
            f"model={self.get_default_model()!r} enabled={self.is_enabled()}>"
        )


# ============================================================================
# Provider Implementations
# ============================================================================

GEMINI_BASE_URL = "https://generativelanguage.googleapis.com/v1beta"
OPENROUTER_BASE_URL = "https://openrouter.ai/api/v1"

GEMINI_INFO = ProviderInfo(
    type=ProviderType.GEMINI,
    name="Google Gemini",
    description="Google's multimodal large language models for text and image input",
    capabilities=ProviderCapabilities(
        supported_formats=[ResponseFormat.JSON, ResponseFormat.TEXT],
        supports_functions=False,
        supports_vision=True,
        supports_streaming=False,
        max_tokens=32768,
    ),
    models=[
        ModelInfo(
            id="gemini-2.5-flash",
            name="Gemini 2.5 Flash",
            description="Fast and accurate general-purpose model",
            context_length=1048576,
            pricing={"input": 0.00015, "output": 0.0006},
        ),
        ModelInfo(
            id="gemini-pro",
            name="Gemini Pro",
            description="Balanced performance and accuracy",
            context_length=32768,
            pricing={"input": 0.0005, "output": 0.0015},
        ),
        ModelInfo(
            id="gemini-pro-vision",
            name="Gemini Pro Vision",
            description="Gemini Pro with visual understanding",
            context_length=16384,
            pricing={"input": 0.00025, "output": 0.0005},
        ),
    ],
    documentation_url="https://ai.google.dev/docs",
    website_url="https://ai.google.dev/",
)

OPENROUTER_INFO = ProviderInfo(
    type=ProviderType.OPENROUTER,
    name="OpenRouter",
    description="Unified access to models from OpenAI, Anthropic, Google and others",
    capabilities=ProviderCapabilities(
        supported_formats=[ResponseFormat.JSON, ResponseFormat.TEXT],
        supports_functions=True,
        supports_vision=True,
        supports_streaming=True,
        max_tokens=200000,
    ),
    models=[
        ModelInfo(
            id="openai/gpt-4o",
            name="GPT-4o",
            description="OpenAI flagship model for text and vision",
            context_length=128000,
            pricing={"input": 0.005, "output": 0.015},
        ),
        ModelInfo(
            id="anthropic/claude-3.5-sonnet",
            name="Claude 3.5 Sonnet",
            description="Anthropic high-performance model",
            context_length=200000,
            pricing={"input": 0.003, "output": 0.015},
        ),
        ModelInfo(
            id="google/gemini-2.5-pro",
            name="Gemini 2.5 Pro",
            description="Google's advanced large language model",
            context_length=2000000,
            pricing={"input": 0.00125, "output": 0.005},
        ),
        ModelInfo(
            id="mistralai/mistral-large-2411",
            name="Mistral Large",
            description="Mistral AI flagship model",
            context_length=128000,
            pricing={"input": 0.002, "output": 0.006},
        ),
    ],
    documentation_url="https://openrouter.ai/docs",
    website_url="https://openrouter.ai/",
)


class GeminiAdapter(ProviderAdapter):
    """Adapter for the Google Gemini REST API."""

    provider_type = ProviderType.GEMINI
    default_model = "gemini-2.5-flash"
    display_name = "Gemini"
    failure_hints = [
        (("api key not valid", "api_key_invalid", "api key"), CREDENTIAL_MESSAGE),
        (("quota", "resource_exhausted"), QUOTA_MESSAGE),
        (("rate limit", "429"), RATE_LIMIT_MESSAGE),
        (("model", "not found"), MODEL_MESSAGE),
        (("timeout", "timed out", "network", "connect"), NETWORK_MESSAGE),
        (("json", "unexpected token"), PARSING_MESSAGE),
    ]

    def __init__(
        self,
        config: ProviderConfig,
        *,
        base_url: str | None = None,
        **kwargs: Any,
    ) -> None:
        super().__init__(config, **kwargs)
        self.base_url = (base_url or GEMINI_BASE_URL).rstrip("/")

    def _headers(self) -> dict[str, str]:
        return {
            "x-goog-api-key": self.config.api_key,
            "Content-Type": "application/json",
        }

    def build_payload(self, request: GenerationRequest) -> dict[str, Any]:
        settings = self.config.settings

        if request.response_format is not None:
            mime_type = (
                "application/json"
                if request.response_format == ResponseFormat.JSON
                else "text/plain"
            )
        else:
            mime_type = settings.get("responseMimeType", "text/plain")

        generation_config = _drop_none(
            {
                "responseMimeType": mime_type,
                "temperature": _first_set(request.temperature, settings.get("temperature")),
                "maxOutputTokens": _first_set(
                    request.max_tokens, settings.get("maxOutputTokens")
                ),
                "topP": settings.get("topP"),
                "topK": settings.get("topK"),
            }
        )

        return {
            "contents": [{"role": "user", "parts": [{"text": request.prompt}]}],
            "generationConfig": generation_config,
        }

    async def execute(self, payload: dict[str, Any], model: str) -> dict[str, Any]:
        return await self._post_json(
            f"{self.base_url}/models/{model}:generateContent",
            headers=self._headers(),
            payload=payload,
        )

    def parse_response(
        self, raw: dict[str, Any]
    ) -> tuple[Any, GenerationUsage | None, str | None]:
        candidates = raw.get("candidates") or []
        if not candidates:
            block_reason = (raw.get("promptFeedback") or {}).get("blockReason")
            detail = f" (blocked: {block_reason})" if block_reason else ""
            raise BackendCallError(f"Empty response returned by Gemini{detail}")

        candidate = candidates[0]
        parts = (candidate.get("content") or {}).get("parts") or []
        text = "".join(part.get("text", "") for part in parts)
        if not text.strip():
            raise BackendCallError("Empty response returned by Gemini")

        usage = None
        metadata = raw.get("usageMetadata")
        if metadata:
            usage = GenerationUsage(
                prompt_tokens=metadata.get("promptTokenCount"),
                completion_tokens=metadata.get("candidatesTokenCount"),
                total_tokens=metadata.get("totalTokenCount"),
            )

        finish_reason = candidate.get("finishReason")
        return (
            parse_model_output(text),
            usage,
            finish_reason.lower() if finish_reason else None,
        )

    async def list_models(self) -> list[ModelInfo]:
        try:
            data = await self._get_json(f"{self.base_url}/models", headers=self._headers())
        except Exception as e:
            logger.warning(f"Failed to list Gemini models, using catalog: {e}")
            return list(GEMINI_INFO.models)

        models = []
        for entry in data.get("models", []):
            if "generateContent" not in entry.get("supportedGenerationMethods", []):
                continue
            models.append(
                ModelInfo(
                    id=entry["name"].removeprefix("models/"),
                    name=entry.get("displayName") or entry["name"],
                    description=entry.get("description", ""),
                    context_length=entry.get("inputTokenLimit", 0),
                )
            )
        return models

    @classmethod
    def get_provider_info(cls) -> ProviderInfo:
        return GEMINI_INFO


class OpenRouterAdapter(ProviderAdapter):
    """Adapter for the OpenRouter unified chat completions API."""

    provider_type = ProviderType.OPENROUTER
    default_model = "openai/gpt-4o"
    display_name = "OpenRouter"
    failure_hints = [
        (("unauthorized", "401", "api key", "no auth"), CREDENTIAL_MESSAGE),
        (("quota", "insufficient", "402"), QUOTA_MESSAGE),
        (("rate limit", "429"), RATE_LIMIT_MESSAGE),
        (("model", "not found", "404"), MODEL_MESSAGE),
        (("timeout", "timed out", "network", "connect"), NETWORK_MESSAGE),
        (("json", "unexpected token"), PARSING_MESSAGE),
    ]

    def __init__(
        self,
        config: ProviderConfig,
        *,
        base_url: str | None = None,
        app_url: str = "http://localhost",
        app_title: str = "Switchboard",
        **kwargs: Any,
    ) -> None:
        super().__init__(config, **kwargs)
        self.base_url = (base_url or OPENROUTER_BASE_URL).rstrip("/")
        self.app_url = app_url
        self.app_title = app_title

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.config.api_key}",
            "Content-Type": "application/json",
            "HTTP-Referer": self.app_url,
            "X-Title": self.app_title,
        }

    def build_payload(self, request: GenerationRequest) -> dict[str, Any]:
        settings = self.config.settings

        prompt = request.prompt
        if request.response_format == ResponseFormat.JSON and "json" not in prompt.lower():
            prompt = f"{prompt}\n\nPlease respond in JSON format."

        return _drop_none(
            {
                "messages": [{"role": "user", "content": prompt}],
                "stream": False,
                "max_tokens": _first_set(request.max_tokens, settings.get("max_tokens")),
                "temperature": _first_set(request.temperature, settings.get("temperature")),
                "top_p": settings.get("top_p"),
                "frequency_penalty": settings.get("frequency_penalty"),
                "presence_penalty": settings.get("presence_penalty"),
                "provider": settings.get("provider"),
            }
        )

    async def execute(self, payload: dict[str, Any], model: str) -> dict[str, Any]:
        return await self._post_json(
            f"{self.base_url}/chat/completions",
            headers=self._headers(),
            payload={"model": model, **payload},
        )

    def parse_response(
        self, raw: dict[str, Any]
    ) -> tuple[Any, GenerationUsage | None, str | None]:
        choices = raw.get("choices") or []
        if not choices:
            raise BackendCallError("OpenRouter response format error: missing choices")

        choice = choices[0]
        content = (choice.get("message") or {}).get("content")
        if not content:
            raise BackendCallError("OpenRouter response format error: missing message content")

        usage = None
        raw_usage = raw.get("usage")
        if raw_usage:
            usage = GenerationUsage(
                prompt_tokens=raw_usage.get("prompt_tokens"),
                completion_tokens=raw_usage.get("completion_tokens"),
                total_tokens=raw_usage.get("total_tokens"),
            )

        return parse_model_output(content.strip()), usage, choice.get("finish_reason")

    async def list_models(self) -> list[ModelInfo]:
        try:
            data = await self._get_json(f"{self.base_url}/models", headers=self._headers())
        except Exception as e:
            logger.warning(f"Failed to list OpenRouter models: {e}")
            return []

        models = []
        for entry in data.get("data", []):
            pricing = entry.get("pricing") or {}
            models.append(
                ModelInfo(
                    id=entry["id"],
                    name=entry.get("name") or entry["id"],
                    description=entry.get("description", ""),
                    context_length=entry.get("context_length") or 0,
                    pricing={
                        "input": float(pricing.get("prompt", 0)) * 1000,
                        "output": float(pricing.get("completion", 0)) * 1000,
                    }
                    if pricing
                    else None,
                )
            )
        return models

    @classmethod
    def get_provider_info(cls) -> ProviderInfo:
        return OPENROUTER_INFO


# Provider factory
ADAPTER_TYPES: dict[ProviderType, type[ProviderAdapter]] = {
    ProviderType.GEMINI: GeminiAdapter,
    ProviderType.OPENROUTER: OpenRouterAdapter,
}


def create_adapter(config: ProviderConfig, **kwargs: Any) -> ProviderAdapter:
    """Create an adapter instance for a provider config."""
    adapter_class = ADAPTER_TYPES.get(config.type)
    if adapter_class is None:
        raise ProviderConfigError(
            f"Unknown provider type: {config.type}",
            provider_id=config.id,
        )
    return adapter_class(config, **kwargs)
