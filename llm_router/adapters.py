"""Provider adapter contract and the behavior shared by every adapter.

An adapter owns one upstream: it validates a canonical request against that
upstream's rules, rewrites it into the upstream wire format, performs the
call and maps the answer back into a canonical response.
"""

from __future__ import annotations

import time
from abc import ABC, abstractmethod
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any

import httpx
import structlog

from .config import ProviderConfig
from .errors import GatewayError, InternalError, ProviderError, ValidationError
from .models import ChatCompletionsRequest, ChatCompletionsResponse, ChatMessage
from .tokens import estimate_char_tokens

logger = structlog.get_logger(__name__)

USER_AGENT = "llm-router/1.0.0"
MAX_TOKENS_LIMIT = 100_000

# never forwarded from the caller: credentials, account scoping, host and body framing
_DROPPED_CALLER_HEADERS = frozenset(
    {
        "authorization",
        "proxy-authorization",
        "x-api-key",
        "api-key",
        "openai-organization",
        "openai-project",
        "host",
        "content-length",
        "transfer-encoding",
        "connection",
        "keep-alive",
    }
)


@dataclass(frozen=True)
class ModelInfo:
    context_length: int
    supports_functions: bool
    supports_vision: bool


@dataclass(frozen=True)
class HealthStatus:
    healthy: bool
    latency_ms: int
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"healthy": self.healthy, "latency": self.latency_ms}
        if self.error:
            out["error"] = self.error
        return out


def merge_headers(
    base: Mapping[str, str],
    caller: Mapping[str, str] | None,
) -> dict[str, str]:
    """Merge caller headers underneath ``base``.

    The adapter's own headers win on any name collision (case-insensitive),
    and caller credentials or ``Host`` are discarded outright.
    """
    merged: dict[str, str] = {}
    owned = {k.lower() for k in base}
    for key, value in (caller or {}).items():
        lower = key.lower()
        if lower in _DROPPED_CALLER_HEADERS:
            if lower in ("authorization", "x-api-key", "api-key", "proxy-authorization"):
                logger.debug("caller_auth_header_skipped", header=key)
            continue
        if lower in owned:
            continue
        merged[key] = value
    merged.update(base)
    return merged


def upstream_error(response: httpx.Response, fallback: str) -> tuple[str, Any]:
    """Pull ``(message, body)`` out of an upstream error response."""
    try:
        body: Any = response.json()
    except ValueError:
        body = response.text or None
    message = fallback
    if isinstance(body, dict):
        err = body.get("error")
        if isinstance(err, dict) and err.get("message"):
            message = str(err["message"])
        elif isinstance(err, str):
            message = err
    return message or f"HTTP {response.status_code}", body


def decode_json(response: httpx.Response, provider: str) -> dict[str, Any]:
    try:
        data = response.json()
    except ValueError as e:
        raise ProviderError(provider, "Upstream returned invalid JSON") from e
    if not isinstance(data, dict):
        raise ProviderError(provider, "Upstream returned an unexpected payload", body=data)
    return data


class ProviderAdapter(ABC):
    """Translates canonical chat requests for a single upstream provider."""

    MODEL_ALIASES: dict[str, str] = {}
    MODEL_INFO: dict[str, ModelInfo] = {}
    DEFAULT_MODEL_INFO = ModelInfo(context_length=4096, supports_functions=False, supports_vision=False)

    def __init__(self, config: ProviderConfig) -> None:
        self.config = config

    @property
    def name(self) -> str:
        return self.config.name

    @property
    def display_name(self) -> str:
        return self.config.display_name or self.config.name

    def is_active(self) -> bool:
        return self.config.is_active

    def supported_models(self) -> list[str]:
        return list(self.config.models)

    def map_model_name(self, model: str) -> str:
        return self.MODEL_ALIASES.get(model, model)

    def supports_model(self, model: str) -> bool:
        return model in self.config.models or self.map_model_name(model) in self.config.models

    def default_model(self) -> str:
        return self.config.models[0]

    def model_info(self, model: str) -> ModelInfo:
        return self.MODEL_INFO.get(self.map_model_name(model), self.DEFAULT_MODEL_INFO)

    def validate(self, request: ChatCompletionsRequest) -> None:
        """Baseline checks every upstream needs; adapters extend this."""
        if request.messages is None and request.prompt is None:
            raise ValidationError("Either messages or prompt is required", provider=self.name)

        if request.messages is not None and len(request.messages) == 0:
            raise ValidationError("Messages array cannot be empty", provider=self.name)

        if request.model and not self.supports_model(request.model):
            raise ValidationError(
                f"Model {request.model} not supported by provider {self.name}",
                provider=self.name,
            )

        if request.max_tokens is not None:
            if request.max_tokens < 1:
                raise ValidationError("max_tokens must be greater than 0", provider=self.name)
            if request.max_tokens > MAX_TOKENS_LIMIT:
                raise ValidationError(
                    f"max_tokens cannot exceed {MAX_TOKENS_LIMIT}", provider=self.name
                )

        if request.temperature is not None and not 0 <= request.temperature <= 2:
            raise ValidationError("temperature must be between 0 and 2", provider=self.name)

        if request.top_p is not None and not 0 < request.top_p <= 1:
            raise ValidationError("top_p must be between 0 and 1", provider=self.name)

    def estimate_tokens(self, request: ChatCompletionsRequest) -> int:
        return estimate_char_tokens(request)

    @abstractmethod
    def transform_request(self, request: ChatCompletionsRequest) -> dict[str, Any]: ...

    @abstractmethod
    def transform_response(self, payload: dict[str, Any]) -> ChatCompletionsResponse: ...

    @abstractmethod
    def headers(self) -> dict[str, str]: ...

    @abstractmethod
    async def _send(self, payload: dict[str, Any], headers: dict[str, str]) -> dict[str, Any]:
        """Perform the upstream call, raising gateway errors on failure."""

    async def chat_completion(
        self,
        request: ChatCompletionsRequest,
        caller_headers: Mapping[str, str] | None = None,
    ) -> ChatCompletionsResponse:
        start = time.perf_counter()
        try:
            self.validate(request)
            try:
                payload = self.transform_request(request)
                headers = merge_headers(self.headers(), caller_headers)
            except GatewayError:
                raise
            except (TypeError, ValueError, KeyError) as e:
                raise InternalError(
                    f"Failed to build {self.name} request: {e}", provider=self.name
                ) from e

            logger.info(
                "provider_request",
                provider=self.name,
                model=payload.get("model"),
                **self.sanitize_for_logging(request),
            )
            raw = await self._send(payload, headers)
            try:
                response = self.transform_response(raw)
            except (TypeError, ValueError, KeyError) as e:
                raise ProviderError(
                    self.name, f"Unexpected response shape: {e}", body=raw
                ) from e
        except GatewayError as e:
            self._log_metrics(start, success=False, error=e.message)
            raise

        self._log_metrics(start, success=True)
        return response

    async def get_health(self) -> HealthStatus:
        start = time.perf_counter()
        probe = ChatCompletionsRequest(
            messages=[ChatMessage(role="user", content="test")],
            max_tokens=1,
        )
        try:
            await self.chat_completion(probe)
        except GatewayError as e:
            return HealthStatus(
                healthy=False,
                latency_ms=int((time.perf_counter() - start) * 1000),
                error=e.message,
            )
        return HealthStatus(healthy=True, latency_ms=int((time.perf_counter() - start) * 1000))

    def sanitize_for_logging(self, request: ChatCompletionsRequest) -> dict[str, Any]:
        return {
            "max_tokens": request.max_tokens,
            "temperature": request.temperature,
            "stream": request.stream,
            "messages_count": len(request.messages) if request.messages is not None else None,
            "prompt_length": len(request.prompt) if request.prompt is not None else None,
        }

    def _log_metrics(self, start: float, *, success: bool, error: str | None = None) -> None:
        logger.info(
            "provider_metrics",
            provider=self.name,
            operation="chat_completion",
            duration_ms=int((time.perf_counter() - start) * 1000),
            success=success,
            error=error,
        )
