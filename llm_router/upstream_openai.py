"""OpenAI-style upstream adapter (OpenAI, OpenRouter and compatible APIs)."""

from __future__ import annotations

import os
import time
from typing import Any

import httpx
import openai
from openai import AsyncOpenAI

from .adapters import USER_AGENT, ModelInfo, ProviderAdapter, decode_json, upstream_error
from .config import ProviderConfig
from .errors import InternalError, ProviderError, ServiceUnavailableError, ValidationError
from .models import ROUTING_FIELDS, ChatCompletionsRequest, ChatCompletionsResponse, Choice
from .tokens import estimate_openai_tokens


class OpenAIAdapter(ProviderAdapter):
    """Near-identity adapter: the canonical schema is the upstream schema."""

    MODEL_INFO = {
        "gpt-4": ModelInfo(8192, True, False),
        "gpt-4-turbo": ModelInfo(128000, True, True),
        "gpt-4-turbo-preview": ModelInfo(128000, True, True),
        "gpt-3.5-turbo": ModelInfo(4096, True, False),
        "gpt-3.5-turbo-16k": ModelInfo(16384, True, False),
    }

    def __init__(self, config: ProviderConfig, http_client: httpx.AsyncClient | None = None) -> None:
        super().__init__(config)
        self.client = AsyncOpenAI(
            api_key=config.api_key,
            base_url=config.base_url,
            timeout=config.timeout_s,
            max_retries=0,
            http_client=http_client,
        )

    def validate(self, request: ChatCompletionsRequest) -> None:
        super().validate(request)

        if request.logit_bias:
            if len(request.logit_bias) > 300:
                raise ValidationError("logit_bias cannot have more than 300 entries", provider=self.name)
            for token, bias in request.logit_bias.items():
                if not token.isdigit():
                    raise ValidationError("logit_bias keys must be valid token IDs", provider=self.name)
                if not -100 <= bias <= 100:
                    raise ValidationError(
                        "logit_bias values must be between -100 and 100", provider=self.name
                    )

        if request.n is not None and not 1 <= request.n <= 10:
            raise ValidationError("n must be between 1 and 10", provider=self.name)

        for field in ("presence_penalty", "frequency_penalty"):
            value = getattr(request, field)
            if value is not None and not -2 <= value <= 2:
                raise ValidationError(f"{field} must be between -2 and 2", provider=self.name)

        for tool in request.tools or []:
            if tool.type != "function":
                raise ValidationError("Only function tools are supported", provider=self.name)
            if not tool.function.name:
                raise ValidationError("Function tool must have a name", provider=self.name)
            if tool.function.parameters is None:
                raise ValidationError("Function tool must have parameters", provider=self.name)

        choice = request.tool_choice
        if choice is not None and not isinstance(choice, str):
            if choice.type == "function" and not choice.function.name:
                raise ValidationError(
                    "Function tool choice must specify function name", provider=self.name
                )

    def estimate_tokens(self, request: ChatCompletionsRequest) -> int:
        return estimate_openai_tokens(request)

    def transform_request(self, request: ChatCompletionsRequest) -> dict[str, Any]:
        payload = request.model_dump(exclude_none=True, exclude=set(ROUTING_FIELDS))
        if not payload.get("model"):
            payload["model"] = self.default_model()
        if "stream" in payload:
            payload["stream"] = bool(payload["stream"])
        return payload

    def transform_response(self, payload: dict[str, Any]) -> ChatCompletionsResponse:
        choices = []
        for i, choice in enumerate(payload.get("choices") or []):
            index = choice.get("index")
            choices.append(
                Choice(
                    index=index if index is not None else i,
                    message=choice.get("message") or choice.get("delta"),
                    delta=choice.get("delta"),
                    finish_reason=choice.get("finish_reason"),
                    logprobs=choice.get("logprobs"),
                )
            )

        if not choices:
            raise ProviderError(self.name, "Upstream returned no choices", body=payload)

        return ChatCompletionsResponse(
            id=payload.get("id") or f"chatcmpl-{int(time.time() * 1000)}",
            object=payload.get("object") or "chat.completion",
            created=payload.get("created") or int(time.time()),
            model=payload.get("model") or "unknown",
            choices=choices,
            usage=payload.get("usage"),
            system_fingerprint=payload.get("system_fingerprint"),
        )

    def headers(self) -> dict[str, str]:
        headers = {
            "Authorization": f"Bearer {self.config.api_key}",
            "Content-Type": "application/json",
            "User-Agent": USER_AGENT,
        }
        org = os.getenv("OPENAI_ORGANIZATION")
        if org:
            headers["OpenAI-Organization"] = org
        return headers

    async def _send(self, payload: dict[str, Any], headers: dict[str, str]) -> dict[str, Any]:
        try:
            response = await self.client.post(
                "/chat/completions",
                cast_to=httpx.Response,
                body=payload,
                options={"headers": headers},
            )
        except openai.APIStatusError as e:
            message, body = upstream_error(e.response, e.message)
            raise ProviderError(
                self.name, message, upstream_status=e.status_code, body=body
            ) from e
        except openai.APITimeoutError as e:
            raise ServiceUnavailableError(
                f"Provider error ({self.name}): No response received",
                provider=self.name,
                timeout=True,
            ) from e
        except openai.APIConnectionError as e:
            raise ServiceUnavailableError(
                f"Provider error ({self.name}): No response received",
                provider=self.name,
            ) from e
        except openai.OpenAIError as e:
            raise InternalError(f"Provider error ({self.name}): {e}", provider=self.name) from e
        return decode_json(response, self.name)
