"""Anthropic Messages API adapter.

Canonical chat requests are rewritten into the Messages format (top-level
``system``, content blocks, ``input_schema`` tools) and the answer is
folded back into a single OpenAI-style choice.
"""

from __future__ import annotations

import json
import re
import time
from typing import Any

import anthropic
import httpx
from anthropic import AsyncAnthropic

from .adapters import USER_AGENT, ModelInfo, ProviderAdapter, decode_json, upstream_error
from .config import ProviderConfig
from .errors import InternalError, ProviderError, ServiceUnavailableError, ValidationError
from .models import (
    AssistantMessage,
    ChatCompletionsRequest,
    ChatCompletionsResponse,
    ChatMessage,
    Choice,
    FunctionCall,
    ImagePart,
    TextPart,
    ToolCall,
    Usage,
)

ANTHROPIC_VERSION = "2023-06-01"
MAX_OUTPUT_TOKENS = 4096
DEFAULT_MAX_TOKENS = 1000

FINISH_REASONS = {
    "end_turn": "stop",
    "max_tokens": "length",
    "stop_sequence": "stop",
    "tool_use": "tool_calls",
}

_DATA_URI_MEDIA_TYPE = re.compile(r"data:([^;,]+)")


def _image_block(url: str) -> dict[str, Any]:
    if url.startswith("data:"):
        header, _, data = url.partition(",")
        match = _DATA_URI_MEDIA_TYPE.match(header)
        return {
            "type": "image",
            "source": {
                "type": "base64",
                "media_type": match.group(1) if match else "image/jpeg",
                "data": data,
            },
        }
    # remote images are not fetched
    return {"type": "text", "text": f"[Image: {url}]"}


class AnthropicAdapter(ProviderAdapter):
    MODEL_ALIASES = {
        "claude-3-opus": "claude-3-opus-20240229",
        "claude-3-sonnet": "claude-3-sonnet-20240229",
        "claude-3-haiku": "claude-3-haiku-20240307",
        "claude": "claude-3-sonnet-20240229",
    }
    MODEL_INFO = {
        "claude-3-opus-20240229": ModelInfo(200000, True, True),
        "claude-3-sonnet-20240229": ModelInfo(200000, True, True),
        "claude-3-haiku-20240307": ModelInfo(200000, True, True),
        "claude-2.1": ModelInfo(200000, False, False),
        "claude-2.0": ModelInfo(100000, False, False),
        "claude-instant-1.2": ModelInfo(100000, False, False),
    }
    DEFAULT_MODEL_INFO = ModelInfo(context_length=100000, supports_functions=False, supports_vision=False)

    def __init__(self, config: ProviderConfig, http_client: httpx.AsyncClient | None = None) -> None:
        super().__init__(config)
        self.client = AsyncAnthropic(
            api_key=config.api_key,
            base_url=config.base_url,
            timeout=config.timeout_s,
            max_retries=0,
            http_client=http_client,
        )

    def validate(self, request: ChatCompletionsRequest) -> None:
        super().validate(request)

        if request.messages is None:
            raise ValidationError(
                "Anthropic provider requires messages format", provider=self.name
            )
        if request.logit_bias:
            raise ValidationError("logit_bias is not supported by Anthropic", provider=self.name)
        if request.n is not None and request.n > 1:
            raise ValidationError(
                "Multiple completions (n > 1) are not supported by Anthropic", provider=self.name
            )
        if request.presence_penalty is not None or request.frequency_penalty is not None:
            raise ValidationError(
                "presence_penalty and frequency_penalty are not supported by Anthropic",
                provider=self.name,
            )
        if request.max_tokens is None:
            raise ValidationError("max_tokens is required for Anthropic", provider=self.name)
        if request.max_tokens > MAX_OUTPUT_TOKENS:
            raise ValidationError(
                f"max_tokens cannot exceed {MAX_OUTPUT_TOKENS} for Anthropic", provider=self.name
            )

    def transform_request(self, request: ChatCompletionsRequest) -> dict[str, Any]:
        if request.messages is None:
            raise ValueError("Anthropic provider requires messages format")

        system_parts: list[str] = []
        messages: list[dict[str, Any]] = []
        for message in request.messages:
            if message.role == "system":
                if isinstance(message.content, str):
                    system_parts.append(message.content)
            elif message.role in ("user", "assistant"):
                messages.append(self._transform_message(message))
            # tool results have no counterpart here yet

        payload: dict[str, Any] = {
            "model": self.map_model_name(request.model or self.default_model()),
            "max_tokens": request.max_tokens or DEFAULT_MAX_TOKENS,
            "messages": messages,
        }
        if system_parts:
            payload["system"] = "\n\n".join(system_parts)

        if request.temperature is not None:
            payload["temperature"] = request.temperature
        if request.top_p is not None:
            payload["top_p"] = request.top_p
        if request.top_k is not None:
            payload["top_k"] = request.top_k
        if request.stop:
            payload["stop_sequences"] = [request.stop] if isinstance(request.stop, str) else list(request.stop)
        if request.stream is not None:
            payload["stream"] = bool(request.stream)

        if request.tools:
            payload["tools"] = [
                {
                    k: v
                    for k, v in (
                        ("name", tool.function.name),
                        ("description", tool.function.description),
                        ("input_schema", tool.function.parameters),
                    )
                    if v is not None
                }
                for tool in request.tools
            ]
            choice = request.tool_choice
            if choice == "auto":
                payload["tool_choice"] = {"type": "auto"}
            elif choice == "none":
                del payload["tools"]
            elif choice is not None and not isinstance(choice, str):
                payload["tool_choice"] = {"type": "tool", "name": choice.function.name}

        return payload

    def _transform_message(self, message: ChatMessage) -> dict[str, Any]:
        role = "user" if message.role == "user" else "assistant"
        if isinstance(message.content, list):
            blocks: list[dict[str, Any]] = []
            for part in message.content:
                if isinstance(part, TextPart):
                    blocks.append({"type": "text", "text": part.text or ""})
                elif isinstance(part, ImagePart):
                    blocks.append(_image_block(part.image_url.url))
            return {"role": role, "content": blocks}
        return {"role": role, "content": message.content or ""}

    def transform_response(self, payload: dict[str, Any]) -> ChatCompletionsResponse:
        text = ""
        tool_calls: list[ToolCall] = []
        for i, block in enumerate(payload.get("content") or []):
            kind = block.get("type")
            if kind == "text":
                text += block.get("text") or ""
            elif kind == "tool_use":
                tool_calls.append(
                    ToolCall(
                        id=block.get("id") or f"call_{int(time.time() * 1000)}_{i}",
                        type="function",
                        function=FunctionCall(
                            name=block.get("name") or "",
                            arguments=json.dumps(block.get("input") or {}),
                        ),
                    )
                )

        usage = payload.get("usage") or {}
        prompt_tokens = int(usage.get("input_tokens") or 0)
        completion_tokens = int(usage.get("output_tokens") or 0)

        return ChatCompletionsResponse(
            id=payload.get("id") or f"chatcmpl-{int(time.time() * 1000)}",
            created=int(time.time()),
            model=payload.get("model") or "unknown",
            choices=[
                Choice(
                    index=0,
                    message=AssistantMessage(
                        content=text or None,
                        tool_calls=tool_calls or None,
                    ),
                    finish_reason=FINISH_REASONS.get(payload.get("stop_reason") or "", "stop"),
                )
            ],
            usage=Usage(
                prompt_tokens=prompt_tokens,
                completion_tokens=completion_tokens,
                total_tokens=prompt_tokens + completion_tokens,
            ),
        )

    def headers(self) -> dict[str, str]:
        return {
            "x-api-key": self.config.api_key,
            "anthropic-version": ANTHROPIC_VERSION,
            "Content-Type": "application/json",
            "User-Agent": USER_AGENT,
        }

    async def _send(self, payload: dict[str, Any], headers: dict[str, str]) -> dict[str, Any]:
        try:
            response = await self.client.post(
                "/messages",
                cast_to=httpx.Response,
                body=payload,
                options={"headers": headers},
            )
        except anthropic.APIStatusError as e:
            message, body = upstream_error(e.response, e.message)
            raise ProviderError(
                self.name, message, upstream_status=e.status_code, body=body
            ) from e
        except anthropic.APITimeoutError as e:
            raise ServiceUnavailableError(
                f"Provider error ({self.name}): No response received",
                provider=self.name,
                timeout=True,
            ) from e
        except anthropic.APIConnectionError as e:
            raise ServiceUnavailableError(
                f"Provider error ({self.name}): No response received",
                provider=self.name,
            ) from e
        except anthropic.AnthropicError as e:
            raise InternalError(f"Provider error ({self.name}): {e}", provider=self.name) from e
        return decode_json(response, self.name)
