from __future__ import annotations

import json
from collections.abc import Callable

import httpx
import pytest

from llm_router.config import ANTHROPIC_MODELS, OPENAI_MODELS, KeyPolicy, ProviderConfig, ProviderRateLimit


def provider_config(name: str, models: tuple[str, ...], *, priority: int = 1, active: bool = True) -> ProviderConfig:
    base_url = "https://api.anthropic.com/v1" if name == "anthropic" else "https://api.openai.com/v1"
    return ProviderConfig(
        name=name,
        display_name=name.title(),
        base_url=base_url,
        api_key=f"sk-{name}-test",
        models=models,
        priority=priority,
        is_active=active,
        rate_limit=ProviderRateLimit(requests_per_second=10, requests_per_minute=500),
        timeout_s=5.0,
    )


@pytest.fixture
def openai_config() -> ProviderConfig:
    return provider_config("openai", OPENAI_MODELS, priority=1)


@pytest.fixture
def anthropic_config() -> ProviderConfig:
    return provider_config("anthropic", ANTHROPIC_MODELS, priority=2)


@pytest.fixture
def policy() -> KeyPolicy:
    return KeyPolicy(
        key="test-key",
        key_id="test",
        caller_id="caller-1",
        rpm=5,
        tpm=100_000,
        credits=10.0,
    )


class Upstream:
    """Records requests and answers them through an ``httpx.MockTransport``."""

    def __init__(self, handler: Callable[[httpx.Request], httpx.Response]) -> None:
        self.handler = handler
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.handler(request)

    def client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(self))

    def last_json(self) -> dict:
        return json.loads(self.requests[-1].content)


def openai_completion(content: str = "Hello there!", **overrides) -> dict:
    body = {
        "id": "chatcmpl-123",
        "object": "chat.completion",
        "created": 1700000000,
        "model": "gpt-3.5-turbo",
        "choices": [
            {
                "index": 0,
                "message": {"role": "assistant", "content": content},
                "finish_reason": "stop",
            }
        ],
        "usage": {"prompt_tokens": 10, "completion_tokens": 5, "total_tokens": 15},
    }
    body.update(overrides)
    return body


def anthropic_message(text: str = "Hello there!", **overrides) -> dict:
    body = {
        "id": "msg_123",
        "type": "message",
        "role": "assistant",
        "content": [{"type": "text", "text": text}],
        "model": "claude-3-haiku-20240307",
        "stop_reason": "end_turn",
        "usage": {"input_tokens": 12, "output_tokens": 7},
    }
    body.update(overrides)
    return body


@pytest.fixture
def upstream() -> Callable[..., Upstream]:
    def _make(handler: Callable[[httpx.Request], httpx.Response] | None = None, *, json_body: dict | None = None, status: int = 200) -> Upstream:
        if handler is None:
            body = json_body if json_body is not None else openai_completion()
            return Upstream(lambda request: httpx.Response(status, json=body))
        return Upstream(handler)

    return _make
