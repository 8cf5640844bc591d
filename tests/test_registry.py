import asyncio
import dataclasses

import httpx
import pytest

from conftest import anthropic_message, openai_completion, provider_config
from llm_router.errors import InternalError, NoProviderAvailableError, ValidationError
from llm_router.registry import ProviderRegistry
from llm_router.upstream_anthropic import AnthropicAdapter
from llm_router.upstream_openai import OpenAIAdapter


def test_static_map_and_listing(openai_config, anthropic_config) -> None:
    reg = ProviderRegistry([anthropic_config, openai_config])
    assert reg.list_active() == ["openai", "anthropic"]
    assert isinstance(reg.resolve("gpt-4"), OpenAIAdapter)
    assert isinstance(reg.resolve("claude-3-haiku-20240307"), AnthropicAdapter)
    # OpenRouter ids go through the OpenAI-style adapter
    assert reg.provider_name_for("anthropic/claude-3.5-sonnet") == "openai"


def test_fuzzy_matching(openai_config, anthropic_config) -> None:
    reg = ProviderRegistry([openai_config, anthropic_config])
    assert reg.provider_name_for("gpt-5-preview") == "openai"
    assert reg.provider_name_for("claude-4-opus") == "anthropic"


def test_static_map_skips_inactive_provider(openai_config, anthropic_config) -> None:
    reg = ProviderRegistry([openai_config, dataclasses.replace(anthropic_config, is_active=False)])
    assert reg.provider_name_for("claude-3-haiku-20240307") == "openai"


def test_unknown_model_falls_back_to_priority(openai_config, anthropic_config) -> None:
    reg = ProviderRegistry([dataclasses.replace(openai_config, priority=5), anthropic_config])
    assert reg.provider_name_for("mistral-large") == "anthropic"


def test_strict_routing_rejects_unknown_model(openai_config) -> None:
    reg = ProviderRegistry([openai_config], strict_routing=True)
    with pytest.raises(ValidationError):
        reg.resolve("mistral-large")


def test_no_active_providers(openai_config) -> None:
    reg = ProviderRegistry([dataclasses.replace(openai_config, is_active=False)])
    with pytest.raises(NoProviderAvailableError):
        reg.resolve("gpt-4")
    assert reg.available_models() == []


def test_adapters_are_cached_and_evicted(openai_config) -> None:
    reg = ProviderRegistry([openai_config])
    first = reg.get("openai")
    assert reg.get("openai") is first
    assert reg.cached_count() == 1

    reg.set_active("openai", False)
    assert reg.cached_count() == 0
    with pytest.raises(NoProviderAvailableError):
        reg.get("openai")

    reg.set_active("openai", True)
    assert reg.get("openai") is not first


def test_clear_cache(openai_config, anthropic_config) -> None:
    reg = ProviderRegistry([openai_config, anthropic_config])
    reg.get("openai")
    reg.get("anthropic")
    reg.clear_cache()
    assert reg.cached_count() == 0


def test_unknown_adapter_kind_is_internal_error() -> None:
    cfg = dataclasses.replace(provider_config("mistral", ("mistral-large",)), kind="mistral")
    reg = ProviderRegistry([cfg])
    with pytest.raises(InternalError):
        reg.get("mistral")


def test_custom_provider_reuses_openai_adapter() -> None:
    cfg = dataclasses.replace(provider_config("openrouter", ("deepseek/deepseek-chat",)), kind="openai")
    reg = ProviderRegistry([cfg])
    assert isinstance(reg.resolve("deepseek/deepseek-chat"), OpenAIAdapter)


def test_available_models_sorted_and_unique(openai_config) -> None:
    dup = dataclasses.replace(provider_config("backup", ("gpt-4", "aaa-model")), kind="openai", priority=3)
    reg = ProviderRegistry([openai_config, dup])
    models = reg.available_models()
    assert models == sorted(set(models))
    assert models.count("gpt-4") == 1
    assert "aaa-model" in models


def test_health_check_all(openai_config, anthropic_config) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("/messages"):
            return httpx.Response(500, json={"error": {"message": "boom"}})
        return httpx.Response(200, json=openai_completion())

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    reg = ProviderRegistry([openai_config, anthropic_config], http_client=client)

    results = asyncio.run(reg.health_check_all())

    assert results["openai"]["healthy"] is True
    assert results["anthropic"]["healthy"] is False
    assert "boom" in results["anthropic"]["error"]
    assert "latency" in results["openai"]


def test_health_probe_shape(anthropic_config) -> None:
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json=anthropic_message())

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    reg = ProviderRegistry([anthropic_config], http_client=client)
    results = asyncio.run(reg.health_check_all())
    assert list(results) == ["anthropic"]
    assert results["anthropic"]["healthy"] is True
    assert "error" not in results["anthropic"]
    assert len(seen) == 1
