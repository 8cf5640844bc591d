"""Provider registry: model resolution and a per-process adapter cache."""

from __future__ import annotations

import asyncio
import dataclasses
import threading
from collections.abc import Callable, Iterable
from typing import Any

import httpx
import structlog

from .adapters import HealthStatus, ProviderAdapter
from .config import ProviderConfig
from .errors import InternalError, NoProviderAvailableError, ValidationError
from .upstream_anthropic import AnthropicAdapter
from .upstream_openai import OpenAIAdapter

logger = structlog.get_logger(__name__)

AdapterFactory = Callable[..., ProviderAdapter]

DEFAULT_ADAPTER_FACTORIES: dict[str, AdapterFactory] = {
    "openai": OpenAIAdapter,
    "anthropic": AnthropicAdapter,
}

MODEL_PROVIDER_MAP: dict[str, str] = {
    # OpenRouter-routed models go through the OpenAI-style adapter
    "deepseek/deepseek-chat-v3.1:free": "openai",
    "deepseek/deepseek-chat": "openai",
    "openai/gpt-4o": "openai",
    "openai/gpt-4o-mini": "openai",
    "anthropic/claude-3.5-sonnet": "openai",
    "gpt-4": "openai",
    "gpt-4-turbo": "openai",
    "gpt-4-turbo-preview": "openai",
    "gpt-3.5-turbo": "openai",
    "gpt-3.5-turbo-16k": "openai",
    "claude-3-opus": "anthropic",
    "claude-3-opus-20240229": "anthropic",
    "claude-3-sonnet": "anthropic",
    "claude-3-sonnet-20240229": "anthropic",
    "claude-3-haiku": "anthropic",
    "claude-3-haiku-20240307": "anthropic",
    "claude-2.1": "anthropic",
    "claude-2.0": "anthropic",
    "claude-instant-1.2": "anthropic",
    "claude": "anthropic",
    "gpt": "openai",
}

_FUZZY_PREFIXES = (("gpt", "openai"), ("claude", "anthropic"))


class ProviderRegistry:
    """Resolves model ids to adapters for the configured providers.

    Adapters are created on first use and cached by provider name. A cached
    adapter is evicted as soon as its provider is deactivated.
    """

    def __init__(
        self,
        configs: Iterable[ProviderConfig],
        *,
        strict_routing: bool = False,
        adapter_factories: dict[str, AdapterFactory] | None = None,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._configs: dict[str, ProviderConfig] = {c.name: c for c in configs}
        self.strict_routing = strict_routing
        self._factories = dict(adapter_factories or DEFAULT_ADAPTER_FACTORIES)
        self._http_client = http_client
        self._adapters: dict[str, ProviderAdapter] = {}
        self._lock = threading.Lock()

    def _active_configs(self) -> list[ProviderConfig]:
        with self._lock:
            configs = [c for c in self._configs.values() if c.is_active]
        return sorted(configs, key=lambda c: c.priority)

    def list_active(self) -> list[str]:
        return [c.name for c in self._active_configs()]

    def config(self, name: str) -> ProviderConfig | None:
        with self._lock:
            return self._configs.get(name)

    def set_active(self, name: str, active: bool) -> None:
        with self._lock:
            cfg = self._configs.get(name)
            if cfg is None:
                raise NoProviderAvailableError(f"Provider configuration not found: {name}")
            self._configs[name] = dataclasses.replace(cfg, is_active=active)
            if not active:
                self._adapters.pop(name, None)
        logger.info("provider_active_changed", provider=name, active=active)

    def get(self, name: str) -> ProviderAdapter:
        with self._lock:
            cfg = self._configs.get(name)
            if cfg is None:
                raise NoProviderAvailableError(f"Provider configuration not found: {name}")
            if not cfg.is_active:
                self._adapters.pop(name, None)
                raise NoProviderAvailableError(f"Provider is not active: {name}")

            adapter = self._adapters.get(name)
            if adapter is not None:
                return adapter

            factory = self._factories.get(cfg.adapter_kind)
            if factory is None:
                raise InternalError(f"Unknown provider type: {cfg.adapter_kind}", provider=name)
            adapter = factory(cfg, http_client=self._http_client)
            self._adapters[name] = adapter

        logger.info("provider_instance_created", provider=name, models=len(cfg.models))
        return adapter

    def provider_name_for(self, model: str) -> str:
        active = self._active_configs()
        if not active:
            raise NoProviderAvailableError(f"No active providers available for model: {model}")
        names = {c.name for c in active}

        mapped = MODEL_PROVIDER_MAP.get(model)
        if mapped in names:
            return mapped
        for cfg in active:
            if model in cfg.models:
                return cfg.name

        for needle, provider in _FUZZY_PREFIXES:
            if needle in model and provider in names:
                return provider
        for cfg in active:
            if cfg.name in model:
                return cfg.name

        if self.strict_routing:
            raise ValidationError(
                f"Model {model} not supported", details={"model": model}
            )
        logger.warning("no_provider_for_model", model=model, default_provider=active[0].name)
        return active[0].name

    def resolve(self, model: str) -> ProviderAdapter:
        return self.get(self.provider_name_for(model))

    def available_models(self) -> list[str]:
        models: set[str] = set()
        for cfg in self._active_configs():
            models.update(cfg.models)
        return sorted(models)

    async def health_check_all(self) -> dict[str, dict[str, Any]]:
        names = self.list_active()

        async def _check(name: str) -> HealthStatus:
            try:
                return await self.get(name).get_health()
            except Exception as e:
                logger.warning("provider_health_check_failed", provider=name, err=str(e))
                return HealthStatus(healthy=False, latency_ms=0, error=str(e))

        results = await asyncio.gather(*(_check(n) for n in names))
        return {name: status.to_dict() for name, status in zip(names, results)}

    def clear_cache(self) -> None:
        with self._lock:
            self._adapters.clear()
        logger.info("provider_cache_cleared")

    def cached_count(self) -> int:
        with self._lock:
            return len(self._adapters)
