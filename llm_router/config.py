"""Environment-backed settings, provider configs and per-key policy loading."""

from __future__ import annotations

import json
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any


@dataclass(frozen=True)
class KeyPolicy:
    key: str
    key_id: str
    caller_id: str
    rpm: int
    tpm: int
    credits: float


@dataclass(frozen=True)
class ProviderRateLimit:
    requests_per_second: int
    requests_per_minute: int


@dataclass(frozen=True)
class ProviderConfig:
    name: str
    display_name: str
    base_url: str
    api_key: str
    models: tuple[str, ...]
    priority: int
    is_active: bool
    rate_limit: ProviderRateLimit
    timeout_s: float = 30.0
    retries: int = 3
    kind: str = ""

    @property
    def adapter_kind(self) -> str:
        return self.kind or self.name


@dataclass(frozen=True)
class Settings:
    host: str = os.getenv("HOST", "0.0.0.0")
    port: int = int(os.getenv("PORT", "8080"))

    usage_db_path: Path = Path(
        os.getenv("USAGE_DB_PATH") or os.path.join(os.getenv("DATA_DIR", "data"), "usage.sqlite")
    )

    log_level: str = os.getenv("LOG_LEVEL", "INFO")
    log_json: bool = os.getenv("LOG_JSON", "0") == "1"

    default_model: str | None = os.getenv("DEFAULT_MODEL") or None
    strict_routing: bool = os.getenv("STRICT_ROUTING", "0") == "1"
    disable_auth: bool = os.getenv("DISABLE_AUTH", "0") == "1"

    global_rate_limit: int = int(os.getenv("GLOBAL_RATE_LIMIT", "1000"))
    global_rate_window_s: float = float(os.getenv("GLOBAL_RATE_WINDOW_S", str(15 * 60)))

    max_request_bytes: int = int(os.getenv("MAX_REQUEST_BYTES", str(1024 * 1024)))


OPENAI_MODELS: tuple[str, ...] = (
    # OpenRouter-routed models
    "deepseek/deepseek-chat-v3.1:free",
    "deepseek/deepseek-chat",
    "openai/gpt-4o",
    "openai/gpt-4o-mini",
    "anthropic/claude-3.5-sonnet",
    "gpt-4",
    "gpt-4-turbo",
    "gpt-4-turbo-preview",
    "gpt-3.5-turbo",
    "gpt-3.5-turbo-16k",
)

ANTHROPIC_MODELS: tuple[str, ...] = (
    "claude-3-opus-20240229",
    "claude-3-sonnet-20240229",
    "claude-3-haiku-20240307",
    "claude-2.1",
    "claude-2.0",
    "claude-instant-1.2",
)


def _default_provider_configs() -> list[ProviderConfig]:
    timeout_s = float(os.getenv("PROVIDER_TIMEOUT_S", "30"))
    openai_key = os.getenv("OPENAI_API_KEY", "")
    anthropic_key = os.getenv("ANTHROPIC_API_KEY", "")
    return [
        ProviderConfig(
            name="openai",
            display_name="OpenAI",
            base_url=os.getenv("OPENAI_BASE_URL", "https://api.openai.com/v1"),
            api_key=openai_key,
            models=OPENAI_MODELS,
            priority=1,
            is_active=bool(openai_key),
            rate_limit=ProviderRateLimit(requests_per_second=10, requests_per_minute=500),
            timeout_s=timeout_s,
        ),
        ProviderConfig(
            name="anthropic",
            display_name="Anthropic",
            base_url=os.getenv("ANTHROPIC_BASE_URL", "https://api.anthropic.com/v1"),
            api_key=anthropic_key,
            models=ANTHROPIC_MODELS,
            priority=2,
            is_active=bool(anthropic_key),
            rate_limit=ProviderRateLimit(requests_per_second=5, requests_per_minute=200),
            timeout_s=timeout_s,
        ),
    ]


def provider_config_from_dict(it: dict[str, Any]) -> ProviderConfig:
    rl = it.get("rate_limit") or {}
    return ProviderConfig(
        name=str(it["name"]),
        display_name=str(it.get("display_name", it["name"])),
        base_url=str(it["base_url"]),
        api_key=str(it.get("api_key", "")),
        models=tuple(str(m) for m in it.get("models", [])),
        priority=int(it.get("priority", 100)),
        is_active=bool(it.get("is_active", True)),
        rate_limit=ProviderRateLimit(
            requests_per_second=int(rl.get("requests_per_second", 10)),
            requests_per_minute=int(rl.get("requests_per_minute", 500)),
        ),
        timeout_s=float(it.get("timeout_s", 30.0)),
        retries=int(it.get("retries", 3)),
        kind=str(it.get("kind", "")),
    )


def load_provider_configs() -> list[ProviderConfig]:
    """Load provider configs, sorted by priority.

    ``PROVIDERS_JSON`` replaces the built-in OpenAI/Anthropic definitions
    entirely when set.
    """
    raw = os.getenv("PROVIDERS_JSON")
    if raw:
        configs = [provider_config_from_dict(it) for it in json.loads(raw)]
    else:
        configs = _default_provider_configs()
    return sorted(configs, key=lambda c: c.priority)


def _default_keys_json() -> str:
    return json.dumps(
        [
            {
                "key": "demo-dev-key-change-me",
                "key_id": "demo",
                "caller_id": "demo",
                "rpm": 60,
                "tpm": 100_000,
                "credits": 10.0,
            }
        ]
    )


def load_key_policies() -> dict[str, KeyPolicy]:
    raw = os.getenv("GATEWAY_KEYS_JSON", _default_keys_json())
    items = json.loads(raw)
    policies: dict[str, KeyPolicy] = {}
    for it in items:
        kp = KeyPolicy(
            key=str(it["key"]),
            key_id=str(it.get("key_id") or it["key"][:8]),
            caller_id=str(it.get("caller_id", "default")),
            rpm=int(it.get("rpm", 60)),
            tpm=int(it.get("tpm", 100_000)),
            credits=float(it.get("credits", 0.0)),
        )
        policies[kp.key] = kp
    return policies


DEV_POLICY = KeyPolicy(
    key="",
    key_id="dev-api-key",
    caller_id="dev-user",
    rpm=10_000,
    tpm=10_000_000,
    credits=999_999.0,
)

