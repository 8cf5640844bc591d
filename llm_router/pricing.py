"""Static per-model price table and cost calculation."""

from __future__ import annotations

from dataclasses import dataclass

import structlog

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class ModelPrice:
    # account-currency units per 1K tokens
    prompt: float
    completion: float


DEFAULT_PRICE = ModelPrice(prompt=0.001, completion=0.002)

PRICING: dict[str, dict[str, ModelPrice]] = {
    "openai": {
        "gpt-4": ModelPrice(0.03, 0.06),
        "gpt-4-turbo": ModelPrice(0.01, 0.03),
        "gpt-4-turbo-preview": ModelPrice(0.01, 0.03),
        "gpt-3.5-turbo": ModelPrice(0.0015, 0.002),
        "gpt-3.5-turbo-16k": ModelPrice(0.003, 0.004),
    },
    "anthropic": {
        "claude-3-opus-20240229": ModelPrice(0.015, 0.075),
        "claude-3-sonnet-20240229": ModelPrice(0.003, 0.015),
        "claude-3-haiku-20240307": ModelPrice(0.00025, 0.00125),
        "claude-2.1": ModelPrice(0.008, 0.024),
        "claude-2.0": ModelPrice(0.008, 0.024),
        "claude-instant-1.2": ModelPrice(0.0008, 0.0024),
    },
}


def get_model_price(provider: str, model: str) -> ModelPrice:
    provider_prices = PRICING.get(provider)
    if not provider_prices:
        logger.warning("pricing_unknown_provider", provider=provider, model=model)
        return DEFAULT_PRICE

    price = provider_prices.get(model)
    if price is None:
        logger.warning("pricing_unknown_model", provider=provider, model=model)
        return next(iter(provider_prices.values()))
    return price


def calculate_cost(provider: str, model: str, prompt_tokens: int, completion_tokens: int) -> float:
    price = get_model_price(provider, model)
    return (prompt_tokens / 1000.0) * price.prompt + (completion_tokens / 1000.0) * price.completion
