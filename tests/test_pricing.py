import pytest

from llm_router.pricing import DEFAULT_PRICE, PRICING, calculate_cost, get_model_price


def test_gpt35_turbo_cost() -> None:
    assert calculate_cost("openai", "gpt-3.5-turbo", 1000, 1000) == pytest.approx(0.0035)


def test_claude_haiku_cost() -> None:
    cost = calculate_cost("anthropic", "claude-3-haiku-20240307", 2000, 1000)
    assert cost == pytest.approx(2 * 0.00025 + 0.00125)


def test_unknown_model_falls_back_to_first_provider_entry() -> None:
    first = next(iter(PRICING["anthropic"].values()))
    assert get_model_price("anthropic", "claude-9") == first


def test_unknown_provider_uses_default_price() -> None:
    assert get_model_price("mistral", "mistral-large") == DEFAULT_PRICE
    assert calculate_cost("mistral", "mistral-large", 1000, 1000) == pytest.approx(0.003)


def test_zero_tokens_cost_nothing() -> None:
    assert calculate_cost("openai", "gpt-4", 0, 0) == 0.0
