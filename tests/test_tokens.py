from llm_router.models import ChatCompletionsRequest
from llm_router.tokens import estimate_char_tokens, estimate_openai_tokens


def _request(**kwargs) -> ChatCompletionsRequest:
    return ChatCompletionsRequest.model_validate(kwargs)


def test_openai_estimate_counts_words_and_overhead() -> None:
    req = _request(messages=[{"role": "user", "content": "one two three four"}], max_tokens=10)
    # 3 base + 4 message + ceil(4 * 0.75) + 1 role + 10 completion
    assert estimate_openai_tokens(req) == 3 + 4 + 3 + 1 + 10


def test_openai_estimate_defaults_completion_budget() -> None:
    req = _request(messages=[{"role": "user", "content": "hi", "name": "bob"}])
    assert estimate_openai_tokens(req) == 3 + 4 + 1 + 1 + 1 + 1000


def test_openai_estimate_prices_images_by_detail() -> None:
    def image(detail):
        return _request(
            messages=[
                {
                    "role": "user",
                    "content": [{"type": "image_url", "image_url": {"url": "https://x/y.png", "detail": detail}}],
                }
            ],
            max_tokens=1,
        )

    assert estimate_openai_tokens(image("high")) - estimate_openai_tokens(image("low")) == 765 - 85
    assert estimate_openai_tokens(image("auto")) == estimate_openai_tokens(image("low"))


def test_openai_estimate_includes_tool_declarations() -> None:
    base = _request(messages=[{"role": "user", "content": "hi"}], max_tokens=1)
    with_tool = _request(
        messages=[{"role": "user", "content": "hi"}],
        max_tokens=1,
        tools=[{"type": "function", "function": {"name": "get", "parameters": {}}}],
    )
    # 3 + ceil(3/4) + ceil(len("{}")/4)
    assert estimate_openai_tokens(with_tool) - estimate_openai_tokens(base) == 3 + 1 + 1


def test_char_estimate_uses_quarter_length() -> None:
    req = _request(messages=[{"role": "user", "content": "a" * 9}], max_tokens=5)
    assert estimate_char_tokens(req) == 3 + 5


def test_char_estimate_covers_legacy_prompt() -> None:
    req = _request(prompt="abcd")
    assert estimate_char_tokens(req) == 1 + 1000


def test_estimators_diverge_for_the_same_request() -> None:
    req = _request(messages=[{"role": "user", "content": "hello world"}], max_tokens=100)
    assert estimate_openai_tokens(req) != estimate_char_tokens(req)
