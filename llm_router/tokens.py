"""Pre-flight token estimation heuristics.

Two strategies coexist on purpose: the OpenAI adapter uses a word-based
count, while the Anthropic adapter and TPM admission use characters / 4.
Neither is billing truth; upstream usage wins whenever it is reported.
"""

from __future__ import annotations

import json
import math
import re

from .models import ChatCompletionsRequest, ImagePart, TextPart

DEFAULT_COMPLETION_TOKENS = 1000

_WS = re.compile(r"\s+")


def _word_tokens(text: str) -> int:
    # an empty string still counts as one word
    words = len(_WS.split(text))
    return math.ceil(words * 0.75)


def _chars(text: str) -> int:
    return math.ceil(len(text) / 4)


def estimate_openai_tokens(request: ChatCompletionsRequest) -> int:
    count = 3

    for message in request.messages or []:
        count += 4
        if isinstance(message.content, str):
            count += _word_tokens(message.content)
        elif isinstance(message.content, list):
            for part in message.content:
                if isinstance(part, TextPart) and part.text:
                    count += _word_tokens(part.text)
                elif isinstance(part, ImagePart):
                    count += 765 if part.image_url.detail == "high" else 85

        count += 1
        if message.name:
            count += 1

        for call in message.tool_calls or []:
            count += 3
            count += _chars(call.function.name)
            count += _chars(call.function.arguments)

    for tool in request.tools or []:
        count += 3
        count += _chars(tool.function.name)
        if tool.function.description:
            count += _chars(tool.function.description)
        count += _chars(json.dumps(tool.function.parameters, separators=(",", ":")))

    count += request.max_tokens or DEFAULT_COMPLETION_TOKENS
    return count


def estimate_char_tokens(request: ChatCompletionsRequest) -> int:
    count = 0
    for message in request.messages or []:
        if isinstance(message.content, str):
            count += _chars(message.content)
    if request.prompt:
        count += _chars(request.prompt)
    count += request.max_tokens or DEFAULT_COMPLETION_TOKENS
    return count
