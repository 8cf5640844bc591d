"""Canonical request checks run before any provider is resolved."""

from __future__ import annotations

from collections.abc import Collection

from .errors import ValidationError
from .models import ALLOWED_ROLES, ChatCompletionsRequest


def validate_request(request: ChatCompletionsRequest, available_models: Collection[str]) -> None:
    if request.messages is None and request.prompt is None:
        raise ValidationError("Either messages or prompt is required")

    if request.messages is not None and len(request.messages) == 0:
        raise ValidationError("Messages array cannot be empty")

    for i, message in enumerate(request.messages or []):
        if not message.role:
            raise ValidationError(f"Message at index {i} is missing role")
        if message.role not in ALLOWED_ROLES:
            raise ValidationError(f"Invalid role at index {i}: {message.role}")

        if message.content is None and not (message.role == "assistant" and message.tool_calls):
            raise ValidationError(f"Message at index {i} is missing content")

        for call in message.tool_calls or []:
            if not call.id or not call.function.name:
                raise ValidationError(f"Invalid tool call structure at index {i}")

        if message.role == "tool" and not message.tool_call_id:
            raise ValidationError(f"Tool message at index {i} is missing tool_call_id")

    if request.model and request.model not in available_models:
        raise ValidationError(
            f"Model not available: {request.model}",
            details={"provided": request.model, "available": sorted(available_models)},
        )

    if request.max_tokens is not None:
        if request.max_tokens < 1:
            raise ValidationError("max_tokens must be a positive integer")
        if request.max_tokens > 100_000:
            raise ValidationError("max_tokens cannot exceed 100000")

    if request.temperature is not None and not 0 <= request.temperature <= 2:
        raise ValidationError("temperature must be a number between 0 and 2")

    if request.top_p is not None and not 0 < request.top_p <= 1:
        raise ValidationError("top_p must be a number between 0 and 1")

    if request.n is not None and not 1 <= request.n <= 10:
        raise ValidationError("n must be an integer between 1 and 10")

    for i, tool in enumerate(request.tools or []):
        if tool.type != "function":
            raise ValidationError(f"Tool at index {i} must have type 'function'")
        if not tool.function.name:
            raise ValidationError(f"Tool at index {i} is missing function name")
        if tool.function.parameters is None:
            raise ValidationError(f"Tool at index {i} is missing function parameters")

    choice = request.tool_choice
    if isinstance(choice, str):
        if choice not in ("none", "auto"):
            raise ValidationError('tool_choice string must be "none" or "auto"')
    elif choice is not None:
        if choice.type != "function":
            raise ValidationError('tool_choice object must have type "function"')
        if not choice.function.name:
            raise ValidationError("tool_choice function must have a name")
