"""Canonical (OpenAI-compatible) request and response schemas.

Range checks live in ``validation`` and the adapters so that violations are
reported as gateway ``ValidationError``s with field-specific messages rather
than generic schema errors.
"""

from __future__ import annotations

from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, Field

Role = Literal["system", "user", "assistant", "tool"]
ALLOWED_ROLES: tuple[str, ...] = ("system", "user", "assistant", "tool")


class TextPart(BaseModel):
    type: Literal["text"] = "text"
    text: str = ""


class ImageURL(BaseModel):
    url: str
    detail: Literal["low", "high", "auto"] | None = None


class ImagePart(BaseModel):
    type: Literal["image_url"] = "image_url"
    image_url: ImageURL


ContentPart = Annotated[Union[TextPart, ImagePart], Field(discriminator="type")]


class FunctionCall(BaseModel):
    name: str = ""
    arguments: str = ""


class ToolCall(BaseModel):
    id: str = ""
    type: str = "function"
    function: FunctionCall


class ChatMessage(BaseModel):
    role: str
    content: str | list[ContentPart] | None = None
    name: str | None = None
    tool_calls: list[ToolCall] | None = None
    tool_call_id: str | None = None


class FunctionDefinition(BaseModel):
    name: str = ""
    description: str | None = None
    # JSON schema, forwarded verbatim
    parameters: dict[str, Any] | None = None


class Tool(BaseModel):
    type: str = "function"
    function: FunctionDefinition


class ToolChoiceFunction(BaseModel):
    name: str = ""


class ToolChoice(BaseModel):
    type: str = "function"
    function: ToolChoiceFunction


class ChatCompletionsRequest(BaseModel):
    model: str | None = None
    messages: list[ChatMessage] | None = None
    prompt: str | None = None

    max_tokens: int | None = None
    temperature: float | None = None
    top_p: float | None = None
    top_k: int | None = None
    n: int | None = None
    stop: str | list[str] | None = None
    presence_penalty: float | None = None
    frequency_penalty: float | None = None
    logit_bias: dict[str, float] | None = None
    stream: bool | None = None
    user: str | None = None

    tools: list[Tool] | None = None
    tool_choice: str | ToolChoice | None = None

    # OpenRouter routing metadata; never forwarded upstream
    transforms: list[str] | None = None
    models: list[str] | None = None
    route: str | None = None
    provider: dict[str, Any] | None = None


ROUTING_FIELDS: frozenset[str] = frozenset({"transforms", "models", "route", "provider"})


class AssistantMessage(BaseModel):
    role: str = "assistant"
    content: str | None = None
    tool_calls: list[ToolCall] | None = None


class Choice(BaseModel):
    index: int
    message: AssistantMessage | None = None
    delta: AssistantMessage | None = None
    finish_reason: str | None = None
    logprobs: dict[str, Any] | None = None


class Usage(BaseModel):
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


class ChatCompletionsResponse(BaseModel):
    id: str
    object: str = "chat.completion"
    created: int
    model: str
    choices: list[Choice]
    usage: Usage | None = None
    system_fingerprint: str | None = None


class ModelCard(BaseModel):
    id: str
    object: str = "model"
    created: int
    owned_by: str


class ModelDetail(ModelCard):
    context_length: int
    supports_functions: bool
    supports_vision: bool


class ModelList(BaseModel):
    object: str = "list"
    data: list[ModelCard]


class CostEstimate(BaseModel):
    estimated_tokens: int
    estimated_cost: float
    model: str
    provider: str
