"""Completion orchestration: validate, price, gate on credits, dispatch, meter."""

from __future__ import annotations

import asyncio
import math
import time
from collections.abc import Mapping
from typing import Protocol

import structlog

from .adapters import ProviderAdapter
from .config import KeyPolicy
from .errors import GatewayError, InsufficientCreditsError, NoProviderAvailableError
from .models import ChatCompletionsRequest, ChatCompletionsResponse, CostEstimate, Usage
from .pricing import calculate_cost
from .registry import ProviderRegistry
from .usage import UsageRecord
from .validation import validate_request

logger = structlog.get_logger(__name__)

PROMPT_SHARE = 0.7
COMPLETION_SHARE = 0.3
FALLBACK_MODEL = "gpt-3.5-turbo"


class CreditProvider(Protocol):
    def balance(self, caller_id: str) -> float: ...

    def debit(self, caller_id: str, amount: float) -> float: ...


class UsageSink(Protocol):
    def record(self, rec: UsageRecord) -> None: ...


def split_estimate(tokens: int) -> tuple[int, int]:
    return math.floor(tokens * PROMPT_SHARE), math.floor(tokens * COMPLETION_SHARE)


class CompletionOrchestrator:
    def __init__(
        self,
        registry: ProviderRegistry,
        credits: CreditProvider,
        usage: UsageSink,
        *,
        default_model: str | None = None,
    ) -> None:
        self.registry = registry
        self.credits = credits
        self.usage = usage
        self._default_model = default_model
        self._pending: set[asyncio.Task] = set()

    def default_model(self) -> str:
        available = self.registry.available_models()
        if self._default_model and self._default_model in available:
            return self._default_model
        if FALLBACK_MODEL in available:
            return FALLBACK_MODEL
        if available:
            return available[0]
        raise NoProviderAvailableError("No models available")

    def _prepare(self, request: ChatCompletionsRequest) -> tuple[ChatCompletionsRequest, str, ProviderAdapter]:
        validate_request(request, self.registry.available_models())
        model = request.model or self.default_model()
        provider = self.registry.provider_name_for(model)
        adapter = self.registry.get(provider)
        request = request.model_copy(update={"model": model})
        adapter.validate(request)
        return request, provider, adapter

    def _estimate(self, request: ChatCompletionsRequest, provider: str, adapter: ProviderAdapter) -> CostEstimate:
        tokens = adapter.estimate_tokens(request)
        prompt, completion = split_estimate(tokens)
        return CostEstimate(
            estimated_tokens=tokens,
            estimated_cost=calculate_cost(provider, request.model or "", prompt, completion),
            model=request.model or "",
            provider=provider,
        )

    def estimate(self, request: ChatCompletionsRequest) -> CostEstimate:
        request, provider, adapter = self._prepare(request)
        return self._estimate(request, provider, adapter)

    async def complete(
        self,
        request: ChatCompletionsRequest,
        caller: KeyPolicy,
        caller_headers: Mapping[str, str] | None = None,
    ) -> ChatCompletionsResponse:
        start = time.perf_counter()
        request, provider, adapter = self._prepare(request)
        model = request.model or ""

        estimate = self._estimate(request, provider, adapter)
        available = self.credits.balance(caller.caller_id)
        if available < estimate.estimated_cost:
            logger.warning(
                "insufficient_credits",
                caller_id=caller.caller_id,
                required=estimate.estimated_cost,
                available=available,
            )
            raise InsufficientCreditsError(required=estimate.estimated_cost, available=available)

        logger.info(
            "chat_completion_request",
            caller_id=caller.caller_id,
            key_id=caller.key_id,
            model=model,
            provider=provider,
            messages_count=len(request.messages) if request.messages is not None else None,
            has_tools=bool(request.tools),
        )

        try:
            response = await adapter.chat_completion(request, caller_headers)
        except GatewayError as e:
            latency_ms = int((time.perf_counter() - start) * 1000)
            self._record(
                UsageRecord(
                    caller_id=caller.caller_id,
                    api_key_id=caller.key_id,
                    provider=provider,
                    model=model,
                    prompt_tokens=0,
                    completion_tokens=0,
                    total_tokens=0,
                    cost=0.0,
                    latency_ms=latency_ms,
                    success=False,
                    error=e.message,
                )
            )
            logger.error(
                "chat_completion_failed",
                caller_id=caller.caller_id,
                model=model,
                provider=provider,
                err=e.message,
                latency_ms=latency_ms,
            )
            raise

        usage = response.usage
        if usage is None:
            prompt, completion = split_estimate(estimate.estimated_tokens)
            usage = Usage(
                prompt_tokens=prompt,
                completion_tokens=completion,
                total_tokens=estimate.estimated_tokens,
            )
        cost = calculate_cost(provider, model, usage.prompt_tokens, usage.completion_tokens)
        latency_ms = int((time.perf_counter() - start) * 1000)

        self._record(
            UsageRecord(
                caller_id=caller.caller_id,
                api_key_id=caller.key_id,
                provider=provider,
                model=model,
                prompt_tokens=usage.prompt_tokens,
                completion_tokens=usage.completion_tokens,
                total_tokens=usage.total_tokens,
                cost=cost,
                latency_ms=latency_ms,
                success=True,
            )
        )
        self._schedule_debit(caller.caller_id, cost)

        logger.info(
            "chat_completion_succeeded",
            caller_id=caller.caller_id,
            model=model,
            provider=provider,
            latency_ms=latency_ms,
            total_tokens=usage.total_tokens,
            cost=cost,
        )
        return response

    def _record(self, rec: UsageRecord) -> None:
        try:
            self.usage.record(rec)
        except Exception as e:
            logger.warning(
                "usage_record_failed",
                caller_id=rec.caller_id,
                model=rec.model,
                success=rec.success,
                err=str(e),
            )

    def _schedule_debit(self, caller_id: str, amount: float) -> None:
        if amount <= 0:
            return
        task = asyncio.create_task(self._debit(caller_id, amount))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _debit(self, caller_id: str, amount: float) -> None:
        try:
            await asyncio.to_thread(self.credits.debit, caller_id, amount)
        except Exception as e:
            logger.warning("credit_debit_failed", caller_id=caller_id, amount=amount, err=str(e))

    async def drain(self) -> None:
        """Wait for scheduled credit debits to finish."""
        if self._pending:
            await asyncio.gather(*list(self._pending))
