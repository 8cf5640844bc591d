"""FastAPI application wiring for the OpenAI-compatible completion gateway."""

from __future__ import annotations

import time
import uuid
from dataclasses import dataclass
from typing import Annotated, Any

import httpx
import structlog
import uvicorn
from fastapi import Depends, FastAPI, Header, Query, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from .auth import AuthContext, require_api_key
from .config import DEV_POLICY, KeyPolicy, ProviderConfig, Settings, load_key_policies, load_provider_configs
from .errors import GatewayError, NotFoundError, RateLimitError, ValidationError
from .limits import FixedWindowStore, GlobalRateLimiter, RateLimiter, rate_limit_headers
from .logs import configure_logging
from .models import ChatCompletionsRequest, CostEstimate, ModelCard, ModelDetail, ModelList
from .orchestrator import CompletionOrchestrator
from .registry import ProviderRegistry
from .tokens import estimate_char_tokens
from .usage import UsageStore

logger = structlog.get_logger(__name__)


@dataclass
class Gateway:
    settings: Settings
    policies: dict[str, KeyPolicy]
    registry: ProviderRegistry
    store: UsageStore
    limiter: RateLimiter
    global_limiter: GlobalRateLimiter
    orchestrator: CompletionOrchestrator


def error_response(
    exc: GatewayError,
    request_id: str | None,
    headers: dict[str, str] | None = None,
) -> JSONResponse:
    out = dict(headers or {})
    if request_id:
        out["X-Request-ID"] = request_id
    return JSONResponse(
        status_code=exc.status_code,
        content=jsonable_encoder({"error": exc.to_dict(), "request_id": request_id}),
        headers=out,
    )


def _gateway(request: Request) -> Gateway:
    return request.app.state.gateway


def _request_id(request: Request) -> str | None:
    return getattr(request.state, "request_id", None)


def _add_rate_limit_headers(request: Request, headers: dict[str, str]) -> None:
    current = getattr(request.state, "rate_limit_headers", None) or {}
    current.update(headers)
    request.state.rate_limit_headers = current


def _limit_headers(exc: RateLimitError) -> dict[str, str]:
    headers = dict(exc.headers)
    headers["Retry-After"] = str(max(0, int(exc.reset_at - time.time())))
    return headers


def get_auth_context(
    request: Request,
    authorization: str | None = Header(default=None),
) -> AuthContext:
    """Authenticate the caller and count the request against its RPM window."""
    gw = _gateway(request)
    ctx = require_api_key(gw.policies, authorization, disable_auth=gw.settings.disable_auth)
    structlog.contextvars.bind_contextvars(caller_id=ctx.key_policy.caller_id)
    _add_rate_limit_headers(request, rate_limit_headers(gw.limiter.token_status(ctx.key_policy), "Tokens"))
    status = gw.limiter.check_requests(ctx.key_policy)
    _add_rate_limit_headers(request, rate_limit_headers(status, "Requests"))
    return ctx


def setup_exception_handlers(app: FastAPI) -> None:
    async def gateway_error_handler(request: Request, exc: GatewayError) -> JSONResponse:
        log = logger.warning if exc.status_code < 500 else logger.error
        log("gateway_error", status_code=exc.status_code, code=exc.code, err=exc.message)
        headers = dict(getattr(request.state, "rate_limit_headers", None) or {})
        if isinstance(exc, RateLimitError):
            headers.update(_limit_headers(exc))
        return error_response(exc, _request_id(request), headers)

    async def validation_exception_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        errors = jsonable_encoder(exc.errors())
        if errors:
            first = errors[0]
            message = f"Validation error: {first.get('msg', 'Invalid request')} at {first.get('loc', [])}"
        else:
            message = "Invalid request parameters"
        err = ValidationError(message, details={"errors": errors})
        logger.warning("request_validation_error", errors=errors)
        return error_response(err, _request_id(request))

    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("unhandled_exception", error_type=type(exc).__name__)
        return JSONResponse(
            status_code=500,
            content={
                "error": {
                    "message": "An unexpected error occurred",
                    "type": "internal_error",
                    "code": "internal_error",
                },
                "request_id": _request_id(request),
            },
        )

    app.exception_handler(GatewayError)(gateway_error_handler)
    app.exception_handler(RequestValidationError)(validation_exception_handler)
    app.exception_handler(Exception)(global_exception_handler)


def create_app(
    settings: Settings | None = None,
    *,
    providers: list[ProviderConfig] | None = None,
    policies: dict[str, KeyPolicy] | None = None,
    registry: ProviderRegistry | None = None,
    store: UsageStore | None = None,
    window_store: FixedWindowStore | None = None,
    http_client: httpx.AsyncClient | None = None,
) -> FastAPI:
    settings = settings or Settings()
    configure_logging(settings.log_level, json_output=settings.log_json)

    policies = load_key_policies() if policies is None else policies
    if registry is None:
        registry = ProviderRegistry(
            load_provider_configs() if providers is None else providers,
            strict_routing=settings.strict_routing,
            http_client=http_client,
        )
    store = store or UsageStore(settings.usage_db_path)
    for pol in policies.values():
        store.ensure_account(pol.caller_id, pol.credits)
    if settings.disable_auth:
        store.ensure_account(DEV_POLICY.caller_id, DEV_POLICY.credits)

    window_store = window_store or FixedWindowStore()
    gateway = Gateway(
        settings=settings,
        policies=policies,
        registry=registry,
        store=store,
        limiter=RateLimiter(window_store),
        global_limiter=GlobalRateLimiter(
            window_store,
            limit=settings.global_rate_limit,
            window_s=settings.global_rate_window_s,
        ),
        orchestrator=CompletionOrchestrator(
            registry, store, store, default_model=settings.default_model
        ),
    )

    app = FastAPI(title="LLM Router", version="1.0.0")
    app.state.gateway = gateway
    setup_exception_handlers(app)

    logger.info(
        "gateway_started",
        active_providers=registry.list_active(),
        models=len(registry.available_models()),
        auth_disabled=settings.disable_auth,
    )

    @app.middleware("http")
    async def request_context(request: Request, call_next):
        t0 = time.time()
        request_id = request.headers.get("X-Request-ID") or uuid.uuid4().hex
        request.state.request_id = request_id
        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(request_id=request_id)

        client_ip = request.client.host if request.client else "unknown"
        try:
            ip_status = gateway.global_limiter.check(client_ip)
        except RateLimitError as e:
            return error_response(e, request_id, _limit_headers(e))

        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        for name, value in gateway.global_limiter.headers(ip_status).items():
            response.headers.setdefault(name, value)
        for name, value in (getattr(request.state, "rate_limit_headers", None) or {}).items():
            response.headers.setdefault(name, value)

        logger.info(
            "http_request",
            method=request.method,
            path=request.url.path,
            status_code=response.status_code,
            duration_ms=int((time.time() - t0) * 1000),
        )
        return response

    @app.get("/health")
    def health() -> dict[str, str]:
        """Liveness probe."""
        return {"status": "ok"}

    @app.post("/v1/chat/completions")
    async def chat_completions(
        req: Request,
        body: ChatCompletionsRequest,
        ctx: Annotated[AuthContext, Depends(get_auth_context)],
    ) -> JSONResponse:
        if body.stream:
            raise ValidationError("Streaming is not supported", code="streaming_not_supported")

        raw_bytes = await req.body()
        if len(raw_bytes) > settings.max_request_bytes:
            raise ValidationError(
                "Request too large",
                status_code=413,
                code="request_too_large",
                details={"max_bytes": settings.max_request_bytes},
            )

        status = gateway.limiter.check_tokens(ctx.key_policy, estimate_char_tokens(body))
        _add_rate_limit_headers(req, rate_limit_headers(status, "Tokens"))

        response = await gateway.orchestrator.complete(
            body, ctx.key_policy, caller_headers=dict(req.headers)
        )
        return JSONResponse(content=response.model_dump(exclude_none=True))

    @app.post("/v1/chat/completions/estimate")
    def estimate(
        body: ChatCompletionsRequest,
        ctx: Annotated[AuthContext, Depends(get_auth_context)],
    ) -> CostEstimate:
        return gateway.orchestrator.estimate(body)

    def _model_cards() -> list[ModelCard]:
        created = int(time.time())
        return [
            ModelCard(id=m, created=created, owned_by=registry.provider_name_for(m))
            for m in registry.available_models()
        ]

    @app.get("/v1/models")
    def list_models(ctx: Annotated[AuthContext, Depends(get_auth_context)]) -> ModelList:
        return ModelList(data=_model_cards())

    @app.get("/v1/models/{model_id:path}")
    def get_model(
        model_id: str,
        ctx: Annotated[AuthContext, Depends(get_auth_context)],
    ) -> ModelDetail:
        if model_id not in registry.available_models():
            raise NotFoundError(f"Model not found: {model_id}", details={"model": model_id})
        provider = registry.provider_name_for(model_id)
        info = registry.get(provider).model_info(model_id)
        return ModelDetail(
            id=model_id,
            created=int(time.time()),
            owned_by=provider,
            context_length=info.context_length,
            supports_functions=info.supports_functions,
            supports_vision=info.supports_vision,
        )

    @app.get("/v1/health")
    async def provider_health(
        ctx: Annotated[AuthContext, Depends(get_auth_context)],
    ) -> JSONResponse:
        providers = await registry.health_check_all()
        healthy = all(p["healthy"] for p in providers.values())
        return JSONResponse(
            status_code=200 if healthy else 503,
            content={
                "status": "healthy" if healthy else "degraded",
                "timestamp": time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime()),
                "providers": providers,
            },
        )

    @app.get("/v1/features")
    def features(ctx: Annotated[AuthContext, Depends(get_auth_context)]) -> dict[str, Any]:
        return {
            "chat_completions": True,
            "function_calling": True,
            "streaming": False,
            "vision": True,
            "json_mode": True,
            "multimodal": True,
            "supported_models": [c.model_dump() for c in _model_cards()],
        }

    @app.get("/v1/usage")
    def usage(
        ctx: Annotated[AuthContext, Depends(get_auth_context)],
        days: int = Query(default=30),
    ) -> dict[str, Any]:
        if not 1 <= days <= 365:
            raise ValidationError("Days must be between 1 and 365", code="invalid_days_range")
        caller_id = ctx.key_policy.caller_id
        return {
            "caller_id": caller_id,
            "usage": store.summary(caller_id, days=days),
            "credits": store.balance(caller_id),
        }

    return app


def main() -> None:
    settings = Settings()
    uvicorn.run(
        "llm_router.main:create_app",
        factory=True,
        host=settings.host,
        port=settings.port,
    )


if __name__ == "__main__":
    main()
