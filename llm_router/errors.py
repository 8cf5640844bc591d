"""Gateway error hierarchy.

Every error the gateway raises on purpose is a ``GatewayError`` carrying the
HTTP status, a stable ``type``/``code`` pair and optional structured
details. The FastAPI layer renders them into the OpenAI-style error envelope.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any


class GatewayError(Exception):
    """Base class for errors surfaced to API callers."""

    status_code: int = 500
    error_type: str = "internal_error"
    code: str = "internal_error"

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        code: str | None = None,
        details: dict[str, Any] | None = None,
        provider: str | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        if code is not None:
            self.code = code
        self.details = details or {}
        self.provider = provider
        if provider and "provider" not in self.details:
            self.details["provider"] = provider

    def to_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {
            "message": self.message,
            "type": self.error_type,
            "code": self.code,
        }
        if self.details:
            body["details"] = self.details
        return body


class ValidationError(GatewayError):
    """Malformed or out-of-range request field. Always raised pre-dispatch."""

    status_code = 400
    error_type = "validation_error"
    code = "validation_failed"


class AuthenticationError(GatewayError):
    status_code = 401
    error_type = "authentication_error"
    code = "authentication_failed"


class AuthorizationError(GatewayError):
    status_code = 403
    error_type = "authorization_error"
    code = "access_denied"


class NotFoundError(GatewayError):
    status_code = 404
    error_type = "not_found_error"
    code = "resource_not_found"


class InsufficientCreditsError(GatewayError):
    """Caller balance is below the estimated cost of the request."""

    status_code = 402
    error_type = "insufficient_credits"
    code = "insufficient_credits"

    def __init__(self, *, required: float, available: float) -> None:
        super().__init__(
            "Insufficient credits",
            details={"required": required, "available": available},
        )
        self.required = required
        self.available = available


class RateLimitError(GatewayError):
    """Admission denied by a fixed-window limiter."""

    status_code = 429
    error_type = "rate_limit_error"
    code = "rate_limit_exceeded"

    def __init__(
        self,
        message: str,
        *,
        limit: int,
        window_s: float,
        reset_at: float,
        code: str | None = None,
        details: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
    ) -> None:
        merged = {
            "limit": limit,
            "window_ms": int(window_s * 1000),
            "reset_time": datetime.fromtimestamp(reset_at).astimezone().isoformat(),
        }
        merged.update(details or {})
        super().__init__(message, code=code, details=merged)
        self.limit = limit
        self.window_s = window_s
        self.reset_at = reset_at
        self.headers = dict(headers or {})


class ProviderError(GatewayError):
    """The upstream answered with an error response."""

    status_code = 502
    error_type = "provider_error"
    code = "provider_request_failed"

    def __init__(
        self,
        provider: str,
        message: str,
        *,
        upstream_status: int | None = None,
        body: Any = None,
    ) -> None:
        details: dict[str, Any] = {}
        if upstream_status is not None:
            details["status_code"] = upstream_status
        if body is not None:
            details["response_data"] = body
        super().__init__(
            f"Provider error ({provider}): {message}",
            status_code=upstream_status or 502,
            details=details,
            provider=provider,
        )
        self.upstream_status = upstream_status
        self.body = body


class ServiceUnavailableError(GatewayError):
    """No response from the upstream (timeout or network failure)."""

    status_code = 503
    error_type = "service_unavailable"
    code = "no_response"

    def __init__(
        self,
        message: str,
        *,
        provider: str | None = None,
        timeout: bool = False,
    ) -> None:
        details: dict[str, Any] = {"timeout": timeout}
        super().__init__(message, details=details, provider=provider)
        self.timeout = timeout


class NoProviderAvailableError(ServiceUnavailableError):
    code = "no_provider_available"

    def __init__(self, message: str = "No active providers available") -> None:
        super().__init__(message)


class InternalError(GatewayError):
    """Programming or configuration fault inside the gateway."""

    status_code = 500
    error_type = "internal_error"
    code = "internal_error"
