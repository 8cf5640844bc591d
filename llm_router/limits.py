"""Fixed-window rate limiting kept in process memory."""

from __future__ import annotations

import math
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime

import structlog

from .config import KeyPolicy
from .errors import RateLimitError

logger = structlog.get_logger(__name__)

MINUTE_S = 60.0


@dataclass
class WindowEntry:
    count: int
    reset_at: float


@dataclass(frozen=True)
class WindowStatus:
    limit: int
    count: int
    reset_at: float

    @property
    def remaining(self) -> int:
        return max(0, self.limit - self.count)


class FixedWindowStore:
    """Counters that reset fully once ``now > reset_at``."""

    def __init__(self, clock: Callable[[], float] = time.time) -> None:
        self._clock = clock
        self._entries: dict[str, WindowEntry] = {}
        self._lock = threading.Lock()

    def increment(self, key: str, window_s: float, amount: int = 1) -> WindowEntry:
        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)
            if entry is None or now > entry.reset_at:
                entry = WindowEntry(count=amount, reset_at=now + window_s)
                self._entries[key] = entry
            else:
                entry.count += amount
            return WindowEntry(count=entry.count, reset_at=entry.reset_at)

    def peek(self, key: str) -> WindowEntry | None:
        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if now > entry.reset_at:
                del self._entries[key]
                return None
            return WindowEntry(count=entry.count, reset_at=entry.reset_at)

    def get(self, key: str) -> int | None:
        entry = self.peek(key)
        return entry.count if entry else None

    def reset(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def cleanup(self) -> int:
        now = self._clock()
        with self._lock:
            expired = [k for k, e in self._entries.items() if now > e.reset_at]
            for k in expired:
                del self._entries[k]
        return len(expired)

    def now(self) -> float:
        return self._clock()


def _iso(ts: float) -> str:
    return datetime.fromtimestamp(ts).astimezone().isoformat()


def rate_limit_headers(status: WindowStatus, suffix: str) -> dict[str, str]:
    return {
        f"X-RateLimit-Limit-{suffix}": str(status.limit),
        f"X-RateLimit-Remaining-{suffix}": str(status.remaining),
        f"X-RateLimit-Reset-{suffix}": _iso(status.reset_at),
    }


class RateLimiter:
    """Per-key RPM and TPM admission on top of a shared window store."""

    def __init__(self, store: FixedWindowStore | None = None, window_s: float = MINUTE_S) -> None:
        self.store = store or FixedWindowStore()
        self.window_s = window_s

    def check_requests(self, policy: KeyPolicy) -> WindowStatus:
        key = f"apikey:{policy.key_id}"
        entry = self.store.increment(key, self.window_s)
        status = WindowStatus(limit=policy.rpm, count=entry.count, reset_at=entry.reset_at)
        if entry.count > policy.rpm:
            logger.warning(
                "api_key_rate_limit_exceeded",
                key_id=policy.key_id,
                caller_id=policy.caller_id,
                current=entry.count,
                limit=policy.rpm,
            )
            raise RateLimitError(
                f"API key rate limit exceeded. Limit: {policy.rpm} requests per minute",
                limit=policy.rpm,
                window_s=self.window_s,
                reset_at=entry.reset_at,
                code="api_key_rate_limit_exceeded",
                headers=rate_limit_headers(status, "Requests"),
            )
        return status

    def check_tokens(self, policy: KeyPolicy, estimated_tokens: int) -> WindowStatus:
        """Admit ``estimated_tokens`` against the TPM window.

        The estimate is only added when admitted and is never returned to
        the window, even if the upstream later reports fewer tokens.
        """
        key = f"tokens:{policy.key_id}"
        current = self.store.peek(key)
        used = current.count if current else 0
        if used + estimated_tokens > policy.tpm:
            reset_at = current.reset_at if current else self.store.now() + self.window_s
            status = WindowStatus(limit=policy.tpm, count=used, reset_at=reset_at)
            logger.warning(
                "token_rate_limit_exceeded",
                key_id=policy.key_id,
                caller_id=policy.caller_id,
                estimated_tokens=estimated_tokens,
                current_tokens=used,
                limit=policy.tpm,
            )
            raise RateLimitError(
                f"Token rate limit would be exceeded. Limit: {policy.tpm} tokens per minute",
                limit=policy.tpm,
                window_s=self.window_s,
                reset_at=reset_at,
                code="token_rate_limit_exceeded",
                details={"estimated_tokens": estimated_tokens, "current_tokens": used},
                headers=rate_limit_headers(status, "Tokens"),
            )
        entry = self.store.increment(key, self.window_s, amount=estimated_tokens)
        return WindowStatus(limit=policy.tpm, count=entry.count, reset_at=entry.reset_at)

    def token_status(self, policy: KeyPolicy) -> WindowStatus:
        current = self.store.peek(f"tokens:{policy.key_id}")
        if current is None:
            return WindowStatus(limit=policy.tpm, count=0, reset_at=self.store.now() + self.window_s)
        return WindowStatus(limit=policy.tpm, count=current.count, reset_at=current.reset_at)


class GlobalRateLimiter:
    """Coarse per-IP limit applied before authentication."""

    def __init__(
        self,
        store: FixedWindowStore,
        *,
        limit: int = 1000,
        window_s: float = 15 * MINUTE_S,
    ) -> None:
        self.store = store
        self.limit = limit
        self.window_s = window_s

    def headers(self, status: WindowStatus) -> dict[str, str]:
        return {
            "RateLimit-Limit": str(status.limit),
            "RateLimit-Remaining": str(status.remaining),
            "RateLimit-Reset": str(max(0, math.ceil(status.reset_at - self.store.now()))),
        }

    def check(self, client_ip: str) -> WindowStatus:
        entry = self.store.increment(f"ip:{client_ip}", self.window_s)
        status = WindowStatus(limit=self.limit, count=entry.count, reset_at=entry.reset_at)
        if entry.count > self.limit:
            logger.warning("global_rate_limit_exceeded", ip=client_ip, current=entry.count, limit=self.limit)
            raise RateLimitError(
                "Too many requests, please try again later",
                limit=self.limit,
                window_s=self.window_s,
                reset_at=entry.reset_at,
                headers=self.headers(status),
            )
        return status
