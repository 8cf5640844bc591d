import pytest

from llm_router.config import KeyPolicy
from llm_router.errors import RateLimitError
from llm_router.limits import FixedWindowStore, GlobalRateLimiter, RateLimiter, WindowStatus, rate_limit_headers


class FakeClock:
    def __init__(self, now: float = 1_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now


def _policy(rpm: int = 3, tpm: int = 100) -> KeyPolicy:
    return KeyPolicy(key="k", key_id="kid", caller_id="c", rpm=rpm, tpm=tpm, credits=1.0)


def test_remaining_tracks_increments_within_window() -> None:
    clock = FakeClock()
    store = FixedWindowStore(clock)
    for _ in range(4):
        entry = store.increment("apikey:x", 60)
    status = WindowStatus(limit=3, count=entry.count, reset_at=entry.reset_at)
    assert entry.count == 4
    assert status.remaining == 0
    assert WindowStatus(limit=10, count=entry.count, reset_at=entry.reset_at).remaining == 6


def test_window_rolls_over_after_reset() -> None:
    clock = FakeClock()
    store = FixedWindowStore(clock)
    store.increment("k", 60)
    store.increment("k", 60)
    clock.now += 61
    assert store.get("k") is None
    entry = store.increment("k", 60)
    assert entry.count == 1
    assert entry.reset_at == clock.now + 60


def test_cleanup_drops_only_expired_entries() -> None:
    clock = FakeClock()
    store = FixedWindowStore(clock)
    store.increment("old", 10)
    store.increment("new", 100)
    clock.now += 50
    assert store.cleanup() == 1
    assert store.get("new") == 1


def test_rpm_rejects_after_limit() -> None:
    limiter = RateLimiter(FixedWindowStore(FakeClock()))
    pol = _policy(rpm=2)
    limiter.check_requests(pol)
    status = limiter.check_requests(pol)
    assert status.remaining == 0
    with pytest.raises(RateLimitError) as exc:
        limiter.check_requests(pol)
    assert exc.value.status_code == 429
    assert exc.value.code == "api_key_rate_limit_exceeded"
    assert exc.value.details["limit"] == 2
    assert exc.value.details["window_ms"] == 60_000


def test_tpm_checks_before_adding() -> None:
    clock = FakeClock()
    limiter = RateLimiter(FixedWindowStore(clock))
    pol = _policy(tpm=100)
    limiter.check_tokens(pol, 60)
    with pytest.raises(RateLimitError) as exc:
        limiter.check_tokens(pol, 50)
    assert exc.value.code == "token_rate_limit_exceeded"
    # the rejected estimate was not counted
    assert limiter.token_status(pol).count == 60
    assert limiter.check_tokens(pol, 40).remaining == 0


def test_tpm_resets_with_window() -> None:
    clock = FakeClock()
    limiter = RateLimiter(FixedWindowStore(clock))
    pol = _policy(tpm=100)
    limiter.check_tokens(pol, 100)
    clock.now += 61
    assert limiter.check_tokens(pol, 100).count == 100


def test_global_limit_is_per_ip() -> None:
    store = FixedWindowStore(FakeClock())
    limiter = GlobalRateLimiter(store, limit=1, window_s=900)
    limiter.check("10.0.0.1")
    limiter.check("10.0.0.2")
    with pytest.raises(RateLimitError):
        limiter.check("10.0.0.1")


def test_rate_limit_headers() -> None:
    headers = rate_limit_headers(WindowStatus(limit=60, count=1, reset_at=0.0), "Requests")
    assert headers["X-RateLimit-Limit-Requests"] == "60"
    assert headers["X-RateLimit-Remaining-Requests"] == "59"
    assert "X-RateLimit-Reset-Requests" in headers


def test_rejections_carry_window_headers() -> None:
    clock = FakeClock()
    limiter = RateLimiter(FixedWindowStore(clock))
    pol = _policy(rpm=1, tpm=100)

    limiter.check_requests(pol)
    with pytest.raises(RateLimitError) as exc:
        limiter.check_requests(pol)
    assert exc.value.headers["X-RateLimit-Limit-Requests"] == "1"
    assert exc.value.headers["X-RateLimit-Remaining-Requests"] == "0"

    limiter.check_tokens(pol, 30)
    with pytest.raises(RateLimitError) as exc:
        limiter.check_tokens(pol, 80)
    assert exc.value.headers["X-RateLimit-Limit-Tokens"] == "100"
    assert exc.value.headers["X-RateLimit-Remaining-Tokens"] == "70"


def test_global_limit_headers() -> None:
    clock = FakeClock()
    limiter = GlobalRateLimiter(FixedWindowStore(clock), limit=2, window_s=900)
    status = limiter.check("10.0.0.1")
    assert limiter.headers(status) == {
        "RateLimit-Limit": "2",
        "RateLimit-Remaining": "1",
        "RateLimit-Reset": "900",
    }
    limiter.check("10.0.0.1")
    with pytest.raises(RateLimitError) as exc:
        limiter.check("10.0.0.1")
    assert exc.value.headers["RateLimit-Remaining"] == "0"
