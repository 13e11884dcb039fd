from __future__ import annotations

from core.config import RateLimitConfig
from core.rate_limit import RateLimiter


class FakeClock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


def test_blocks_after_max_requests_in_window() -> None:
    clock = FakeClock()
    limiter = RateLimiter(RateLimitConfig(window_seconds=60, max_requests=5), clock=clock)

    assert all(limiter.allow("u1", "unread") for _ in range(5))
    assert limiter.allow("u1", "unread") is False
    assert limiter.retry_after("u1", "unread") == 60.0


def test_window_expiry_allows_again() -> None:
    clock = FakeClock()
    limiter = RateLimiter(RateLimitConfig(window_seconds=60, max_requests=1), clock=clock)

    assert limiter.allow("u1", "unread")
    clock.now += 61
    assert limiter.allow("u1", "unread")


def test_limits_are_per_user_and_command() -> None:
    limiter = RateLimiter(RateLimitConfig(window_seconds=60, max_requests=1), clock=FakeClock())

    assert limiter.allow("u1", "unread")
    assert limiter.allow("u2", "unread")
    assert limiter.allow("u1", "status")
    assert limiter.allow("u1", "unread") is False


def test_disabled_limiter_always_allows() -> None:
    limiter = RateLimiter(RateLimitConfig(enabled=False, max_requests=1), clock=FakeClock())
    assert all(limiter.allow("u1", "unread") for _ in range(10))
