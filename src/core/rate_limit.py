"""Fixed-window rate limiter for slash commands."""

from __future__ import annotations

import time
from typing import Callable

from core.config import RateLimitConfig


class RateLimiter:
    """Allow ``max_requests`` per user and command within a rolling window."""

    def __init__(self, config: RateLimitConfig, clock: Callable[[], float] = time.monotonic) -> None:
        self._config = config
        self._clock = clock
        self._hits: dict[str, list[float]] = {}

    def _key(self, user_id: str, command: str) -> str:
        return f"{user_id}:{command}"

    def _recent(self, key: str, now: float) -> list[float]:
        window_start = now - self._config.window_seconds
        recent = [stamp for stamp in self._hits.get(key, []) if stamp > window_start]
        if recent:
            self._hits[key] = recent
        else:
            self._hits.pop(key, None)
        return recent

    def allow(self, user_id: str, command: str) -> bool:
        """Record a hit and return False when the user is over the limit."""

        if not self._config.enabled:
            return True
        now = self._clock()
        key = self._key(user_id, command)
        recent = self._recent(key, now)
        if len(recent) >= self._config.max_requests:
            return False
        self._hits.setdefault(key, []).append(now)
        return True

    def retry_after(self, user_id: str, command: str) -> float:
        """Seconds until the oldest hit in the window expires."""

        now = self._clock()
        recent = self._recent(self._key(user_id, command), now)
        if len(recent) < self._config.max_requests:
            return 0.0
        return max(recent[0] + self._config.window_seconds - now, 0.0)
