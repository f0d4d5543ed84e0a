from __future__ import annotations

import time
from collections import defaultdict, deque
from dataclasses import dataclass
from typing import Deque, Dict

from app.services.errors import RateLimited


@dataclass
class RateLimitResult:
    allowed: bool
    retry_after: float


class RateLimiter:
    """Sliding window of ``max_calls`` per ``period_seconds`` for each key."""

    def __init__(self, max_calls: int, period_seconds: int) -> None:
        self.max_calls = max_calls
        self.period_seconds = period_seconds
        self._calls: Dict[str, Deque[float]] = defaultdict(deque)

    def allow(self, key: str) -> RateLimitResult:
        now = time.monotonic()
        window = self._calls[key]
        while window and now - window[0] > self.period_seconds:
            window.popleft()
        if len(window) >= self.max_calls:
            retry_after = self.period_seconds - (now - window[0])
            return RateLimitResult(False, max(retry_after, 0))
        window.append(now)
        return RateLimitResult(True, 0)

    def require(self, key: str) -> None:
        result = self.allow(key)
        if not result.allowed:
            raise RateLimited(result.retry_after)


# Bot commands, keyed by "<telegram id>:<command>".
rate_limiter = RateLimiter(max_calls=5, period_seconds=10)
