"""
Rate Limiter Module

Fixed window counters. A window resets once window_ms has elapsed since it opened.
"""

from dataclasses import dataclass


@dataclass(frozen=True)
class RateLimit:
    """Rate limit configuration"""
    max_requests: int
    window_ms: int

    def scaled(self, multiplier: float) -> "RateLimit":
        """Shrink the request budget, never below one request"""
        return RateLimit(max(1, int(self.max_requests * multiplier)), self.window_ms)


@dataclass(frozen=True)
class RateWindow:
    """Counter for one fixed window"""
    started_at: float
    count: int = 0

    def hit(self, now: float, limit: RateLimit) -> "RateWindow":
        """Count one request, opening a new window when the current one elapsed"""
        if (now - self.started_at) * 1000 >= limit.window_ms:
            return RateWindow(started_at=now, count=1)
        return RateWindow(started_at=self.started_at, count=self.count + 1)

    def reset_in_ms(self, now: float, limit: RateLimit) -> int:
        return max(0, int(limit.window_ms - (now - self.started_at) * 1000))


@dataclass(frozen=True)
class RateCheck:
    """Outcome of counting one request against a limit"""
    key: str
    count: int
    limit: int
    window_ms: int
    reset_in_ms: int
    throttled: bool = False

    @property
    def exceeded(self) -> bool:
        return self.count > self.limit
