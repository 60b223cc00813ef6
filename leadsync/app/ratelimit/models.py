"""Rate limiting data models.

This module contains dataclasses for token bucket state and status snapshots.
Window bookkeeping uses the monotonic clock; server-provided deadlines
(Retry-After, X-RateLimit-Reset) are wall-clock epoch seconds.
"""

import time
from dataclasses import asdict, dataclass, field
from typing import Any, Optional


@dataclass
class RateState:
    """Token bucket state for one external service.

    Invariant: ``0 <= tokens <= max_requests`` after every method call.
    """
    max_requests: int
    window_duration_ms: int = 1000
    tokens: float = -1.0
    window_started_at: float = field(default_factory=time.monotonic)
    server_retry_after: Optional[float] = None
    server_reset_at: Optional[float] = None
    server_remaining: Optional[int] = None

    def __post_init__(self) -> None:
        if self.max_requests < 1:
            raise ValueError("max_requests must be at least 1")
        if self.window_duration_ms < 1:
            raise ValueError("window_duration_ms must be at least 1")
        if self.tokens < 0:
            self.tokens = float(self.max_requests)
        self.tokens = min(float(self.tokens), float(self.max_requests))

    @property
    def window_seconds(self) -> float:
        return self.window_duration_ms / 1000

    def retry_after_remaining(self, now: Optional[float] = None) -> float:
        """Seconds left before the server allows another request."""
        if self.server_retry_after is None:
            return 0.0
        now = time.time() if now is None else now
        return max(0.0, self.server_retry_after - now)

    def refill(self, now: Optional[float] = None, wall_now: Optional[float] = None) -> float:
        """Add tokens for elapsed windows or a passed server reset.

        Returns:
            Number of tokens added
        """
        now = time.monotonic() if now is None else now
        wall_now = time.time() if wall_now is None else wall_now
        before = self.tokens

        if self.server_reset_at is not None and wall_now >= self.server_reset_at:
            self.tokens = float(self.max_requests)
            self.server_reset_at = None
            self.window_started_at = now
            return self.tokens - before

        windows = int((now - self.window_started_at) // self.window_seconds)
        if windows > 0:
            self.tokens = min(float(self.max_requests), self.tokens + windows * self.max_requests)
            self.window_started_at += windows * self.window_seconds
        return self.tokens - before

    def try_consume(self) -> bool:
        """Consume one token if a whole token is available."""
        if self.tokens >= 1:
            self.tokens -= 1
            return True
        return False

    def seconds_until_refill(self, now: Optional[float] = None, wall_now: Optional[float] = None) -> float:
        """Time to wait before the next refill can add tokens."""
        now = time.monotonic() if now is None else now
        wall_now = time.time() if wall_now is None else wall_now
        if self.server_reset_at is not None:
            return max(0.0, self.server_reset_at - wall_now)
        window_end = self.window_started_at + self.window_seconds
        return max(0.0, window_end - now)

    def clamp_limit(self, limit: int) -> None:
        """Lower max_requests to a server-advertised limit (never raise it)."""
        self.max_requests = max(1, min(self.max_requests, limit))
        self.tokens = min(self.tokens, float(self.max_requests))

    def clamp_remaining(self, remaining: int) -> None:
        """Lower available tokens to the server-reported remaining count."""
        self.server_remaining = max(0, remaining)
        self.tokens = max(0.0, min(self.tokens, float(self.server_remaining)))


@dataclass
class RateLimitStatus:
    """Snapshot of a limiter's state."""
    service_name: str
    tokens: float
    max_requests: int
    window_duration_ms: int
    retry_after_seconds: float
    server_reset_at: Optional[float]
    server_remaining: Optional[int]
    backoff_delay_ms: int
    consecutive_errors: int

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return asdict(self)
