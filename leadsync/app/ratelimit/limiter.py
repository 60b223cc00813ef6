"""Header-aware token bucket limiter for outbound API calls.

The limiter combines three signals before letting a request through:

1. An explicit server directive (``Retry-After``) always wins.
2. The exponential backoff of the bound BackoffController.
3. A fixed-window token bucket, refilled per window or at the server's
   advertised ``X-RateLimit-Reset``.

Response headers are fed back through ``observe()`` so the bucket adapts to
the limits the server actually enforces.
"""

import asyncio
import time
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any, Mapping, Optional

from leadsync.app.core.logging import get_log_context, get_logger
from leadsync.app.ratelimit.backoff import BackoffController
from leadsync.app.ratelimit.models import RateLimitStatus, RateState
from leadsync.app.ratelimit.presets import ServiceLimits, get_service_limits

logger = get_logger(__name__)

# Floor for a single wait so a rounding miss at a window boundary cannot spin
_MIN_WAIT_SECONDS = 0.001


def _find_header(headers: Mapping[str, Any], name: str) -> Optional[str]:
    """Case-insensitive header lookup that works for dicts and httpx.Headers."""
    target = name.lower()
    for key, value in headers.items():
        if str(key).lower() == target and value is not None:
            return str(value).strip()
    return None


def _parse_int(value: Optional[str]) -> Optional[int]:
    if value is None or value == "":
        return None
    try:
        return int(float(value))
    except ValueError:
        return None


def parse_http_date(value: str) -> Optional[float]:
    """Parse an ISO-8601 or RFC 1123 date into epoch seconds."""
    candidate = value.strip()
    parsed: Optional[datetime] = None
    try:
        parsed = datetime.fromisoformat(candidate)
    except ValueError:
        try:
            parsed = parsedate_to_datetime(candidate)
        except (TypeError, ValueError):
            parsed = None
    if parsed is None:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.timestamp()


class TokenLimiter:
    """Token bucket limiter bound to one external service.

    Usage:
        limiter = TokenLimiter("lemlist")

        await limiter.acquire()
        response = await client.get(url)
        limiter.observe(response.headers)

    The acquire sequence is serialized with an asyncio.Lock so one limiter
    can be shared by several tasks talking to the same service.
    """

    def __init__(
        self,
        service_name: str = "database",
        limits: Optional[ServiceLimits] = None,
        backoff: Optional[BackoffController] = None,
    ):
        """Initialize the limiter.

        Args:
            service_name: Service whose preset limits apply
            limits: Explicit limits (defaults to the service preset)
            backoff: Backoff controller to honour (one is created if omitted)
        """
        self.service_name = service_name
        self.limits = limits or get_service_limits(service_name)
        self.backoff = backoff or BackoffController(multiplier=self.limits.backoff_multiplier)
        self.state = RateState(
            max_requests=self.limits.max_requests,
            window_duration_ms=self.limits.window_duration_ms,
        )
        self._lock = asyncio.Lock()

        logger.info(
            f"TokenLimiter initialized: {self.state.max_requests} requests per "
            f"{self.state.window_duration_ms}ms",
            extra=get_log_context(service=service_name),
        )

    @property
    def tokens(self) -> float:
        return self.state.tokens

    @property
    def max_requests(self) -> int:
        return self.state.max_requests

    def is_rate_limited(self) -> bool:
        """Check whether a server Retry-After deadline is still pending."""
        return self.state.retry_after_remaining() > 0

    async def acquire(self) -> None:
        """Suspend until a request may proceed, then consume a token."""
        async with self._lock:
            # observe() may push the deadline out while we sleep
            wait = self.state.retry_after_remaining()
            while wait > 0:
                logger.warning(
                    f"Rate limited by server, waiting {wait:.2f}s",
                    extra=get_log_context(service=self.service_name),
                )
                await asyncio.sleep(wait)
                wait = self.state.retry_after_remaining()
            self.state.server_retry_after = None

            delay_ms = self.backoff.current_delay_ms
            if delay_ms > 0:
                logger.debug(
                    f"Applying backoff delay of {delay_ms}ms "
                    f"({self.backoff.consecutive_errors} consecutive errors)",
                    extra=get_log_context(service=self.service_name),
                )
                await asyncio.sleep(delay_ms / 1000)

            while True:
                self.state.refill()
                if self.state.try_consume():
                    return
                wait = max(self.state.seconds_until_refill(), _MIN_WAIT_SECONDS)
                logger.debug(
                    f"No tokens available, waiting {wait * 1000:.0f}ms",
                    extra=get_log_context(service=self.service_name),
                )
                await asyncio.sleep(wait)

    def observe(self, headers: Optional[Mapping[str, Any]]) -> None:
        """Update the bucket from rate limit response headers.

        Recognized headers (case-insensitive): Retry-After,
        X-RateLimit-Limit, X-RateLimit-Remaining, X-RateLimit-Reset.
        Missing or malformed headers leave the matching field untouched.

        Args:
            headers: Response headers (dict or httpx.Headers), may be None
        """
        if not headers:
            return

        retry_after = _find_header(headers, "retry-after")
        if retry_after:
            seconds = _parse_int(retry_after)
            if seconds is None:
                deadline = parse_http_date(retry_after)
            else:
                deadline = time.time() + max(0, seconds)
            if deadline is not None:
                self.state.server_retry_after = deadline
                logger.warning(
                    f"Rate limited! Must wait until "
                    f"{datetime.fromtimestamp(deadline, tz=timezone.utc).isoformat()}",
                    extra=get_log_context(service=self.service_name),
                )
            else:
                logger.debug(f"Ignoring unparseable Retry-After header: {retry_after!r}")

        limit = _parse_int(_find_header(headers, "x-ratelimit-limit"))
        if limit is not None:
            self.state.clamp_limit(limit)

        remaining = _parse_int(_find_header(headers, "x-ratelimit-remaining"))
        if remaining is not None:
            self.state.clamp_remaining(remaining)
            logger.debug(
                f"Rate limit remaining: {self.state.tokens:g}/{self.state.max_requests}",
                extra=get_log_context(service=self.service_name),
            )

        reset = _find_header(headers, "x-ratelimit-reset")
        if reset:
            try:
                reset_at: Optional[float] = float(reset)
            except ValueError:
                reset_at = parse_http_date(reset)
            if reset_at is not None:
                self.state.server_reset_at = reset_at
            else:
                logger.debug(f"Ignoring unparseable X-RateLimit-Reset header: {reset!r}")

    def status(self) -> RateLimitStatus:
        """Return a snapshot of the limiter state."""
        return RateLimitStatus(
            service_name=self.service_name,
            tokens=self.state.tokens,
            max_requests=self.state.max_requests,
            window_duration_ms=self.state.window_duration_ms,
            retry_after_seconds=self.state.retry_after_remaining(),
            server_reset_at=self.state.server_reset_at,
            server_remaining=self.state.server_remaining,
            backoff_delay_ms=self.backoff.current_delay_ms,
            consecutive_errors=self.backoff.consecutive_errors,
        )
