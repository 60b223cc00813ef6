"""Rate limiting for calls to external services.

Token bucket limiting with server header feedback, exponential backoff and
per-service preset limits.
"""

from leadsync.app.ratelimit.backoff import BackoffController, BackoffState
from leadsync.app.ratelimit.limiter import TokenLimiter, parse_http_date
from leadsync.app.ratelimit.models import RateLimitStatus, RateState
from leadsync.app.ratelimit.presets import API_LIMITS, ServiceLimits, get_service_limits
from leadsync.app.ratelimit.registry import RateLimiterRegistry

__all__ = [
    # Models
    "RateState",
    "RateLimitStatus",
    "BackoffState",
    # Configuration
    "API_LIMITS",
    "ServiceLimits",
    "get_service_limits",
    # Main classes
    "BackoffController",
    "TokenLimiter",
    "RateLimiterRegistry",
    "parse_http_date",
]
