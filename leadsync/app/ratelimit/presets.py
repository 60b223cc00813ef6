"""Per-service rate limit profiles.

Values come from each API's published limits, rounded down to leave
headroom for other consumers of the same account. They are defaults:
explicit overrides (in code or via RATE_LIMIT_OVERRIDES) always win.
"""

from typing import Any, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from leadsync.app.core.config import settings


class ServiceLimits(BaseModel):
    """Validated rate limit configuration for one external service.

    Attributes:
        requests_per_second: Sustained request rate allowed
        max_batch_size: Largest batch dispatched to the service
        min_batch_size: Smallest batch the adaptive queue shrinks to
        backoff_multiplier: Growth factor of the exponential backoff
        window_duration_ms: Token bucket window length
        requests_per_minute: Published per-minute ceiling (informational)
        burst_limit: Published burst allowance (informational)
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    requests_per_second: float = Field(default=10.0, gt=0)
    max_batch_size: int = Field(default=50, ge=1)
    min_batch_size: int = Field(default=5, ge=1)
    backoff_multiplier: float = Field(default=1.5, gt=1)
    window_duration_ms: int = Field(default=1000, ge=1)
    requests_per_minute: Optional[int] = Field(default=None, ge=1)
    burst_limit: Optional[int] = Field(default=None, ge=1)

    @model_validator(mode="after")
    def validate_batch_bounds(self) -> "ServiceLimits":
        if self.min_batch_size > self.max_batch_size:
            raise ValueError(
                f"min_batch_size ({self.min_batch_size}) exceeds max_batch_size ({self.max_batch_size})"
            )
        return self

    @property
    def max_requests(self) -> int:
        """Tokens available per window, never less than one."""
        per_window = self.requests_per_second * self.window_duration_ms / 1000
        return max(1, int(per_window))

    def merged(self, overrides: Optional[Mapping[str, Any]] = None) -> "ServiceLimits":
        """Return a copy with overrides applied and re-validated."""
        if not overrides:
            return self
        data = self.model_dump()
        data.update(overrides)
        return ServiceLimits(**data)


API_LIMITS: dict[str, ServiceLimits] = {
    "smartlead": ServiceLimits(
        requests_per_second=10, requests_per_minute=300,
        max_batch_size=100, burst_limit=5, backoff_multiplier=1.5,
    ),
    # 20 calls per 2 seconds
    "lemlist": ServiceLimits(
        requests_per_second=10, requests_per_minute=300,
        max_batch_size=50, burst_limit=3, backoff_multiplier=2.0,
    ),
    # CRM, small batches
    "attio": ServiceLimits(
        requests_per_second=5, requests_per_minute=150,
        max_batch_size=25, burst_limit=2, backoff_multiplier=2.0,
    ),
    # Analytics events API is the most generous
    "mixpanel": ServiceLimits(
        requests_per_second=50, requests_per_minute=2000,
        max_batch_size=200, burst_limit=10, backoff_multiplier=1.2,
    ),
    "database": ServiceLimits(
        requests_per_second=100, requests_per_minute=6000,
        max_batch_size=500, burst_limit=20, backoff_multiplier=1.1,
    ),
    # 100 per minute
    "apollo": ServiceLimits(
        requests_per_second=1.67, requests_per_minute=100,
        max_batch_size=10, burst_limit=2, backoff_multiplier=1.5,
    ),
    "slack": ServiceLimits(
        requests_per_second=1, requests_per_minute=60,
        max_batch_size=5, burst_limit=1, backoff_multiplier=2.0,
    ),
    "gemini": ServiceLimits(
        requests_per_second=15, requests_per_minute=900,
        max_batch_size=50, burst_limit=5, backoff_multiplier=1.5,
    ),
    # ~30 requests per minute per webhook
    "discord": ServiceLimits(
        requests_per_second=5, requests_per_minute=30,
        max_batch_size=5, burst_limit=2, backoff_multiplier=2.0,
    ),
}


def get_service_limits(
    service_name: str,
    overrides: Optional[Mapping[str, Any]] = None,
) -> ServiceLimits:
    """Resolve the limits for a service.

    Unknown services use the default profile. The configured window and
    minimum batch size are applied first, then environment overrides from
    settings, then the explicit ``overrides``.

    Raises:
        pydantic.ValidationError: If the merged configuration is invalid.
    """
    key = (service_name or "").strip().lower()
    base = API_LIMITS.get(key) or API_LIMITS[settings.rate_limit_default_service]
    limits = base.merged({
        "window_duration_ms": settings.rate_limit_window_ms,
        # A tiny profile (slack, discord) must stay valid under a larger global minimum
        "min_batch_size": min(settings.rate_limit_min_batch_size, base.max_batch_size),
    })
    limits = limits.merged(settings.rate_limit_overrides.get(key))
    return limits.merged(overrides)
