"""Per-service limiter bindings shared across bulk operations.

A bulk job started against a service that was just throttled reuses the
same limiter and backoff state, so it waits out the previous violation
instead of immediately re-tripping it.
"""

from typing import Any, Dict, Mapping, Optional

from leadsync.app.core.logging import get_logger
from leadsync.app.ratelimit.backoff import BackoffController
from leadsync.app.ratelimit.limiter import TokenLimiter
from leadsync.app.ratelimit.presets import get_service_limits

logger = get_logger(__name__)


class RateLimiterRegistry:
    """Owns one TokenLimiter (with its BackoffController) per service name.

    Usage:
        registry = RateLimiterRegistry()
        limiter = registry.get("attio")
        engine = BulkSyncEngine("attio", limiter=limiter)
    """

    def __init__(self, overrides: Optional[Mapping[str, Mapping[str, Any]]] = None):
        """Initialize the registry.

        Args:
            overrides: Per-service limit overrides applied on first use
        """
        self._overrides = {k.lower(): dict(v) for k, v in (overrides or {}).items()}
        self._limiters: Dict[str, TokenLimiter] = {}

    def get(self, service_name: str) -> TokenLimiter:
        """Return the limiter for a service, creating it on first use."""
        key = service_name.strip().lower()
        limiter = self._limiters.get(key)
        if limiter is None:
            limits = get_service_limits(key, self._overrides.get(key))
            limiter = TokenLimiter(
                service_name=key,
                limits=limits,
                backoff=BackoffController(multiplier=limits.backoff_multiplier),
            )
            self._limiters[key] = limiter
            logger.debug(f"Registered limiter for service '{key}'")
        return limiter

    def __contains__(self, service_name: str) -> bool:
        return service_name.strip().lower() in self._limiters

    def services(self) -> list[str]:
        return list(self._limiters)

    def get_all_status(self) -> Dict[str, dict]:
        """Status snapshot of every registered limiter."""
        return {name: limiter.status().to_dict() for name, limiter in self._limiters.items()}

    def reset(self, service_name: Optional[str] = None) -> None:
        """Forget one service's limiter, or all of them."""
        if service_name is None:
            self._limiters.clear()
        else:
            self._limiters.pop(service_name.strip().lower(), None)
