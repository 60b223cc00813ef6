"""Exponential backoff driven by consecutive failures."""

from dataclasses import dataclass, field
from typing import Optional

from leadsync.app.core.config import settings
from leadsync.app.core.logging import get_logger

logger = get_logger(__name__)


@dataclass
class BackoffState:
    """Backoff bookkeeping.

    Attributes:
        consecutive_errors: Failures since the last success
        current_delay_ms: Delay applied before the next acquisition
        multiplier: Exponential growth factor, strictly greater than 1
    """
    multiplier: float
    consecutive_errors: int = field(default=0)
    current_delay_ms: int = field(default=0)


class BackoffController:
    """Computes the delay applied before the next request after failures.

    delay = min(max_delay_ms, base_delay_ms * multiplier ^ (errors - 1))

    Example:
        >>> backoff = BackoffController(multiplier=2.0, base_delay_ms=1000)
        >>> backoff.on_failure()
        1000
        >>> backoff.on_failure()
        2000
        >>> backoff.on_success()
        >>> backoff.current_delay_ms
        0
    """

    def __init__(
        self,
        multiplier: float = 1.5,
        base_delay_ms: Optional[int] = None,
        max_delay_ms: Optional[int] = None,
    ):
        if multiplier <= 1:
            raise ValueError("multiplier must be greater than 1")
        self.base_delay_ms = base_delay_ms if base_delay_ms is not None else settings.backoff_base_delay_ms
        self.max_delay_ms = max_delay_ms if max_delay_ms is not None else settings.backoff_max_delay_ms
        if self.base_delay_ms < 0 or self.max_delay_ms < 0:
            raise ValueError("backoff delays must not be negative")
        self.state = BackoffState(multiplier=multiplier)

    @property
    def multiplier(self) -> float:
        return self.state.multiplier

    @property
    def consecutive_errors(self) -> int:
        return self.state.consecutive_errors

    @property
    def current_delay_ms(self) -> int:
        return self.state.current_delay_ms

    def calculate_delay(self, consecutive_errors: int) -> int:
        """Delay in milliseconds for a given number of consecutive errors."""
        if consecutive_errors <= 0:
            return 0
        delay = self.base_delay_ms * (self.multiplier ** (consecutive_errors - 1))
        return int(min(delay, self.max_delay_ms))

    def on_success(self) -> None:
        if self.state.consecutive_errors:
            logger.debug(f"Backoff reset after {self.state.consecutive_errors} consecutive errors")
        self.state.consecutive_errors = 0
        self.state.current_delay_ms = 0

    def on_failure(self) -> int:
        """Record a failure and return the new delay in milliseconds."""
        self.state.consecutive_errors += 1
        self.state.current_delay_ms = self.calculate_delay(self.state.consecutive_errors)
        logger.debug(
            f"Backoff escalated to {self.state.current_delay_ms}ms "
            f"after {self.state.consecutive_errors} consecutive errors"
        )
        return self.state.current_delay_ms

    def reset(self) -> None:
        self.state.consecutive_errors = 0
        self.state.current_delay_ms = 0
