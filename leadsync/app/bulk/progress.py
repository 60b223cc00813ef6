"""Progress tracking for bulk operations."""

import time
from dataclasses import asdict, dataclass
from typing import Any, Callable, Optional

from leadsync.app.core.config import settings
from leadsync.app.core.logging import get_log_context, get_logger

logger = get_logger(__name__)


@dataclass
class ProgressSnapshot:
    """Point-in-time progress of a bulk operation."""
    operation_name: str
    processed: int
    total: int
    percentage: float
    errors: int
    rate: float
    elapsed_seconds: float
    eta_seconds: float

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class ProgressSummary:
    """Final record of a bulk operation."""
    operation_name: str
    total_items: int
    processed_items: int
    error_count: int
    success_rate: float
    elapsed_seconds: float
    average_rate: float
    completed: bool

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class ProgressTracker:
    """Counts processed and failed items against a known total.

    ``processed_items`` counts resolved attempts, so items that failed and
    were later retried successfully appear both in ``error_count`` and in
    ``processed_items``.

    Progress is logged at most once per ``log_interval`` seconds, and
    always once the total is reached.
    """

    def __init__(
        self,
        total_items: int,
        operation_name: str = "bulk-operation",
        log_interval: Optional[float] = None,
        on_progress: Optional[Callable[[ProgressSnapshot], None]] = None,
        service_name: Optional[str] = None,
    ):
        self.total_items = total_items
        self.operation_name = operation_name
        self.service_name = service_name
        self.log_interval = settings.progress_log_interval_seconds if log_interval is None else log_interval
        self.on_progress = on_progress
        self.processed_items = 0
        self.error_count = 0
        self.started_at = time.monotonic()
        self._last_emit = self.started_at

    @property
    def elapsed_seconds(self) -> float:
        return time.monotonic() - self.started_at

    @property
    def completed(self) -> bool:
        return self.processed_items >= self.total_items

    def update(self, processed_count: int, error_count: int = 0) -> Optional[ProgressSnapshot]:
        """Accumulate counts and emit a snapshot when one is due.

        Returns:
            The emitted snapshot, or None when no snapshot was due
        """
        self.processed_items += processed_count
        self.error_count += error_count

        now = time.monotonic()
        if now - self._last_emit < self.log_interval and not self.completed:
            return None

        self._last_emit = now
        snapshot = self.snapshot()
        eta = f"{snapshot.eta_seconds:.0f}s" if snapshot.eta_seconds > 0 else "complete"
        logger.info(
            f"{self.operation_name} progress: {snapshot.processed}/{snapshot.total} "
            f"({snapshot.percentage:.1f}%), errors={snapshot.errors}, "
            f"rate={snapshot.rate:.2f}/sec, elapsed={snapshot.elapsed_seconds:.0f}s, eta={eta}",
            extra=get_log_context(service=self.service_name, operation=self.operation_name),
        )
        if self.on_progress is not None:
            self.on_progress(snapshot)
        return snapshot

    def snapshot(self) -> ProgressSnapshot:
        elapsed = self.elapsed_seconds
        rate = self.processed_items / elapsed if elapsed > 0 else 0.0
        remaining = self.total_items - self.processed_items
        eta = remaining / rate if remaining > 0 and rate > 0 else 0.0
        if self.total_items > 0:
            percentage = min(100.0, self.processed_items / self.total_items * 100)
        else:
            percentage = 100.0

        return ProgressSnapshot(
            operation_name=self.operation_name,
            processed=self.processed_items,
            total=self.total_items,
            percentage=percentage,
            errors=self.error_count,
            rate=rate,
            elapsed_seconds=elapsed,
            eta_seconds=eta,
        )

    def summary(self) -> ProgressSummary:
        elapsed = self.elapsed_seconds
        if self.total_items > 0:
            success_rate = (self.processed_items - self.error_count) / self.total_items * 100
        else:
            success_rate = 100.0

        return ProgressSummary(
            operation_name=self.operation_name,
            total_items=self.total_items,
            processed_items=self.processed_items,
            error_count=self.error_count,
            success_rate=round(success_rate, 1),
            elapsed_seconds=round(elapsed, 2),
            average_rate=round(self.processed_items / elapsed, 2) if elapsed > 0 else 0.0,
            completed=self.completed,
        )
