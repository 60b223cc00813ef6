"""Adaptive batch queue.

Batches grow slowly on sustained success and shrink immediately on failure.
Growth happens on every third successful batch (x1.2), a failure shrinks the
batch (x0.7) and puts the failed items back at the front of the queue.
"""

import math
from collections import deque
from dataclasses import asdict, dataclass
from typing import Any, Generic, Iterable, List, Optional, Sequence, TypeVar

from leadsync.app.core.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

GROWTH_FACTOR = 1.2
SHRINK_FACTOR = 0.7
GROWTH_EVERY = 3


@dataclass
class Batch(Generic[T]):
    """A slice of work taken from the front of the queue."""
    items: List[T]
    batch_number: int
    remaining: int

    def __len__(self) -> int:
        return len(self.items)


@dataclass
class QueueStatus:
    """Snapshot of the queue's counters."""
    remaining_items: int
    current_batch_size: int
    successful_batches: int
    failed_batches: int
    total_processed: int

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class AdaptiveBatchQueue(Generic[T]):
    """FIFO work queue with a feedback-controlled batch size.

    Attributes:
        current_batch_size: Size of the next batch, within [min, max]
        successful_batches: Number of report_success calls
        failed_batches: Number of report_failure calls
        total_processed: Items reported as processed successfully
    """

    def __init__(
        self,
        items: Iterable[T],
        initial_batch_size: int = 50,
        min_batch_size: int = 5,
        max_batch_size: int = 1000,
    ):
        if min_batch_size < 1:
            raise ValueError("min_batch_size must be at least 1")
        if min_batch_size > max_batch_size:
            raise ValueError(
                f"min_batch_size ({min_batch_size}) exceeds max_batch_size ({max_batch_size})"
            )
        self._pending: deque[T] = deque(items)
        self.min_batch_size = min_batch_size
        self.max_batch_size = max_batch_size
        self.current_batch_size = min(max_batch_size, max(min_batch_size, initial_batch_size))
        self.successful_batches = 0
        self.failed_batches = 0
        self.total_processed = 0

    def __len__(self) -> int:
        return len(self._pending)

    def has_more(self) -> bool:
        return bool(self._pending)

    def next_batch(self) -> Optional[Batch[T]]:
        """Take the next batch from the front, or None once exhausted."""
        if not self._pending:
            return None

        size = min(self.current_batch_size, len(self._pending))
        items = [self._pending.popleft() for _ in range(size)]
        return Batch(
            items=items,
            batch_number=self.successful_batches + self.failed_batches + 1,
            remaining=len(self._pending),
        )

    def report_success(self, processed_count: int) -> None:
        self.successful_batches += 1
        self.total_processed += processed_count

        if self.successful_batches % GROWTH_EVERY == 0 and self.current_batch_size < self.max_batch_size:
            self.current_batch_size = min(
                self.max_batch_size,
                math.ceil(self.current_batch_size * GROWTH_FACTOR),
            )
            logger.debug(
                f"Increased batch size to {self.current_batch_size} "
                f"after {self.successful_batches} successful batches"
            )

    def report_failure(self, failed_items: Optional[Sequence[T]] = None) -> None:
        """Requeue failed items at the front and shrink the batch size."""
        self.failed_batches += 1

        if failed_items:
            # extendleft reverses, so feed it reversed to keep the original order
            self._pending.extendleft(reversed(list(failed_items)))

        self.current_batch_size = max(
            self.min_batch_size,
            math.floor(self.current_batch_size * SHRINK_FACTOR),
        )
        logger.warning(
            f"Decreased batch size to {self.current_batch_size} due to failure "
            f"(failed batches: {self.failed_batches}, requeued: {len(failed_items or [])})"
        )

    def requeue(self, items: Sequence[T]) -> None:
        """Put an interrupted batch back at the front without counting a failure."""
        self._pending.extendleft(reversed(list(items)))

    def status(self) -> QueueStatus:
        return QueueStatus(
            remaining_items=len(self._pending),
            current_batch_size=self.current_batch_size,
            successful_batches=self.successful_batches,
            failed_batches=self.failed_batches,
            total_processed=self.total_processed,
        )
