"""Bulk sync engine.

Drives a caller-supplied async batch processor over a list of items,
combining the service's TokenLimiter and BackoffController with an
AdaptiveBatchQueue and a ProgressTracker.

Example:
    >>> engine = BulkSyncEngine("attio")
    >>> engine.initialize(leads, "attio-upsert")
    >>> outcome = await engine.run_all(upsert_people, max_retries=3)
    >>> outcome.summary.completed
    True
"""

import asyncio
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Generic, List, Optional, Sequence, TypeVar

from leadsync.app.bulk.progress import ProgressSnapshot, ProgressSummary, ProgressTracker
from leadsync.app.bulk.queue import AdaptiveBatchQueue, QueueStatus
from leadsync.app.core.config import settings
from leadsync.app.core.logging import get_log_context, get_logger
from leadsync.app.exceptions import (
    RetryExhaustedError,
    SyncError,
    classify_error,
    response_headers_of,
)
from leadsync.app.ratelimit.limiter import TokenLimiter
from leadsync.app.ratelimit.presets import ServiceLimits

logger = get_logger(__name__)

T = TypeVar("T")
U = TypeVar("U")

BatchProcessor = Callable[[List[T]], Awaitable[U]]


@dataclass
class BatchResult(Generic[U]):
    """Outcome of one successfully processed batch."""
    batch_number: int
    processed: int
    remaining: int
    result: U
    duration_ms: float
    success: bool = True


@dataclass
class BulkRunResult(Generic[U]):
    """Everything run_all produced, including partial completion."""
    results: List[BatchResult[U]] = field(default_factory=list)
    summary: Optional[ProgressSummary] = None
    queue_status: Optional[QueueStatus] = None

    @property
    def completed(self) -> bool:
        return bool(self.summary and self.summary.completed)


class BulkSyncEngine:
    """Rate-limited adaptive batch runner for one external service.

    Args:
        service_name: Service whose preset limits apply
        limiter: Shared limiter for the service (see RateLimiterRegistry);
            a private one is created when omitted
        limits: Explicit limits; defaults to the limiter's limits
        on_progress: Optional callback receiving progress snapshots
    """

    def __init__(
        self,
        service_name: str = "database",
        limiter: Optional[TokenLimiter] = None,
        limits: Optional[ServiceLimits] = None,
        on_progress: Optional[Callable[[ProgressSnapshot], None]] = None,
    ):
        self.limiter = limiter or TokenLimiter(service_name, limits=limits)
        self.service_name = self.limiter.service_name
        self.limits = limits or self.limiter.limits
        self.on_progress = on_progress
        self.queue: Optional[AdaptiveBatchQueue] = None
        self.progress: Optional[ProgressTracker] = None
        self.operation_name: Optional[str] = None

    @property
    def backoff(self):
        return self.limiter.backoff

    def _context(self, **extra: Any) -> dict:
        return get_log_context(service=self.service_name, operation=self.operation_name, **extra)

    def initialize(self, items: Sequence[T], operation_name: str) -> None:
        """Prepare a fresh queue and tracker for a bulk operation."""
        self.operation_name = operation_name
        self.queue = AdaptiveBatchQueue(
            items,
            initial_batch_size=self.limits.max_batch_size,
            min_batch_size=self.limits.min_batch_size,
            max_batch_size=self.limits.max_batch_size,
        )
        self.progress = ProgressTracker(
            total_items=len(items),
            operation_name=operation_name,
            on_progress=self.on_progress,
            service_name=self.service_name,
        )
        estimated = -(-len(items) // self.limits.max_batch_size)
        logger.info(
            f"Initialized bulk operation '{operation_name}': "
            f"{len(items)} items, ~{estimated} batches",
            extra=self._context(),
        )

    async def run_all(
        self,
        batch_processor: BatchProcessor,
        max_retries: Optional[int] = None,
        stop_on_error: bool = False,
    ) -> BulkRunResult:
        """Process every queued item in adaptive batches.

        A failing batch is requeued at the front, the batch size shrinks and
        the backoff escalates. ``max_retries`` consecutive failures end the
        run: with ``stop_on_error`` a RetryExhaustedError is raised, otherwise
        the partial result is returned with ``summary.completed == False``
        and the untouched items still queued. Rate-limit failures (429) count
        like any other failure; their headers still reach the limiter.

        Raises:
            SyncError: If initialize() was not called first
            RetryExhaustedError: On exhausted retries with stop_on_error
        """
        if self.queue is None or self.progress is None:
            raise SyncError("initialize() must be called before run_all()")

        max_retries = settings.bulk_max_retries if max_retries is None else max_retries
        outcome: BulkRunResult = BulkRunResult()
        retry_count = 0

        while self.queue.has_more():
            # Acquire before dequeuing so a cancelled wait leaves the queue untouched
            await self.limiter.acquire()
            batch = self.queue.next_batch()
            if batch is None:
                break

            try:
                started = time.monotonic()
                result = await batch_processor(batch.items)
                duration_ms = (time.monotonic() - started) * 1000
            except asyncio.CancelledError:
                self.queue.requeue(batch.items)
                raise
            except Exception as e:
                self.queue.report_failure(batch.items)
                self.progress.update(0, len(batch.items))
                self.limiter.observe(response_headers_of(e))
                delay_ms = self.backoff.on_failure()
                retry_count += 1

                logger.error(
                    f"Batch {batch.batch_number} failed ({len(batch.items)} items, "
                    f"{classify_error(e).value}): {type(e).__name__}: {e}. Next backoff {delay_ms}ms",
                    extra=self._context(batch_number=batch.batch_number),
                )

                if retry_count >= max_retries:
                    logger.error(
                        f"Max retries ({max_retries}) exceeded, stopping batch processing",
                        extra=self._context(),
                    )
                    outcome.summary = self.progress.summary()
                    outcome.queue_status = self.queue.status()
                    if stop_on_error:
                        raise RetryExhaustedError(
                            self.operation_name or "bulk-operation", retry_count, outcome
                        ) from e
                    break

                logger.warning(
                    f"Retrying batch processing ({retry_count}/{max_retries})",
                    extra=self._context(),
                )
                continue

            self.queue.report_success(len(batch.items))
            self.progress.update(len(batch.items))
            self.backoff.on_success()
            retry_count = 0

            outcome.results.append(
                BatchResult(
                    batch_number=batch.batch_number,
                    processed=len(batch.items),
                    remaining=batch.remaining,
                    result=result,
                    duration_ms=duration_ms,
                )
            )
            logger.debug(
                f"Batch {batch.batch_number} processed: {len(batch.items)} items "
                f"in {duration_ms:.0f}ms, {batch.remaining} remaining",
                extra=self._context(batch_number=batch.batch_number, duration_ms=round(duration_ms, 1)),
            )

        outcome.summary = self.progress.summary()
        outcome.queue_status = self.queue.status()
        logger.info(
            f"Bulk operation '{self.operation_name}' finished: "
            f"{outcome.summary.processed_items}/{outcome.summary.total_items} processed, "
            f"{outcome.summary.error_count} errors, success rate {outcome.summary.success_rate}%, "
            f"completed={outcome.summary.completed}",
            extra=self._context(),
        )
        return outcome

    async def call_once(self, api_call: Callable[[], Awaitable[U]]) -> U:
        """Make a single rate-limited call without queue or progress bookkeeping.

        Errors are re-raised after escalating the backoff and absorbing any
        rate limit headers the error response carried.
        """
        await self.limiter.acquire()
        try:
            result = await api_call()
        except Exception as e:
            self.backoff.on_failure()
            self.limiter.observe(response_headers_of(e))
            raise
        self.backoff.on_success()
        return result

    def status(self) -> dict[str, Any]:
        return {
            "limiter": self.limiter.status().to_dict(),
            "operation_name": self.operation_name,
            "progress": self.progress.summary().to_dict() if self.progress else None,
            "queue": self.queue.status().to_dict() if self.queue else None,
        }
