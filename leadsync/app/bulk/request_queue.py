"""FIFO request queue for callers that submit one request at a time.

Requests are drained one at a time through the service's TokenLimiter.
Each request is retried on its own, independently of the batch backoff:

- 429 responses wait for the response's Retry-After (or a default) and
  are retried up to ``max_attempts`` times;
- 5xx and network errors are retried on the limiter's backoff curve;
- any other error rejects the request immediately.
"""

import asyncio
from collections import deque
from typing import Any, Awaitable, Callable, Deque, Optional, Tuple, TypeVar

from leadsync.app.core.config import settings
from leadsync.app.core.logging import get_log_context, get_logger
from leadsync.app.exceptions import (
    ErrorKind,
    RateLimitExceededError,
    classify_error,
    retry_after_seconds,
)
from leadsync.app.ratelimit.limiter import TokenLimiter

logger = get_logger(__name__)

U = TypeVar("U")

RequestFunction = Callable[[], Awaitable[Any]]


class RequestQueue:
    """Serializes ad hoc requests against one rate-limited service.

    Usage:
        queue = RequestQueue(registry.get("lemlist"))
        campaigns = await queue.submit(lambda: client.get("/campaigns"))
    """

    def __init__(
        self,
        limiter: TokenLimiter,
        max_attempts: Optional[int] = None,
        default_retry_after: Optional[float] = None,
    ):
        """Initialize the queue.

        Args:
            limiter: Limiter every attempt must pass through
            max_attempts: Attempts per request before giving up
            default_retry_after: Seconds to wait on a 429 without Retry-After
        """
        self.limiter = limiter
        self.max_attempts = max_attempts if max_attempts is not None else settings.request_queue_max_attempts
        self.default_retry_after = (
            default_retry_after if default_retry_after is not None
            else settings.request_queue_default_retry_after
        )
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self._queue: Deque[Tuple[RequestFunction, asyncio.Future]] = deque()
        self._worker: Optional[asyncio.Task] = None

    @property
    def pending(self) -> int:
        """Requests waiting to be drained (excluding the one in flight)."""
        return len(self._queue)

    @property
    def is_processing(self) -> bool:
        return self._worker is not None and not self._worker.done()

    async def submit(self, request_fn: Callable[[], Awaitable[U]]) -> U:
        """Queue a request and wait for its result.

        Raises:
            RateLimitExceededError: If the request stayed rate limited
            Exception: The request's own error when it is not retryable or
                transient retries were exhausted
        """
        future: asyncio.Future = asyncio.get_running_loop().create_future()
        self._queue.append((request_fn, future))
        if not self.is_processing:
            self._worker = asyncio.create_task(self._drain())
        return await future

    async def join(self) -> None:
        """Wait until every queued request has been resolved."""
        while self.is_processing:
            await asyncio.shield(self._worker)

    async def close(self) -> None:
        """Stop draining and cancel every request still waiting."""
        if self._worker is not None and not self._worker.done():
            self._worker.cancel()
            try:
                await self._worker
            except asyncio.CancelledError:
                pass
        while self._queue:
            _, future = self._queue.popleft()
            if not future.done():
                future.cancel()

    async def _drain(self) -> None:
        while self._queue:
            request_fn, future = self._queue.popleft()
            if future.done():
                # Submitter was cancelled while waiting
                continue
            try:
                result = await self._execute(request_fn)
            except asyncio.CancelledError:
                future.cancel()
                raise
            except Exception as e:
                if not future.done():
                    future.set_exception(e)
            else:
                if not future.done():
                    future.set_result(result)

    async def _execute(self, request_fn: RequestFunction) -> Any:
        attempts = 0
        while True:
            await self.limiter.acquire()
            try:
                return await request_fn()
            except Exception as e:
                kind = classify_error(e)
                if kind is ErrorKind.PERMANENT:
                    logger.debug(
                        f"Non-retryable error: {type(e).__name__}: {e}",
                        extra=get_log_context(service=self.limiter.service_name),
                    )
                    raise

                attempts += 1
                if kind is ErrorKind.RATE_LIMITED:
                    retry_after = retry_after_seconds(e)
                    delay = self.default_retry_after if retry_after is None else retry_after
                    if attempts >= self.max_attempts:
                        raise RateLimitExceededError(attempts, retry_after=delay) from e
                else:
                    delay = self.limiter.backoff.calculate_delay(attempts) / 1000
                    if attempts >= self.max_attempts:
                        logger.warning(
                            f"Max attempts ({self.max_attempts}) exceeded: {type(e).__name__}: {e}",
                            extra=get_log_context(service=self.limiter.service_name),
                        )
                        raise

                logger.warning(
                    f"{kind.value} error, retrying after {delay:.2f}s "
                    f"(attempt {attempts}/{self.max_attempts})",
                    extra=get_log_context(service=self.limiter.service_name),
                )
                await asyncio.sleep(delay)
