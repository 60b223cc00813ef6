"""Custom exceptions and error classification for the sync engine."""

from enum import Enum
from typing import Any, Optional

import httpx


class SyncError(Exception):
    """Base class for sync engine exceptions.

    Carries the upstream HTTP status code when one is known so the error
    classifier can treat engine errors and httpx errors uniformly.
    """
    status_code: Optional[int] = None

    def __init__(self, message: str = "Sync error"):
        self.message = message
        super().__init__(message)


class RateLimitExceededError(SyncError):
    """Raised when a request is still rate limited after every retry.

    Maps to HTTP 429 Too Many Requests.
    """
    status_code = 429

    def __init__(
        self,
        attempts: int,
        retry_after: float | None = None,
        detail: str | None = None,
    ):
        self.attempts = attempts
        self.retry_after = retry_after
        message = detail or (
            f"Exceeded maximum retry attempts ({attempts}) for rate-limited request."
        )
        super().__init__(message)


class RetryExhaustedError(SyncError):
    """Raised by a bulk run with stop_on_error once max_retries is reached.

    The partial run result (completed batches, summary, queue status) is
    attached so callers can decide whether to resume.
    """

    def __init__(self, operation_name: str, attempts: int, result: Any = None):
        self.operation_name = operation_name
        self.attempts = attempts
        self.result = result
        super().__init__(
            f"Bulk operation '{operation_name}' stopped after {attempts} consecutive failed batches"
        )


class ErrorKind(str, Enum):
    """How an upstream failure should be handled."""

    RATE_LIMITED = "rate_limited"
    TRANSIENT = "transient"
    PERMANENT = "permanent"


def _error_response(exc: BaseException) -> Any:
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response
    return getattr(exc, "response", None)


def status_code_of(exc: BaseException) -> Optional[int]:
    """Extract an HTTP status code from an exception, if it carries one.

    Looks at httpx.HTTPStatusError responses, a ``status_code`` attribute
    (SyncError and most client libraries) and ``response.status_code``.
    """
    response = _error_response(exc)
    for candidate in (
        getattr(response, "status_code", None),
        getattr(exc, "status_code", None),
    ):
        if isinstance(candidate, int):
            return candidate
    return None


def response_headers_of(exc: BaseException) -> Any:
    """Return the response headers attached to an exception, or None."""
    response = _error_response(exc)
    return getattr(response, "headers", None)


def retry_after_seconds(exc: BaseException) -> Optional[float]:
    """Read a numeric Retry-After header from an exception's response."""
    headers = response_headers_of(exc)
    if not headers:
        return None
    for name, value in headers.items():
        if name.lower() != "retry-after":
            continue
        try:
            seconds = float(str(value).strip())
        except ValueError:
            return None
        return max(seconds, 0.0)
    return None


def classify_error(exc: BaseException) -> ErrorKind:
    """Classify an exception for retry purposes.

    429 is always a rate-limit signal, 5xx and network failures are
    transient, anything else (other 4xx, programming errors) is permanent.
    """
    if isinstance(exc, RateLimitExceededError):
        return ErrorKind.RATE_LIMITED
    if isinstance(exc, (httpx.TransportError, TimeoutError, ConnectionError)):
        return ErrorKind.TRANSIENT

    status = status_code_of(exc)
    if status is None:
        return ErrorKind.PERMANENT
    if status == 429:
        return ErrorKind.RATE_LIMITED
    if status >= 500:
        return ErrorKind.TRANSIENT
    return ErrorKind.PERMANENT
