"""
Retry with exponential backoff for idempotent GitHub calls.

Only read-only requests (token verification) go through this. Repository
creation is a non-idempotent POST and is never retried automatically: a
failed creation becomes a failed job.
"""

import time
import functools
from typing import Callable, Type, Tuple, Optional


class RetryError(Exception):
    """Raised when all retry attempts are exhausted."""
    pass


class TransientHTTPError(Exception):
    """A response whose status code is worth retrying (5xx, 429, 408)."""

    def __init__(self, status_code: int):
        self.status_code = status_code
        super().__init__(f"Transient HTTP status {status_code}")


RETRYABLE_STATUS_CODES = frozenset({
    408,  # Request Timeout
    429,  # Too Many Requests
    500,  # Internal Server Error
    502,  # Bad Gateway
    503,  # Service Unavailable
    504,  # Gateway Timeout
})


def exponential_backoff(
    max_retries: int = 3,
    base_delay: float = 1.0,
    max_delay: float = 30.0,
    exponential_base: float = 2.0,
    exceptions: Tuple[Type[Exception], ...] = (Exception,),
    on_retry: Optional[Callable] = None,
    sleep: Callable[[float], None] = time.sleep,
):
    """
    Decorator for retrying functions with exponential backoff.

    Args:
        max_retries: Maximum number of retry attempts (0 = no retries)
        base_delay: Initial delay in seconds
        max_delay: Maximum delay between retries in seconds
        exponential_base: Base for exponential calculation (delay *= base)
        exceptions: Tuple of exceptions to catch and retry
        on_retry: Optional callback function(attempt, exception, delay)
        sleep: Function used to wait between attempts

    Example:
        @exponential_backoff(max_retries=3, exceptions=(requests.ConnectionError,))
        def fetch_user(session, url):
            return session.get(url, timeout=10)
    """
    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            delay = base_delay

            for attempt in range(max_retries + 1):
                try:
                    return func(*args, **kwargs)
                except exceptions as e:
                    if attempt >= max_retries:
                        raise RetryError(
                            f"Failed after {max_retries + 1} attempts: {e}"
                        ) from e

                    current_delay = min(delay, max_delay)
                    if on_retry:
                        on_retry(attempt + 1, e, current_delay)
                    sleep(current_delay)
                    delay *= exponential_base

        return wrapper
    return decorator


def should_retry_http_status(status_code: int) -> bool:
    """Check if HTTP status code indicates a retryable error."""
    return status_code in RETRYABLE_STATUS_CODES
