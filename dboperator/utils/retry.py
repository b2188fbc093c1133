"""
Retry utilities for platform API calls.

Provides decorators to handle transient failures in Kubernetes API calls
with exponential backoff. Conflicts are never retried here: an
optimistic-concurrency conflict aborts the whole reconciliation attempt.
"""
from typing import Callable, TypeVar

from tenacity import (
    RetryCallState,
    retry,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from dboperator.config.logging import get_logger
from dboperator.exceptions import ConflictError, NotFoundError, TransientPlatformError

logger = get_logger(__name__)

T = TypeVar("T")

# HTTP status codes that are retryable
RETRYABLE_STATUS_CODES = frozenset({
    408,  # Request Timeout
    429,  # Too Many Requests (rate limiting)
    500,  # Internal Server Error
    502,  # Bad Gateway
    503,  # Service Unavailable
    504,  # Gateway Timeout
})


def is_retryable_status(status: int) -> bool:
    """Check whether an HTTP status from the platform is worth retrying."""
    return status in RETRYABLE_STATUS_CODES


def is_retryable_platform_error(exception: BaseException) -> bool:
    """
    Determine if a platform exception should trigger an in-call retry.

    Conflicts and not-found errors are transient at the attempt level but
    retrying the same call cannot fix them.
    """
    if isinstance(exception, (ConflictError, NotFoundError)):
        return False
    return isinstance(exception, TransientPlatformError)


def _log_retry(retry_state: RetryCallState) -> None:
    exception = retry_state.outcome.exception() if retry_state.outcome else None
    logger.warning(
        "platform_call_failed_retrying",
        function=getattr(retry_state.fn, "__name__", "unknown"),
        attempt=retry_state.attempt_number,
        delay_seconds=retry_state.next_action.sleep if retry_state.next_action else None,
        error_type=type(exception).__name__ if exception else None,
        error=str(exception) if exception else None,
    )


def retry_on_platform_error(
    max_retries: int = 3,
    initial_delay: float = 0.5,
    max_delay: float = 10.0,
) -> Callable[[Callable[..., T]], Callable[..., T]]:
    """
    Decorator to retry async platform calls with exponential backoff.

    Args:
        max_retries: Maximum number of retry attempts (default: 3)
        initial_delay: Initial delay between retries in seconds (default: 0.5)
        max_delay: Maximum delay between retries in seconds (default: 10.0)

    Example:
        @retry_on_platform_error(max_retries=5, initial_delay=1.0)
        async def read_secret(name: str):
            # ... Kubernetes API call ...
            pass
    """
    return retry(
        retry=retry_if_exception(is_retryable_platform_error),
        stop=stop_after_attempt(max_retries + 1),
        wait=wait_exponential(multiplier=initial_delay, min=initial_delay, max=max_delay),
        before_sleep=_log_retry,
        reraise=True,
    )


def backoff_delay(failures: int, base: float, cap: float) -> float:
    """
    Per-failure exponential backoff used by the work queue.

    Returns base * 2**(failures - 1), capped.
    """
    if failures <= 0:
        return 0.0
    return min(base * (2 ** (failures - 1)), cap)
