"""
Retry policy for pricing catalog calls.
Bounded exponential backoff that honours rate-limit hints from the catalog.
"""
import logging

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from costengine.core.errors import PricingError

logger = logging.getLogger(__name__)


# Retry configuration defaults
DEFAULT_ATTEMPTS = 3  # Total attempts, the first call included
DEFAULT_BACKOFF_SECONDS = 0.5  # Delay before the first retry, doubled after each
DEFAULT_BACKOFF_MAX_SECONDS = 8.0  # Ceiling for the exponential delay


def is_retryable(error: BaseException) -> bool:
    """Only pricing errors flagged retryable are worth another attempt."""
    return isinstance(error, PricingError) and error.retryable


class BackoffWait:
    """
    Exponential wait that never undercuts a Retry-After hint.

    A CatalogUnavailableError raised for HTTP 429 or throttling may carry
    ``retry_after`` seconds; the wait is at least that long.
    """

    def __init__(
        self,
        backoff_seconds: float = DEFAULT_BACKOFF_SECONDS,
        backoff_max_seconds: float = DEFAULT_BACKOFF_MAX_SECONDS
    ):
        self._exponential = wait_exponential(
            multiplier=backoff_seconds,
            min=0,
            max=backoff_max_seconds
        )

    def __call__(self, retry_state: RetryCallState) -> float:
        delay = self._exponential(retry_state)
        outcome = retry_state.outcome
        error = outcome.exception() if outcome is not None else None
        retry_after = getattr(error, "retry_after", None)
        if retry_after is not None:
            delay = max(delay, retry_after)
        return delay


def _log_retry(retry_state: RetryCallState) -> None:
    error = retry_state.outcome.exception() if retry_state.outcome else None
    sleep = retry_state.next_action.sleep if retry_state.next_action else 0
    logger.warning(
        f"Pricing catalog call failed (attempt {retry_state.attempt_number}), "
        f"retrying in {sleep:.2f}s: {error}"
    )


def build_retrying(
    attempts: int = DEFAULT_ATTEMPTS,
    backoff_seconds: float = DEFAULT_BACKOFF_SECONDS,
    backoff_max_seconds: float = DEFAULT_BACKOFF_MAX_SECONDS
) -> AsyncRetrying:
    """
    Build the retry controller for one batch.

    Usage::

        async for attempt in build_retrying(3):
            with attempt:
                results = await catalog.query(queries)

    Args:
        attempts: Maximum number of attempts, the first call included
        backoff_seconds: Base delay for the exponential backoff
        backoff_max_seconds: Upper bound for the exponential delay

    Returns:
        AsyncRetrying that re-raises the last error once attempts run out
    """
    return AsyncRetrying(
        stop=stop_after_attempt(attempts),
        wait=BackoffWait(backoff_seconds, backoff_max_seconds),
        retry=retry_if_exception(is_retryable),
        before_sleep=_log_retry,
        reraise=True,
    )
