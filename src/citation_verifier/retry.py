"""Exponential backoff with jitter for transient failures.

Built on tenacity. The wait strategy doubles from a base delay up to a
ceiling and adds up to 25% random jitter so that many references retrying
at once do not hit a rate-limited API in lockstep.
"""

import logging
import random
from typing import Awaitable, Callable, TypeVar

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    RetryError,
    retry_if_exception_type,
    stop_after_attempt,
)
from tenacity.wait import wait_base

from .exceptions import RateLimitError, RetryExhaustedError

logger = logging.getLogger(__name__)

T = TypeVar("T")

BASE_DELAY = 1.0  # seconds
MAX_DELAY = 32.0
JITTER_RATIO = 0.25


def compute_backoff_delay(
    attempt: int,
    base_delay: float = BASE_DELAY,
    max_delay: float = MAX_DELAY,
    jitter_ratio: float = JITTER_RATIO,
    rng: Callable[[], float] = random.random,
) -> float:
    """Delay before retry number ``attempt`` (0-based).

    ``min(base * 2**attempt, max)`` plus a uniform jitter of at most
    ``jitter_ratio`` of that delay.
    """
    delay = min(base_delay * (2**attempt), max_delay)
    return delay + rng() * delay * jitter_ratio


class wait_capped_exponential_jitter(wait_base):
    """tenacity wait strategy wrapping compute_backoff_delay()."""

    def __init__(
        self,
        base_delay: float = BASE_DELAY,
        max_delay: float = MAX_DELAY,
        jitter_ratio: float = JITTER_RATIO,
    ):
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.jitter_ratio = jitter_ratio

    def __call__(self, retry_state: RetryCallState) -> float:
        delay = compute_backoff_delay(
            retry_state.attempt_number - 1,
            self.base_delay,
            self.max_delay,
            self.jitter_ratio,
        )
        # Honour an explicit Retry-After when the server sends one
        if retry_state.outcome is not None and retry_state.outcome.failed:
            error = retry_state.outcome.exception()
            if isinstance(error, RateLimitError) and error.retry_after:
                delay = max(delay, min(error.retry_after, self.max_delay))
        return delay


def _log_retry(retry_state: RetryCallState) -> None:
    error = retry_state.outcome.exception() if retry_state.outcome else None
    logger.warning(
        "Attempt %d failed (%s), retrying in %.1fs",
        retry_state.attempt_number,
        error,
        retry_state.next_action.sleep if retry_state.next_action else 0.0,
    )


async def retry_async(
    func: Callable[..., Awaitable[T]],
    *args,
    max_retries: int = 3,
    retry_on: tuple[type[BaseException], ...] = (RateLimitError,),
    base_delay: float = BASE_DELAY,
    max_delay: float = MAX_DELAY,
    **kwargs,
) -> T:
    """Await ``func(*args, **kwargs)``, retrying transient failures.

    ``max_retries`` counts retries after the first call, so the function is
    awaited at most ``max_retries + 1`` times. Exceptions not listed in
    ``retry_on`` propagate immediately. When the budget is spent a
    RetryExhaustedError carrying the last underlying exception is raised.
    """
    retrying = AsyncRetrying(
        stop=stop_after_attempt(max_retries + 1),
        wait=wait_capped_exponential_jitter(base_delay, max_delay),
        retry=retry_if_exception_type(retry_on),
        before_sleep=_log_retry,
        reraise=False,
    )
    try:
        return await retrying(func, *args, **kwargs)
    except RetryError as e:
        last = e.last_attempt.exception()
        raise RetryExhaustedError(
            f"Gave up after {max_retries + 1} attempts: {last}", last_error=last
        ) from last
