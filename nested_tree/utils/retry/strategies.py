from __future__ import annotations

import random
from collections.abc import Callable


def is_retryable(exception: Exception) -> bool:
    """True for errors flagged safe to retry (e.g. ConcurrentModificationError)."""
    return bool(getattr(exception, "retryable", False))


class RetryStrategy:
    """Which errors are retried and how long to wait between attempts.

    Delays grow exponentially from ``initial_delay`` and are capped at
    ``max_delay`` before jitter is applied.
    """

    def __init__(
        self,
        max_attempts: int = 3,
        initial_delay: float = 0.05,
        max_delay: float = 2.0,
        exponential_base: float = 2.0,
        jitter: bool = True,
        jitter_range: tuple[float, float] = (0.5, 1.5),
        exceptions: tuple[type[Exception], ...] = (Exception,),
        retry_if: Callable[[Exception], bool] | None = is_retryable,
    ) -> None:
        self.max_attempts = max_attempts
        self.initial_delay = initial_delay
        self.max_delay = max_delay
        self.exponential_base = exponential_base
        self.jitter = jitter
        self.jitter_range = jitter_range
        self.exceptions = exceptions
        self.retry_if = retry_if

    def should_retry(self, exception: Exception) -> bool:
        if self.retry_if is not None:
            return self.retry_if(exception)
        return isinstance(exception, self.exceptions)

    def calculate_delay(self, attempt: int) -> float:
        delay = self.initial_delay * (self.exponential_base**attempt)
        delay = min(delay, self.max_delay)
        if self.jitter:
            delay *= random.uniform(self.jitter_range[0], self.jitter_range[1])
        return delay
