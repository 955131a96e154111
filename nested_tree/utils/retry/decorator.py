from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from functools import wraps
import logging
import time
from typing import TYPE_CHECKING, Any, ParamSpec, TypeVar

from .strategies import RetryStrategy, is_retryable

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

logger = logging.getLogger(__name__)

P = ParamSpec("P")
R = TypeVar("R")


@dataclass
class RetryStatistics:
    """What one retried tree operation went through before it gave up."""

    operation: str
    attempts: int = 0
    total_delay: float = 0.0
    start_time: float = field(default_factory=time.monotonic)
    end_time: float = 0.0
    errors: list[str] = field(default_factory=list)

    @property
    def duration(self) -> float:
        return self.end_time - self.start_time

    def as_details(self) -> dict[str, Any]:
        """Summary logged when the retries run out."""
        return {
            "operation": self.operation,
            "attempts": self.attempts,
            "total_delay": round(self.total_delay, 3),
        }


def retry(
    max_attempts: int = 3,
    initial_delay: float = 0.05,
    max_delay: float = 2.0,
    exponential_base: float = 2.0,
    jitter: bool = True,
    jitter_range: tuple[float, float] = (0.5, 1.5),
    exceptions: tuple[type[Exception], ...] = (Exception,),
    retry_if: Callable[[Exception], bool] | None = is_retryable,
    on_retry: Callable[[Exception, int], None] | None = None,
    operation: str | None = None,
) -> Callable[[Callable[P, Awaitable[R]]], Callable[P, Awaitable[R]]]:
    """Re-run an async unit of work when it fails with a retryable error.

    The wrapped coroutine must be safe to run again from scratch, which
    holds for tree mutations: a failed attempt rolled back completely.
    When every attempt fails the last error is raised unchanged, except
    that a ``details`` dict on it (as on TreeError) gains the attempt count
    and the total delay, plus the operation name unless it already has one.

    Args:
        max_attempts: Total attempts including the first one
        initial_delay: Delay before the first retry in seconds
        max_delay: Upper bound for a single delay
        exponential_base: Growth factor between consecutive delays
        jitter: Randomise delays within ``jitter_range``
        jitter_range: Multiplier bounds applied when ``jitter`` is set
        exceptions: Exception types that trigger a retry when ``retry_if`` is None
        retry_if: Predicate deciding retries; defaults to the error's
            ``retryable`` flag
        on_retry: Callback invoked with (exception, attempt) before sleeping
        operation: Name used in logs and error details; defaults to the
            wrapped function's qualified name

    Example:
        @retry(max_attempts=5, operation="tree.move")
        async def reparent(node_id: int, parent_id: int) -> None:
            async with get_async_session() as session:
                await engine.move(session, node_id, parent_id)
    """
    strategy = RetryStrategy(
        max_attempts=max_attempts,
        initial_delay=initial_delay,
        max_delay=max_delay,
        exponential_base=exponential_base,
        jitter=jitter,
        jitter_range=jitter_range,
        exceptions=exceptions,
        retry_if=retry_if,
    )

    def decorator(func: Callable[P, Awaitable[R]]) -> Callable[P, Awaitable[R]]:
        name = operation or func.__qualname__

        @wraps(func)
        async def async_wrapper(*args: P.args, **kwargs: P.kwargs) -> R:
            statistics = RetryStatistics(operation=name)

            while True:
                statistics.attempts += 1
                try:
                    return await func(*args, **kwargs)
                except Exception as e:
                    if not strategy.should_retry(e):
                        raise
                    statistics.errors.append(type(e).__name__)

                    if statistics.attempts >= max_attempts:
                        statistics.end_time = time.monotonic()
                        logger.error(
                            "Retries exhausted for %s",
                            name,
                            extra={
                                **statistics.as_details(),
                                "errors": statistics.errors,
                                "duration": statistics.duration,
                            },
                        )
                        details = getattr(e, "details", None)
                        if isinstance(details, dict):
                            details.setdefault("operation", name)
                            details.update(attempts=statistics.attempts, total_delay=round(statistics.total_delay, 3))
                        raise

                    delay = strategy.calculate_delay(statistics.attempts - 1)
                    statistics.total_delay += delay
                    logger.warning(
                        "Retrying %s in %.2fs (attempt %d/%d): %s",
                        name,
                        delay,
                        statistics.attempts,
                        max_attempts,
                        e,
                        extra={"operation": name, "attempt": statistics.attempts, "delay": delay},
                    )

                    if on_retry:
                        on_retry(e, statistics.attempts)

                    await asyncio.sleep(delay)

        return async_wrapper

    return decorator
