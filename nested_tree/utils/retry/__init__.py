from __future__ import annotations

from nested_tree.utils.retry.decorator import RetryStatistics, retry
from nested_tree.utils.retry.strategies import RetryStrategy, is_retryable

__all__ = ["retry", "RetryStatistics", "RetryStrategy", "is_retryable"]
