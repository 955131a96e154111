"""Unit tests for the retry utility."""

from __future__ import annotations

import logging

import pytest

from nested_tree.core.nestedset import ConcurrentModificationError, NotFoundError
from nested_tree.utils.retry import RetryStatistics, RetryStrategy, retry


@pytest.mark.unit
class TestRetryDecorator:
    """Test suite for retry decorator."""

    @pytest.mark.asyncio
    async def test_retry_succeeds_first_attempt(self):
        call_count = 0

        @retry(max_attempts=3)
        async def successful_func():
            nonlocal call_count
            call_count += 1
            return "success"

        assert await successful_func() == "success"
        assert call_count == 1

    @pytest.mark.asyncio
    async def test_retries_concurrent_modification(self):
        call_count = 0

        @retry(max_attempts=3, initial_delay=0.0, max_delay=0.0)
        async def eventually_successful():
            nonlocal call_count
            call_count += 1
            if call_count < 3:
                raise ConcurrentModificationError("lock timeout")
            return "success"

        assert await eventually_successful() == "success"
        assert call_count == 3

    @pytest.mark.asyncio
    async def test_fails_after_max_attempts_with_statistics(self, caplog):
        call_count = 0

        @retry(max_attempts=2, initial_delay=0.0, max_delay=0.0, operation="tree.move")
        async def always_busy():
            nonlocal call_count
            call_count += 1
            raise ConcurrentModificationError("lock timeout", details={"id": 7})

        with caplog.at_level(logging.ERROR, logger="nested_tree.utils.retry.decorator"):
            with pytest.raises(ConcurrentModificationError) as exc_info:
                await always_busy()

        assert call_count == 2
        assert exc_info.value.details == {"id": 7, "operation": "tree.move", "attempts": 2, "total_delay": 0.0}
        (record,) = caplog.records
        assert record.getMessage() == "Retries exhausted for tree.move"
        assert record.errors == ["ConcurrentModificationError", "ConcurrentModificationError"]

    @pytest.mark.asyncio
    async def test_operation_defaults_to_function_name(self):
        @retry(max_attempts=1)
        async def reparent():
            raise ConcurrentModificationError("deadlock")

        with pytest.raises(ConcurrentModificationError) as exc_info:
            await reparent()

        assert exc_info.value.details["operation"].endswith("reparent")
        assert exc_info.value.details["attempts"] == 1

    @pytest.mark.asyncio
    async def test_non_retryable_errors_propagate_at_once(self):
        call_count = 0

        @retry(max_attempts=3, initial_delay=0.0)
        async def missing():
            nonlocal call_count
            call_count += 1
            raise NotFoundError("Category", {"id": 1})

        with pytest.raises(NotFoundError):
            await missing()

        assert call_count == 1

    @pytest.mark.asyncio
    async def test_exception_types_without_predicate(self):
        attempts = []

        @retry(
            max_attempts=3,
            initial_delay=0.0,
            max_delay=0.0,
            exceptions=(ValueError,),
            retry_if=None,
            on_retry=lambda exc, attempt: attempts.append(attempt),
        )
        async def flaky():
            if len(attempts) < 1:
                raise ValueError("Not yet")
            return "ok"

        assert await flaky() == "ok"
        assert attempts == [1]


@pytest.mark.unit
class TestRetryStrategy:
    """Test suite for delay calculation."""

    def test_exponential_delay_capped(self):
        strategy = RetryStrategy(initial_delay=0.1, max_delay=0.3, jitter=False)

        assert strategy.calculate_delay(0) == pytest.approx(0.1)
        assert strategy.calculate_delay(1) == pytest.approx(0.2)
        assert strategy.calculate_delay(5) == pytest.approx(0.3)

    def test_jitter_within_range(self):
        strategy = RetryStrategy(initial_delay=1.0, max_delay=1.0, jitter_range=(0.5, 1.5))

        for _ in range(20):
            assert 0.5 <= strategy.calculate_delay(0) <= 1.5


@pytest.mark.unit
class TestRetryStatistics:
    """Test suite for the statistics attached to exhausted retries."""

    def test_as_details_rounds_delay(self):
        statistics = RetryStatistics(operation="tree.delete.hard", attempts=3, total_delay=0.12345)

        assert statistics.as_details() == {"operation": "tree.delete.hard", "attempts": 3, "total_delay": 0.123}

    def test_duration(self):
        statistics = RetryStatistics(operation="tree.move", start_time=10.0, end_time=12.5)
        assert statistics.duration == pytest.approx(2.5)
