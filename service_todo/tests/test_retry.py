"""
Unit tests for the shared retry helpers.
"""

import pytest
from unittest.mock import AsyncMock

from shared.retry import Backoff, RetryConfig, RetryError, calculate_delay, retry_async


class TestRetry:
    """Test cases for retry_async, Backoff and calculate_delay."""

    @pytest.fixture
    def config(self):
        """Retry configuration without waiting."""
        return RetryConfig(max_attempts=3, base_delay=0.0, jitter=False)

    @pytest.mark.asyncio
    async def test_succeeds_after_failures(self, config):
        """Test a transient failure is retried."""
        operation = AsyncMock(side_effect=[ConnectionError("down"), "ok"])

        result = await retry_async(operation, exceptions=(ConnectionError,), config=config, name="connect")

        assert result == "ok"
        assert operation.await_count == 2

    @pytest.mark.asyncio
    async def test_exhausted(self, config):
        """Test the last error is kept once attempts run out."""
        error = ConnectionError("down")
        operation = AsyncMock(side_effect=error)

        with pytest.raises(RetryError) as exc_info:
            await retry_async(operation, exceptions=(ConnectionError,), config=config, name="connect")

        assert exc_info.value.attempts == 3
        assert exc_info.value.last_exception is error
        assert operation.await_count == 3

    @pytest.mark.asyncio
    async def test_unlisted_exception_is_not_retried(self, config):
        """Test only the listed exceptions are retried."""
        operation = AsyncMock(side_effect=ValueError("bad input"))

        with pytest.raises(ValueError):
            await retry_async(operation, exceptions=(ConnectionError,), config=config, name="connect")

        assert operation.await_count == 1

    def test_calculate_delay(self):
        """Test exponential backoff is capped."""
        config = RetryConfig(base_delay=5.0, max_delay=60.0, jitter=False)

        assert calculate_delay(1, config) == 5.0
        assert calculate_delay(2, config) == 10.0
        assert calculate_delay(10, config) == 60.0

    def test_constant_delay(self):
        """Test a fixed backoff strategy."""
        config = RetryConfig(base_delay=5.0, jitter=False, backoff_strategy="fixed")

        assert calculate_delay(4, config) == 5.0

    def test_backoff_grows_and_resets(self):
        """Test consecutive failures lengthen the wait until a success resets it."""
        backoff = Backoff(RetryConfig(base_delay=1.0, max_delay=4.0, jitter=False))

        assert [backoff.failure() for _ in range(4)] == [1.0, 2.0, 4.0, 4.0]

        backoff.reset()

        assert backoff.failure() == 1.0
