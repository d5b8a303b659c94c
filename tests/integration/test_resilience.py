"""
Integration tests for upsales/resilience.py

Tests circuit breaker and retry with backoff.
"""
import asyncio
import pytest
from unittest.mock import AsyncMock, patch

from upsales.exceptions import KeyCRMAPIError, KeyCRMConnectionError
from upsales.resilience import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitState,
    CircuitOpenError,
    RetryConfig,
    retry_with_backoff,
)

NO_DELAY = RetryConfig(max_attempts=3, base_delay=0, max_delay=0, jitter=0)


class TestCircuitBreaker:
    """Tests for CircuitBreaker class."""

    @pytest.mark.asyncio
    async def test_initial_state_closed(self):
        """Circuit breaker starts in closed state."""
        cb = CircuitBreaker()
        assert cb.state == CircuitState.CLOSED
        assert cb.failure_count == 0
        assert cb.remaining_timeout == 0.0

    @pytest.mark.asyncio
    async def test_records_success(self):
        """Success resets failure count."""
        cb = CircuitBreaker()
        await cb.record_failure()
        await cb.record_failure()
        assert cb.failure_count == 2

        await cb.record_success()
        assert cb.failure_count == 0
        assert cb.state == CircuitState.CLOSED

    @pytest.mark.asyncio
    async def test_opens_after_threshold_failures(self):
        """Circuit opens after reaching failure threshold."""
        cb = CircuitBreaker(config=CircuitBreakerConfig(failure_threshold=3, recovery_timeout=10.0))

        for _ in range(3):
            await cb.record_failure()

        assert cb.is_open
        assert not await cb.can_execute()
        assert 0 < cb.remaining_timeout <= 10.0

    @pytest.mark.asyncio
    async def test_half_open_after_recovery_timeout(self):
        """Circuit enters half-open state after recovery timeout."""
        cb = CircuitBreaker(config=CircuitBreakerConfig(failure_threshold=1, recovery_timeout=0.05))

        await cb.record_failure()
        assert cb.state == CircuitState.OPEN

        await asyncio.sleep(0.1)

        assert await cb.can_execute()
        assert cb.state == CircuitState.HALF_OPEN

    @pytest.mark.asyncio
    async def test_half_open_allows_one_probe(self):
        cb = CircuitBreaker(config=CircuitBreakerConfig(failure_threshold=1, recovery_timeout=0.05))
        await cb.record_failure()
        await asyncio.sleep(0.1)

        assert await cb.can_execute()
        assert not await cb.can_execute()

    @pytest.mark.asyncio
    async def test_closes_after_successful_probe(self):
        cb = CircuitBreaker(config=CircuitBreakerConfig(failure_threshold=1, recovery_timeout=0.05))
        await cb.record_failure()
        await asyncio.sleep(0.1)
        await cb.can_execute()

        await cb.record_success()

        assert cb.state == CircuitState.CLOSED

    @pytest.mark.asyncio
    async def test_reopens_after_failed_probe(self):
        cb = CircuitBreaker(config=CircuitBreakerConfig(failure_threshold=3, recovery_timeout=0.05))
        for _ in range(3):
            await cb.record_failure()
        await asyncio.sleep(0.1)
        await cb.can_execute()

        await cb.record_failure()

        assert cb.state == CircuitState.OPEN

    @pytest.mark.asyncio
    async def test_call_rejects_when_open(self):
        cb = CircuitBreaker(config=CircuitBreakerConfig(failure_threshold=1, recovery_timeout=30.0))
        await cb.record_failure()
        func = AsyncMock()

        with pytest.raises(CircuitOpenError) as exc_info:
            await cb.call(func)

        func.assert_not_awaited()
        assert exc_info.value.retry_after > 0
        assert isinstance(exc_info.value, KeyCRMConnectionError)

    @pytest.mark.asyncio
    async def test_call_records_outcome(self):
        cb = CircuitBreaker()

        assert await cb.call(AsyncMock(return_value=42)) == 42

        with pytest.raises(ValueError):
            await cb.call(AsyncMock(side_effect=ValueError("bad")))
        assert cb.failure_count == 1


class TestRetryConfig:
    """Tests for backoff delays."""

    def test_exponential_backoff(self):
        config = RetryConfig(base_delay=1.0, exponential_base=2.0, jitter=0)
        assert [config.delay_for(a) for a in (1, 2, 3)] == [1.0, 2.0, 4.0]

    def test_max_delay_cap(self):
        config = RetryConfig(base_delay=1.0, max_delay=5.0, jitter=0)
        assert config.delay_for(10) == 5.0

    def test_retry_after_wins_when_larger(self):
        config = RetryConfig(base_delay=1.0, max_delay=30.0, jitter=0)
        assert config.delay_for(1, retry_after=5) == 5
        assert config.delay_for(1, retry_after=60) == 30.0

    def test_jitter_bounded(self):
        config = RetryConfig(base_delay=1.0, jitter=0.1)
        for _ in range(20):
            assert 1.0 <= config.delay_for(1) <= 1.1


class TestRetryWithBackoff:
    """Tests for retry_with_backoff function."""

    @pytest.mark.asyncio
    async def test_success_on_first_try(self):
        func = AsyncMock(return_value="success")

        result = await retry_with_backoff(func, config=NO_DELAY)

        assert result == "success"
        assert func.call_count == 1

    @pytest.mark.asyncio
    async def test_retry_on_connection_error(self):
        func = AsyncMock(side_effect=[
            KeyCRMConnectionError("Connection failed"),
            KeyCRMConnectionError("Connection failed"),
            "success",
        ])

        result = await retry_with_backoff(func, config=NO_DELAY)

        assert result == "success"
        assert func.call_count == 3

    @pytest.mark.asyncio
    async def test_raises_after_max_attempts(self):
        func = AsyncMock(side_effect=KeyCRMConnectionError("Connection failed"))

        with pytest.raises(KeyCRMConnectionError):
            await retry_with_backoff(func, config=NO_DELAY)

        assert func.call_count == 3

    @pytest.mark.asyncio
    async def test_api_error_not_retried(self):
        func = AsyncMock(side_effect=KeyCRMAPIError("Bad request", status_code=400))

        with pytest.raises(KeyCRMAPIError):
            await retry_with_backoff(func, config=NO_DELAY)

        assert func.call_count == 1

    @pytest.mark.asyncio
    async def test_honors_retry_after(self):
        """A rate-limit response delays the next attempt by its retry_after."""
        func = AsyncMock(side_effect=[
            KeyCRMConnectionError("Rate limited", retry_after=7),
            "success",
        ])
        config = RetryConfig(base_delay=1.0, max_delay=30.0, jitter=0)

        with patch("upsales.resilience.asyncio.sleep", new_callable=AsyncMock) as sleep:
            result = await retry_with_backoff(func, config=config)

        assert result == "success"
        sleep.assert_awaited_once_with(7)

    @pytest.mark.asyncio
    async def test_passes_arguments(self):
        func = AsyncMock(return_value="ok")

        await retry_with_backoff(func, "GET", "order", config=NO_DELAY, params={"page": 1})

        func.assert_awaited_once_with("GET", "order", params={"page": 1})
