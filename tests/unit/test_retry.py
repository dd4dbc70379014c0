"""
Unit tests for RetryCoordinator.

Tests cover:
- Success and retry-then-success
- Fatal errors stop immediately
- Attempt and time budget exhaustion
- Backoff ceilings
- Cancellation propagation
"""

import asyncio

import pytest

from tiering.tiervault.config import RetryConfig
from tiering.tiervault.errors import (
    ErrorClass,
    FinalError,
    PermissionDeniedError,
    RecordNotFoundError,
    ThrottledError,
)
from tiering.tiervault.retry import RetryCoordinator, RetryPolicy


class _CeilingRng:
    """Always picks the top of the jitter range."""

    def uniform(self, low, high):
        return high


class _Flaky:
    """Operation that fails a fixed number of times, then returns."""

    def __init__(self, failures, error=None, result="ok"):
        self.failures = failures
        self.error = error or ThrottledError("slow down")
        self.result = result
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.calls <= self.failures:
            raise self.error
        return self.result


class TestRetryCoordinator:
    """Tests for RetryCoordinator.execute()."""

    @pytest.fixture
    def sleeps(self):
        return []

    @pytest.fixture
    def retry(self, sleeps):
        async def record_sleep(delay):
            sleeps.append(delay)

        policy = RetryPolicy(max_attempts=3, base_delay=0.1, max_delay=1.0, max_elapsed=60.0)
        return RetryCoordinator(policy, sleep=record_sleep, rng=_CeilingRng())

    @pytest.mark.asyncio
    async def test_success_first_try(self, retry, sleeps):
        op = _Flaky(0)
        assert await retry.execute(op) == "ok"
        assert op.calls == 1
        assert sleeps == []

    @pytest.mark.asyncio
    async def test_retries_transient_then_succeeds(self, retry, sleeps):
        op = _Flaky(2)
        assert await retry.execute(op) == "ok"
        assert op.calls == 3
        assert sleeps == [0.1, 0.2]

    @pytest.mark.asyncio
    async def test_fatal_stops_immediately(self, retry, sleeps):
        op = _Flaky(5, error=PermissionDeniedError("denied"))
        with pytest.raises(FinalError) as exc_info:
            await retry.execute(op)

        assert exc_info.value.retryable is False
        assert exc_info.value.attempts == 1
        assert isinstance(exc_info.value.last_error, PermissionDeniedError)
        assert op.calls == 1
        assert sleeps == []

    @pytest.mark.asyncio
    async def test_not_found_is_not_retried(self, retry):
        op = _Flaky(5, error=RecordNotFoundError("missing"))
        with pytest.raises(FinalError) as exc_info:
            await retry.execute(op)
        assert isinstance(exc_info.value.last_error, RecordNotFoundError)
        assert op.calls == 1

    @pytest.mark.asyncio
    async def test_attempts_exhausted(self, retry, sleeps):
        op = _Flaky(10)
        with pytest.raises(FinalError) as exc_info:
            await retry.execute(op, op_name="cold.write")

        assert exc_info.value.retryable is True
        assert exc_info.value.attempts == 3
        assert op.calls == 3
        assert len(sleeps) == 2
        assert "cold.write" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_time_budget_exhausted(self):
        """Stops before a sleep that would exceed max_elapsed."""
        policy = RetryPolicy(max_attempts=10, base_delay=1.0, max_delay=1.0, max_elapsed=0.5)
        sleeps = []

        async def record_sleep(delay):
            sleeps.append(delay)

        retry = RetryCoordinator(policy, sleep=record_sleep, rng=_CeilingRng(), clock=lambda: 0.0)
        op = _Flaky(10)

        with pytest.raises(FinalError) as exc_info:
            await retry.execute(op)

        assert exc_info.value.retryable is True
        assert op.calls == 1
        assert sleeps == []

    @pytest.mark.asyncio
    async def test_custom_classifier(self, retry):
        op = _Flaky(1, error=RecordNotFoundError("not visible yet"))
        result = await retry.execute(op, classify=lambda e: ErrorClass.RETRYABLE)
        assert result == "ok"
        assert op.calls == 2

    @pytest.mark.asyncio
    async def test_cancellation_propagates(self, retry, sleeps):
        op = _Flaky(1, error=asyncio.CancelledError())
        with pytest.raises(asyncio.CancelledError):
            await retry.execute(op)
        assert op.calls == 1
        assert sleeps == []

    def test_backoff_is_capped(self, retry):
        assert retry.backoff(1) == pytest.approx(0.1)
        assert retry.backoff(2) == pytest.approx(0.2)
        assert retry.backoff(4) == pytest.approx(0.8)
        assert retry.backoff(5) == pytest.approx(1.0)
        assert retry.backoff(20) == pytest.approx(1.0)

    def test_backoff_jitter_within_range(self):
        retry = RetryCoordinator(RetryPolicy(base_delay=0.5, max_delay=2.0))
        for attempt in range(1, 8):
            delay = retry.backoff(attempt)
            assert 0 <= delay <= min(2.0, 0.5 * 2 ** (attempt - 1))


class TestRetryPolicy:
    """Tests for RetryPolicy construction from config."""

    def test_from_config(self):
        policy = RetryPolicy.from_config(
            RetryConfig(max_attempts=4, base_delay_ms=200, max_delay_ms=3000, max_elapsed_ms=9000)
        )
        assert policy == RetryPolicy(max_attempts=4, base_delay=0.2, max_delay=3.0, max_elapsed=9.0)

    def test_for_reads(self):
        policy = RetryPolicy.for_reads(RetryConfig(max_attempts=5, read_max_attempts=2))
        assert policy.max_attempts == 2
