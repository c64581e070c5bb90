"""
Unit tests for fixed-delay bounded retries.

Tests cover:
- Success on first and later attempts
- Retry bound and pause between attempts
- Non-retryable rejections
"""

import time

import pytest

from gobex.sync_engine.backend import BackendTimeoutError, BackendTransportError, PushResult
from gobex.sync_engine.sync import RetryPolicy, run_with_retry


class FlakyCall:
    """Callable failing a number of times before answering."""

    def __init__(self, failures, result=None, exc=BackendTransportError):
        self.failures = failures
        self.result = result or PushResult(success=True)
        self.exc = exc
        self.calls = []

    async def __call__(self):
        self.calls.append(time.monotonic())
        if len(self.calls) <= self.failures:
            raise self.exc("boom")
        return self.result


class TestRetryPolicy:
    """Tests for RetryPolicy validation."""

    def test_defaults(self):
        policy = RetryPolicy()
        assert policy.retry_count == 3
        assert policy.retry_delay_seconds == 5.0

    def test_zero_attempts_rejected(self):
        with pytest.raises(ValueError):
            RetryPolicy(retry_count=0)

    def test_instant_retry_rejected(self):
        with pytest.raises(ValueError):
            RetryPolicy(retry_delay_seconds=0)


class TestRunWithRetry:
    """Tests for run_with_retry."""

    @pytest.mark.asyncio
    async def test_first_attempt_succeeds(self):
        call = FlakyCall(failures=0)

        outcome = await run_with_retry("upload", call, RetryPolicy(3, 0.01))

        assert outcome.success
        assert outcome.attempts == 1
        assert outcome.error is None

    @pytest.mark.asyncio
    async def test_recovers_after_failures(self):
        call = FlakyCall(failures=2)

        outcome = await run_with_retry("upload", call, RetryPolicy(3, 0.01))

        assert outcome.success
        assert outcome.attempts == 3

    @pytest.mark.asyncio
    async def test_exactly_n_attempts_with_pause(self):
        call = FlakyCall(failures=10)
        delay = 0.05

        outcome = await run_with_retry("download", call, RetryPolicy(4, delay))

        assert not outcome.success
        assert outcome.result is None
        assert outcome.attempts == 4
        assert len(call.calls) == 4
        assert "boom" in outcome.error
        gaps = [b - a for a, b in zip(call.calls, call.calls[1:])]
        assert all(gap >= delay * 0.8 for gap in gaps)

    @pytest.mark.asyncio
    async def test_no_pause_after_last_attempt(self):
        call = FlakyCall(failures=10)

        start = time.monotonic()
        await run_with_retry("upload", call, RetryPolicy(1, 0.5))

        assert time.monotonic() - start < 0.4

    @pytest.mark.asyncio
    async def test_timeouts_are_retried(self):
        call = FlakyCall(failures=1, exc=BackendTimeoutError)

        outcome = await run_with_retry("upload", call, RetryPolicy(2, 0.01))

        assert outcome.success
        assert outcome.attempts == 2

    @pytest.mark.asyncio
    async def test_retryable_refusal_is_retried(self):
        call = FlakyCall(failures=0, result=PushResult(success=False, message="busy"))

        outcome = await run_with_retry("upload", call, RetryPolicy(3, 0.01))

        assert not outcome.success
        assert len(call.calls) == 3
        assert outcome.error == "busy"

    @pytest.mark.asyncio
    async def test_rejection_ends_phase(self):
        rejected = PushResult(success=False, message="Unknown tenant", retryable=False)
        call = FlakyCall(failures=0, result=rejected)

        outcome = await run_with_retry("upload", call, RetryPolicy(3, 0.01))

        assert not outcome.success
        assert outcome.attempts == 1
        assert len(call.calls) == 1
        assert outcome.result is rejected
