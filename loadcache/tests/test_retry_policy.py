"""
Unit tests for RetryPolicy.
"""

import asyncio

import pytest

from loadcache.testing import RecordingSleep, ScriptedLoader, transient
from shared.errors import RefusedError
from shared.metrics import MetricsCollector
from shared.retry import RetryConfig, RetryPolicy, _calculate_delay


class TestRetryPolicy:
    """Test cases for RetryPolicy."""

    @pytest.fixture
    def sleep(self):
        return RecordingSleep()

    @pytest.fixture
    def policy(self, sleep):
        return RetryPolicy(RetryConfig(max_attempts=3, base_delay=1.0), sleep=sleep)

    @pytest.mark.asyncio
    async def test_fails_twice_then_succeeds(self, policy, sleep):
        """Three invocations with delays following base * 2^(n-1)."""
        loader = ScriptedLoader([transient("one"), transient("two"), "payload"])

        result = await policy.execute(loader, max_retries=3, base_delay=0.5)

        assert result == "payload"
        assert loader.calls == 3
        assert sleep.delays == [0.5, 1.0]
        assert sleep.delays == sorted(sleep.delays)

    @pytest.mark.asyncio
    async def test_raises_last_error_after_exhaustion(self, policy, sleep):
        last = transient("three")
        loader = ScriptedLoader([transient("one"), transient("two"), last])

        with pytest.raises(type(last)) as exc_info:
            await policy.execute(loader)

        assert exc_info.value is last
        assert loader.calls == 3
        assert sleep.delays == [1.0, 2.0]
        assert policy.get_stats()["failures"] == 1

    @pytest.mark.asyncio
    async def test_zero_retries_means_single_attempt(self, policy, sleep):
        loader = ScriptedLoader([transient("only")])

        with pytest.raises(Exception):
            await policy.execute(loader, max_retries=0)

        assert loader.calls == 1
        assert sleep.delays == []

    @pytest.mark.asyncio
    async def test_non_retryable_error_is_not_retried(self, policy, sleep):
        loader = ScriptedLoader([RefusedError("modules", "denied"), "never"])

        with pytest.raises(RefusedError):
            await policy.execute(loader)

        assert loader.calls == 1
        assert sleep.delays == []

    @pytest.mark.asyncio
    async def test_cancellation_is_not_retried(self, sleep):
        policy = RetryPolicy(RetryConfig(max_attempts=5), sleep=sleep)

        async def cancelled_loader():
            raise asyncio.CancelledError()

        with pytest.raises(asyncio.CancelledError):
            await policy.execute(cancelled_loader)

        assert sleep.delays == []

    @pytest.mark.asyncio
    async def test_retries_are_counted_in_metrics(self, sleep):
        metrics = MetricsCollector("retry-test")
        policy = RetryPolicy(RetryConfig(max_attempts=3, base_delay=0.01), sleep=sleep, metrics=metrics)
        loader = ScriptedLoader([transient(), transient(), 7])

        assert await policy.execute(loader) == 7
        assert metrics.get_sample_value("loadcache_retries_total") == 2.0

    @pytest.mark.asyncio
    async def test_backoff_does_not_block_other_loaders(self):
        """A key in backoff lets other loads proceed."""
        policy = RetryPolicy(RetryConfig(max_attempts=2, base_delay=0.2))
        slow = ScriptedLoader([transient(), "slow"])
        fast = ScriptedLoader(["fast"])

        slow_task = asyncio.ensure_future(policy.execute(slow))
        await asyncio.sleep(0.01)
        assert await asyncio.wait_for(policy.execute(fast), timeout=0.1) == "fast"
        assert not slow_task.done()
        assert await slow_task == "slow"

    def test_delay_calculation(self):
        config = RetryConfig(base_delay=1.0, max_delay=5.0)

        assert [_calculate_delay(n, config) for n in (1, 2, 3, 4)] == [1.0, 2.0, 4.0, 5.0]

        linear = RetryConfig(base_delay=1.0, backoff_strategy="linear")
        assert _calculate_delay(3, linear) == 3.0

        fixed = RetryConfig(base_delay=1.5, backoff_strategy="fixed")
        assert _calculate_delay(3, fixed) == 1.5

    def test_jitter_stays_within_ten_percent(self):
        config = RetryConfig(base_delay=1.0, jitter=True)

        for _ in range(20):
            assert 0.9 <= _calculate_delay(1, config) <= 1.1
