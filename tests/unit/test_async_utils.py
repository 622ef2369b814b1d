"""Tests for async utilities module."""

import asyncio

import pytest

from agentplug.exceptions import OperationTimeoutError
from agentplug.utils.async_utils import (
    AsyncCache,
    call_maybe_async,
    detached_count,
    retry,
    run_with_deadline,
)


class TestCallMaybeAsync:
    """Tests for call_maybe_async."""

    @pytest.mark.asyncio
    async def test_sync_function(self) -> None:
        """Should return a sync function's result."""
        assert await call_maybe_async(lambda x, y=1: x + y, 2, y=3) == 5

    @pytest.mark.asyncio
    async def test_async_function(self) -> None:
        """Should await a coroutine function's result."""

        async def double(x: int) -> int:
            return x * 2

        assert await call_maybe_async(double, 21) == 42

    @pytest.mark.asyncio
    async def test_sync_function_returning_awaitable(self) -> None:
        """Should await awaitables returned by plain functions."""
        loop = asyncio.get_running_loop()
        future = loop.create_future()
        future.set_result("done")

        assert await call_maybe_async(lambda: future) == "done"

    @pytest.mark.asyncio
    async def test_exceptions_propagate(self) -> None:
        """Should not swallow errors."""

        def broken() -> None:
            raise ValueError("broken")

        with pytest.raises(ValueError, match="broken"):
            await call_maybe_async(broken)


class TestRunWithDeadline:
    """Tests for run_with_deadline."""

    @pytest.mark.asyncio
    async def test_success(self) -> None:
        """Should return result on success."""

        async def quick_op() -> str:
            return "result"

        assert await run_with_deadline(quick_op(), 1.0, "quick") == "result"

    @pytest.mark.asyncio
    async def test_no_deadline(self) -> None:
        """None should wait without a deadline."""

        async def op() -> int:
            await asyncio.sleep(0.01)
            return 7

        assert await run_with_deadline(op(), None, "op") == 7

    @pytest.mark.asyncio
    async def test_timeout_raises(self) -> None:
        """Should raise OperationTimeoutError naming the operation."""

        async def slow_op() -> str:
            await asyncio.sleep(1.0)
            return "never"

        with pytest.raises(OperationTimeoutError) as exc_info:
            await run_with_deadline(slow_op(), 0.05, "Plugin 'slow' init")

        assert exc_info.value.operation == "Plugin 'slow' init"
        assert exc_info.value.timeout == 0.05
        assert isinstance(exc_info.value, TimeoutError)

    @pytest.mark.asyncio
    async def test_timed_out_operation_not_cancelled(self) -> None:
        """The operation should keep running after the caller gives up."""
        finished = asyncio.Event()

        async def slow_op() -> None:
            await asyncio.sleep(0.1)
            finished.set()

        with pytest.raises(OperationTimeoutError):
            await run_with_deadline(slow_op(), 0.01, "slow")

        assert detached_count() >= 1
        await asyncio.wait_for(finished.wait(), timeout=1.0)
        await asyncio.sleep(0)
        assert finished.is_set()

    @pytest.mark.asyncio
    async def test_errors_propagate(self) -> None:
        """Errors raised before the deadline should propagate unchanged."""

        async def failing() -> None:
            raise KeyError("missing")

        with pytest.raises(KeyError):
            await run_with_deadline(failing(), 1.0, "failing")

    @pytest.mark.asyncio
    async def test_own_timeout_error_not_reported_as_deadline(self) -> None:
        """A TimeoutError raised by the operation is not a deadline overrun."""
        before = detached_count()

        async def upstream() -> None:
            raise TimeoutError("upstream db timed out")

        with pytest.raises(TimeoutError) as exc_info:
            await run_with_deadline(upstream(), 30.0, "Tool 'plugin:db:query'")

        assert not isinstance(exc_info.value, OperationTimeoutError)
        assert str(exc_info.value) == "upstream db timed out"
        assert detached_count() == before


class TestRetry:
    """Tests for retry."""

    @pytest.mark.asyncio
    async def test_success_after_failures(self) -> None:
        """Should retry until an attempt succeeds."""
        attempts = []

        async def flaky() -> str:
            attempts.append(1)
            if len(attempts) < 3:
                raise ConnectionError("not yet")
            return "ok"

        result = await retry(flaky, max_attempts=3, base_delay=0, jitter=False)

        assert result.success is True
        assert result.result == "ok"
        assert result.attempts == 3

    @pytest.mark.asyncio
    async def test_gives_up(self) -> None:
        """Should report the last error once attempts run out."""

        async def always_fails() -> None:
            raise ValueError("still broken")

        retried = []

        async def on_retry(attempt: int, error: Exception) -> None:
            retried.append(attempt)

        result = await retry(
            always_fails, max_attempts=2, base_delay=0, on_retry=on_retry
        )

        assert result.success is False
        assert result.attempts == 2
        assert isinstance(result.last_error, ValueError)
        assert retried == [1]

    @pytest.mark.asyncio
    async def test_non_retryable_propagates(self) -> None:
        """Exceptions outside retryable_exceptions should escape."""

        async def broken() -> None:
            raise KeyError("nope")

        with pytest.raises(KeyError):
            await retry(broken, max_attempts=3, base_delay=0, retryable_exceptions=(ValueError,))


class TestAsyncCache:
    """Tests for AsyncCache."""

    @pytest.mark.asyncio
    async def test_set_and_get(self) -> None:
        """Should return stored values within the TTL."""
        cache: AsyncCache[int] = AsyncCache(ttl=60)

        await cache.set("a", 1)

        assert await cache.get("a") == 1
        assert await cache.get("missing") is None

    @pytest.mark.asyncio
    async def test_expiry(self) -> None:
        """Expired entries should be dropped."""
        cache: AsyncCache[int] = AsyncCache(ttl=0.01)

        await cache.set("a", 1)
        await asyncio.sleep(0.05)

        assert await cache.get("a") is None
        assert len(cache) == 0

    @pytest.mark.asyncio
    async def test_evicts_oldest_at_capacity(self) -> None:
        """The oldest entry should make room for a new one."""
        cache: AsyncCache[int] = AsyncCache(ttl=60, max_size=2)

        await cache.set("a", 1)
        await cache.set("b", 2)
        await cache.set("c", 3)

        assert await cache.get("a") is None
        assert await cache.get("c") == 3

    @pytest.mark.asyncio
    async def test_delete_and_clear(self) -> None:
        """Should delete single entries and clear everything."""
        cache: AsyncCache[int] = AsyncCache()
        await cache.set("a", 1)
        await cache.set("b", 2)

        assert await cache.delete("a") is True
        assert await cache.delete("a") is False
        await cache.clear()
        assert len(cache) == 0
