"""Async helpers for calling plugin code.

Plugin hooks and handlers may be plain functions or coroutines, and any of
them may be bound to a deadline. A deadline only stops the caller from
waiting: the underlying task keeps running until it finishes on its own.

Also provides the retry and result-cache patterns the tool registry uses.
"""

import asyncio
import inspect
import random
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Generic, Optional, TypeVar

from agentplug.exceptions import OperationTimeoutError
from agentplug.telemetry.logger import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

# Tasks whose caller gave up waiting; kept referenced until they finish.
_detached: set["asyncio.Future[Any]"] = set()


async def call_maybe_async(func: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
    """Call a sync or async callable and return its result.

    Sync callables run inline on the event loop thread.
    """
    result = func(*args, **kwargs)
    if inspect.isawaitable(result):
        result = await result
    return result


async def run_with_deadline(
    aw: Awaitable[T],
    seconds: Optional[float],
    operation: str,
) -> T:
    """Await an operation, giving up after a deadline.

    Only the deadline itself produces OperationTimeoutError. A TimeoutError
    raised by the operation is propagated like any other exception.

    Args:
        aw: Awaitable to run
        seconds: Deadline in seconds (None waits indefinitely)
        operation: Description used in the timeout error and logs

    Returns:
        Result of the awaitable

    Raises:
        OperationTimeoutError: If the deadline passes first
    """
    if seconds is None:
        return await aw

    task = asyncio.ensure_future(aw)
    done, _ = await asyncio.wait({task}, timeout=seconds)
    if task in done:
        return task.result()

    _detached.add(task)
    task.add_done_callback(_reap_detached(operation))
    logger.warning(
        "Operation exceeded deadline, no longer waiting",
        operation=operation,
        timeout=seconds,
    )
    raise OperationTimeoutError(operation, seconds)


def _reap_detached(operation: str) -> Callable[["asyncio.Future[Any]"], None]:
    def _done(task: "asyncio.Future[Any]") -> None:
        _detached.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.warning(
                "Detached operation failed after deadline",
                operation=operation,
                error=str(error),
            )
        else:
            logger.debug("Detached operation finished after deadline", operation=operation)

    return _done


def detached_count() -> int:
    """Number of timed-out operations that are still running."""
    return len(_detached)


@dataclass
class RetryResult(Generic[T]):
    """Result of a retry operation.

    Attributes:
        success: Whether an attempt returned normally
        result: The result if successful
        attempts: Number of attempts made
        total_time: Total time spent in seconds
        last_error: The last error if failed
    """

    success: bool
    result: Optional[T] = None
    attempts: int = 0
    total_time: float = 0.0
    last_error: Optional[Exception] = None


async def retry(
    func: Callable[..., Awaitable[T]],
    *args: Any,
    max_attempts: int = 3,
    base_delay: float = 1.0,
    max_delay: float = 60.0,
    exponential_base: float = 2.0,
    jitter: bool = True,
    retryable_exceptions: tuple[type[Exception], ...] = (Exception,),
    on_retry: Optional[Callable[[int, Exception], Awaitable[None]]] = None,
    **kwargs: Any,
) -> RetryResult[T]:
    """Retry an async function with exponential backoff.

    Args:
        func: Async function to retry
        *args: Positional arguments for func
        max_attempts: Maximum number of attempts (at least one is made)
        base_delay: Delay before the second attempt, in seconds
        max_delay: Maximum delay in seconds
        exponential_base: Base for exponential backoff
        jitter: Whether to add random jitter
        retryable_exceptions: Exception types to retry on
        on_retry: Callback on each retry (attempt, error)
        **kwargs: Keyword arguments for func

    Returns:
        RetryResult with success status and result/error
    """
    attempts = max(1, max_attempts)
    start_time = time.monotonic()
    last_error: Optional[Exception] = None

    for attempt in range(attempts):
        try:
            result = await func(*args, **kwargs)
            return RetryResult(
                success=True,
                result=result,
                attempts=attempt + 1,
                total_time=time.monotonic() - start_time,
            )
        except retryable_exceptions as e:
            last_error = e

            if attempt < attempts - 1:
                delay = min(base_delay * (exponential_base**attempt), max_delay)
                if jitter:
                    delay *= 0.5 + random.random()

                if on_retry:
                    await on_retry(attempt + 1, e)

                await asyncio.sleep(delay)

    return RetryResult(
        success=False,
        attempts=attempts,
        total_time=time.monotonic() - start_time,
        last_error=last_error,
    )


class AsyncCache(Generic[T]):
    """Async-aware cache with TTL and a size cap.

    Example:
        cache = AsyncCache[dict](ttl=60)

        cached = await cache.get(key)
        if cached is None:
            cached = await compute(key)
            await cache.set(key, cached)
    """

    def __init__(self, ttl: float = 300, max_size: int = 1000) -> None:
        """Initialize cache.

        Args:
            ttl: Time-to-live in seconds
            max_size: Maximum number of entries
        """
        self.ttl = ttl
        self.max_size = max_size
        self._cache: dict[str, tuple[T, float]] = {}
        self._lock = asyncio.Lock()

    async def get(self, key: str) -> Optional[T]:
        """Get a cached value, or None if absent or expired."""
        async with self._lock:
            if key in self._cache:
                value, stored_at = self._cache[key]
                if time.monotonic() - stored_at < self.ttl:
                    return value
                del self._cache[key]
            return None

    async def set(self, key: str, value: T) -> None:
        """Set a cached value."""
        async with self._lock:
            # Evict the oldest entry at capacity
            if key not in self._cache and len(self._cache) >= self.max_size:
                oldest_key = min(self._cache, key=lambda k: self._cache[k][1])
                del self._cache[oldest_key]

            self._cache[key] = (value, time.monotonic())

    async def delete(self, key: str) -> bool:
        """Delete a cached value.

        Returns:
            True if key was found and deleted
        """
        async with self._lock:
            if key in self._cache:
                del self._cache[key]
                return True
            return False

    async def clear(self) -> None:
        """Clear all cached values."""
        async with self._lock:
            self._cache.clear()

    def __len__(self) -> int:
        return len(self._cache)
