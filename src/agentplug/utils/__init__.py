"""Common utilities for agentplug."""

from agentplug.utils.async_utils import (
    AsyncCache,
    RetryResult,
    call_maybe_async,
    detached_count,
    retry,
    run_with_deadline,
)

__all__ = [
    "AsyncCache",
    "RetryResult",
    "call_maybe_async",
    "detached_count",
    "retry",
    "run_with_deadline",
]
