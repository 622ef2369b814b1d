"""Tool registry: namespaced catalogue and dispatch of plugin tools."""

import functools
import json
import time
from collections import deque
from typing import Any, Callable, Iterator, Optional

from agentplug.config.defaults import (
    DEFAULT_RETRY_DELAY,
    DEFAULT_TOOL_CATEGORY,
    TOOL_HISTORY_LIMIT,
)
from agentplug.config.validator import SchemaLike, parse_schema, validate_arguments
from agentplug.exceptions import (
    DuplicateToolError,
    OperationTimeoutError,
    ToolExecutionError,
    ToolNotFoundError,
)
from agentplug.telemetry.logger import LoggerMixin, bound_context
from agentplug.tools.base import ToolDescriptor, ToolExecution, qualify, to_api_name
from agentplug.utils.async_utils import AsyncCache, call_maybe_async, retry, run_with_deadline

MAX_RETRIES = 5


class ToolCatalogView:
    """Restartable view over registered tools, optionally by category.

    Each iteration walks a snapshot taken when the iteration starts, so
    registrations made while iterating do not affect the running loop.
    """

    def __init__(self, tools: dict[str, ToolDescriptor], category: Optional[str]) -> None:
        self._tools = tools
        self._category = category

    def __iter__(self) -> Iterator[ToolDescriptor]:
        for tool in list(self._tools.values()):
            if self._category is None or tool.category == self._category:
                yield tool


class ToolRegistry(LoggerMixin):
    """Central registry for all plugin tools.

    Tools are keyed by their qualified name ``plugin:<plugin>:<tool>``, so
    two plugins can expose tools with the same short name. The registry:
    - Accepts registrations on behalf of a plugin
    - Validates call arguments against each tool's parameter schema
    - Invokes handlers with retries and optional result caching
    - Removes everything a plugin registered in one call

    Arguments a tool does not declare are passed to its handler only when
    the handler can take them (a matching keyword or ``**kwargs``); the
    rest are dropped before the call.
    """

    def __init__(
        self,
        default_timeout: Optional[float] = None,
        history_limit: int = TOOL_HISTORY_LIMIT,
        retry_delay: float = DEFAULT_RETRY_DELAY,
    ) -> None:
        self._tools: dict[str, ToolDescriptor] = {}
        self._api_names: dict[str, str] = {}
        self._caches: dict[str, AsyncCache[Any]] = {}
        self._history: deque[ToolExecution] = deque(maxlen=history_limit)
        self.default_timeout = default_timeout
        self.retry_delay = retry_delay

    def register(
        self,
        plugin_name: str,
        tool_name: str,
        handler: Callable[..., Any],
        description: str = "",
        parameters: Optional[SchemaLike] = None,
        category: str = DEFAULT_TOOL_CATEGORY,
        timeout_seconds: Optional[float] = None,
        retries: int = 0,
        cache_ttl: Optional[float] = None,
        metadata: Optional[dict[str, Any]] = None,
    ) -> ToolDescriptor:
        """Register a tool for a plugin.

        Args:
            plugin_name: Plugin that owns the tool
            tool_name: Tool name within the plugin
            handler: Callable invoked with the validated arguments as keywords
            description: Human-readable description
            parameters: Parameter schema
            category: Grouping tag used by list_tools
            timeout_seconds: Per-tool deadline
            retries: Extra attempts after a failed call (0 to 5)
            cache_ttl: Seconds to reuse a result for identical arguments
            metadata: Additional descriptor data

        Returns:
            The registered ToolDescriptor

        Raises:
            DuplicateToolError: If the qualified name is already registered
            ValueError: If a name is empty or contains ':', if its API name
                clashes with another tool, or if retries/cache_ttl are out
                of range
        """
        for label, value in (("plugin", plugin_name), ("tool", tool_name)):
            if not value or ":" in value:
                raise ValueError(f"Invalid {label} name for tool registration: {value!r}")
        if not callable(handler):
            raise TypeError(f"Handler for tool '{tool_name}' is not callable")
        if not 0 <= retries <= MAX_RETRIES:
            raise ValueError(f"retries must be between 0 and {MAX_RETRIES}, got {retries}")
        if cache_ttl is not None and cache_ttl < 0:
            raise ValueError(f"cache_ttl must not be negative, got {cache_ttl}")

        qualified_name = qualify(plugin_name, tool_name)
        if qualified_name in self._tools:
            raise DuplicateToolError(qualified_name)

        api_name = to_api_name(qualified_name)
        if api_name in self._api_names:
            raise ValueError(
                f"Tool '{qualified_name}' exports the same API name as "
                f"'{self._api_names[api_name]}': {api_name}"
            )

        tool = ToolDescriptor(
            qualified_name=qualified_name,
            plugin_name=plugin_name,
            name=tool_name,
            description=description,
            handler=handler,
            parameters=parse_schema(parameters),
            category=category,
            timeout_seconds=timeout_seconds,
            retries=retries,
            cache_ttl=cache_ttl,
            metadata=dict(metadata or {}),
        )

        self._tools[qualified_name] = tool
        self._api_names[api_name] = qualified_name
        if tool.cacheable:
            self._caches[qualified_name] = AsyncCache(ttl=tool.cache_ttl)
        self.logger.debug("Registered tool", tool=qualified_name, category=category)
        return tool

    def get(self, qualified_name: str) -> Optional[ToolDescriptor]:
        """Get a tool by qualified name, or None."""
        return self._tools.get(qualified_name)

    def resolve_api_name(self, api_name: str) -> Optional[str]:
        """Map a name from an exported LLM schema back to the tool address."""
        return self._api_names.get(api_name)

    def names(self) -> list[str]:
        """Qualified names of all registered tools."""
        return list(self._tools.keys())

    def tools_for(self, plugin_name: str) -> list[ToolDescriptor]:
        """Tools registered by one plugin."""
        return [t for t in self._tools.values() if t.plugin_name == plugin_name]

    def list_tools(self, category: Optional[str] = None) -> ToolCatalogView:
        """Iterable view of registered tools.

        Args:
            category: Only yield tools with this category

        Returns:
            View that can be iterated any number of times
        """
        return ToolCatalogView(self._tools, category)

    async def invoke(
        self,
        qualified_name: str,
        args: Optional[dict[str, Any]] = None,
        timeout: Optional[float] = None,
    ) -> Any:
        """Validate arguments and run a tool's handler.

        Each attempt gets the full deadline. A failed attempt is retried up
        to the tool's ``retries`` count with exponential backoff.

        Args:
            qualified_name: Tool address
            args: Arguments for the handler
            timeout: Caller deadline; falls back to the tool's own, then
                the registry default

        Returns:
            Whatever the handler returned

        Raises:
            ToolNotFoundError: If no tool has this name
            ValidationError: If the arguments fail the parameter schema
            ToolExecutionError: If the handler raised on every attempt
            OperationTimeoutError: If the last attempt passed the deadline
        """
        tool = self._tools.get(qualified_name)
        if tool is None:
            raise ToolNotFoundError(qualified_name)

        resolved = self._handler_arguments(
            tool, validate_arguments(qualified_name, args, tool.parameters)
        )

        deadline = timeout
        if deadline is None:
            deadline = tool.timeout_seconds if tool.timeout_seconds is not None else self.default_timeout

        started = time.monotonic()
        cache = self._caches.get(qualified_name)
        cache_key = _cache_key(resolved) if cache is not None else ""
        if cache is not None:
            cached = await cache.get(cache_key)
            if cached is not None:
                self.logger.debug("Tool result served from cache", tool=qualified_name)
                self._record(qualified_name, started, attempts=0, cached=True)
                return cached

        self.logger.info("Invoking tool", tool=qualified_name, arguments=list(resolved))

        async def on_retry(attempt: int, error: Exception) -> None:
            self.logger.warning(
                "Tool attempt failed, retrying",
                tool=qualified_name,
                attempt=attempt,
                error=str(error),
            )

        with bound_context(plugin=tool.plugin_name):
            outcome = await retry(
                self._attempt,
                tool,
                resolved,
                deadline,
                max_attempts=tool.retries + 1,
                base_delay=self.retry_delay,
                on_retry=on_retry,
            )

        if outcome.success:
            self._record(qualified_name, started, attempts=outcome.attempts)
            if cache is not None:
                await cache.set(cache_key, outcome.result)
            return outcome.result

        error: Exception = outcome.last_error  # type: ignore[assignment]
        self._record(qualified_name, started, str(error), attempts=outcome.attempts)
        if isinstance(error, OperationTimeoutError):
            raise error
        self.logger.error("Tool handler failed", tool=qualified_name, error=str(error))
        raise ToolExecutionError(qualified_name, error, plugin_name=tool.plugin_name) from error

    def unregister(self, qualified_name: str) -> bool:
        """Remove a single tool.

        Returns:
            True if the tool was registered
        """
        if qualified_name not in self._tools:
            return False
        self._drop(qualified_name)
        self.logger.debug("Unregistered tool", tool=qualified_name)
        return True

    def unregister_all(self, plugin_name: str) -> int:
        """Remove every tool owned by a plugin. Safe to call repeatedly.

        Returns:
            Number of tools removed
        """
        owned = [name for name, t in self._tools.items() if t.plugin_name == plugin_name]
        for name in owned:
            self._drop(name)
        if owned:
            self.logger.debug("Unregistered plugin tools", plugin=plugin_name, count=len(owned))
        return len(owned)

    def openai_schemas(self) -> list[dict[str, Any]]:
        """All tools in OpenAI function calling format.

        Function names are API names; map them back with resolve_api_name().
        """
        return [tool.to_openai_schema() for tool in self._tools.values()]

    def anthropic_schemas(self) -> list[dict[str, Any]]:
        """All tools in Anthropic tool use format."""
        return [tool.to_anthropic_schema() for tool in self._tools.values()]

    @property
    def history(self) -> list[ToolExecution]:
        """Most recent invocations, oldest first."""
        return list(self._history)

    def stats(self) -> dict[str, Any]:
        """Summarize invocation history.

        Returns:
            Dict with ``overall`` totals and ``by_tool`` breakdown
        """
        total = len(self._history)
        successful = sum(1 for e in self._history if e.success)
        durations = [e.duration_ms for e in self._history]

        by_tool: dict[str, dict[str, Any]] = {}
        for execution in self._history:
            entry = by_tool.setdefault(
                execution.qualified_name,
                {"total": 0, "successful": 0, "cached": 0, "avg_duration_ms": 0.0},
            )
            entry["total"] += 1
            if execution.success:
                entry["successful"] += 1
            if execution.cached:
                entry["cached"] += 1
            entry["avg_duration_ms"] += (
                execution.duration_ms - entry["avg_duration_ms"]
            ) / entry["total"]

        return {
            "overall": {
                "total": total,
                "successful": successful,
                "failed": total - successful,
                "success_rate": (successful / total * 100) if total else 0.0,
                "avg_duration_ms": round(sum(durations) / total) if total else 0,
            },
            "by_tool": by_tool,
        }

    def clear(self) -> None:
        """Remove all registered tools, cached results and history."""
        self._tools.clear()
        self._api_names.clear()
        self._caches.clear()
        self._history.clear()
        self.logger.debug("Cleared all tools")

    def __len__(self) -> int:
        return len(self._tools)

    def __contains__(self, qualified_name: object) -> bool:
        return qualified_name in self._tools

    async def _attempt(
        self,
        tool: ToolDescriptor,
        arguments: dict[str, Any],
        deadline: Optional[float],
    ) -> Any:
        # Bound call: argument names never collide with helper parameters
        call = functools.partial(tool.handler, **arguments)
        return await run_with_deadline(
            call_maybe_async(call),
            deadline,
            f"Tool '{tool.qualified_name}'",
        )

    def _handler_arguments(self, tool: ToolDescriptor, resolved: dict[str, Any]) -> dict[str, Any]:
        accepted = tool.accepted_arguments
        if accepted is None:
            return resolved

        dropped = [
            name for name in resolved if name not in tool.parameters and name not in accepted
        ]
        if not dropped:
            return resolved
        self.logger.debug(
            "Ignoring arguments the tool does not take",
            tool=tool.qualified_name,
            arguments=dropped,
        )
        return {name: value for name, value in resolved.items() if name not in dropped}

    def _drop(self, qualified_name: str) -> None:
        self._tools.pop(qualified_name, None)
        self._api_names.pop(to_api_name(qualified_name), None)
        self._caches.pop(qualified_name, None)

    def _record(
        self,
        qualified_name: str,
        started: float,
        error: Optional[str] = None,
        attempts: int = 1,
        cached: bool = False,
    ) -> None:
        self._history.append(
            ToolExecution(
                qualified_name=qualified_name,
                success=error is None,
                duration_ms=int((time.monotonic() - started) * 1000),
                error=error,
                attempts=attempts,
                cached=cached,
            )
        )


def _cache_key(arguments: dict[str, Any]) -> str:
    return json.dumps(arguments, sort_keys=True, default=repr)
