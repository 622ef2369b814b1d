"""Exception hierarchy for the plugin host.

Every error raised by the host derives from ``HostError`` so the agent
runtime can catch host failures in one place and still branch on the
specific type when it needs to decide between aborting and degrading.
"""

from typing import Any, Optional


class HostError(Exception):
    """Base class for all plugin host errors."""


class LoadError(HostError):
    """Raised when a plugin source cannot be resolved or constructed."""

    def __init__(self, plugin_name: str, reason: str) -> None:
        super().__init__(f"Failed to load plugin '{plugin_name}': {reason}")
        self.plugin_name = plugin_name
        self.reason = reason


class ValidationError(HostError):
    """Raised when values fail schema checks.

    Attributes:
        field: First field that failed validation
        reason: Why that field failed
        errors: Every (field, reason) pair collected during validation
        target: What was being validated (plugin name or tool name)
    """

    def __init__(
        self,
        target: str,
        field: str,
        reason: str,
        errors: Optional[list[tuple[str, str]]] = None,
    ) -> None:
        self.target = target
        self.field = field
        self.reason = reason
        self.errors = errors or [(field, reason)]
        details = ", ".join(f"{f}: {r}" for f, r in self.errors)
        super().__init__(f"Invalid values for '{target}': {details}")


class ConfigError(ValidationError):
    """Raised when a plugin configuration fails validation."""

    @property
    def plugin_name(self) -> str:
        return self.target


class DependencyCycleError(HostError):
    """Raised when plugin dependencies form a cycle."""

    def __init__(self, cycle: list[str]) -> None:
        super().__init__(f"Circular plugin dependency: {' -> '.join(cycle)}")
        self.cycle = cycle


class DuplicateToolError(HostError):
    """Raised when a qualified tool name is registered twice."""

    def __init__(self, qualified_name: str) -> None:
        super().__init__(f"Tool '{qualified_name}' is already registered")
        self.qualified_name = qualified_name


class ToolNotFoundError(HostError):
    """Raised when invoking a tool that is not registered."""

    def __init__(self, qualified_name: str) -> None:
        super().__init__(f"Tool '{qualified_name}' is not registered")
        self.qualified_name = qualified_name


class ToolExecutionError(HostError):
    """Wraps an exception raised by a tool handler."""

    def __init__(
        self,
        qualified_name: str,
        cause: BaseException,
        plugin_name: Optional[str] = None,
    ) -> None:
        super().__init__(f"Tool '{qualified_name}' failed: {cause}")
        self.qualified_name = qualified_name
        self.plugin_name = plugin_name
        self.cause = cause


class NotFoundError(HostError):
    """Raised when a plugin name is unknown."""

    def __init__(self, plugin_name: str) -> None:
        super().__init__(f"Plugin '{plugin_name}' is not loaded")
        self.plugin_name = plugin_name


class NotReadyError(HostError):
    """Raised when a plugin is not in a state that allows the operation."""

    def __init__(self, plugin_name: str, state: str, operation: str = "use") -> None:
        super().__init__(
            f"Plugin '{plugin_name}' cannot {operation} while in state '{state}'"
        )
        self.plugin_name = plugin_name
        self.state = state
        self.operation = operation


class OperationTimeoutError(HostError, TimeoutError):
    """Raised when a hook or tool handler exceeds its deadline.

    The underlying operation is not cancelled; the host only stops waiting.
    """

    def __init__(self, operation: str, timeout: float) -> None:
        super().__init__(f"{operation} timed out after {timeout}s")
        self.operation = operation
        self.timeout = timeout


class InvalidTransitionError(HostError):
    """Raised on a lifecycle transition the state machine does not allow."""

    def __init__(self, plugin_name: str, current: str, target: str) -> None:
        super().__init__(
            f"Plugin '{plugin_name}' cannot move from '{current}' to '{target}'"
        )
        self.plugin_name = plugin_name
        self.current = current
        self.target = target


class PluginLifecycleError(HostError):
    """Raised when a plugin's init or start hook fails."""

    def __init__(self, plugin_name: str, stage: str, cause: BaseException) -> None:
        super().__init__(f"Plugin '{plugin_name}' failed during {stage}: {cause}")
        self.plugin_name = plugin_name
        self.stage = stage
        self.cause = cause


class HandlerFailure:
    """One event handler failure collected during dispatch."""

    __slots__ = ("event_name", "plugin_name", "cause")

    def __init__(
        self,
        event_name: str,
        plugin_name: Optional[str],
        cause: BaseException,
    ) -> None:
        self.event_name = event_name
        self.plugin_name = plugin_name
        self.cause = cause

    def __repr__(self) -> str:
        return (
            f"HandlerFailure(event_name={self.event_name!r}, "
            f"plugin_name={self.plugin_name!r}, cause={self.cause!r})"
        )


class EventDispatchError(HostError):
    """Raised after dispatch when one or more event handlers failed.

    Attributes:
        event_name: Event that was published
        failures: Every handler failure, in dispatch order
        payload: Payload as merged by the handlers that succeeded
    """

    def __init__(
        self,
        event_name: str,
        failures: list[HandlerFailure],
        payload: dict[str, Any],
    ) -> None:
        owners = ", ".join(str(f.plugin_name) for f in failures)
        super().__init__(
            f"{len(failures)} handler(s) failed for event '{event_name}' ({owners})"
        )
        self.event_name = event_name
        self.failures = failures
        self.payload = payload
