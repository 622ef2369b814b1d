"""Base types for the plugin tool catalogue."""

import inspect
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Optional

from agentplug.config.validator import ValidationSchema

TOOL_PREFIX = "plugin"

# Function names accepted by the OpenAI and Anthropic tool APIs
API_NAME_PATTERN = re.compile(r"^[a-zA-Z0-9_-]{1,64}$")
API_NAME_SEPARATOR = "__"
_API_UNSAFE = re.compile(r"[^a-zA-Z0-9_-]")


def qualify(plugin_name: str, tool_name: str) -> str:
    """Build the address of a plugin tool (``plugin:<plugin>:<tool>``)."""
    return f"{TOOL_PREFIX}:{plugin_name}:{tool_name}"


def split_qualified_name(qualified_name: str) -> Optional[tuple[str, str]]:
    """Split a tool address into (plugin name, tool name).

    Returns:
        The two parts, or None if the address is not well formed
    """
    parts = qualified_name.split(":")
    if len(parts) != 3 or parts[0] != TOOL_PREFIX or not parts[1] or not parts[2]:
        return None
    return parts[1], parts[2]


def to_api_name(qualified_name: str) -> str:
    """Map a tool address to a name the LLM tool APIs accept.

    ``plugin:memory:remember`` becomes ``plugin__memory__remember``. Other
    unsupported characters become ``_`` and the result is cut to 64
    characters.
    """
    name = API_NAME_SEPARATOR.join(qualified_name.split(":"))
    return _API_UNSAFE.sub("_", name)[:64]


def accepted_keywords(handler: Callable[..., Any]) -> Optional[frozenset[str]]:
    """Keyword arguments a handler can take.

    Returns:
        The accepted names, or None when the handler takes ``**kwargs`` or
        its signature cannot be inspected
    """
    try:
        signature = inspect.signature(handler)
    except (TypeError, ValueError):
        return None

    names = set()
    for param in signature.parameters.values():
        if param.kind == inspect.Parameter.VAR_KEYWORD:
            return None
        if param.kind in (
            inspect.Parameter.POSITIONAL_OR_KEYWORD,
            inspect.Parameter.KEYWORD_ONLY,
        ):
            names.add(param.name)
    return frozenset(names)


@dataclass
class ToolDescriptor:
    """Definition of a tool a plugin exposes.

    Attributes:
        qualified_name: Address used to invoke the tool
        plugin_name: Plugin that registered the tool
        name: Tool name within the plugin
        description: Human-readable description for LLM
        handler: Callable that executes the tool (sync or async)
        parameters: Parameter rules checked before every call
        category: Free-form grouping tag
        timeout_seconds: Per-tool deadline overriding the registry default
        retries: Extra attempts after a failed call
        cache_ttl: Seconds a result is reused for identical arguments
        metadata: Additional descriptor data
        registered_at: When the tool was registered
    """

    qualified_name: str
    plugin_name: str
    name: str
    description: str
    handler: Callable[..., Any]
    parameters: ValidationSchema = field(default_factory=dict)
    category: str = "general"
    timeout_seconds: Optional[float] = None
    retries: int = 0
    cache_ttl: Optional[float] = None
    metadata: dict[str, Any] = field(default_factory=dict)
    registered_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    accepted_arguments: Optional[frozenset[str]] = field(default=None, init=False, repr=False)

    def __post_init__(self) -> None:
        self.accepted_arguments = accepted_keywords(self.handler)

    @property
    def api_name(self) -> str:
        """Name used in exported LLM tool schemas."""
        return to_api_name(self.qualified_name)

    @property
    def cacheable(self) -> bool:
        return self.cache_ttl is not None and self.cache_ttl > 0

    def _json_parameters(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                name: spec.to_json_schema() for name, spec in self.parameters.items()
            },
            "required": [name for name, spec in self.parameters.items() if spec.required],
        }

    def to_openai_schema(self) -> dict[str, Any]:
        """Convert to OpenAI function calling format."""
        return {
            "type": "function",
            "function": {
                "name": self.api_name,
                "description": self.description,
                "parameters": self._json_parameters(),
            },
        }

    def to_anthropic_schema(self) -> dict[str, Any]:
        """Convert to Anthropic tool use format."""
        return {
            "name": self.api_name,
            "description": self.description,
            "input_schema": self._json_parameters(),
        }


@dataclass
class ToolExecution:
    """Record of a single tool invocation.

    Attributes:
        qualified_name: Tool that was invoked
        success: Whether the handler returned normally
        duration_ms: Wall time spent waiting for the handler
        error: Error message when the call failed
        attempts: Handler calls made, 0 when served from cache
        cached: Whether the result came from the cache
        timestamp: When the call started
    """

    qualified_name: str
    success: bool
    duration_ms: int
    error: Optional[str] = None
    attempts: int = 1
    cached: bool = False
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
