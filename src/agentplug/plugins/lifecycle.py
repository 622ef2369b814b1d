"""Plugin lifecycle states and descriptors."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from agentplug.exceptions import HostError


class PluginState(str, Enum):
    """Plugin lifecycle states."""

    UNLOADED = "unloaded"  # Descriptor known, source not resolved
    LOADED = "loaded"  # Instance constructed
    INITIALIZING = "initializing"  # init() running
    INITIALIZED = "initialized"  # Tools and handlers registered
    STARTING = "starting"  # on_start() running
    STARTED = "started"  # Serving tools and events
    STOPPING = "stopping"  # on_stop() running
    STOPPED = "stopped"  # Resources released
    DESTROYING = "destroying"  # on_destroy() running
    DESTROYED = "destroyed"  # Instance dropped
    FAILED = "failed"  # Load, init or start failed


TRANSITIONS: dict[PluginState, frozenset[PluginState]] = {
    PluginState.UNLOADED: frozenset({PluginState.LOADED, PluginState.FAILED}),
    PluginState.LOADED: frozenset(
        {PluginState.INITIALIZING, PluginState.DESTROYING, PluginState.FAILED}
    ),
    PluginState.INITIALIZING: frozenset({PluginState.INITIALIZED, PluginState.FAILED}),
    PluginState.INITIALIZED: frozenset(
        {
            PluginState.STARTING,
            PluginState.STOPPING,
            PluginState.DESTROYING,
            PluginState.FAILED,
        }
    ),
    PluginState.STARTING: frozenset({PluginState.STARTED, PluginState.FAILED}),
    PluginState.STARTED: frozenset({PluginState.STOPPING, PluginState.FAILED}),
    PluginState.STOPPING: frozenset({PluginState.STOPPED}),
    PluginState.STOPPED: frozenset({PluginState.DESTROYING}),
    PluginState.DESTROYING: frozenset({PluginState.DESTROYED}),
    PluginState.DESTROYED: frozenset(),
    PluginState.FAILED: frozenset(),
}

# States in which a plugin may register tools and subscribe handlers.
REGISTRATION_STATES = frozenset(
    {
        PluginState.INITIALIZING,
        PluginState.INITIALIZED,
        PluginState.STARTING,
        PluginState.STARTED,
        PluginState.STOPPING,
        PluginState.STOPPED,
    }
)

TERMINAL_STATES = frozenset({PluginState.DESTROYED, PluginState.FAILED})


def can_transition(current: PluginState, target: PluginState) -> bool:
    """Check whether the state machine allows a transition."""
    return target in TRANSITIONS[current]


@dataclass
class PluginDescriptor:
    """Everything the host knows about one plugin.

    Attributes:
        name: Unique plugin name
        source: Where the plugin comes from (defaults to name)
        config: Raw configuration as supplied
        resolved_config: Configuration after env injection and validation
        dependencies: Plugins that must be started first
        state: Current lifecycle state
        error: Message of the failure that moved the plugin to FAILED
        loaded_at: When the instance was constructed
        started_at: When on_start() completed
        stopped_at: When on_stop() completed
    """

    name: str
    source: Optional[str] = None
    config: dict[str, Any] = field(default_factory=dict)
    resolved_config: dict[str, Any] = field(default_factory=dict)
    dependencies: list[str] = field(default_factory=list)
    state: PluginState = PluginState.UNLOADED
    error: Optional[str] = None
    loaded_at: Optional[datetime] = None
    started_at: Optional[datetime] = None
    stopped_at: Optional[datetime] = None

    @property
    def resolved_source(self) -> str:
        return self.source or self.name

    @property
    def is_running(self) -> bool:
        return self.state == PluginState.STARTED

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES


@dataclass
class StartupReport:
    """Outcome of starting every loaded plugin.

    Attributes:
        started: Plugins that reached STARTED, in start order
        failed: Plugins that failed, with the error each raised
    """

    started: list[str] = field(default_factory=list)
    failed: dict[str, HostError] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.failed
