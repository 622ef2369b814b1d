"""Plugin system for AgentPlug extensibility."""

from agentplug.plugins.base import Plugin, PluginContext, PluginFactory
from agentplug.plugins.lifecycle import (
    PluginDescriptor,
    PluginState,
    StartupReport,
    can_transition,
)
from agentplug.plugins.manager import PluginManager
from agentplug.plugins.resolver import BUILTIN_PLUGINS, PluginResolver

__all__ = [
    # Contract
    "Plugin",
    "PluginContext",
    "PluginFactory",
    # Lifecycle
    "PluginDescriptor",
    "PluginState",
    "StartupReport",
    "can_transition",
    # Host
    "PluginManager",
    "PluginResolver",
    "BUILTIN_PLUGINS",
]
