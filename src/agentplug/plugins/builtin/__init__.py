"""Built-in plugins for AgentPlug."""

from agentplug.plugins.builtin.memory import MemoryPlugin

__all__ = [
    "MemoryPlugin",
]
