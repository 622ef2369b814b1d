"""
AgentPlug - Plugin host for agent runtimes.

AgentPlug loads plugins and lets them extend an agent:
- Plugin lifecycle management with dependency ordering
- Namespaced tool registry with argument validation
- Ordered event bus with payload merging
- Declarative config validation for plugins and tools
"""

__version__ = "0.1.0"
__author__ = "AgentPlug Team"

from agentplug.config.schemas import HostConfig
from agentplug.plugins.manager import PluginManager

__all__ = [
    "__version__",
    "HostConfig",
    "PluginManager",
]
