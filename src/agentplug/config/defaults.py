"""Default configuration values for the plugin host."""

from pathlib import Path

# Default paths
DEFAULT_CONFIG_DIR = Path.home() / ".agentplug"
DEFAULT_CONFIG_FILE = DEFAULT_CONFIG_DIR / "config.yaml"
SYSTEM_CONFIG_FILE = Path("/etc/agentplug/config.yaml")
PROJECT_CONFIG_NAME = ".agentplug.yaml"

# Environment overrides
ENV_PREFIX = "AGENTPLUG_"

# Deadlines (seconds)
DEFAULT_HOOK_TIMEOUT = 30.0
DEFAULT_TOOL_TIMEOUT = 30.0

# Tool registry
DEFAULT_TOOL_CATEGORY = "general"
TOOL_HISTORY_LIMIT = 1000

# Entry point group for third-party plugins
ENTRY_POINT_GROUP = "agentplug.plugins"

# Delay before the first retry of a failed tool call (seconds)
DEFAULT_RETRY_DELAY = 1.0
