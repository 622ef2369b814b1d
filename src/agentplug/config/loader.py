"""Configuration loading with hierarchy support."""

import os
from pathlib import Path
from typing import Any, Optional

import yaml

from agentplug.config.defaults import (
    DEFAULT_CONFIG_FILE,
    ENV_PREFIX,
    PROJECT_CONFIG_NAME,
    SYSTEM_CONFIG_FILE,
)
from agentplug.config.schemas import HostConfig
from agentplug.telemetry.logger import get_logger

logger = get_logger(__name__)


def get_default_config_path() -> Path:
    """Get the default user configuration path."""
    return DEFAULT_CONFIG_FILE


def get_config_paths() -> list[Path]:
    """Get ordered list of configuration paths to check."""
    candidates = [
        SYSTEM_CONFIG_FILE,
        get_default_config_path(),
        Path.cwd() / PROJECT_CONFIG_NAME,
    ]
    return [path for path in candidates if path.exists()]


def load_yaml_config(path: Path) -> dict[str, Any]:
    """Load a YAML configuration file."""
    with open(path, "r") as f:
        content = yaml.safe_load(f) or {}
    if not isinstance(content, dict):
        raise ValueError(f"Configuration file must contain a mapping: {path}")
    return content


def deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Deep merge two dictionaries, with override taking precedence.

    Lists (such as the plugins list) are replaced, not concatenated.
    """
    result = base.copy()

    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = deep_merge(result[key], value)
        else:
            result[key] = value

    return result


def get_env_overrides(environ: Optional[dict[str, str]] = None) -> dict[str, Any]:
    """Get configuration overrides from environment variables.

    Environment variables are prefixed with AGENTPLUG_ and use double
    underscores for nested keys. For example:
    - AGENTPLUG_LOG_LEVEL=DEBUG -> {"log_level": "DEBUG"}
    - AGENTPLUG_HOOK_TIMEOUT_SECONDS=5 -> {"hook_timeout_seconds": 5}
    """
    env = os.environ if environ is None else environ
    overrides: dict[str, Any] = {}

    for key, value in env.items():
        if not key.startswith(ENV_PREFIX):
            continue

        # Strip the prefix; double underscores nest keys
        parts = key[len(ENV_PREFIX):].lower().split("__")

        # Build nested dictionary
        current = overrides
        for part in parts[:-1]:
            current = current.setdefault(part, {})

        # Set the value (try to parse as appropriate type)
        current[parts[-1]] = _parse_env_value(value)

    return overrides


def _parse_env_value(value: str) -> Any:
    """Parse an environment variable value to appropriate type."""
    # Boolean
    if value.lower() in ("true", "yes"):
        return True
    if value.lower() in ("false", "no"):
        return False

    # Integer
    try:
        return int(value)
    except ValueError:
        pass

    # Float (deadlines)
    try:
        return float(value)
    except ValueError:
        pass

    # String
    return value


def load_config(
    config_path: Optional[Path] = None,
    include_env: bool = True,
) -> HostConfig:
    """Load configuration from all sources with proper hierarchy.

    Loading order (later overrides earlier):
    1. Default values (from schema)
    2. System config (/etc/agentplug/config.yaml)
    3. User config (~/.agentplug/config.yaml)
    4. Project config (.agentplug.yaml in cwd)
    5. Explicit config file
    6. Environment variables (AGENTPLUG_*)

    Args:
        config_path: Optional explicit configuration file path
        include_env: Whether to include environment variable overrides

    Returns:
        Validated HostConfig instance
    """
    # Start with empty config (defaults come from schema)
    merged_config: dict[str, Any] = {}

    # Load from standard paths
    for path in get_config_paths():
        try:
            merged_config = deep_merge(merged_config, load_yaml_config(path))
        except (OSError, ValueError, yaml.YAMLError) as e:
            logger.warning("Skipping unreadable config file", path=str(path), error=str(e))

    # Load explicit config file if provided
    if config_path:
        if not config_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {config_path}")
        merged_config = deep_merge(merged_config, load_yaml_config(config_path))

    # Apply environment variable overrides
    if include_env:
        merged_config = deep_merge(merged_config, get_env_overrides())

    # Create and validate configuration
    return HostConfig(**merged_config)


def create_default_config(path: Path) -> None:
    """Create a default configuration file.

    Args:
        path: Path where to create the config file
    """
    # Ensure parent directory exists
    path.parent.mkdir(parents=True, exist_ok=True)

    # Ship with the builtin memory plugin enabled
    default_config = HostConfig(
        plugins=[{"name": "memory", "config": {"persist": False}}],
    )
    config_dict = default_config.model_dump(mode="json", exclude_none=True)

    # Add a header describing plugin entries
    yaml_content = """# agentplug host configuration
# Each plugin entry takes: name, source, enabled, config, dependencies

"""
    yaml_content += yaml.dump(config_dict, default_flow_style=False, sort_keys=False)

    with open(path, "w") as f:
        f.write(yaml_content)
