"""Host configuration schemas using Pydantic for validation."""

from pathlib import Path
from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from agentplug.config.defaults import DEFAULT_HOOK_TIMEOUT, DEFAULT_TOOL_TIMEOUT


class PluginConfig(BaseModel):
    """Configuration entry for a single plugin."""

    name: str = Field(
        min_length=1,
        description="Unique plugin name",
    )
    source: Optional[str] = Field(
        default=None,
        description="Builtin name, 'module:attr', .py path or entry point (defaults to name)",
    )
    enabled: bool = Field(
        default=True,
        description="Whether plugin is loaded",
    )
    config: dict[str, Any] = Field(
        default_factory=dict,
        description="Plugin-specific configuration",
    )
    dependencies: list[str] = Field(
        default_factory=list,
        description="Plugins that must be started before this one",
    )

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        """Plugin names form part of tool addresses, so no colons."""
        if ":" in v:
            raise ValueError(f"Plugin name may not contain ':': {v}")
        return v

    @property
    def resolved_source(self) -> str:
        return self.source or self.name


class HostConfig(BaseModel):
    """Root configuration for the plugin host."""

    plugins: list[PluginConfig] = Field(
        default_factory=list,
        description="Plugins to load, in configuration order",
    )
    hook_timeout_seconds: Optional[float] = Field(
        default=DEFAULT_HOOK_TIMEOUT,
        gt=0,
        description="Deadline for each lifecycle hook (None waits forever)",
    )
    tool_timeout_seconds: Optional[float] = Field(
        default=DEFAULT_TOOL_TIMEOUT,
        gt=0,
        description="Default deadline for tool handlers (None waits forever)",
    )
    fail_fast: bool = Field(
        default=False,
        description="Abort start_all on the first plugin failure",
    )
    plugins_dir: Optional[Path] = Field(
        default=None,
        description="Directory searched for relative .py plugin sources",
    )
    log_level: str = Field(
        default="INFO",
        description="Global log level",
    )
    log_json: bool = Field(
        default=True,
        description="Render logs as JSON (False for console output)",
    )
    log_file: Optional[Path] = Field(
        default=None,
        description="Path to log file",
    )

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level is valid."""
        valid_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if v.upper() not in valid_levels:
            raise ValueError(f"Invalid log level: {v}. Must be one of {valid_levels}")
        return v.upper()

    @model_validator(mode="after")
    def validate_unique_names(self) -> "HostConfig":
        """Plugin names must be unique."""
        seen: set[str] = set()
        for plugin in self.plugins:
            if plugin.name in seen:
                raise ValueError(f"Duplicate plugin name: {plugin.name}")
            seen.add(plugin.name)
        return self

    def get_plugin_config(self, name: str) -> Optional[PluginConfig]:
        """Get configuration for a specific plugin."""
        for plugin in self.plugins:
            if plugin.name == name:
                return plugin
        return None

    def is_plugin_enabled(self, name: str) -> bool:
        """Check if a plugin is enabled."""
        config = self.get_plugin_config(name)
        return config.enabled if config else False

    def enabled_plugins(self) -> list[PluginConfig]:
        """Enabled plugin entries in configuration order."""
        return [plugin for plugin in self.plugins if plugin.enabled]
