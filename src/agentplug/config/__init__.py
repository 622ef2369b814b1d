"""Configuration management and validation for agentplug."""

from agentplug.config.schemas import HostConfig, PluginConfig
from agentplug.config.loader import load_config, get_default_config_path
from agentplug.config.validator import (
    FieldSpec,
    FieldType,
    ValidationSchema,
    inject_env_vars,
    parse_schema,
    validate,
    validate_arguments,
)

__all__ = [
    "HostConfig",
    "PluginConfig",
    "load_config",
    "get_default_config_path",
    "FieldSpec",
    "FieldType",
    "ValidationSchema",
    "inject_env_vars",
    "parse_schema",
    "validate",
    "validate_arguments",
]
