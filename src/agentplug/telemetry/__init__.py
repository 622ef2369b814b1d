"""Telemetry for AgentPlug.

Structured logging with context binding, built on structlog.
"""

from agentplug.telemetry.logger import (
    LoggerMixin,
    bind_context,
    bound_context,
    get_logger,
    get_plugin_logger,
    setup_logging,
    unbind_context,
)

__all__ = [
    "setup_logging",
    "get_logger",
    "get_plugin_logger",
    "bind_context",
    "unbind_context",
    "bound_context",
    "LoggerMixin",
]
