"""Tool catalogue and dispatch for plugin tools."""

from agentplug.tools.base import (
    ToolDescriptor,
    ToolExecution,
    qualify,
    split_qualified_name,
    to_api_name,
)
from agentplug.tools.registry import ToolCatalogView, ToolRegistry

__all__ = [
    "ToolDescriptor",
    "ToolExecution",
    "qualify",
    "split_qualified_name",
    "to_api_name",
    "ToolCatalogView",
    "ToolRegistry",
]
