"""Pytest configuration and fixtures."""

import pytest
import structlog
from pathlib import Path
from typing import Generator

from agentplug.config.schemas import HostConfig
from agentplug.events.bus import EventBus
from agentplug.plugins.manager import PluginManager
from agentplug.plugins.resolver import PluginResolver
from agentplug.telemetry.logger import setup_logging
from agentplug.tools.registry import ToolRegistry


@pytest.fixture
def test_config() -> HostConfig:
    """Create a test configuration."""
    return HostConfig()


@pytest.fixture
def tool_registry() -> Generator[ToolRegistry, None, None]:
    """Create a fresh tool registry for testing."""
    registry = ToolRegistry()
    yield registry
    registry.clear()


@pytest.fixture
def event_bus() -> EventBus:
    """Create a fresh event bus for testing."""
    return EventBus()


@pytest.fixture
def resolver() -> PluginResolver:
    """Create a resolver that ignores installed entry points."""
    return PluginResolver(use_entry_points=False)


@pytest.fixture
def manager(resolver: PluginResolver) -> PluginManager:
    """Create a plugin manager with short deadlines."""
    return PluginManager(resolver=resolver, hook_timeout=1.0, tool_timeout=1.0)


@pytest.fixture
def temp_config_file(tmp_path: Path) -> Path:
    """Create a temporary config file."""
    config_file = tmp_path / "config.yaml"
    config_file.write_text("""
plugins:
  - name: memory
    config:
      persist: false
      max_messages: 50

hook_timeout_seconds: 5
fail_fast: true
log_level: DEBUG
""")
    return config_file


@pytest.fixture
def configured_logging() -> Generator[None, None, None]:
    """Configure structlog the way a running host does, then restore defaults."""
    setup_logging(level="DEBUG", json_format=True)
    yield
    structlog.reset_defaults()
