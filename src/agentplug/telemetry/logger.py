"""Structured logging setup using structlog."""

import logging
import sys
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Iterator, Optional, Union

import structlog
from structlog.typing import Processor


def setup_logging(
    level: str = "INFO",
    log_file: Optional[Union[str, Path]] = None,
    json_format: bool = True,
) -> None:
    """Configure structured logging for the plugin host.

    Called by ``PluginManager.from_config`` with the host configuration's
    ``log_level``, ``log_file`` and ``log_json`` settings.

    Args:
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Optional path to log file
        json_format: Whether to use JSON format (True) or console format (False)
    """
    # Convert level string to logging level
    log_level = getattr(logging, level.upper(), logging.INFO)

    # Configure standard library logging
    logging.basicConfig(
        format="%(message)s",
        level=log_level,
        stream=sys.stderr,
    )

    # Build processor chain; bound plugin/hook context is merged first
    shared_processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    if json_format:
        # Machine-readable output for agent runtimes
        processors: list[Processor] = [
            *shared_processors,
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    else:
        # Console output with colors
        processors = [
            *shared_processors,
            structlog.dev.ConsoleRenderer(colors=True),
        ]

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )

    # Mirror output to a file if one is configured
    if log_file:
        log_path = Path(log_file).expanduser()
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_path)
        file_handler.setLevel(log_level)

        # Entries are already rendered by structlog
        file_handler.setFormatter(logging.Formatter("%(message)s"))
        logging.getLogger().addHandler(file_handler)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a structured logger for the given module name.

    Args:
        name: Logger name (typically __name__)

    Returns:
        Configured structlog logger
    """
    return structlog.get_logger(name)


def get_plugin_logger(plugin_name: str) -> structlog.stdlib.BoundLogger:
    """Get the logger handed to a plugin through its context.

    Args:
        plugin_name: Name of the plugin the logger belongs to

    Returns:
        Logger with ``plugin=<name>`` bound to every entry
    """
    return structlog.get_logger(f"agentplug.plugin.{plugin_name}").bind(
        plugin=plugin_name
    )


def bind_context(**kwargs: Any) -> None:
    """Bind context variables to all future log messages.

    Args:
        **kwargs: Key-value pairs to bind to logging context
    """
    structlog.contextvars.bind_contextvars(**kwargs)


def unbind_context(*keys: str) -> None:
    """Remove context variables from future log messages.

    Args:
        *keys: Keys to remove from logging context
    """
    structlog.contextvars.unbind_contextvars(*keys)


@contextmanager
def bound_context(**kwargs: Any) -> Iterator[None]:
    """Bind context variables for the duration of a block.

    The host wraps hook dispatch and tool calls in this, so anything the
    plugin logs (or the host logs on its behalf) carries the plugin name.
    Values bound by an enclosing block are restored on exit.

    Example:
        with bound_context(plugin="memory", hook="init"):
            await run_hook()
    """
    previous = structlog.contextvars.get_contextvars()
    bind_context(**kwargs)
    try:
        yield
    finally:
        unbind_context(*kwargs)
        # Nested blocks: put back what the outer block bound
        restored = {key: previous[key] for key in kwargs if key in previous}
        if restored:
            bind_context(**restored)


class LoggerMixin:
    """Mixin class to provide logging capabilities to classes."""

    @property
    def logger(self) -> structlog.stdlib.BoundLogger:
        """Get logger bound to this class."""
        if not hasattr(self, "_logger"):
            self._logger = get_logger(self.__class__.__module__)
        return self._logger
