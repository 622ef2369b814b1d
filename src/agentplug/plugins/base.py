"""Plugin contract and the context object handed to every plugin.

Plugins do not subclass anything. A plugin is whatever a factory returns
when called with ``(config, context)``; the host looks for these optional
hooks on it, each of which may be sync or async:

- ``init()``: register tools and event handlers through the context
- ``on_start()``: acquire external resources
- ``on_stop()``: release them; must tolerate a partially failed start
- ``on_destroy()``: final cleanup; when absent, ``on_stop()`` is used if
  the plugin was never stopped

A factory (usually the plugin class) may also declare ``config_schema``
(validated before construction) and ``dependencies`` (plugin names that
must be started first).
"""

from typing import TYPE_CHECKING, Any, Callable, Optional, Protocol, runtime_checkable

from agentplug.config.validator import SchemaLike, validate
from agentplug.events.bus import EventHandler, EventSubscription
from agentplug.telemetry.logger import get_plugin_logger
from agentplug.tools.base import ToolDescriptor

if TYPE_CHECKING:
    from agentplug.plugins.manager import PluginManager


@runtime_checkable
class Plugin(Protocol):
    """Structural type for plugin instances."""

    def init(self) -> Any: ...

    def on_start(self) -> Any: ...

    def on_stop(self) -> Any: ...


PluginFactory = Callable[[dict[str, Any], "PluginContext"], Any]


class PluginContext:
    """Scoped access to the host for one plugin.

    Everything registered through a context is owned by that plugin, so the
    host can roll it back or tear it down without the plugin's help.
    """

    def __init__(self, name: str, manager: "PluginManager") -> None:
        self.name = name
        self._manager = manager
        self.logger = get_plugin_logger(name)

    @property
    def config(self) -> dict[str, Any]:
        """The plugin's resolved configuration."""
        return self._manager.get_descriptor(self.name).resolved_config

    def validate_config(self, schema: SchemaLike) -> dict[str, Any]:
        """Re-validate the plugin's configuration and adopt the result.

        Args:
            schema: Rules for the plugin's configuration fields

        Returns:
            The new resolved configuration

        Raises:
            ConfigError: If the configuration does not satisfy the schema
        """
        descriptor = self._manager.get_descriptor(self.name)
        resolved = validate(self.name, descriptor.resolved_config, schema)
        descriptor.resolved_config = resolved
        return resolved

    def register_tool(
        self,
        name: str,
        handler: Callable[..., Any],
        description: str = "",
        parameters: Optional[SchemaLike] = None,
        category: str = "general",
        timeout_seconds: Optional[float] = None,
        retries: int = 0,
        cache_ttl: Optional[float] = None,
        metadata: Optional[dict[str, Any]] = None,
    ) -> ToolDescriptor:
        """Register a tool as ``plugin:<plugin>:<name>``.

        Raises:
            NotReadyError: If the plugin has not reached init yet, or is gone
            DuplicateToolError: If the plugin already has a tool by this name
        """
        self._manager.check_can_register(self.name)
        return self._manager.tools.register(
            self.name,
            name,
            handler,
            description=description,
            parameters=parameters,
            category=category,
            timeout_seconds=timeout_seconds,
            retries=retries,
            cache_ttl=cache_ttl,
            metadata=metadata,
        )

    def on(self, event_name: str, handler: EventHandler) -> EventSubscription:
        """Subscribe a handler owned by this plugin."""
        self._manager.check_can_register(self.name)
        return self._manager.events.subscribe(event_name, self.name, handler)

    def off(self, subscription: EventSubscription) -> bool:
        """Remove one of this plugin's subscriptions."""
        if subscription.plugin_name != self.name:
            return False
        return self._manager.events.unsubscribe(subscription)

    async def emit(
        self,
        event_name: str,
        payload: Optional[dict[str, Any]] = None,
    ) -> dict[str, Any]:
        """Publish an event on the shared bus."""
        return await self._manager.events.publish(event_name, payload)

    def get_plugin(self, name: str) -> Any:
        """Get another started plugin's instance.

        Raises:
            NotFoundError: If no plugin has this name
            NotReadyError: If it is not started
        """
        return self._manager.get_instance(name)
