"""Plugin lifecycle manager.

The manager owns every plugin instance and drives it through the lifecycle
state machine. It also owns the tool registry and event bus the plugins
register into, so that a plugin's registrations can be rolled back when it
fails and removed when it is torn down.

Failure policy:
- load, init and start failures are isolated to the failing plugin, which
  ends up FAILED with its registrations rolled back
- stop and destroy are best-effort: hook failures are logged and teardown
  carries on
"""

from datetime import datetime, timezone
from typing import Any, Iterable, Optional

from agentplug.config.schemas import HostConfig
from agentplug.config.validator import inject_env_vars, validate
from agentplug.config.defaults import DEFAULT_HOOK_TIMEOUT, DEFAULT_TOOL_TIMEOUT
from agentplug.events.bus import EventBus
from agentplug.exceptions import (
    DependencyCycleError,
    HostError,
    InvalidTransitionError,
    LoadError,
    NotFoundError,
    NotReadyError,
    OperationTimeoutError,
    PluginLifecycleError,
    ToolNotFoundError,
)
from agentplug.plugins.base import PluginContext
from agentplug.plugins.lifecycle import (
    REGISTRATION_STATES,
    PluginDescriptor,
    PluginState,
    StartupReport,
    can_transition,
)
from agentplug.plugins.resolver import PluginResolver
from agentplug.telemetry.logger import LoggerMixin, bound_context, setup_logging
from agentplug.tools.registry import ToolRegistry
from agentplug.utils.async_utils import call_maybe_async, run_with_deadline

# Hooks are running; stop and destroy must wait.
_IN_FLIGHT = frozenset(
    {
        PluginState.INITIALIZING,
        PluginState.STARTING,
        PluginState.STOPPING,
    }
)


class PluginManager(LoggerMixin):
    """Loads plugins and dispatches lifecycle transitions into them.

    Example:
        manager = PluginManager()
        await manager.load_plugin(PluginDescriptor(name="memory"))
        report = await manager.start_all()
        result = await manager.invoke(
            "plugin:memory:remember",
            {"conversationId": "c1", "message": "hi"},
        )
        await manager.stop_all()
    """

    def __init__(
        self,
        resolver: Optional[PluginResolver] = None,
        tools: Optional[ToolRegistry] = None,
        events: Optional[EventBus] = None,
        hook_timeout: Optional[float] = DEFAULT_HOOK_TIMEOUT,
        tool_timeout: Optional[float] = DEFAULT_TOOL_TIMEOUT,
        fail_fast: bool = False,
    ) -> None:
        """Initialize the manager.

        Args:
            resolver: Source resolver (a fresh one if omitted)
            tools: Shared tool registry (a fresh one if omitted)
            events: Shared event bus (a fresh one if omitted)
            hook_timeout: Default deadline for lifecycle hooks
            tool_timeout: Default deadline for tool handlers
            fail_fast: Whether start_all stops at the first failure
        """
        self.resolver = resolver or PluginResolver()
        self.tools = tools or ToolRegistry(default_timeout=tool_timeout)
        self.events = events or EventBus()
        self.events.set_dispatch_filter(self._accepts_events)
        self.hook_timeout = hook_timeout
        self.fail_fast = fail_fast

        self._descriptors: dict[str, PluginDescriptor] = {}
        self._instances: dict[str, Any] = {}
        self._start_order: list[str] = []
        self._stop_hook_ran: set[str] = set()

    @classmethod
    def from_config(
        cls,
        config: HostConfig,
        resolver: Optional[PluginResolver] = None,
        configure_logging: bool = True,
    ) -> "PluginManager":
        """Create a manager using the host configuration's settings.

        Args:
            config: Loaded host configuration
            resolver: Source resolver (one using config.plugins_dir if omitted)
            configure_logging: Whether to apply the log_level, log_file and
                log_json settings through setup_logging()
        """
        if configure_logging:
            setup_logging(config.log_level, config.log_file, config.log_json)
        return cls(
            resolver=resolver or PluginResolver(plugins_dir=config.plugins_dir),
            hook_timeout=config.hook_timeout_seconds,
            tool_timeout=config.tool_timeout_seconds,
            fail_fast=config.fail_fast,
        )

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def get_descriptor(self, name: str) -> PluginDescriptor:
        """Get a plugin's descriptor.

        Raises:
            NotFoundError: If no plugin has this name
        """
        descriptor = self._descriptors.get(name)
        if descriptor is None:
            raise NotFoundError(name)
        return descriptor

    def get_instance(self, name: str) -> Any:
        """Get a started plugin's instance.

        Raises:
            NotFoundError: If no plugin has this name
            NotReadyError: If the plugin is not started
        """
        descriptor = self.get_descriptor(name)
        if descriptor.state != PluginState.STARTED:
            raise NotReadyError(name, descriptor.state.value)
        return self._instances[name]

    def get_plugin(self, name: str) -> Any:
        """Alias of get_instance for the agent runtime."""
        return self.get_instance(name)

    def list_plugins(self) -> list[PluginDescriptor]:
        """Descriptors in load order."""
        return list(self._descriptors.values())

    def get_status(self) -> dict[str, dict[str, Any]]:
        """Status of every plugin.

        Returns:
            Dict mapping plugin names to their status
        """
        return {
            name: {
                "state": descriptor.state.value,
                "source": descriptor.resolved_source,
                "error": descriptor.error,
                "dependencies": list(descriptor.dependencies),
                "tools": len(self.tools.tools_for(name)),
                "subscriptions": sum(
                    1 for s in self.events.subscriptions() if s.plugin_name == name
                ),
            }
            for name, descriptor in self._descriptors.items()
        }

    def check_can_register(self, name: str) -> None:
        """Raise unless the plugin may register tools and handlers now.

        Raises:
            NotReadyError: If the plugin is outside the registration states
        """
        descriptor = self.get_descriptor(name)
        if descriptor.state not in REGISTRATION_STATES:
            raise NotReadyError(name, descriptor.state.value, "register tools or handlers")

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def load(self, descriptor: PluginDescriptor) -> PluginDescriptor:
        """Resolve a plugin's source and construct its instance.

        Raises:
            LoadError: If the name is taken, the source cannot be resolved,
                the configuration is invalid or construction fails
        """
        name = descriptor.name
        if not name or ":" in name:
            raise LoadError(name, "plugin names must be non-empty and contain no ':'")
        if name in self._descriptors:
            raise LoadError(name, "a plugin with this name is already loaded")
        if descriptor.state != PluginState.UNLOADED:
            raise InvalidTransitionError(name, descriptor.state.value, PluginState.LOADED.value)

        self._descriptors[name] = descriptor
        source = descriptor.resolved_source

        try:
            factory = self.resolver.resolve(source)
            raw_config = inject_env_vars(descriptor.config)
            schema = getattr(factory, "config_schema", None)
            descriptor.resolved_config = (
                validate(name, raw_config, schema) if schema else dict(raw_config)
            )
            if not descriptor.dependencies:
                descriptor.dependencies = list(getattr(factory, "dependencies", None) or [])
            instance = factory(dict(descriptor.resolved_config), PluginContext(name, self))
        except Exception as e:
            self._fail(descriptor, e, "load")
            reason = e.reason if isinstance(e, LoadError) else str(e)
            raise LoadError(name, reason) from e

        self._instances[name] = instance
        self._transition(descriptor, PluginState.LOADED)
        descriptor.loaded_at = datetime.now(timezone.utc)
        self.logger.info("Plugin loaded", plugin=name, source=source)
        return descriptor

    async def load_plugin(self, descriptor: PluginDescriptor) -> PluginDescriptor:
        """Load a plugin on behalf of the agent runtime."""
        return await self.load(descriptor)

    async def load_from_config(self, config: HostConfig) -> list[PluginDescriptor]:
        """Load every enabled plugin from the host configuration.

        Load failures are logged and recorded on the descriptor; with
        fail_fast the first one is raised.

        Returns:
            Descriptors of all attempted plugins, in configuration order
        """
        descriptors: list[PluginDescriptor] = []
        for entry in config.enabled_plugins():
            descriptor = PluginDescriptor(
                name=entry.name,
                source=entry.source,
                config=dict(entry.config),
                dependencies=list(entry.dependencies),
            )
            descriptors.append(descriptor)
            try:
                await self.load(descriptor)
            except LoadError as e:
                self.logger.warning("Plugin failed to load", plugin=entry.name, error=e.reason)
                if self.fail_fast:
                    raise
        return descriptors

    async def initialize(self, name: str, timeout: Optional[float] = None) -> PluginDescriptor:
        """Run a plugin's init hook.

        On failure every tool and handler the plugin registered is removed
        and the plugin becomes FAILED.

        Raises:
            PluginLifecycleError: If init() raised
            OperationTimeoutError: If init() exceeded the deadline
        """
        descriptor = self.get_descriptor(name)
        self._transition(descriptor, PluginState.INITIALIZING)

        try:
            await self._run_hook(name, "init", timeout)
        except Exception as e:
            self._rollback(name)
            self._fail(descriptor, e, "init")
            if isinstance(e, OperationTimeoutError):
                raise
            raise PluginLifecycleError(name, "init", e) from e

        self._transition(descriptor, PluginState.INITIALIZED)
        self.logger.info(
            "Plugin initialized",
            plugin=name,
            tools=len(self.tools.tools_for(name)),
        )
        return descriptor

    async def start(self, name: str, timeout: Optional[float] = None) -> PluginDescriptor:
        """Run a plugin's start hook.

        Raises:
            PluginLifecycleError: If on_start() raised
            OperationTimeoutError: If on_start() exceeded the deadline
        """
        descriptor = self.get_descriptor(name)
        self._transition(descriptor, PluginState.STARTING)

        try:
            await self._run_hook(name, "on_start", timeout)
        except Exception as e:
            self._rollback(name)
            self._fail(descriptor, e, "start")
            if isinstance(e, OperationTimeoutError):
                raise
            raise PluginLifecycleError(name, "start", e) from e

        self._transition(descriptor, PluginState.STARTED)
        descriptor.started_at = datetime.now(timezone.utc)
        self._start_order.append(name)
        self.logger.info("Plugin started", plugin=name)
        return descriptor

    async def stop(self, name: str, timeout: Optional[float] = None) -> PluginDescriptor:
        """Run a plugin's stop hook. Best-effort: hook failures are logged.

        The plugin's event handlers are removed; its tools stay registered
        until destroy().
        """
        descriptor = self.get_descriptor(name)
        state = descriptor.state

        if state == PluginState.FAILED:
            await self._stop_failed(name, timeout)
            return descriptor
        if state in (PluginState.STOPPED, PluginState.DESTROYING, PluginState.DESTROYED):
            return descriptor
        if state == PluginState.LOADED:
            self.logger.debug("Plugin never initialized, nothing to stop", plugin=name)
            return descriptor
        if state in _IN_FLIGHT:
            raise NotReadyError(name, state.value, "stop")

        self._transition(descriptor, PluginState.STOPPING)
        self.events.unsubscribe_all(name)
        await self._run_teardown_hook(name, "on_stop", timeout)
        self._stop_hook_ran.add(name)
        self._transition(descriptor, PluginState.STOPPED)
        descriptor.stopped_at = datetime.now(timezone.utc)
        self.logger.info("Plugin stopped", plugin=name)
        return descriptor

    async def destroy(self, name: str, timeout: Optional[float] = None) -> PluginDescriptor:
        """Tear a plugin down completely. Best-effort: hook failures are logged.

        A running plugin is stopped first. Afterwards none of its tools or
        handlers remain registered and the instance is dropped.
        """
        descriptor = self.get_descriptor(name)

        if descriptor.state == PluginState.DESTROYED:
            return descriptor
        if descriptor.state == PluginState.FAILED:
            await self._destroy_failed(name, timeout)
            return descriptor
        if descriptor.state in _IN_FLIGHT:
            raise NotReadyError(name, descriptor.state.value, "destroy")
        if descriptor.state in (PluginState.STARTED, PluginState.INITIALIZED):
            await self.stop(name, timeout)

        self._transition(descriptor, PluginState.DESTROYING)
        await self._run_destroy_hook(name, timeout)
        self._release(name)
        self._transition(descriptor, PluginState.DESTROYED)
        self.logger.info("Plugin destroyed", plugin=name)
        return descriptor

    async def remove_plugin(self, name: str, timeout: Optional[float] = None) -> None:
        """Destroy a plugin and forget it, freeing its name."""
        await self.destroy(name, timeout)
        del self._descriptors[name]
        self._stop_hook_ran.discard(name)
        if name in self._start_order:
            self._start_order.remove(name)

    # ------------------------------------------------------------------
    # Runtime-facing operations
    # ------------------------------------------------------------------

    def resolve_order(self, names: Optional[Iterable[str]] = None) -> list[str]:
        """Order plugins so that dependencies come before dependents.

        Plugins without dependency constraints keep their load order.

        Args:
            names: Plugins to order (default: all known plugins)

        Returns:
            Plugin names, dependencies first

        Raises:
            NotFoundError: If a requested plugin is unknown
            LoadError: If a dependency is not loaded
            DependencyCycleError: If dependencies form a cycle
        """
        return self._order(names, strict=True)

    def _order(self, names: Optional[Iterable[str]], strict: bool) -> list[str]:
        requested = list(self._descriptors) if names is None else list(names)
        order: list[str] = []
        done: set[str] = set()
        path: list[str] = []

        def visit(name: str) -> None:
            if name in done:
                return
            if name in path:
                raise DependencyCycleError(path[path.index(name):] + [name])
            path.append(name)
            for dep in self._descriptors[name].dependencies:
                if dep in self._descriptors:
                    visit(dep)
                elif strict:
                    raise LoadError(name, f"depends on unknown plugin '{dep}'")
            path.pop()
            done.add(name)
            order.append(name)

        for name in requested:
            self.get_descriptor(name)
            visit(name)
        return order

    async def start_all(self, timeout: Optional[float] = None) -> StartupReport:
        """Initialize and start every loaded plugin in dependency order.

        A plugin whose dependencies did not start is failed without running
        its hooks. Other failures are isolated unless fail_fast is set.

        Raises:
            DependencyCycleError: Before any hook runs, if dependencies cycle
        """
        pending = [n for n, d in self._descriptors.items() if d.state == PluginState.LOADED]
        # Missing dependencies are reported per plugin below.
        order = self._order(pending, strict=False)
        report = StartupReport()

        for name in order:
            descriptor = self._descriptors[name]
            if descriptor.state != PluginState.LOADED:
                continue

            unmet = [
                dep
                for dep in descriptor.dependencies
                if dep not in self._descriptors
                or self._descriptors[dep].state != PluginState.STARTED
            ]
            try:
                if unmet:
                    error = LoadError(name, f"dependencies not started: {', '.join(unmet)}")
                    self._fail(descriptor, error, "start")
                    raise error
                await self.initialize(name, timeout)
                await self.start(name, timeout)
            except HostError as e:
                report.failed[name] = e
                if self.fail_fast:
                    raise
                continue
            report.started.append(name)

        self.logger.info(
            "Plugins started",
            started=report.started,
            failed=list(report.failed),
        )
        return report

    async def stop_all(self, timeout: Optional[float] = None) -> None:
        """Stop and destroy every plugin, most recently started first.

        Every plugin is stopped before any is destroyed, so a plugin's
        on_stop() may still reach the plugins it depends on.
        """
        for name in self._teardown_order():
            try:
                await self.stop(name, timeout)
            except HostError as e:
                self.logger.error("Failed to stop plugin", plugin=name, error=str(e))
        for name in self._teardown_order():
            try:
                await self.destroy(name, timeout)
            except HostError as e:
                self.logger.error("Failed to destroy plugin", plugin=name, error=str(e))

    async def publish(
        self,
        event_name: str,
        payload: Optional[dict[str, Any]] = None,
    ) -> dict[str, Any]:
        """Publish an event to the handlers of started plugins.

        Raises:
            EventDispatchError: After dispatch, if any handler failed
        """
        return await self.events.publish(event_name, payload)

    async def invoke(
        self,
        qualified_name: str,
        args: Optional[dict[str, Any]] = None,
        timeout: Optional[float] = None,
    ) -> Any:
        """Invoke a tool whose plugin is started.

        Accepts the tool address or the API name from an exported schema.

        Raises:
            ToolNotFoundError: If no tool has this name
            NotReadyError: If the owning plugin is not started
            ValidationError: If the arguments fail the parameter schema
            ToolExecutionError: If the handler raised
            OperationTimeoutError: If the deadline passed
        """
        # Names from exported LLM schemas map back to the tool address
        qualified_name = self.tools.resolve_api_name(qualified_name) or qualified_name
        tool = self.tools.get(qualified_name)
        if tool is None:
            raise ToolNotFoundError(qualified_name)

        descriptor = self.get_descriptor(tool.plugin_name)
        if descriptor.state != PluginState.STARTED:
            raise NotReadyError(tool.plugin_name, descriptor.state.value, "serve tools")
        return await self.tools.invoke(qualified_name, args, timeout)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _accepts_events(self, plugin_name: str) -> bool:
        descriptor = self._descriptors.get(plugin_name)
        return descriptor is not None and descriptor.state == PluginState.STARTED

    def _transition(self, descriptor: PluginDescriptor, target: PluginState) -> None:
        if not can_transition(descriptor.state, target):
            raise InvalidTransitionError(descriptor.name, descriptor.state.value, target.value)
        self.logger.debug(
            "Plugin state change",
            plugin=descriptor.name,
            from_state=descriptor.state.value,
            to_state=target.value,
        )
        descriptor.state = target

    def _fail(self, descriptor: PluginDescriptor, error: BaseException, stage: str) -> None:
        descriptor.error = str(error)
        self._transition(descriptor, PluginState.FAILED)
        self.logger.error("Plugin failed", plugin=descriptor.name, stage=stage, error=str(error))

    def _rollback(self, name: str) -> None:
        tools = self.tools.unregister_all(name)
        handlers = self.events.unsubscribe_all(name)
        if tools or handlers:
            self.logger.info(
                "Rolled back plugin registrations",
                plugin=name,
                tools=tools,
                handlers=handlers,
            )

    def _release(self, name: str) -> None:
        self.tools.unregister_all(name)
        self.events.unsubscribe_all(name)
        self._instances.pop(name, None)

    def _teardown_order(self) -> list[str]:
        started = list(reversed(self._start_order))
        rest = [n for n in reversed(list(self._descriptors)) if n not in started]
        return started + rest

    async def _run_hook(self, name: str, hook: str, timeout: Optional[float]) -> None:
        method = getattr(self._instances[name], hook, None)
        if method is None:
            return
        deadline = self.hook_timeout if timeout is None else timeout
        with bound_context(plugin=name, hook=hook):
            await run_with_deadline(
                call_maybe_async(method),
                deadline,
                f"Plugin '{name}' {hook}",
            )

    async def _run_teardown_hook(self, name: str, hook: str, timeout: Optional[float]) -> None:
        try:
            await self._run_hook(name, hook, timeout)
        except Exception as e:
            self.logger.error(
                "Plugin teardown hook failed",
                plugin=name,
                hook=hook,
                error=str(e),
            )

    async def _run_destroy_hook(self, name: str, timeout: Optional[float]) -> None:
        instance = self._instances.get(name)
        if instance is None:
            return
        if getattr(instance, "on_destroy", None) is not None:
            await self._run_teardown_hook(name, "on_destroy", timeout)
        elif name not in self._stop_hook_ran:
            await self._run_teardown_hook(name, "on_stop", timeout)
            self._stop_hook_ran.add(name)

    async def _stop_failed(self, name: str, timeout: Optional[float]) -> None:
        # A failed plugin may hold resources from a partial start.
        self.events.unsubscribe_all(name)
        if name in self._instances and name not in self._stop_hook_ran:
            await self._run_teardown_hook(name, "on_stop", timeout)
            self._stop_hook_ran.add(name)

    async def _destroy_failed(self, name: str, timeout: Optional[float]) -> None:
        if name not in self._instances:
            return
        await self._stop_failed(name, timeout)
        await self._run_destroy_hook(name, timeout)
        self._release(name)
        self.logger.info("Failed plugin torn down", plugin=name)
