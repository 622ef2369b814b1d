"""Plugin source resolution.

A source identifier is turned into a plugin factory by trying, in order:

1. factories registered on the resolver at runtime
2. builtin plugins (imported lazily)
3. a ``.py`` file path
4. ``module:attr`` import paths
5. a dotted module path exposing ``create_plugin``
6. entry points in the ``agentplug.plugins`` group, by name

Third-party packages can expose plugins using:
    [project.entry-points."agentplug.plugins"]
    my_plugin = "my_package.plugin:MyPlugin"
"""

import importlib
import importlib.metadata
import importlib.util
import re
from pathlib import Path
from types import ModuleType
from typing import Optional

from agentplug.config.defaults import ENTRY_POINT_GROUP
from agentplug.exceptions import LoadError
from agentplug.plugins.base import PluginFactory
from agentplug.telemetry.logger import get_logger

logger = get_logger(__name__)


# Builtin plugin definitions: source name -> (module path, attribute)
BUILTIN_PLUGINS: dict[str, tuple[str, str]] = {
    "memory": ("agentplug.plugins.builtin.memory", "MemoryPlugin"),
}

# Attribute looked up on modules referenced without an explicit attribute.
MODULE_FACTORY_ATTR = "create_plugin"

_MODULE_PATH = re.compile(r"^[A-Za-z_][\w]*(\.[A-Za-z_][\w]*)*$")


class PluginResolver:
    """Maps source identifiers to plugin factories."""

    def __init__(
        self,
        plugins_dir: Optional[Path] = None,
        use_entry_points: bool = True,
    ) -> None:
        """Initialize the resolver.

        Args:
            plugins_dir: Base directory for relative .py sources
            use_entry_points: Whether to consult installed entry points
        """
        self.plugins_dir = plugins_dir
        self.use_entry_points = use_entry_points
        self._factories: dict[str, PluginFactory] = {}
        self._resolved: dict[str, PluginFactory] = {}

    def register(self, source: str, factory: PluginFactory) -> None:
        """Register a factory under a source identifier.

        Raises:
            ValueError: If the source is already registered
        """
        if source in self._factories:
            raise ValueError(f"Plugin source '{source}' is already registered")
        if not callable(factory):
            raise TypeError(f"Factory for '{source}' is not callable")
        self._factories[source] = factory
        logger.debug("Registered plugin factory", source=source)

    def unregister(self, source: str) -> bool:
        """Remove a registered factory."""
        self._resolved.pop(source, None)
        return self._factories.pop(source, None) is not None

    def sources(self) -> list[str]:
        """Sources resolvable without touching the filesystem."""
        return list(self._factories) + [s for s in BUILTIN_PLUGINS if s not in self._factories]

    def resolve(self, source: str) -> PluginFactory:
        """Find the factory for a source identifier.

        Raises:
            LoadError: If nothing provides a factory for the source
        """
        if source in self._factories:
            return self._factories[source]
        if source in self._resolved:
            return self._resolved[source]

        factory = self._resolve_dynamic(source)
        if not callable(factory):
            raise LoadError(source, f"'{source}' does not provide a callable plugin factory")

        self._resolved[source] = factory
        return factory

    def _resolve_dynamic(self, source: str) -> PluginFactory:
        if source in BUILTIN_PLUGINS:
            module_path, attr = BUILTIN_PLUGINS[source]
            return self._import_attr(source, module_path, attr)

        if source.endswith(".py"):
            module = self._load_file(source)
            return self._module_factory(source, module)

        if ":" in source:
            module_path, _, attr = source.partition(":")
            return self._import_attr(source, module_path, attr)

        factory = self._entry_point(source) if self.use_entry_points else None
        if factory is not None:
            return factory

        if _MODULE_PATH.match(source) and "." in source:
            module = self._import_module(source, source)
            return self._module_factory(source, module)

        raise LoadError(source, "no plugin registered under this source")

    def _import_module(self, source: str, module_path: str) -> ModuleType:
        try:
            return importlib.import_module(module_path)
        except ImportError as e:
            raise LoadError(source, f"cannot import '{module_path}': {e}") from e

    def _import_attr(self, source: str, module_path: str, attr: str) -> PluginFactory:
        module = self._import_module(source, module_path)
        target: object = module
        for part in attr.split("."):
            try:
                target = getattr(target, part)
            except AttributeError as e:
                raise LoadError(source, f"'{module_path}' has no attribute '{attr}'") from e
        return target  # type: ignore[return-value]

    def _module_factory(self, source: str, module: ModuleType) -> PluginFactory:
        factory = getattr(module, MODULE_FACTORY_ATTR, None)
        if factory is None:
            raise LoadError(source, f"module does not define '{MODULE_FACTORY_ATTR}'")
        return factory

    def _load_file(self, source: str) -> ModuleType:
        path = Path(source).expanduser()
        if not path.is_absolute() and self.plugins_dir is not None:
            path = self.plugins_dir / path
        path = path.resolve()

        if not path.is_file():
            raise LoadError(source, f"plugin file not found: {path}")

        module_name = f"agentplug_plugin_{path.stem}"
        spec = importlib.util.spec_from_file_location(module_name, path)
        if spec is None or spec.loader is None:
            raise LoadError(source, f"cannot load module from {path}")

        module = importlib.util.module_from_spec(spec)
        try:
            spec.loader.exec_module(module)
        except Exception as e:
            raise LoadError(source, f"error executing {path}: {e}") from e

        logger.info("Loaded plugin from file", source=source, path=str(path))
        return module

    def _entry_point(self, source: str) -> Optional[PluginFactory]:
        for ep in importlib.metadata.entry_points(group=ENTRY_POINT_GROUP):
            if ep.name != source:
                continue
            try:
                factory = ep.load()
            except Exception as e:
                raise LoadError(source, f"entry point '{ep.value}' failed to load: {e}") from e
            logger.info("Resolved plugin via entry point", source=source, target=ep.value)
            return factory
        return None
