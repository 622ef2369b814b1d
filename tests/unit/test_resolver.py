"""Tests for plugin source resolution."""

import importlib.metadata
from pathlib import Path
from unittest.mock import MagicMock

import pytest

from agentplug.exceptions import LoadError
from agentplug.plugins.builtin.memory import MemoryPlugin
from agentplug.plugins.resolver import PluginResolver

PLUGIN_FILE = '''
class FilePlugin:
    def __init__(self, config, context):
        self.config = config


def create_plugin(config, context):
    return FilePlugin(config, context)
'''


def dummy_factory(config: dict, context: object) -> dict:
    return config


class TestRegisteredFactories:
    """Test runtime registration."""

    def test_register_and_resolve(self, resolver: PluginResolver) -> None:
        """Should return the registered factory."""
        resolver.register("dummy", dummy_factory)
        assert resolver.resolve("dummy") is dummy_factory

    def test_duplicate_rejected(self, resolver: PluginResolver) -> None:
        """Should refuse to register a source twice."""
        resolver.register("dummy", dummy_factory)
        with pytest.raises(ValueError, match="already registered"):
            resolver.register("dummy", dummy_factory)

    def test_non_callable_rejected(self, resolver: PluginResolver) -> None:
        """Factories must be callable."""
        with pytest.raises(TypeError):
            resolver.register("bad", 42)  # type: ignore[arg-type]

    def test_unregister(self, resolver: PluginResolver) -> None:
        """Should forget a registered factory."""
        resolver.register("dummy", dummy_factory)

        assert resolver.unregister("dummy") is True
        assert resolver.unregister("dummy") is False
        with pytest.raises(LoadError):
            resolver.resolve("dummy")

    def test_registered_overrides_builtin(self, resolver: PluginResolver) -> None:
        """A registered factory should shadow the builtin of the same name."""
        resolver.register("memory", dummy_factory)
        assert resolver.resolve("memory") is dummy_factory

    def test_sources(self, resolver: PluginResolver) -> None:
        """Should list registered and builtin sources."""
        resolver.register("dummy", dummy_factory)
        assert resolver.sources() == ["dummy", "memory"]


class TestImportSources:
    """Test builtin and import-path sources."""

    def test_builtin(self, resolver: PluginResolver) -> None:
        """Builtin names should resolve lazily."""
        assert resolver.resolve("memory") is MemoryPlugin

    def test_module_attr(self, resolver: PluginResolver) -> None:
        """module:attr sources should import the attribute."""
        factory = resolver.resolve("agentplug.plugins.builtin.memory:MemoryPlugin")
        assert factory is MemoryPlugin

    def test_missing_module(self, resolver: PluginResolver) -> None:
        """An unimportable module should raise LoadError."""
        with pytest.raises(LoadError, match="cannot import"):
            resolver.resolve("agentplug_no_such_module:Plugin")

    def test_missing_attribute(self, resolver: PluginResolver) -> None:
        """A missing attribute should raise LoadError."""
        with pytest.raises(LoadError, match="has no attribute"):
            resolver.resolve("agentplug.plugins.builtin.memory:NoSuchPlugin")

    def test_non_callable_target(self, resolver: PluginResolver) -> None:
        """Targets that are not callable should be refused."""
        with pytest.raises(LoadError, match="callable"):
            resolver.resolve("agentplug.plugins.builtin.memory:MEMORY_FILE")

    def test_dotted_module_with_create_plugin(
        self,
        resolver: PluginResolver,
        tmp_path: Path,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        """Dotted module paths should use the module's create_plugin."""
        package = tmp_path / "agentplug_ext_pkg"
        package.mkdir()
        (package / "__init__.py").write_text("")
        (package / "plugin.py").write_text(PLUGIN_FILE)
        monkeypatch.syspath_prepend(str(tmp_path))

        factory = resolver.resolve("agentplug_ext_pkg.plugin")

        assert factory.__name__ == "create_plugin"

    def test_unknown_source(self, resolver: PluginResolver) -> None:
        """Unresolvable sources should raise LoadError naming the source."""
        with pytest.raises(LoadError) as exc_info:
            resolver.resolve("ghost")
        assert exc_info.value.plugin_name == "ghost"

    def test_result_cached(self, resolver: PluginResolver) -> None:
        """Repeated resolution should return the same factory."""
        assert resolver.resolve("memory") is resolver.resolve("memory")


class TestFileSources:
    """Test .py file sources."""

    def test_absolute_path(self, resolver: PluginResolver, tmp_path: Path) -> None:
        """Should load create_plugin from a file."""
        plugin_file = tmp_path / "my_plugin.py"
        plugin_file.write_text(PLUGIN_FILE)

        factory = resolver.resolve(str(plugin_file))
        instance = factory({"a": 1}, None)

        assert type(instance).__name__ == "FilePlugin"
        assert instance.config == {"a": 1}

    def test_relative_to_plugins_dir(self, tmp_path: Path) -> None:
        """Relative paths should resolve against the plugins directory."""
        (tmp_path / "local.py").write_text(PLUGIN_FILE)
        resolver = PluginResolver(plugins_dir=tmp_path, use_entry_points=False)

        assert callable(resolver.resolve("local.py"))

    def test_missing_file(self, resolver: PluginResolver, tmp_path: Path) -> None:
        """A missing file should raise LoadError."""
        with pytest.raises(LoadError, match="not found"):
            resolver.resolve(str(tmp_path / "absent.py"))

    def test_file_without_factory(self, resolver: PluginResolver, tmp_path: Path) -> None:
        """A file without create_plugin should raise LoadError."""
        plugin_file = tmp_path / "empty_plugin.py"
        plugin_file.write_text("VALUE = 1\n")

        with pytest.raises(LoadError, match="create_plugin"):
            resolver.resolve(str(plugin_file))

    def test_file_that_raises(self, resolver: PluginResolver, tmp_path: Path) -> None:
        """Errors while executing the file should raise LoadError."""
        plugin_file = tmp_path / "broken_plugin.py"
        plugin_file.write_text("raise RuntimeError('import-time failure')\n")

        with pytest.raises(LoadError, match="import-time failure"):
            resolver.resolve(str(plugin_file))


class TestEntryPoints:
    """Test entry point discovery."""

    def test_entry_point_by_name(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Should load the entry point whose name matches the source."""
        ep = MagicMock()
        ep.name = "external"
        ep.value = "external_pkg:Plugin"
        ep.load.return_value = dummy_factory
        calls = []

        def fake_entry_points(group: str) -> list:
            calls.append(group)
            return [ep]

        monkeypatch.setattr(importlib.metadata, "entry_points", fake_entry_points)
        resolver = PluginResolver()

        assert resolver.resolve("external") is dummy_factory
        assert calls == ["agentplug.plugins"]

    def test_entry_point_load_failure(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """A broken entry point should raise LoadError."""
        ep = MagicMock()
        ep.name = "external"
        ep.value = "external_pkg:Plugin"
        ep.load.side_effect = ImportError("no module named external_pkg")
        monkeypatch.setattr(importlib.metadata, "entry_points", lambda group: [ep])

        with pytest.raises(LoadError, match="failed to load"):
            PluginResolver().resolve("external")

    def test_entry_points_disabled(self, monkeypatch: pytest.MonkeyPatch) -> None:
        """Entry points should not be consulted when disabled."""
        fake = MagicMock(return_value=[])
        monkeypatch.setattr(importlib.metadata, "entry_points", fake)

        with pytest.raises(LoadError):
            PluginResolver(use_entry_points=False).resolve("external")

        fake.assert_not_called()
