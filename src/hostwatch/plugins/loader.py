"""
Discovery and lifecycle of local plugins.

Loading is atomic per plugin: it either contributes all of its tools and commands or nothing.  Any
failure (bad structure, invalid tool, ``init`` error or timeout, bad command, name collision) skips
that plugin and leaves built-in tools and other plugins untouched.
"""

import asyncio
import importlib.util
import inspect
import logging
import re
from dataclasses import (
    dataclass,
    field,
)
from pathlib import Path
from typing import (
    Any,
    List,
    Optional,
)

from hostwatch.agent.agent_loop import AgentLoop
from hostwatch.core.schema import CapabilityConfig
from hostwatch.plugins.agent import PluginAgent
from hostwatch.plugins.commands import (
    CommandRegistry,
    PluginCommands,
)
from hostwatch.plugins.types import (
    Hook,
    PluginContext,
    PluginLoadError,
    PluginTimeoutError,
    is_valid_plugin,
)
from hostwatch.tools import (
    ToolDefinition,
    ToolRegistry,
)
from hostwatch.tools.validation import (
    BUILTIN_TOOL_NAMES,
    validate_plugin_tools,
)

logger = logging.getLogger(__name__)

INIT_TIMEOUT = 10.0
DESTROY_TIMEOUT = 5.0
PLUGINS_DIR = "plugins.local"

# plugin names end up in tool names ("name:tool") and module names
PLUGIN_NAME_PATTERN = re.compile(r"^[a-z0-9][a-z0-9_-]{0,31}$")


@dataclass
class LoadedPlugin:
    plugin: Any
    context: PluginContext
    tools: List[ToolDefinition] = field(default_factory=list)

    @property
    def name(self) -> str:
        return self.plugin.name

    @property
    def version(self) -> str:
        return self.plugin.version


@dataclass
class PluginHelp:
    name: str
    version: str
    description: Optional[str]
    commands: List[str]


async def _run_hook(hook: Hook, ctx: PluginContext, timeout: float, what: str) -> None:
    async def _invoke() -> None:
        if inspect.iscoroutinefunction(hook):
            await hook(ctx)
            return
        # plain functions run in a worker thread so a blocking hook cannot stall the timeout;
        # the thread itself cannot be stopped and is abandoned when the timeout fires
        result = await asyncio.to_thread(hook, ctx)
        if inspect.isawaitable(result):
            await result

    try:
        await asyncio.wait_for(_invoke(), timeout=timeout)
    except asyncio.TimeoutError as exc:
        raise PluginTimeoutError(f"{what} timed out after {timeout:g}s") from exc


class PluginManager:
    """Owns the set of loaded plugins and pushes their tools into a :class:`ToolRegistry`."""

    def __init__(
        self,
        registry: ToolRegistry,
        plugins_dir: str | Path = PLUGINS_DIR,
        init_timeout: float = INIT_TIMEOUT,
        destroy_timeout: float = DESTROY_TIMEOUT,
        commands: Optional[CommandRegistry] = None,
        agent: Optional[AgentLoop] = None,
        tool_config: Optional[CapabilityConfig] = None,
    ):
        self.registry = registry
        self.plugins_dir = Path(plugins_dir)
        self.init_timeout = init_timeout
        self.destroy_timeout = destroy_timeout
        self.commands = commands or CommandRegistry()
        self.agent = agent
        self.tool_config = tool_config
        self._loaded: List[LoadedPlugin] = []

    # ------------------------------------------------------------------
    # Discovery
    # ------------------------------------------------------------------
    def discover(self) -> List[Path]:
        """Candidate plugin files, sorted.  A missing directory yields an empty list."""
        if not self.plugins_dir.is_dir():
            logger.debug("No %s directory found, skipping plugin discovery", self.plugins_dir)
            return []
        files = sorted(
            p for p in self.plugins_dir.iterdir() if p.is_file() and p.suffix == ".py" and not p.name.startswith("_")
        )
        logger.debug("Discovered %d plugin file(s) in %s", len(files), self.plugins_dir)
        return files

    def import_plugin(self, path: Path) -> Optional[Any]:
        """Import *path* and return its ``plugin`` attribute, or ``None`` if unusable."""
        try:
            spec = importlib.util.spec_from_file_location(f"hostwatch_plugin_{path.stem}", path)
            if spec is None or spec.loader is None:
                raise PluginLoadError("cannot create import spec")
            module = importlib.util.module_from_spec(spec)
            spec.loader.exec_module(module)
        except Exception:  # pylint: disable=broad-except
            logger.exception("Failed to import plugin %s", path)
            return None

        plugin = getattr(module, "plugin", None)
        if plugin is None:
            logger.warning("Plugin %s has no 'plugin' attribute", path)
            return None
        if not is_valid_plugin(plugin):
            logger.warning("Plugin %s has invalid structure", path)
            return None
        return plugin

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------
    async def load(self, plugin: Any) -> bool:
        """Load one already-imported plugin atomically.  Returns whether it was committed."""
        if not is_valid_plugin(plugin):
            logger.warning("Rejected plugin with invalid structure: %r", plugin)
            return False

        agent = PluginAgent(plugin.name, self.agent, self.tool_config) if self.agent is not None else None
        ctx = PluginContext(
            name=plugin.name,
            version=plugin.version,
            logger=logging.getLogger(f"hostwatch.plugins.{plugin.name}"),
            agent=agent,
        )
        initialised = False
        try:
            self._check_name(plugin.name)

            tools = list(plugin.tools or [])
            if tools:
                reserved = BUILTIN_TOOL_NAMES | self.registry.builtin_names
                validation = validate_plugin_tools(tools, plugin.name, reserved)
                for warning in validation.warnings:
                    logger.warning("Plugin %s tool warning: %s", plugin.name, warning)
                if not validation.valid:
                    raise PluginLoadError("invalid tools: " + "; ".join(validation.errors))

            if plugin.init is not None:
                await _run_hook(plugin.init, ctx, self.init_timeout, f'Plugin "{plugin.name}" init()')
            initialised = True

            staged = PluginCommands(plugin.name, self.commands)
            if plugin.register_commands is not None:
                result = plugin.register_commands(staged)
                if inspect.isawaitable(result):
                    await result

            tagged = [ToolDefinition(spec=t.spec, execute=t.execute, plugin_name=plugin.name) for t in tools]
            # commit: commands, then tools, then the plugin itself; no await in between.
            # hooks may have awaited, so a same-named plugin can have finished loading meanwhile
            self._check_name(plugin.name)
            self.commands.commit(staged.staged)
            try:
                self.registry.rebuild(self.plugin_tools() + tagged)
            except ValueError:
                self.commands.remove(staged.staged)
                raise
        except Exception as exc:  # pylint: disable=broad-except
            logger.error("Failed to load plugin %s: %s", plugin.name, exc)
            if initialised and plugin.destroy is not None:
                await self._destroy_one(plugin, ctx)
            return False

        self._loaded.append(LoadedPlugin(plugin=plugin, context=ctx, tools=tagged))
        logger.info(
            "Plugin loaded: %s@%s (%d tool(s), %d command(s))",
            plugin.name,
            plugin.version,
            len(tagged),
            len(staged.staged),
        )
        return True

    def _check_name(self, name: str) -> None:
        if not PLUGIN_NAME_PATTERN.match(name):
            raise PluginLoadError(
                f'Invalid plugin name "{name}": lowercase letters, numbers, "-" and "_" only'
            )
        if any(p.name == name for p in self._loaded):
            raise PluginLoadError(f'A plugin named "{name}" is already loaded')

    async def load_all(self) -> List[str]:
        """Discover and load every plugin; returns ``name@version`` of everything loaded."""
        files = self.discover()
        if files:
            logger.info("Loading %d plugin(s)", len(files))
        for path in files:
            plugin = self.import_plugin(path)
            if plugin is not None:
                await self.load(plugin)
        logger.info("Plugin registration complete: %d loaded", len(self._loaded))
        return self.loaded_plugins()

    # ------------------------------------------------------------------
    # Teardown
    # ------------------------------------------------------------------
    async def _destroy_one(self, plugin: Any, ctx: PluginContext) -> None:
        try:
            await _run_hook(plugin.destroy, ctx, self.destroy_timeout, f'Plugin "{plugin.name}" destroy()')
            logger.debug("Plugin destroyed: %s", plugin.name)
        except Exception as exc:  # pylint: disable=broad-except
            logger.error("Failed to destroy plugin %s: %s", plugin.name, exc)

    async def destroy_all(self) -> None:
        """Call every ``destroy`` under its own timeout, then drop all plugin tools and commands."""
        logger.debug("Cleaning up %d plugin(s)", len(self._loaded))
        for loaded in self._loaded:
            if loaded.plugin.destroy is not None:
                await self._destroy_one(loaded.plugin, loaded.context)
        self._loaded = []
        self.commands.clear()
        self.registry.rebuild(())

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------
    def plugin_tools(self) -> List[ToolDefinition]:
        """Tools of all loaded plugins, tagged with their plugin name (not yet namespaced)."""
        return [t for loaded in self._loaded for t in loaded.tools]

    def loaded_plugins(self) -> List[str]:
        return [f"{p.name}@{p.version}" for p in self._loaded]

    def help_entries(self) -> List[PluginHelp]:
        return [
            PluginHelp(
                name=p.name,
                version=p.version,
                description=getattr(p.plugin, "description", None),
                commands=self.commands.for_plugin(p.name),
            )
            for p in self._loaded
        ]
