"""
Wiring of the orchestration core.

:class:`Hostwatch` owns one tool registry, dispatcher, plugin manager and agent loop, and exposes
the operations front-ends use: :meth:`~Hostwatch.ask`, :meth:`~Hostwatch.get_tool_specs`,
:meth:`~Hostwatch.execute_tool` and plugin start/stop.
"""

import logging
from pathlib import Path
from typing import (
    Any,
    Dict,
    List,
    Optional,
    Sequence,
)

from hostwatch.agent.agent_loop import AgentLoop
from hostwatch.agent.providers import (
    ModelBackend,
    load_provider,
)
from hostwatch.agent.tool_executor import ToolDispatcher
from hostwatch.core.schema import (
    AskResult,
    CapabilityConfig,
    ConversationMessage,
    ProviderLimits,
    ToolResult,
    ToolSpec,
    UserConfig,
)
from hostwatch.executors.collector import (
    DataCollector,
    load_collector,
)
from hostwatch.executors.shell import (
    CommandRunner,
    SubprocessRunner,
)
from hostwatch.plugins.loader import (
    DESTROY_TIMEOUT,
    INIT_TIMEOUT,
    PLUGINS_DIR,
    PluginHelp,
    PluginManager,
)
from hostwatch.tools import ToolRegistry
from hostwatch.tools.server_tools import builtin_tools

logger = logging.getLogger(__name__)


def _read_optional(path: Optional[str]) -> Optional[str]:
    if not path:
        return None
    file = Path(path)
    if not file.is_file():
        logger.warning("Prompt file %s not found, ignoring", path)
        return None
    return file.read_text(encoding="utf-8").strip() or None


class Hostwatch:
    """Facade over the tool registry, dispatcher, plugins and agent loop."""

    def __init__(
        self,
        backend: ModelBackend,
        collector: DataCollector,
        runner: CommandRunner,
        capabilities: Optional[CapabilityConfig] = None,
        limits: Optional[ProviderLimits] = None,
        plugins_dir: str = PLUGINS_DIR,
        plugin_init_timeout: float = INIT_TIMEOUT,
        plugin_destroy_timeout: float = DESTROY_TIMEOUT,
        prompt_addition: Optional[str] = None,
        context: Optional[str] = None,
    ):
        self.registry = ToolRegistry(builtin_tools(collector, runner))
        self.dispatcher = ToolDispatcher(self.registry)
        self.capabilities = capabilities or CapabilityConfig()
        self.loop = AgentLoop(backend, self.registry, self.dispatcher, limits)
        self.plugins = PluginManager(
            self.registry,
            plugins_dir,
            init_timeout=plugin_init_timeout,
            destroy_timeout=plugin_destroy_timeout,
            agent=self.loop,
            tool_config=self.capabilities,
        )
        self.prompt_addition = prompt_addition
        self.context = context

    @classmethod
    def from_settings(cls, settings: Any) -> "Hostwatch":
        """Build a runtime from :class:`~hostwatch.config.Settings`."""
        return cls(
            backend=load_provider(settings),
            collector=load_collector(settings.COLLECTOR),
            runner=SubprocessRunner(timeout=settings.COMMAND_TIMEOUT),
            capabilities=settings.capability_config(),
            limits=settings.provider_limits(),
            prompt_addition=_read_optional(settings.SYSTEM_PROMPT_FILE),
            context=_read_optional(settings.CONTEXT_FILE),
            plugins_dir=settings.PLUGINS_DIR,
            plugin_init_timeout=settings.PLUGIN_INIT_TIMEOUT,
            plugin_destroy_timeout=settings.PLUGIN_DESTROY_TIMEOUT,
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------
    async def start(self) -> List[str]:
        """Load local plugins; returns ``name@version`` of those loaded."""
        return await self.plugins.load_all()

    async def stop(self) -> None:
        await self.plugins.destroy_all()

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------
    def user_config(
        self,
        disabled_tools: Sequence[str] = (),
        tool_config: Optional[CapabilityConfig] = None,
    ) -> UserConfig:
        """A per-request config filled in with this runtime's defaults."""
        return UserConfig(
            disabled_tools=list(disabled_tools),
            tool_config=tool_config or self.capabilities,
            system_prompt_addition=self.prompt_addition,
            context=self.context,
        )

    async def ask(
        self,
        question: str,
        history: Sequence[ConversationMessage] = (),
        user_config: Optional[UserConfig] = None,
    ) -> AskResult:
        return await self.loop.ask(question, history, user_config or self.user_config())

    def get_tool_specs(self, disabled: Sequence[str] = ()) -> List[ToolSpec]:
        return self.registry.specs(disabled)

    async def execute_tool(
        self,
        tool_use_id: str,
        name: str,
        tool_input: Optional[Dict[str, Any]] = None,
        config: Optional[CapabilityConfig] = None,
    ) -> ToolResult:
        return await self.dispatcher.execute(tool_use_id, name, tool_input, config or self.capabilities)

    def loaded_plugins(self) -> List[str]:
        return self.plugins.loaded_plugins()

    def plugin_help(self) -> List[PluginHelp]:
        return self.plugins.help_entries()
