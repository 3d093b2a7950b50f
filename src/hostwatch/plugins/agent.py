"""
Model access for plugins.

A plugin's :class:`~hostwatch.plugins.types.PluginContext` carries a :class:`PluginAgent` when the
runtime has a model backend.  Questions asked through it run the normal agent loop, but the model
only sees the plugin's own tools, plus the built-in tools when the plugin opts in.
"""

import logging
from typing import (
    List,
    Optional,
    Sequence,
)

from hostwatch.agent.agent_loop import AgentLoop
from hostwatch.core.schema import (
    AskResult,
    CapabilityConfig,
    ConversationMessage,
    UserConfig,
)

logger = logging.getLogger(__name__)


class AgentUnavailableError(RuntimeError):
    """Raised when a plugin asks a question but no model backend is configured."""


class PluginAgent:
    """Runs agent turns on behalf of one plugin, restricted to the tools it may use."""

    def __init__(self, plugin_name: str, loop: AgentLoop, tool_config: Optional[CapabilityConfig] = None):
        self.plugin_name = plugin_name
        self.loop = loop
        self.tool_config = tool_config or CapabilityConfig()

    def allowed_tools(self, include_builtin_tools: bool = False) -> List[str]:
        """Registry names the model may call for this plugin."""
        registry = self.loop.registry
        return [
            name
            for name, definition in registry.snapshot().items()
            if definition.plugin_name == self.plugin_name
            or (include_builtin_tools and name in registry.builtin_names)
        ]

    async def ask(
        self,
        question: str,
        history: Sequence[ConversationMessage] = (),
        include_builtin_tools: bool = False,
        system_prompt_addition: Optional[str] = None,
    ) -> AskResult:
        allowed = set(self.allowed_tools(include_builtin_tools))
        disabled = [name for name in self.loop.registry.names() if name not in allowed]
        logger.debug("Plugin %s asking with %d tool(s)", self.plugin_name, len(allowed))
        user_config = UserConfig(
            disabled_tools=disabled,
            tool_config=self.tool_config,
            system_prompt_addition=system_prompt_addition,
        )
        return await self.loop.ask(question, history, user_config)
