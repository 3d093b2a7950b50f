"""
Plugin contract.

A plugin is a ``*.py`` file in the plugins directory exposing a module attribute ``plugin``; usually
a :class:`Plugin` instance, although any object with the same attributes passes
:func:`is_valid_plugin`.  Hooks may be plain functions or coroutines.

    from hostwatch.plugins import Plugin, tool

    @tool("check_backups", input_schema={"type": "object", "properties": {}})
    async def check_backups(tool_input, config):
        \"\"\"Report the age of the newest backup archive.\"\"\"
        ...

    plugin = Plugin(name="backups", version="1.0.0", tools=[check_backups])
"""

import logging
from dataclasses import dataclass
from typing import (
    Any,
    Awaitable,
    Callable,
    List,
    Optional,
    Sequence,
    Union,
)

from hostwatch.core.schema import (
    AskResult,
    ConversationMessage,
)
from hostwatch.plugins.agent import (
    AgentUnavailableError,
    PluginAgent,
)
from hostwatch.tools import ToolDefinition


class PluginLoadError(RuntimeError):
    """Raised while loading a plugin; the plugin is skipped and nothing it declared is kept."""


class PluginTimeoutError(PluginLoadError):
    """Raised when a plugin lifecycle hook exceeds its timeout."""


@dataclass
class PluginContext:
    """Handed to ``init`` and ``destroy``; keep it to ask the model questions later."""

    name: str
    version: str
    logger: logging.Logger
    agent: Optional[PluginAgent] = None

    async def ask(
        self,
        question: str,
        history: Sequence[ConversationMessage] = (),
        include_builtin_tools: bool = False,
        system_prompt_addition: Optional[str] = None,
    ) -> AskResult:
        """
        Ask the model a question using this plugin's tools.

        Built-in tools are offered only when *include_builtin_tools* is set.

        Raises
        ------
        AgentUnavailableError
            If the runtime has no model backend.
        """
        if self.agent is None:
            raise AgentUnavailableError(f"No model backend is available to plugin {self.name}")
        return await self.agent.ask(question, history, include_builtin_tools, system_prompt_addition)


Hook = Callable[[PluginContext], Union[None, Awaitable[None]]]


@dataclass
class Plugin:
    name: str
    version: str
    description: Optional[str] = None
    tools: Optional[List[ToolDefinition]] = None
    init: Optional[Hook] = None
    destroy: Optional[Hook] = None
    # receives a PluginCommands wrapper
    register_commands: Optional[Callable[[Any], Union[None, Awaitable[None]]]] = None


def is_valid_plugin(obj: Any) -> bool:
    """Structural check run before any plugin hook is called."""
    if obj is None:
        return False

    name = getattr(obj, "name", None)
    if not isinstance(name, str) or not name.strip():
        return False
    version = getattr(obj, "version", None)
    if not isinstance(version, str) or not version.strip():
        return False

    description = getattr(obj, "description", None)
    if description is not None and not isinstance(description, str):
        return False
    tools = getattr(obj, "tools", None)
    if tools is not None and not isinstance(tools, (list, tuple)):
        return False
    for hook in ("init", "destroy", "register_commands"):
        value = getattr(obj, hook, None)
        if value is not None and not callable(value):
            return False
    return True
