"""Public surface for plugin authors."""

from hostwatch.core.schema import CapabilityConfig
from hostwatch.plugins.agent import AgentUnavailableError
from hostwatch.plugins.commands import PluginCommands
from hostwatch.plugins.types import (
    Plugin,
    PluginContext,
)
from hostwatch.tools import (
    ToolExecutionError,
    tool,
)

__all__ = [
    "AgentUnavailableError",
    "CapabilityConfig",
    "Plugin",
    "PluginCommands",
    "PluginContext",
    "ToolExecutionError",
    "tool",
]
