"""
Slash commands contributed by plugins.

Plugins never touch the :class:`CommandRegistry` directly.  They receive a :class:`PluginCommands`
wrapper whose :meth:`~PluginCommands.command` validates the name and stages the handler; the loader
commits the staged commands only once the whole plugin has loaded.
"""

import inspect
import logging
import re
from dataclasses import dataclass
from types import MappingProxyType
from typing import (
    Any,
    Awaitable,
    Callable,
    Dict,
    Iterable,
    List,
    Mapping,
    Optional,
)

from hostwatch.plugins.types import PluginLoadError

logger = logging.getLogger(__name__)

COMMAND_NAME_PATTERN = re.compile(r"^/[a-z][a-z0-9-]{0,20}$")

CommandHandler = Callable[..., Any]


@dataclass(frozen=True)
class RegisteredCommand:
    name: str
    plugin_name: str
    handler: Callable[..., Awaitable[Any]]


def is_valid_command_name(name: Any) -> bool:
    return isinstance(name, str) and bool(COMMAND_NAME_PATTERN.match(name))


def _wrap_handler(plugin_name: str, name: str, handler: CommandHandler) -> Callable[..., Awaitable[Any]]:
    async def wrapped(*args: Any, **kwargs: Any) -> Any:
        logger.info("Plugin command invoked: %s (plugin %s)", name, plugin_name)
        try:
            result = handler(*args, **kwargs)
            if inspect.isawaitable(result):
                result = await result
            return result
        except Exception:
            logger.error("Plugin command %s from %s failed", name, plugin_name, exc_info=True)
            raise

    return wrapped


class CommandRegistry:
    """Live ``/command -> RegisteredCommand`` table, replaced wholesale on every change."""

    def __init__(self) -> None:
        self._commands: Mapping[str, RegisteredCommand] = MappingProxyType({})

    def is_registered(self, name: str) -> bool:
        return name in self._commands

    def get(self, name: str) -> Optional[RegisteredCommand]:
        return self._commands.get(name)

    def names(self) -> List[str]:
        return list(self._commands)

    def for_plugin(self, plugin_name: str) -> List[str]:
        return [c.name for c in self._commands.values() if c.plugin_name == plugin_name]

    def commit(self, commands: Mapping[str, RegisteredCommand]) -> None:
        """Add *commands* in one swap."""
        table: Dict[str, RegisteredCommand] = dict(self._commands)
        for name, command in commands.items():
            if name in table:
                raise PluginLoadError(f'Command "{name}" is already registered')
            table[name] = command
        self._commands = MappingProxyType(table)

    def remove(self, names: Iterable[str]) -> None:
        """Drop *names* in one swap; unknown names are ignored."""
        dropped = set(names)
        self._commands = MappingProxyType({n: c for n, c in self._commands.items() if n not in dropped})

    def clear(self) -> None:
        self._commands = MappingProxyType({})


class PluginCommands:
    """Constrained command-registration surface handed to one plugin."""

    def __init__(self, plugin_name: str, registry: CommandRegistry):
        self.plugin_name = plugin_name
        self._registry = registry
        self._staged: Dict[str, RegisteredCommand] = {}

    def command(self, name: str, handler: CommandHandler) -> None:
        """
        Register a slash command such as ``/backups``.

        Raises
        ------
        PluginLoadError
            If the name is malformed or already claimed (by another plugin or this one).
        """
        if not is_valid_command_name(name):
            logger.error("Plugin %s registered invalid command name %r", self.plugin_name, name)
            raise PluginLoadError(
                f'Invalid command name "{name}": must start with /, contain only lowercase letters, '
                "numbers, hyphens, max 21 chars"
            )
        if not callable(handler):
            raise PluginLoadError(f'Handler for command "{name}" is not callable')
        if self._registry.is_registered(name) or name in self._staged:
            logger.error("Plugin %s attempted to register duplicate command %s", self.plugin_name, name)
            raise PluginLoadError(f'Command "{name}" is already registered')

        logger.debug("Plugin %s registering command %s", self.plugin_name, name)
        self._staged[name] = RegisteredCommand(
            name=name,
            plugin_name=self.plugin_name,
            handler=_wrap_handler(self.plugin_name, name, handler),
        )

    @property
    def staged(self) -> Mapping[str, RegisteredCommand]:
        return MappingProxyType(self._staged)
