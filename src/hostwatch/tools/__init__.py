"""
Tool registry for hostwatch.

A tool is a :class:`ToolDefinition`: a :class:`~hostwatch.core.schema.ToolSpec` the model sees plus
an executor ``(input, capability_config) -> str`` (plain or ``async``).  Tools are declared with the
:func:`tool` decorator and collected by a :class:`ToolRegistry`.

The registry holds an immutable snapshot of ``name -> ToolDefinition``.  Loading or reloading
plugins builds a complete new snapshot and swaps it in with a single assignment, so a dispatch that
is in flight never observes a half-built map.
"""

import logging
from dataclasses import (
    dataclass,
    replace,
)
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
    Sequence,
    Union,
)

from hostwatch.core.schema import (
    CapabilityConfig,
    ToolSpec,
)

logger = logging.getLogger(__name__)

Executor = Callable[[Dict[str, Any], CapabilityConfig], Union[str, Awaitable[str]]]


class ToolExecutionError(RuntimeError):
    """Raised by an executor for a failure that should reach the model as a plain message."""


@dataclass(frozen=True)
class ToolDefinition:
    """A tool spec bound to its executor."""

    spec: ToolSpec
    execute: Executor
    plugin_name: Optional[str] = None

    @property
    def name(self) -> str:
        return self.spec.name

    def namespaced(self) -> "ToolDefinition":
        """Return a copy whose spec name is prefixed with the owning plugin's name."""
        if not self.plugin_name:
            raise ValueError(f"Plugin tool '{self.spec.name}' has no owning plugin")
        spec = self.spec.model_copy(
            update={"name": namespace_tool_name(self.spec.name, self.plugin_name)}
        )
        return replace(self, spec=spec)


def namespace_tool_name(tool_name: str, plugin_name: str) -> str:
    """Plugin tools are exposed to the model as ``plugin:tool``."""
    return f"{plugin_name}:{tool_name}"


def tool(
    name: str,
    description: Optional[str] = None,
    input_schema: Optional[Mapping[str, Any]] = None,
) -> Callable[[Executor], ToolDefinition]:
    """
    Declare a tool.

    Used as a decorator on the executor function:

        @tool("get_disk_usage", input_schema={"type": "object", "properties": {}})
        async def disk_usage(tool_input, config):
            \"\"\"Get disk usage for all mounted filesystems.\"\"\"
            ...

    The decorated name is bound to the resulting :class:`ToolDefinition`.  If *description* is not
    given, the executor's docstring is used.

    Parameters
    ----------
    name: str
        The tool name the model uses to request it.
    description: str, optional
        What the tool does; defaults to the executor docstring.
    input_schema: Mapping, optional
        JSON-Schema object for the input; defaults to an object with no properties.
    """

    def wrapper(fn: Executor) -> ToolDefinition:
        text = description if description is not None else (fn.__doc__ or "").strip()
        schema = dict(input_schema) if input_schema is not None else {"type": "object", "properties": {}}
        return ToolDefinition(
            spec=ToolSpec(name=name, description=text, input_schema=schema), execute=fn
        )

    return wrapper


class ToolRegistry:
    """Lookup of tool name -> definition for built-in and (namespaced) plugin tools."""

    def __init__(self, builtins: Sequence[ToolDefinition]):
        self._builtins = tuple(builtins)
        seen: set[str] = set()
        for definition in self._builtins:
            if definition.name in seen:
                raise ValueError(f"Tool '{definition.name}' is already registered.")
            seen.add(definition.name)
        self._snapshot: Mapping[str, ToolDefinition] = MappingProxyType(
            {d.name: d for d in self._builtins}
        )

    @property
    def builtin_names(self) -> frozenset[str]:
        """Names reserved by built-in tools."""
        return frozenset(d.name for d in self._builtins)

    def rebuild(self, plugin_tools: Iterable[ToolDefinition] = ()) -> None:
        """
        Replace the live snapshot with built-ins plus namespaced *plugin_tools*.

        The new mapping is fully built before it replaces the old one; on error the old snapshot
        stays live.

        Raises
        ------
        ValueError
            If a plugin tool has no owning plugin or two tools end up with the same name.
        """
        table: Dict[str, ToolDefinition] = {d.name: d for d in self._builtins}
        for definition in plugin_tools:
            namespaced = definition.namespaced()
            if namespaced.name in table:
                raise ValueError(f"Tool '{namespaced.name}' is already registered.")
            table[namespaced.name] = namespaced
        self._snapshot = MappingProxyType(table)
        logger.debug("Tool registry rebuilt with %d tools", len(table))

    def snapshot(self) -> Mapping[str, ToolDefinition]:
        """The current read-only name -> definition mapping."""
        return self._snapshot

    def get(self, name: str) -> Optional[ToolDefinition]:
        return self._snapshot.get(name)

    def names(self) -> List[str]:
        return list(self._snapshot)

    def specs(self, disabled: Iterable[str] = ()) -> List[ToolSpec]:
        """Tool specs to present to the model, minus any tool the caller opted out of."""
        disabled_set = set(disabled)
        return [d.spec for name, d in self._snapshot.items() if name not in disabled_set]

    def __contains__(self, name: object) -> bool:
        return name in self._snapshot

    def __len__(self) -> int:
        return len(self._snapshot)
