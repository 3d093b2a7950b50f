"""
Load-time validation of plugin-provided tools.

Errors are blocking (the whole plugin is rejected); warnings are only logged.
"""

import re
from dataclasses import (
    dataclass,
    field,
)
from typing import (
    AbstractSet,
    Any,
    List,
)

from hostwatch.tools import ToolDefinition

TOOL_NAME_PATTERN = re.compile(r"^[a-z][a-z0-9_]{2,49}$")

BUILTIN_TOOL_NAMES: frozenset[str] = frozenset(
    {
        "get_container_status",
        "get_container_logs",
        "get_system_resources",
        "get_disk_usage",
        "get_network_info",
        "get_security_status",
        "run_command",
        "read_file",
    }
)
"""Names reserved by built-in tools; plugins cannot declare them."""


@dataclass
class ValidationResult:
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    @property
    def valid(self) -> bool:
        return not self.errors

    def extend(self, other: "ValidationResult", prefix: str = "") -> None:
        self.errors.extend(f"{prefix}{e}" for e in other.errors)
        self.warnings.extend(f"{prefix}{w}" for w in other.warnings)


def validate_tool_name(name: Any, reserved: AbstractSet[str] = BUILTIN_TOOL_NAMES) -> ValidationResult:
    """Check a plugin tool name for format and collision with reserved names."""
    result = ValidationResult()
    if not isinstance(name, str):
        result.errors.append("Tool name must be a string")
        return result
    if not name:
        result.errors.append("Tool name cannot be empty")
        return result
    if len(name) < 3:
        result.errors.append("Tool name must be at least 3 characters")
    if len(name) > 50:
        result.errors.append("Tool name must be at most 50 characters")
    if not TOOL_NAME_PATTERN.match(name):
        result.errors.append(
            "Tool name must be lowercase, start with a letter, and contain only letters, "
            "numbers, and underscores"
        )
    if name in reserved:
        result.errors.append(f'Tool name "{name}" conflicts with a built-in tool')
    return result


def validate_tool_spec(spec: Any, reserved: AbstractSet[str] = BUILTIN_TOOL_NAMES) -> ValidationResult:
    """Check name, description and input schema shape of a tool spec."""
    result = ValidationResult()
    result.extend(validate_tool_name(getattr(spec, "name", None), reserved))

    description = getattr(spec, "description", None)
    if not isinstance(description, str):
        result.errors.append("Tool spec must have a description string")
    elif not description.strip():
        result.errors.append("Tool description cannot be empty")
    elif len(description) < 10:
        result.warnings.append("Tool description is very short, consider adding more detail")

    schema = getattr(spec, "input_schema", None)
    if not isinstance(schema, dict):
        result.errors.append("Tool spec must have an input_schema object")
    else:
        if schema.get("type") != "object":
            result.errors.append('Tool input_schema.type must be "object"')
        if not isinstance(schema.get("properties"), dict):
            result.errors.append("Tool input_schema must have a properties object")
    return result


def validate_tool_definition(
    definition: Any, reserved: AbstractSet[str] = BUILTIN_TOOL_NAMES
) -> ValidationResult:
    """Check a complete tool definition (spec + executor)."""
    result = ValidationResult()
    if not isinstance(definition, ToolDefinition):
        result.errors.append("Tool must be a ToolDefinition (use the @tool decorator)")
        return result
    result.extend(validate_tool_spec(definition.spec, reserved))
    if not callable(definition.execute):
        result.errors.append("Tool definition must have a callable executor")
    return result


def validate_plugin_tools(
    tools: Any, plugin_name: str, reserved: AbstractSet[str] = BUILTIN_TOOL_NAMES
) -> ValidationResult:
    """Validate every tool a plugin declares and reject duplicate names within the plugin."""
    result = ValidationResult()
    if not isinstance(tools, (list, tuple)):
        result.errors.append("Plugin tools must be a list")
        return result

    seen: set[str] = set()
    for i, definition in enumerate(tools):
        result.extend(validate_tool_definition(definition, reserved), prefix=f"Tool {i}: ")
        name = definition.name if isinstance(definition, ToolDefinition) else None
        if name is None:
            continue
        if name in seen:
            result.errors.append(f'Duplicate tool name "{name}" in plugin "{plugin_name}"')
        seen.add(name)
    return result
