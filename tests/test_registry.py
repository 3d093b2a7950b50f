"""
Tests for the tool registry and plugin tool validation.
"""

import pytest

from hostwatch.tools import (
    ToolDefinition,
    ToolRegistry,
    tool,
)
from hostwatch.tools.validation import (
    validate_plugin_tools,
    validate_tool_name,
)


@tool("get_uptime", input_schema={"type": "object", "properties": {}})
def _uptime(tool_input, config) -> str:
    """Return how long the host has been up."""

    return "up 3 days"


@tool("list_backups")
def _backups(tool_input, config) -> str:
    """List backup archives and their age."""

    return "[]"


def _plugin_tool(definition: ToolDefinition, plugin: str) -> ToolDefinition:
    return ToolDefinition(spec=definition.spec, execute=definition.execute, plugin_name=plugin)


def test_decorator_uses_docstring() -> None:
    """The executor docstring becomes the description."""

    assert _uptime.spec.description == "Return how long the host has been up."
    assert _backups.spec.input_schema == {"type": "object", "properties": {}}


def test_duplicate_builtin_is_an_error() -> None:
    """Two built-ins with one name is a programming error."""

    with pytest.raises(ValueError, match="already registered"):
        ToolRegistry([_uptime, _uptime])


def test_rebuild_namespaces_plugin_tools() -> None:
    """Plugin tools are exposed as plugin:tool next to built-ins."""

    registry = ToolRegistry([_uptime])
    registry.rebuild([_plugin_tool(_backups, "backups")])
    assert registry.names() == ["get_uptime", "backups:list_backups"]
    assert registry.get("backups:list_backups").plugin_name == "backups"
    assert "list_backups" not in registry


def test_rebuild_swaps_snapshot() -> None:
    """Readers holding the old snapshot never see it change."""

    registry = ToolRegistry([_uptime])
    before = registry.snapshot()
    registry.rebuild([_plugin_tool(_backups, "backups")])
    assert list(before) == ["get_uptime"]
    assert len(registry) == 2
    with pytest.raises(TypeError):
        before["x"] = _uptime  # type: ignore[index]


def test_failed_rebuild_keeps_old_snapshot() -> None:
    """A collision leaves the live registry untouched."""

    registry = ToolRegistry([_uptime])
    dup = _plugin_tool(_backups, "backups")
    with pytest.raises(ValueError):
        registry.rebuild([dup, dup])
    assert registry.names() == ["get_uptime"]


def test_specs_filter_disabled() -> None:
    """Disabled names are hidden from the model."""

    registry = ToolRegistry([_uptime, _backups])
    assert [s.name for s in registry.specs(["get_uptime"])] == ["list_backups"]


@pytest.mark.parametrize("name", ["ab", "Uptime", "1tool", "has-dash", "x" * 51, "run_command"])
def test_invalid_tool_names(name: str) -> None:
    """Bad format and reserved names are blocking errors."""

    assert not validate_tool_name(name).valid


def test_plugin_tool_validation_collects_errors_and_warnings() -> None:
    """Duplicates and reserved names are errors, short descriptions are warnings."""

    short = tool("short_one", description="Short")(lambda i, c: "")
    reserved = tool("read_file", description="Shadow the built-in reader")(lambda i, c: "")
    result = validate_plugin_tools([_backups, _backups, short, reserved], "backups")

    assert not result.valid
    assert any('Duplicate tool name "list_backups"' in e for e in result.errors)
    assert any("conflicts with a built-in tool" in e for e in result.errors)
    assert any("very short" in w for w in result.warnings)


def test_plugin_tool_validation_schema_shape() -> None:
    """input_schema must be an object schema with properties."""

    bad = tool("bad_schema", description="Schema is not an object", input_schema={"type": "array"})(
        lambda i, c: ""
    )
    result = validate_plugin_tools([bad], "p")
    assert 'Tool 0: Tool input_schema.type must be "object"' in result.errors
    assert not validate_plugin_tools("nope", "p").valid
