"""
Tests for plugin discovery, atomic loading and teardown.
"""

import asyncio
import textwrap
import time
from typing import List

import pytest

from hostwatch.core.schema import CapabilityConfig
from hostwatch.plugins import (
    Plugin,
    tool,
)
from hostwatch.plugins.loader import PluginManager
from hostwatch.tools import ToolRegistry


@tool("get_disk_usage")
def _disk(tool_input, config) -> str:
    """Get disk usage for all mounted filesystems."""

    return "/ 40%"


@tool("last_run")
def _last_run(tool_input, config) -> str:
    """Report when the most recent backup job finished."""

    return "2026-10-16 02:00"


@tool("dup_commands_tool")
def _dup_tool(tool_input, config) -> str:
    """Tool of a plugin whose commands collide with another plugin."""

    return "unused"


@pytest.fixture
def registry() -> ToolRegistry:
    return ToolRegistry([_disk])


def _write(directory, name: str, body: str) -> None:
    (directory / name).write_text(textwrap.dedent(body))


@pytest.mark.asyncio
async def test_missing_directory_loads_nothing(registry, tmp_path) -> None:
    manager = PluginManager(registry, tmp_path / "absent")
    assert await manager.load_all() == []
    assert registry.names() == ["get_disk_usage"]


@pytest.mark.asyncio
async def test_load_from_directory(registry, tmp_path) -> None:
    """Files are discovered in order; underscore files and broken imports are skipped."""

    _write(
        tmp_path,
        "backups.py",
        '''
        from hostwatch.plugins import Plugin, tool

        @tool("last_run")
        def last_run(tool_input, config):
            """Report when the most recent backup job finished."""
            return "02:00"

        def register(commands):
            commands.command("/backups", lambda *args: "ok")

        plugin = Plugin(name="backups", version="1.2.0", description="Backup status", tools=[last_run],
                        register_commands=register)
        ''',
    )
    _write(tmp_path, "_helpers.py", "raise RuntimeError('never imported')\n")
    _write(tmp_path, "broken.py", "this is not python\n")
    _write(tmp_path, "empty.py", "x = 1\n")

    manager = PluginManager(registry, tmp_path)
    assert [p.name for p in manager.discover()] == ["backups.py", "broken.py", "empty.py"]
    assert await manager.load_all() == ["backups@1.2.0"]

    assert "backups:last_run" in registry
    assert manager.commands.names() == ["/backups"]
    help_entry = manager.help_entries()[0]
    assert (help_entry.name, help_entry.description, help_entry.commands) == (
        "backups",
        "Backup status",
        ["/backups"],
    )


@pytest.mark.asyncio
async def test_invalid_tool_rejects_whole_plugin(registry, tmp_path) -> None:
    """A plugin with one bad tool contributes nothing, and init never runs."""

    calls: List[str] = []

    @tool("x")
    def _bad(tool_input, config) -> str:
        """Too short a name."""

        return ""

    plugin = Plugin(
        name="mixed",
        version="1.0.0",
        tools=[_last_run, _bad],
        init=lambda ctx: calls.append("init"),
        register_commands=lambda c: c.command("/mixed", lambda: None),
    )
    manager = PluginManager(registry, tmp_path)

    assert not await manager.load(plugin)
    assert registry.names() == ["get_disk_usage"]
    assert manager.commands.names() == []
    assert calls == []


@pytest.mark.asyncio
async def test_builtin_name_is_reserved(registry, tmp_path) -> None:
    plugin = Plugin(name="shadow", version="1.0.0", tools=[_disk])
    assert not await PluginManager(registry, tmp_path).load(plugin)
    assert "shadow:get_disk_usage" not in registry


@pytest.mark.asyncio
async def test_init_timeout_rejects_and_destroy_not_called(registry, tmp_path) -> None:
    destroyed: List[str] = []

    async def slow_init(ctx):
        await asyncio.sleep(10)

    plugin = Plugin(
        name="slow",
        version="0.1.0",
        tools=[_last_run],
        init=slow_init,
        destroy=lambda ctx: destroyed.append(ctx.name),
    )
    manager = PluginManager(registry, tmp_path, init_timeout=0.05)

    assert not await manager.load(plugin)
    assert "slow:last_run" not in registry
    assert manager.loaded_plugins() == []
    assert destroyed == []


@pytest.mark.asyncio
async def test_failure_after_init_calls_destroy(registry, tmp_path) -> None:
    """A bad command after a successful init rolls the plugin back."""

    events: List[str] = []
    plugin = Plugin(
        name="badcmd",
        version="1.0.0",
        tools=[_last_run],
        init=lambda ctx: events.append("init"),
        destroy=lambda ctx: events.append("destroy"),
        register_commands=lambda c: c.command("NoSlash", lambda: None),
    )
    manager = PluginManager(registry, tmp_path)

    assert not await manager.load(plugin)
    assert events == ["init", "destroy"]
    assert "badcmd:last_run" not in registry


@pytest.mark.asyncio
async def test_duplicate_plugin_and_command_collisions(registry, tmp_path) -> None:
    manager = PluginManager(registry, tmp_path)
    first = Plugin(
        name="backups",
        version="1.0.0",
        tools=[_last_run],
        register_commands=lambda c: c.command("/backups", lambda: "ok"),
    )
    assert await manager.load(first)

    # same plugin name
    assert not await manager.load(Plugin(name="backups", version="2.0.0"))
    # different plugin claiming the same command: its tool must not appear either
    clash = Plugin(
        name="other",
        version="1.0.0",
        tools=[_dup_tool],
        register_commands=lambda c: c.command("/backups", lambda: "mine"),
    )
    assert not await manager.load(clash)

    assert manager.loaded_plugins() == ["backups@1.0.0"]
    assert sorted(registry.names()) == ["backups:last_run", "get_disk_usage"]
    assert manager.commands.for_plugin("backups") == ["/backups"]


@pytest.mark.asyncio
async def test_invalid_plugin_name(registry, tmp_path) -> None:
    assert not await PluginManager(registry, tmp_path).load(Plugin(name="Bad Name", version="1"))


@pytest.mark.asyncio
async def test_destroy_all_tolerates_hanging_destroy(registry, tmp_path) -> None:
    events: List[str] = []

    async def hang(ctx):
        await asyncio.sleep(10)

    manager = PluginManager(registry, tmp_path, destroy_timeout=0.05)
    assert await manager.load(Plugin(name="stuck", version="1.0.0", tools=[_last_run], destroy=hang))
    assert await manager.load(
        Plugin(name="clean", version="1.0.0", destroy=lambda ctx: events.append(ctx.name))
    )

    await manager.destroy_all()

    assert events == ["clean"]
    assert manager.loaded_plugins() == []
    assert registry.names() == ["get_disk_usage"]


@pytest.mark.asyncio
async def test_plugin_tool_executes(registry, tmp_path) -> None:
    manager = PluginManager(registry, tmp_path)
    assert await manager.load(Plugin(name="backups", version="1.0.0", tools=[_last_run]))
    definition = registry.get("backups:last_run")
    assert definition.plugin_name == "backups"
    assert definition.execute({}, CapabilityConfig()) == "2026-10-16 02:00"


@pytest.mark.asyncio
async def test_blocking_sync_init_still_times_out(registry, tmp_path) -> None:
    """A plain init that blocks its thread is still bounded by the init timeout."""

    plugin = Plugin(name="blocking", version="1.0.0", tools=[_last_run], init=lambda ctx: time.sleep(1.0))
    manager = PluginManager(registry, tmp_path, init_timeout=0.05)

    started = time.monotonic()
    assert not await manager.load(plugin)
    assert time.monotonic() - started < 0.8
    assert "blocking:last_run" not in registry
    assert manager.loaded_plugins() == []


@pytest.mark.asyncio
async def test_blocking_sync_destroy_does_not_stall_teardown(registry, tmp_path) -> None:
    events: List[str] = []
    manager = PluginManager(registry, tmp_path, destroy_timeout=0.05)
    assert await manager.load(Plugin(name="stuck", version="1.0.0", destroy=lambda ctx: time.sleep(1.0)))
    assert await manager.load(Plugin(name="clean", version="1.0.0", destroy=lambda ctx: events.append(ctx.name)))

    started = time.monotonic()
    await manager.destroy_all()

    assert time.monotonic() - started < 0.8
    assert events == ["clean"]
    assert manager.loaded_plugins() == []


@pytest.mark.asyncio
async def test_concurrent_loads_racing_for_a_command(registry, tmp_path) -> None:
    """The loser of a command race leaves no tools behind."""

    async def claim(commands):
        commands.command("/report", lambda: commands.plugin_name)
        await asyncio.sleep(0.01)

    manager = PluginManager(registry, tmp_path)
    results = await asyncio.gather(
        manager.load(Plugin(name="alpha", version="1.0.0", tools=[_last_run], register_commands=claim)),
        manager.load(Plugin(name="beta", version="1.0.0", tools=[_dup_tool], register_commands=claim)),
    )

    assert results == [True, False]
    assert manager.loaded_plugins() == ["alpha@1.0.0"]
    assert manager.commands.names() == ["/report"]
    assert manager.commands.for_plugin("alpha") == ["/report"]
    assert sorted(registry.names()) == ["alpha:last_run", "get_disk_usage"]


@pytest.mark.asyncio
async def test_concurrent_loads_of_the_same_name(registry, tmp_path) -> None:
    async def slow_init(ctx):
        await asyncio.sleep(0.01)

    manager = PluginManager(registry, tmp_path)
    results = await asyncio.gather(
        manager.load(Plugin(name="same", version="1.0.0", init=slow_init)),
        manager.load(Plugin(name="same", version="2.0.0", init=slow_init)),
    )

    assert results == [True, False]
    assert manager.loaded_plugins() == ["same@1.0.0"]
