"""
Tests for the built-in server tools with a mocked collector and runner.
"""

import json
from unittest.mock import (
    AsyncMock,
    Mock,
)

import pytest

from hostwatch.agent.tool_executor import ToolDispatcher
from hostwatch.core.schema import CapabilityConfig
from hostwatch.executors.collector import (
    ContainerSummary,
    DiskMount,
    JailStatus,
    UnconfiguredCollector,
)
from hostwatch.executors.shell import ShellResult
from hostwatch.security.commands import CommandRejectedError
from hostwatch.tools import ToolRegistry
from hostwatch.tools.server_tools import builtin_tools
from hostwatch.tools.validation import BUILTIN_TOOL_NAMES


@pytest.fixture
def collector():
    c = Mock()
    c.get_container_status = AsyncMock(
        return_value=[ContainerSummary(name="web", image="nginx:1.25", state="running", status="Up 3 hours")]
    )
    c.get_container_logs = AsyncMock(return_value="GET / 200\n")
    c.get_disk_usage = AsyncMock(
        return_value=[
            DiskMount(mount_point="/", filesystem="/dev/sda1", size="50G", used="20G", available="30G", percent_used=40)
        ]
    )
    c.get_jail_status = AsyncMock(return_value=[JailStatus(name="sshd", currently_banned=2)])
    return c


@pytest.fixture
def runner():
    r = Mock()
    r.run = AsyncMock(return_value=ShellResult(stdout="", stderr="", exit_code=0))
    return r


@pytest.fixture
def tools(collector, runner):
    return {t.name: t for t in builtin_tools(collector, runner)}


def test_builtin_names_match_reserved(tools) -> None:
    """Every built-in name is reserved against plugins."""

    assert set(tools) == set(BUILTIN_TOOL_NAMES)


@pytest.mark.asyncio
async def test_container_logs_capped_by_config(tools, collector) -> None:
    """lines=1000 with max_log_lines=50 asks the collector for 50."""

    config = CapabilityConfig(max_log_lines=50)
    await tools["get_container_logs"].execute({"container_name": "web", "lines": 1000}, config)
    collector.get_container_logs.assert_awaited_once_with("web", 50)


@pytest.mark.asyncio
async def test_container_logs_default_lines(tools, collector) -> None:
    """Without lines the default of 50 is used, still under the cap."""

    await tools["get_container_logs"].execute({"container_name": "web"}, CapabilityConfig(max_log_lines=20))
    collector.get_container_logs.assert_awaited_once_with("web", 20)


@pytest.mark.asyncio
async def test_structured_records_as_json(tools) -> None:
    """Collector records are rendered as JSON for the model."""

    out = await tools["get_container_status"].execute({}, CapabilityConfig())
    assert json.loads(out)[0]["name"] == "web"
    disks = json.loads(await tools["get_disk_usage"].execute({}, CapabilityConfig()))
    assert disks[0]["percent_used"] == 40
    jails = json.loads(await tools["get_security_status"].execute({"jail": "sshd"}, CapabilityConfig()))
    assert jails[0]["currently_banned"] == 2


@pytest.mark.asyncio
async def test_run_command_formats_output(tools, runner) -> None:
    """Non-zero exits show both streams; empty output is marked."""

    config = CapabilityConfig(allowed_directories=["/srv"])
    assert await tools["run_command"].execute({"command": "uptime"}, config) == "(no output)"
    runner.run.assert_awaited_once_with("uptime", [], ("/srv",))

    runner.run.return_value = ShellResult(stdout="out", stderr="boom", exit_code=3)
    out = await tools["run_command"].execute({"command": "docker", "args": ["ps"]}, config)
    assert out == "Command exited with code 3\n\nSTDOUT:\nout\n\nSTDERR:\nboom"


@pytest.mark.asyncio
async def test_run_command_rejection_is_an_error_result(tools, runner) -> None:
    """Policy rejections are not swallowed; the dispatcher marks them as errors."""

    runner.run.side_effect = CommandRejectedError("Command not in allowlist: rm")
    with pytest.raises(CommandRejectedError):
        await tools["run_command"].execute({"command": "rm", "args": ["-rf", "/"]}, CapabilityConfig())

    dispatcher = ToolDispatcher(ToolRegistry(list(tools.values())))
    result = await dispatcher.execute("t1", "run_command", {"command": "rm", "args": ["-rf", "/"]}, CapabilityConfig())
    assert result.is_error
    assert result.content == "Error: Command not in allowlist: rm"


@pytest.mark.asyncio
async def test_unconfigured_collector_is_a_clean_error() -> None:
    """Without a collector the data tools fail with a plain message."""

    tools = {t.name: t for t in builtin_tools(UnconfiguredCollector(), Mock())}
    with pytest.raises(Exception, match="No data collector"):
        await tools["get_disk_usage"].execute({}, CapabilityConfig())
