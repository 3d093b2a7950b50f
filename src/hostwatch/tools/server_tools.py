"""
Built-in server monitoring tools.

The tools are thin adapters: data comes from a :class:`~hostwatch.executors.collector.DataCollector`
and processes are spawned only through a :class:`~hostwatch.executors.shell.CommandRunner`.  Both are
bound at construction time by :func:`build_server_tools`.
"""

import json
import logging
from typing import (
    Any,
    Dict,
    List,
    Sequence,
)

from pydantic import BaseModel

from hostwatch.core.schema import CapabilityConfig
from hostwatch.executors.collector import DataCollector
from hostwatch.executors.shell import CommandRunner
from hostwatch.security.commands import get_allowed_commands
from hostwatch.tools import (
    ToolDefinition,
    ToolExecutionError,
    tool,
)
from hostwatch.tools.file_tools import read_file

logger = logging.getLogger(__name__)

DEFAULT_LOG_LINES = 50

_NO_INPUT = {"type": "object", "properties": {}}


def _to_json(value: Any) -> str:
    if isinstance(value, BaseModel):
        value = value.model_dump()
    elif isinstance(value, (list, tuple)):
        value = [v.model_dump() if isinstance(v, BaseModel) else v for v in value]
    return json.dumps(value, indent=2, default=str)


def _require_str(tool_input: Dict[str, Any], key: str) -> str:
    value = tool_input.get(key)
    if not isinstance(value, str) or not value.strip():
        raise ToolExecutionError(f"{key} is required")
    return value.strip()


def _format_command_output(stdout: str, stderr: str, exit_code: int) -> str:
    if exit_code != 0:
        return f"Command exited with code {exit_code}\n\nSTDOUT:\n{stdout}\n\nSTDERR:\n{stderr}"
    return stdout or "(no output)"


def build_server_tools(collector: DataCollector, runner: CommandRunner) -> List[ToolDefinition]:
    """Create the server tools bound to *collector* and *runner*."""

    @tool(
        "get_container_status",
        description=(
            "Get status of all Docker containers or detailed info for a specific container. "
            "Returns container names, images, states (running/stopped), uptime, and ports."
        ),
        input_schema={
            "type": "object",
            "properties": {
                "container_name": {
                    "type": "string",
                    "description": "Optional: specific container name for detailed info including "
                    "mounts, networks, and restart count",
                },
            },
        },
    )
    async def container_status(tool_input: Dict[str, Any], config: CapabilityConfig) -> str:
        name = tool_input.get("container_name")
        if isinstance(name, str) and name.strip():
            return _to_json(await collector.get_container_details(name.strip()))
        return _to_json(await collector.get_container_status())

    @tool(
        "get_container_logs",
        description=(
            "Get recent logs from a Docker container. Logs are automatically scrubbed to remove "
            "sensitive data like passwords and tokens."
        ),
        input_schema={
            "type": "object",
            "properties": {
                "container_name": {
                    "type": "string",
                    "description": "Name of the container to get logs from",
                },
                "lines": {
                    "type": "number",
                    "description": "Number of log lines to retrieve (default: 50, max configured limit)",
                },
            },
            "required": ["container_name"],
        },
    )
    async def container_logs(tool_input: Dict[str, Any], config: CapabilityConfig) -> str:
        name = _require_str(tool_input, "container_name")
        requested = tool_input.get("lines")
        try:
            lines = int(requested) if requested is not None else DEFAULT_LOG_LINES
        except (TypeError, ValueError) as exc:
            raise ToolExecutionError("lines must be a number") from exc
        lines = max(1, min(lines, config.max_log_lines))
        logger.debug("Fetching %d log lines for %s", lines, name)
        return await collector.get_container_logs(name, lines)

    @tool(
        "get_system_resources",
        description=(
            "Get current system resource usage including CPU load average (1, 5, 15 min), memory "
            "usage (total, used, available), swap usage, and system uptime."
        ),
        input_schema=_NO_INPUT,
    )
    async def system_resources(tool_input: Dict[str, Any], config: CapabilityConfig) -> str:
        return _to_json(await collector.get_system_resources())

    @tool(
        "get_disk_usage",
        description=(
            "Get disk usage for all mounted filesystems. Returns size, used, available, and percent "
            "used for each mount point."
        ),
        input_schema=_NO_INPUT,
    )
    async def disk_usage(tool_input: Dict[str, Any], config: CapabilityConfig) -> str:
        return _to_json(await collector.get_disk_usage())

    @tool(
        "get_network_info",
        description=(
            "List all Docker networks with their drivers (bridge, host, overlay, etc.) and scope "
            "(local, swarm, global)."
        ),
        input_schema=_NO_INPUT,
    )
    async def network_info(tool_input: Dict[str, Any], config: CapabilityConfig) -> str:
        return _to_json(await collector.get_network_list())

    @tool(
        "get_security_status",
        description=(
            "Get fail2ban status: every jail with failed/banned counters and currently banned IPs, "
            "or a single jail when a name is given."
        ),
        input_schema={
            "type": "object",
            "properties": {
                "jail": {"type": "string", "description": "Optional: a single jail name, e.g. sshd"},
            },
        },
    )
    async def security_status(tool_input: Dict[str, Any], config: CapabilityConfig) -> str:
        jail = tool_input.get("jail")
        jail = jail.strip() if isinstance(jail, str) and jail.strip() else None
        return _to_json(await collector.get_jail_status(jail))

    @tool(
        "run_command",
        description=(
            "Execute a read-only shell command for system diagnostics. Available commands: "
            f"{', '.join(get_allowed_commands())}.\n"
            "Commands have security restrictions:\n"
            "- docker: only ps, inspect, logs, network, images, version, info\n"
            "- systemctl: only status, show, list-units, list-unit-files, is-active, is-enabled, "
            "is-failed, cat\n"
            "- journalctl: read-only (no flush/rotate/vacuum)\n"
            "- curl: GET only (no POST/PUT/upload)\n"
            "- File commands (cat, ls, head, tail, find, grep): restricted to allowed directories"
        ),
        input_schema={
            "type": "object",
            "properties": {
                "command": {
                    "type": "string",
                    "description": 'The command to run (e.g., "ps", "systemctl", "journalctl")',
                },
                "args": {
                    "type": "array",
                    "items": {"type": "string"},
                    "description": 'Command arguments as an array (e.g., ["aux"] for ps aux)',
                },
            },
            "required": ["command"],
        },
    )
    async def run_command(tool_input: Dict[str, Any], config: CapabilityConfig) -> str:
        command = _require_str(tool_input, "command")
        raw_args = tool_input.get("args")
        args: Sequence[Any] = raw_args if isinstance(raw_args, list) else []
        result = await runner.run(command, args, config.allowed_directories)
        return _format_command_output(result.stdout, result.stderr, result.exit_code)

    return [
        container_status,
        container_logs,
        system_resources,
        disk_usage,
        network_info,
        security_status,
        run_command,
    ]


def builtin_tools(collector: DataCollector, runner: CommandRunner) -> List[ToolDefinition]:
    """All built-in tools: the server tools plus ``read_file``."""
    return build_server_tools(collector, runner) + [read_file]
