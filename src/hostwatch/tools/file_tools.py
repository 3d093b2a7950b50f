"""
File-reading tool confined to the caller's allowed directories.
"""

import logging
import os
from typing import (
    Any,
    Dict,
)

from hostwatch.core.schema import CapabilityConfig
from hostwatch.security.paths import (
    AccessDeniedError,
    contains_binary,
    is_safe_extension,
    path_allowed,
    validate_real_path,
)
from hostwatch.tools import (
    ToolExecutionError,
    tool,
)

logger = logging.getLogger(__name__)

DEFAULT_MAX_LINES = 200
MAX_LINES_CAP = 500


def _line_limit(value: Any) -> int:
    if value is None:
        return DEFAULT_MAX_LINES
    try:
        requested = int(value)
    except (TypeError, ValueError) as exc:
        raise ToolExecutionError("max_lines must be a number") from exc
    return max(1, min(requested, MAX_LINES_CAP))


@tool(
    "read_file",
    description=(
        "Read a text file from allowed directories (ansible configs, docker-compose files, etc.). "
        "Only text files are supported. Sensitive data like passwords and tokens are automatically "
        "redacted."
    ),
    input_schema={
        "type": "object",
        "properties": {
            "path": {"type": "string", "description": "Absolute path to the file"},
            "max_lines": {
                "type": "number",
                "description": "Maximum number of lines to read (default: 200, max: 500)",
            },
        },
        "required": ["path"],
    },
)
def read_file(tool_input: Dict[str, Any], config: CapabilityConfig) -> str:
    file_path = tool_input.get("path")
    if not isinstance(file_path, str) or not file_path:
        raise ToolExecutionError("path is required")
    max_lines = _line_limit(tool_input.get("max_lines"))

    allowed = config.allowed_directories
    if not path_allowed(file_path, allowed):
        logger.warning("read_file denied outside allowed directories: %s", file_path)
        raise AccessDeniedError(
            "Access denied. File must be in one of the allowed directories:\n" + "\n".join(allowed)
        )
    # from here on only the resolved path is used
    real_path = validate_real_path(file_path, allowed)

    if not is_safe_extension(real_path):
        raise AccessDeniedError(
            "Cannot read binary or unsupported file type. Only text files are supported."
        )
    if not os.path.isfile(real_path):
        raise ToolExecutionError(f"Path is not a file: {file_path}")

    size_kb = os.path.getsize(real_path) / 1024
    if size_kb > config.max_file_size_kb:
        raise ToolExecutionError(
            f"File too large ({size_kb:.1f}KB). Maximum allowed: {config.max_file_size_kb}KB"
        )

    with open(real_path, "rb") as fh:
        data = fh.read()
    if contains_binary(data):
        raise AccessDeniedError("File contains binary data and cannot be read as text.")

    lines = data.decode("utf-8", errors="replace").split("\n")
    content = "\n".join(lines[:max_lines])
    if len(lines) > max_lines:
        content += f"\n\n... [truncated, showing {max_lines} of {len(lines)} lines]"
    return content
