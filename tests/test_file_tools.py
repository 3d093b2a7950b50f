"""
Tests for the read_file tool, run through the dispatcher as the agent loop does.
"""

import os

import pytest

from hostwatch.agent.tool_executor import ToolDispatcher
from hostwatch.core.schema import CapabilityConfig
from hostwatch.tools import ToolRegistry
from hostwatch.tools.file_tools import read_file


@pytest.fixture
def dispatcher() -> ToolDispatcher:
    return ToolDispatcher(ToolRegistry([read_file]))


@pytest.mark.asyncio
async def test_traversal_out_of_allowed_dirs_denied(dispatcher) -> None:
    """/tmp/../etc/passwd resolves outside ["/tmp", "/opt"] and is denied."""

    config = CapabilityConfig(allowed_directories=["/tmp", "/opt"])
    result = await dispatcher.execute("t1", "read_file", {"path": "/tmp/../etc/passwd"}, config)

    assert result.is_error
    assert result.content.startswith("Error: Access denied")
    assert "root:" not in result.content


@pytest.mark.asyncio
async def test_reads_and_scrubs(dispatcher, tmp_path) -> None:
    """Allowed text files are returned scrubbed."""

    f = tmp_path / "app.conf"
    f.write_text("listen 80\npassword=hunter2\n")
    config = CapabilityConfig(allowed_directories=[str(tmp_path)])
    result = await dispatcher.execute("t1", "read_file", {"path": str(f)}, config)

    assert not result.is_error
    assert "listen 80" in result.content
    assert "hunter2" not in result.content


@pytest.mark.asyncio
async def test_line_limit_and_note(dispatcher, tmp_path) -> None:
    """max_lines is honoured and capped at 500, with a truncation note."""

    f = tmp_path / "big.log"
    f.write_text("\n".join(f"line {i}" for i in range(1000)))
    config = CapabilityConfig(allowed_directories=[str(tmp_path)], max_file_size_kb=1000)

    result = await dispatcher.execute("t1", "read_file", {"path": str(f), "max_lines": 5}, config)
    assert result.content.endswith("... [truncated, showing 5 of 1000 lines]")
    assert "line 5\n" not in result.content

    result = await dispatcher.execute("t2", "read_file", {"path": str(f), "max_lines": 5000}, config)
    assert "showing 500 of 1000 lines" in result.content


@pytest.mark.asyncio
async def test_env_file_rejected(dispatcher, tmp_path) -> None:
    """A real .env is never read, even inside an allowed directory."""

    (tmp_path / ".env").write_text("SECRET=1")
    config = CapabilityConfig(allowed_directories=[str(tmp_path)])
    result = await dispatcher.execute("t1", "read_file", {"path": str(tmp_path / ".env")}, config)
    assert result.is_error
    assert "unsupported file type" in result.content


@pytest.mark.asyncio
async def test_binary_content_rejected(dispatcher, tmp_path) -> None:
    """A null byte rejects the read even with a text extension."""

    f = tmp_path / "fake.txt"
    f.write_bytes(b"abc\x00def")
    config = CapabilityConfig(allowed_directories=[str(tmp_path)])
    result = await dispatcher.execute("t1", "read_file", {"path": str(f)}, config)
    assert result.is_error
    assert "binary data" in result.content


@pytest.mark.asyncio
async def test_size_ceiling(dispatcher, tmp_path) -> None:
    """Files over max_file_size_kb are refused."""

    f = tmp_path / "large.txt"
    f.write_text("x" * 3000)
    config = CapabilityConfig(allowed_directories=[str(tmp_path)], max_file_size_kb=1)
    result = await dispatcher.execute("t1", "read_file", {"path": str(f)}, config)
    assert result.is_error
    assert "File too large (2.9KB). Maximum allowed: 1KB" in result.content


@pytest.mark.asyncio
async def test_symlink_escape_denied(dispatcher, tmp_path) -> None:
    """A link inside the allowed dir pointing outside is denied."""

    allowed = tmp_path / "allowed"
    allowed.mkdir()
    outside = tmp_path / "outside.txt"
    outside.write_text("do not read")
    os.symlink(outside, allowed / "notes.txt")
    config = CapabilityConfig(allowed_directories=[str(allowed)])

    result = await dispatcher.execute("t1", "read_file", {"path": str(allowed / "notes.txt")}, config)
    assert result.is_error
    assert "do not read" not in result.content
    assert "Symlink target is outside allowed directories" in result.content
