"""
Process execution for allowlisted commands.

:class:`SubprocessRunner` is the only place in the project that spawns a diagnostic process.  It
never goes through a shell, always validates against :mod:`hostwatch.security.commands` first, and
kills the child when its timeout expires.
"""

import asyncio
import logging
from typing import (
    Protocol,
    Sequence,
)

from pydantic import BaseModel

from hostwatch.security.commands import validate_command

logger = logging.getLogger(__name__)

MAX_OUTPUT_BYTES = 1024 * 1024


class CommandTimeoutError(RuntimeError):
    """Raised when a spawned command does not finish within its timeout."""


class ShellResult(BaseModel):
    """Captured output of a finished command."""

    stdout: str = ""
    stderr: str = ""
    exit_code: int = 0


class CommandRunner(Protocol):
    """Anything that can run an allowlisted command and capture its output."""

    async def run(
        self, command: str, args: Sequence[str], allowed_dirs: Sequence[str] = ()
    ) -> ShellResult:
        """Validate and run *command* with *args*."""


class SubprocessRunner:
    """Run allowlisted commands with ``asyncio`` subprocesses (no shell)."""

    def __init__(self, timeout: float = 30.0, max_output_bytes: int = MAX_OUTPUT_BYTES):
        self.timeout = timeout
        self.max_output_bytes = max_output_bytes

    async def run(
        self, command: str, args: Sequence[str], allowed_dirs: Sequence[str] = ()
    ) -> ShellResult:
        """
        Validate *command* / *args* and run the command.

        Raises
        ------
        CommandRejectedError
            If the command is outside policy (nothing is spawned).
        CommandTimeoutError
            If the command runs longer than ``self.timeout`` seconds (the process is killed).
        """
        executable = validate_command(command, args, allowed_dirs)
        logger.debug("Spawning %s %s", executable, list(args))

        proc = await asyncio.create_subprocess_exec(
            executable,
            *args,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
        try:
            stdout, stderr = await asyncio.wait_for(proc.communicate(), timeout=self.timeout)
        except asyncio.TimeoutError as exc:
            proc.kill()
            await proc.wait()
            logger.warning("Command %s timed out after %.0fs", command, self.timeout)
            raise CommandTimeoutError(f"{command} timed out after {self.timeout:.0f}s") from exc

        return ShellResult(
            stdout=self._decode(stdout),
            stderr=self._decode(stderr),
            exit_code=proc.returncode if proc.returncode is not None else 1,
        )

    def _decode(self, data: bytes) -> str:
        text = data[: self.max_output_bytes].decode("utf-8", errors="replace")
        if len(data) > self.max_output_bytes:
            text += "\n... [output truncated]"
        return text
