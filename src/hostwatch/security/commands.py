"""
Allowlist policy for the ``run_command`` tool.

A command is runnable only if its name is in :data:`ALLOWED_COMMANDS` and every argument passes the
per-command policy registered for it.  Validation happens before any process is spawned; a
violation raises :class:`CommandRejectedError` and nothing runs.

Policies are plain functions registered with :func:`register_policy`, one per command name.
"""

import functools
import logging
import os
import re
from typing import (
    Callable,
    Dict,
    FrozenSet,
    Iterable,
    List,
    Optional,
    Sequence,
    Tuple,
)

from hostwatch.security.paths import path_allowed

logger = logging.getLogger(__name__)


class CommandRejectedError(RuntimeError):
    """Raised when a command or one of its arguments is outside policy."""


ALLOWED_COMMANDS: Dict[str, str] = {
    "docker": "/usr/bin/docker",
    "systemctl": "/usr/bin/systemctl",
    "journalctl": "/usr/bin/journalctl",
    "ps": "/usr/bin/ps",
    "free": "/usr/bin/free",
    "df": "/usr/bin/df",
    "uptime": "/usr/bin/uptime",
    "top": "/usr/bin/top",
    "curl": "/usr/bin/curl",
    "fail2ban-client": "/usr/bin/fail2ban-client",
    "cat": "/usr/bin/cat",
    "ls": "/usr/bin/ls",
    "head": "/usr/bin/head",
    "tail": "/usr/bin/tail",
    "grep": "/usr/bin/grep",
    "find": "/usr/bin/find",
}
"""Command name -> absolute executable path.  Nothing else can be spawned."""

# Anything a shell would interpret.  Processes are spawned without a shell, this is a second wall.
SHELL_METACHARACTERS = re.compile(r"[;&|`$(){}\[\]<>!\n\r\\'\"]")

DOCKER_SUBCOMMANDS = frozenset({"ps", "inspect", "logs", "network", "images", "version", "info"})
DOCKER_NETWORK_SUBCOMMANDS = frozenset({"ls", "inspect"})
SYSTEMCTL_SUBCOMMANDS = frozenset(
    {"status", "show", "list-units", "list-unit-files", "is-active", "is-enabled", "is-failed", "cat"}
)
JOURNALCTL_FORBIDDEN_FLAGS = frozenset(
    {
        "--flush",
        "--rotate",
        "--sync",
        "--relinquish-var",
        "--smart-relinquish-var",
        "--setup-keys",
        "--update-catalog",
    }
)
CURL_FORBIDDEN_FLAGS = frozenset(
    {
        "-d", "--data", "--data-raw", "--data-binary", "--data-urlencode", "--data-ascii",
        "--json", "-F", "--form", "--form-string", "-T", "--upload-file",
        "-o", "--output", "-O", "--remote-name", "--remote-name-all", "-K", "--config",
        "-u", "--user", "-b", "--cookie", "-c", "--cookie-jar", "-D", "--dump-header",
        "--trace", "--trace-ascii", "--stderr", "-G", "--get", "-I", "--head",
    }
)
FAIL2BAN_SUBCOMMANDS = frozenset({"status", "banned"})
FIND_FORBIDDEN_PREDICATES = frozenset(
    {
        "-exec", "-execdir", "-ok", "-okdir", "-delete",
        "-fprint", "-fprint0", "-fprintf", "-fls", "-files0-from",
    }
)
FILE_COMMANDS = frozenset({"cat", "ls", "head", "tail", "grep", "find"})

CommandPolicy = Callable[[Sequence[str], Sequence[str]], None]

_POLICIES: Dict[str, CommandPolicy] = {}


def register_policy(*commands: str) -> Callable[[CommandPolicy], CommandPolicy]:
    """Register the decorated function as the argument policy for *commands*."""

    def wrapper(fn: CommandPolicy) -> CommandPolicy:
        for command in commands:
            _POLICIES[command] = fn
        return fn

    return wrapper


def _require_subcommand(command: str, args: Sequence[str], allowed: Iterable[str]) -> str:
    if not args:
        raise CommandRejectedError(f"{command} command requires a subcommand")
    subcommand = args[0]
    if subcommand not in allowed:
        raise CommandRejectedError(f"{command} subcommand not allowed: {subcommand}")
    return subcommand


@register_policy("docker")
def _docker_policy(args: Sequence[str], _allowed_dirs: Sequence[str]) -> None:
    subcommand = _require_subcommand("docker", args, DOCKER_SUBCOMMANDS)
    if subcommand == "network" and len(args) > 1 and args[1] not in DOCKER_NETWORK_SUBCOMMANDS:
        raise CommandRejectedError(f"docker network subcommand not allowed: {args[1]}")


@register_policy("systemctl")
def _systemctl_policy(args: Sequence[str], _allowed_dirs: Sequence[str]) -> None:
    # Options may precede the verb (systemctl --no-pager status nginx)
    verbs = [a for a in args if not a.startswith("-")]
    _require_subcommand("systemctl", verbs, SYSTEMCTL_SUBCOMMANDS)


@register_policy("journalctl")
def _journalctl_policy(args: Sequence[str], _allowed_dirs: Sequence[str]) -> None:
    for arg in args:
        flag = arg.split("=", 1)[0]
        if flag in JOURNALCTL_FORBIDDEN_FLAGS or flag.startswith("--vacuum"):
            raise CommandRejectedError(f"journalctl flag not allowed: {flag}")


@register_policy("curl")
def _curl_policy(args: Sequence[str], _allowed_dirs: Sequence[str]) -> None:
    for i, arg in enumerate(args):
        if "://" in arg and not arg.lower().startswith(("http://", "https://")):
            raise CommandRejectedError(f"curl URL scheme not allowed: {arg.split('://', 1)[0]}")
        if arg.lower().startswith("file:"):
            raise CommandRejectedError("curl URL scheme not allowed: file")
        flag = arg.split("=", 1)[0]
        if flag in ("-X", "--request"):
            method = arg.split("=", 1)[1] if "=" in arg else (args[i + 1] if i + 1 < len(args) else "")
            if method.upper() != "GET":
                raise CommandRejectedError(f"curl method not allowed: {method or '(missing)'}")
            continue
        if arg.startswith("-X") and len(arg) > 2 and not arg.startswith("--"):
            if arg[2:].upper() != "GET":
                raise CommandRejectedError(f"curl method not allowed: {arg[2:]}")
            continue
        if flag in CURL_FORBIDDEN_FLAGS:
            raise CommandRejectedError(f"curl flag not allowed: {flag}")
        # Bundled short options (-sSo file) can smuggle a forbidden one
        if arg.startswith("-") and not arg.startswith("--") and len(arg) > 2:
            for letter in arg[1:]:
                if letter == "X":
                    raise CommandRejectedError("curl -X must be passed on its own: -X GET")
                if f"-{letter}" in CURL_FORBIDDEN_FLAGS:
                    raise CommandRejectedError(f"curl flag not allowed: -{letter}")


@register_policy("fail2ban-client")
def _fail2ban_policy(args: Sequence[str], _allowed_dirs: Sequence[str]) -> None:
    _require_subcommand("fail2ban-client", args, FAIL2BAN_SUBCOMMANDS)


@register_policy("top")
def _top_policy(args: Sequence[str], _allowed_dirs: Sequence[str]) -> None:
    # Interactive top never exits; only batch mode is useful through a pipe
    if "-b" not in args:
        raise CommandRejectedError("top requires batch mode (-b)")


# Options whose value is the following argument, so that argument is not an operand
FILE_VALUE_OPTIONS: Dict[str, FrozenSet[str]] = {
    "cat": frozenset(),
    "ls": frozenset({"-w", "--width", "-I", "--ignore", "--hide", "-T", "--tabsize"}),
    "head": frozenset({"-n", "--lines", "-c", "--bytes"}),
    "tail": frozenset({"-n", "--lines", "-c", "--bytes", "-s", "--sleep-interval"}),
    "grep": frozenset(
        {
            "-e", "--regexp", "-m", "--max-count", "-A", "--after-context", "-B",
            "--before-context", "-C", "--context", "-d", "--directories", "-D", "--devices",
            "--include", "--exclude", "--exclude-dir", "--label",
        }
    ),
}
# find options that may precede its starting points
FIND_LEADING_OPTIONS = frozenset({"-H", "-L", "-P"})


def _is_option(arg: str) -> bool:
    return arg.startswith("-") and arg != "-"


def _option_value(arg: str, value_options: FrozenSet[str]) -> Tuple[Optional[str], bool]:
    """
    Inspect one option token, including bundled short options such as ``-qn`` or ``-e<pattern>``.

    Returns the option that takes a value (or ``None``) and whether that value is the next argument.
    """
    if arg.startswith("--"):
        name = arg.split("=", 1)[0]
        if name in value_options:
            return name, "=" not in arg
        return None, False
    for pos, letter in enumerate(arg[1:], start=1):
        if f"-{letter}" in value_options:
            return f"-{letter}", pos == len(arg) - 1
    return None, False


def _bundles_flag(arg: str, letters: str, value_options: FrozenSet[str]) -> bool:
    """Whether the short option token *arg* sets any of *letters*, e.g. ``-qf`` sets ``f``."""
    if arg.startswith("--") or not _is_option(arg):
        return False
    for letter in arg[1:]:
        if letter in letters:
            return True
        if f"-{letter}" in value_options:
            # the rest of the token is that option's value
            return False
    return False


def _grep_operands(args: Sequence[str]) -> List[str]:
    value_options = FILE_VALUE_OPTIONS["grep"]
    operands: List[str] = []
    pattern_given = False
    options_done = False
    i = 0
    while i < len(args):
        arg = args[i]
        if not options_done and arg == "--":
            options_done = True
        elif not options_done and _is_option(arg):
            # a pattern file would be opened without any path check
            if arg.split("=", 1)[0] == "--file" or _bundles_flag(arg, "f", value_options):
                raise CommandRejectedError("grep pattern files (-f) are not allowed")
            option, takes_next = _option_value(arg, value_options)
            if option in ("-e", "--regexp"):
                pattern_given = True
            if takes_next:
                i += 1
        elif not pattern_given:
            pattern_given = True
        else:
            operands.append(arg)
        i += 1
    return operands


def _find_operands(args: Sequence[str]) -> List[str]:
    operands: List[str] = []
    for arg in args:
        if arg in FIND_LEADING_OPTIONS and not operands:
            continue
        if _is_option(arg):
            # the expression starts here; its values are names and patterns, not paths
            break
        operands.append(arg)
    return operands


def _generic_operands(command: str, args: Sequence[str]) -> List[str]:
    value_options = FILE_VALUE_OPTIONS.get(command, frozenset())
    operands: List[str] = []
    options_done = False
    i = 0
    while i < len(args):
        arg = args[i]
        if not options_done and arg == "--":
            options_done = True
        elif not options_done and _is_option(arg):
            if _option_value(arg, value_options)[1]:
                i += 1
        else:
            operands.append(arg)
        i += 1
    return operands


def file_operands(command: str, args: Sequence[str]) -> List[str]:
    """The arguments *command* will open as files or directories."""
    if command == "grep":
        return _grep_operands(args)
    if command == "find":
        return _find_operands(args)
    return _generic_operands(command, args)


def _file_command_policy(command: str, args: Sequence[str], allowed_dirs: Sequence[str]) -> None:
    # Every operand must be an absolute path inside the allowed directories; a relative one would
    # resolve against the server's working directory
    if not allowed_dirs:
        raise CommandRejectedError("No allowed directories configured for file commands")
    for arg in args:
        if arg.startswith("-") and "/" in arg:
            raise CommandRejectedError(f"Paths must be separate arguments, not part of a flag: {arg}")
    if command == "tail" and any(
        a.split("=", 1)[0] == "--follow" or _bundles_flag(a, "fF", FILE_VALUE_OPTIONS["tail"]) for a in args
    ):
        raise CommandRejectedError("tail --follow never exits and is not allowed")

    paths = file_operands(command, args)
    if not paths:
        raise CommandRejectedError("File commands require an absolute path inside allowed directories")
    for candidate in paths:
        if not os.path.isabs(candidate):
            raise CommandRejectedError(f"Relative paths are not allowed, use an absolute path: {candidate}")
        if not path_allowed(candidate, allowed_dirs):
            raise CommandRejectedError(f"Path outside allowed directories: {candidate}")
        # The spawned process follows symlinks, so the real target must be allowed too
        if os.path.exists(candidate) and not path_allowed(os.path.realpath(candidate), allowed_dirs):
            raise CommandRejectedError(f"Symlink target outside allowed directories: {candidate}")


for _command in FILE_COMMANDS:
    register_policy(_command)(functools.partial(_file_command_policy, _command))


def _find_predicates(args: Sequence[str]) -> None:
    for arg in args:
        if arg in FIND_FORBIDDEN_PREDICATES:
            raise CommandRejectedError(f"find predicate not allowed: {arg}")


def validate_command(command: str, args: Sequence[str], allowed_dirs: Sequence[str] = ()) -> str:
    """
    Check *command* and *args* against the allowlist policy.

    Returns
    -------
    str
        Absolute path of the executable to spawn.

    Raises
    ------
    CommandRejectedError
        If the command is unknown or any argument is outside policy.
    """
    executable = ALLOWED_COMMANDS.get(command)
    if executable is None:
        logger.warning("Rejected command not in allowlist: %r", command)
        raise CommandRejectedError(f"Command not in allowlist: {command}")

    for arg in args:
        if not isinstance(arg, str):
            raise CommandRejectedError(f"Arguments must be strings, got {type(arg).__name__}")
        if SHELL_METACHARACTERS.search(arg):
            logger.warning("Rejected %s argument with shell metacharacters: %r", command, arg)
            raise CommandRejectedError(f"Argument contains forbidden characters: {arg}")

    if command == "find":
        _find_predicates(args)
    policy = _POLICIES.get(command)
    if policy is not None:
        try:
            policy(args, allowed_dirs)
        except CommandRejectedError as exc:
            logger.warning("Rejected %s %s: %s", command, list(args), exc)
            raise
    return executable


def is_command_allowed(command: str) -> bool:
    """Return True if *command* is in the allowlist (arguments not checked)."""
    return command in ALLOWED_COMMANDS


def get_allowed_commands() -> list[str]:
    """Names of all allowlisted commands (for tool descriptions / help)."""
    return list(ALLOWED_COMMANDS)
