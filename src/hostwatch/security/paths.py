"""
Filesystem confinement for tools that touch the disk.

Every file tool must call :func:`path_allowed` and then :func:`validate_real_path`, in that order,
and must use the *resolved* path returned by the latter for everything that follows (extension
check, size check, read).  The first check works on the logical path; the second catches a symlink
planted inside an allowed directory that points outside of it.
"""

import logging
import os
from typing import (
    Iterable,
    Sequence,
)

logger = logging.getLogger(__name__)


class AccessDeniedError(RuntimeError):
    """Raised when a path or file fails one of the confinement gates."""


# Text-like formats only.  Real ``.env`` files are excluded on purpose; ``.env.example`` is not.
SAFE_TEXT_EXTENSIONS = frozenset(
    {
        ".txt", ".md", ".json", ".yaml", ".yml", ".toml", ".ini", ".cfg", ".conf",
        ".sh", ".bash", ".zsh", ".fish",
        ".ts", ".js", ".py", ".rb", ".go", ".rs", ".java", ".c", ".cpp", ".h",
        ".html", ".css", ".xml", ".svg",
        ".log", ".service", ".timer",
    }
)
SAFE_DOTFILES = frozenset({".gitignore", ".dockerignore", ".editorconfig", ".env.example"})
SAFE_BARE_NAMES = frozenset({"dockerfile", "makefile", "readme", "license", "changelog"})


def _is_within(path: str, directory: str) -> bool:
    if path == directory:
        return True
    # Compare on component boundaries: /home/user must not match /home/username
    prefix = directory if directory.endswith(os.sep) else directory + os.sep
    return path.startswith(prefix)


def path_allowed(path: str, allowed_dirs: Iterable[str]) -> bool:
    """
    Return True iff *path* is one of *allowed_dirs* or lies below one of them.

    The path is made absolute and normalised (``..`` collapsed) but symlinks are NOT followed.
    An empty allow-list allows nothing.
    """
    if not path:
        return False
    normalized = os.path.abspath(path)
    return any(_is_within(normalized, os.path.abspath(d)) for d in allowed_dirs if d)


def validate_real_path(path: str, allowed_dirs: Sequence[str]) -> str:
    """
    Resolve symlinks in *path* and re-apply :func:`path_allowed` to the real target.

    Returns
    -------
    str
        The resolved path; callers must use it instead of *path* from here on.

    Raises
    ------
    AccessDeniedError
        If the path does not exist or its real target is outside *allowed_dirs*.
    """
    if not os.path.lexists(path):
        raise AccessDeniedError("Path does not exist")
    real_path = os.path.realpath(path)
    if not os.path.exists(real_path):
        raise AccessDeniedError("Path does not exist")
    # an allowed directory may itself be a symlink (e.g. /tmp -> /private/tmp)
    real_dirs = [os.path.realpath(d) for d in allowed_dirs if d]
    if not (path_allowed(real_path, allowed_dirs) or path_allowed(real_path, real_dirs)):
        logger.warning("Symlink escape blocked: %s -> %s", path, real_path)
        raise AccessDeniedError("Symlink target is outside allowed directories")
    return real_path


def is_safe_extension(path: str) -> bool:
    """Return True if *path* names a text-like file the tools may read."""
    basename = os.path.basename(path).lower()
    if basename in SAFE_DOTFILES or basename in SAFE_BARE_NAMES:
        return True
    if basename == ".env" or basename.startswith(".env."):
        return False
    _, ext = os.path.splitext(basename)
    return ext in SAFE_TEXT_EXTENSIONS


def contains_binary(data: bytes) -> bool:
    """A null byte anywhere in the buffer marks the content as binary."""
    return b"\x00" in data
