"""Filesystem sandbox utilities for safe path resolution."""

from pathlib import Path, PurePosixPath


class ForbiddenPath(Exception):
    """Raised when a requested path escapes the served directory."""


class SymlinkNotAllowed(Exception):
    """Raised when a request resolves through a symlink and symlinks are off."""


def resolve_sandbox_path(
    directory: Path, user_path: str, allow_symlinks: bool = False
) -> Path:
    """Map a decoded URL path onto a filesystem path under ``directory``.

    With symlinks disabled, a symlinked final component raises
    SymlinkNotAllowed and any target outside ``directory`` raises
    ForbiddenPath. With symlinks enabled the link target is served wherever
    it lives.
    """
    if "\x00" in user_path:
        raise ForbiddenPath

    root = Path(directory).resolve()
    relative_part = user_path.lstrip("/")
    if ".." in PurePosixPath(relative_part).parts:
        raise ForbiddenPath

    candidate = root / relative_part if relative_part else root
    if allow_symlinks:
        return candidate.resolve()

    if candidate.is_symlink():
        raise SymlinkNotAllowed
    target = candidate.resolve()
    if not (target == root or root in target.parents):
        raise ForbiddenPath
    return target
