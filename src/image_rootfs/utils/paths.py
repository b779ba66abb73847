"""Path normalization and removal helpers for layer and rootfs trees."""

import os
import posixpath
import shutil
import stat
from pathlib import Path

from ..exceptions import ArchiveCorruptError


def normalize_member_name(name: str) -> str | None:
    """Normalize a tar member name to a relative POSIX path.

    Args:
        name: Member name as recorded in the tar header

    Returns:
        Normalized relative path, or None for the archive root itself

    Raises:
        ArchiveCorruptError: If the name points outside the archive root
    """
    normalized = posixpath.normpath(name.lstrip("/"))
    if normalized in ("", "."):
        return None
    if normalized == ".." or normalized.startswith("../"):
        raise ArchiveCorruptError(f"Member path escapes the archive root: {name!r}")
    return normalized


def is_real_dir(path: Path) -> bool:
    """Check if path is a directory and not a symlink to one."""
    try:
        return stat.S_ISDIR(os.lstat(path).st_mode)
    except (FileNotFoundError, NotADirectoryError):
        return False


def remove_path(path: Path) -> bool:
    """Remove a file, symlink or directory tree.

    Returns:
        True if something was removed, False if the path was already absent
    """
    try:
        mode = os.lstat(path).st_mode
    except (FileNotFoundError, NotADirectoryError):
        # Absent, or below a non-directory
        return False

    if stat.S_ISDIR(mode):
        remove_tree(path)
    else:
        try:
            os.unlink(path)
        except FileNotFoundError:
            return False
    return True


def remove_tree(path: Path) -> None:
    """Remove a directory tree, including read-only directories inside it."""
    try:
        shutil.rmtree(path)
    except FileNotFoundError:
        return
    except PermissionError:
        # Unprivileged runs cannot unlink entries of read-only directories
        _make_tree_writable(path)
        shutil.rmtree(path)


def _make_tree_writable(root: Path) -> None:
    os.chmod(root, stat.S_IMODE(os.lstat(root).st_mode) | stat.S_IRWXU)
    for dirpath, dirnames, _ in os.walk(root):
        for name in dirnames:
            child = os.path.join(dirpath, name)
            child_mode = os.lstat(child).st_mode
            if stat.S_ISDIR(child_mode):
                os.chmod(child, stat.S_IMODE(child_mode) | stat.S_IRWXU)
