"""Whiteout resolution against the accumulated rootfs.

Whiteouts are files with a special meaning for a layered filesystem. They
delete content contributed by earlier layers and are never merged:

.wh.NAME      : NAME in the same directory is deleted
.wh..wh..opq  : every pre-existing entry of the containing directory is
                deleted before this layer's own entries are merged
.wh..wh.*     : other aufs metadata markers, dropped without effect
"""

import logging
import os
import posixpath
import stat
from pathlib import Path

from ..core.types import WhiteoutSummary
from ..exceptions import ArchiveCorruptError, MergeFailedError
from ..utils.paths import is_real_dir, remove_path
from ..utils.walk import WalkEntry, walk_tree

logger = logging.getLogger(__name__)

PREFIX = ".wh."
METAPREFIX = PREFIX + PREFIX
OPAQUE = METAPREFIX + ".opq"


def is_whiteout_name(name: str) -> bool:
    """Check if a base name is any kind of whiteout marker."""
    return name.startswith(PREFIX)


def resolve_whiteouts(layer_dir: Path, rootfs: Path) -> WhiteoutSummary:
    """Apply a layer's whiteouts to the rootfs and strip them from the layer.

    All markers are collected before any change is made. Opaque directories
    are cleared first, then explicit whiteouts are applied, so an explicit
    whiteout inside an opaque directory of the same layer is a no-op rather
    than an order-dependent deletion.

    Args:
        layer_dir: Unpacked scratch tree of the current layer
        rootfs: Rootfs holding the result of all previous layers

    Returns:
        WhiteoutSummary with the number of markers of each kind consumed

    Raises:
        WalkFailedError: If the layer tree cannot be traversed
        MergeFailedError: If a rootfs path cannot be removed
        ArchiveCorruptError: If a marker names a path outside its directory
    """
    layer_dir = Path(layer_dir)
    rootfs = Path(rootfs)

    opaque: list[WalkEntry] = []
    explicit: list[WalkEntry] = []
    meta: list[WalkEntry] = []
    for entry in walk_tree(layer_dir):
        if entry.name == OPAQUE:
            opaque.append(entry)
        elif entry.name.startswith(METAPREFIX):
            meta.append(entry)
        elif is_whiteout_name(entry.name):
            explicit.append(entry)

    for entry in opaque:
        directory = posixpath.dirname(entry.relpath)
        if directory:
            parent, name = posixpath.split(directory)
            _clear_directory(_resolve_parent(rootfs, parent) / name)
        else:
            _clear_directory(_resolve_parent(rootfs, ""))
        _drop_marker(entry)

    for entry in explicit:
        hidden = entry.name[len(PREFIX):]
        if hidden in ("", ".", "..") or "/" in hidden:
            raise ArchiveCorruptError(f"Invalid whiteout marker: {entry.relpath}")
        parent = posixpath.dirname(entry.relpath)
        _remove(_resolve_parent(rootfs, parent) / hidden)
        _drop_marker(entry)

    for entry in meta:
        logger.debug("Dropping whiteout metadata marker %s", entry.relpath)
        _drop_marker(entry)

    return WhiteoutSummary(
        whiteouts=len(explicit), opaque_dirs=len(opaque), meta_markers=len(meta)
    )


def _resolve_parent(rootfs: Path, parent: str) -> Path:
    # Directory symlinks of earlier layers are followed only inside the rootfs
    real_root = os.path.realpath(rootfs)
    resolved = os.path.realpath(os.path.join(real_root, parent)) if parent else real_root
    if os.path.commonpath([real_root, resolved]) != real_root:
        raise MergeFailedError(
            f"Whiteout parent {rootfs / parent} leads outside the rootfs: {resolved}"
        )
    return Path(resolved)


def _clear_directory(directory: Path) -> None:
    if not is_real_dir(directory):
        return
    try:
        names = sorted(os.listdir(directory))
    except OSError as e:
        raise MergeFailedError(f"Failed to list opaque directory {directory}: {e}") from e

    logger.debug("Clearing opaque directory %s (%d entries)", directory, len(names))
    for name in names:
        _remove(directory / name)


def _remove(target: Path) -> None:
    try:
        if remove_path(target):
            logger.debug("Whiteout removed %s", target)
    except OSError as e:
        raise MergeFailedError(f"Failed to remove whiteout target {target}: {e}") from e


def _drop_marker(entry: WalkEntry) -> None:
    # Keep the scratch directory's times: the merge copies them to the rootfs
    parent = entry.path.parent
    try:
        parent_stat = os.lstat(parent)
        parent_mode = stat.S_IMODE(parent_stat.st_mode)
        try:
            remove_path(entry.path)
        except PermissionError:
            # Read-only layer directory, unprivileged run
            os.chmod(parent, parent_mode | stat.S_IWUSR | stat.S_IXUSR)
            remove_path(entry.path)
            os.chmod(parent, parent_mode)
        os.utime(parent, ns=(parent_stat.st_atime_ns, parent_stat.st_mtime_ns))
    except OSError as e:
        raise MergeFailedError(f"Failed to drop whiteout marker {entry.path}: {e}") from e
