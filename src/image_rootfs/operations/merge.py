"""Merging a whiteout-resolved layer tree into the rootfs."""

import logging
import os
import shutil
import stat
import time
from pathlib import Path

from ..exceptions import MergeFailedError
from ..utils.metadata import MetadataApplier
from ..utils.paths import is_real_dir, remove_path
from ..utils.walk import WalkEntry, walk_tree
from .links import relocate_link

logger = logging.getLogger(__name__)

COPY_BUFSIZE = 1024 * 1024


def merge_layer(
    layer_dir: Path,
    rootfs: Path,
    *,
    relocate_links: bool = True,
    implicit_dirs: set[str] | frozenset[str] = frozenset(),
    metadata: MetadataApplier | None = None,
) -> int:
    """Copy every entry of a resolved layer tree into the rootfs.

    Existing rootfs nodes at the same path are replaced. Regular files are
    never written through an existing node, so files hardlinked by earlier
    layers are left untouched. Files hardlinked together within the layer
    stay hardlinked in the rootfs.

    Args:
        layer_dir: Scratch tree with whiteouts already resolved
        rootfs: Rootfs to merge into
        relocate_links: Rewrite symlink targets to stay inside the rootfs;
            when False targets are copied verbatim
        implicit_dirs: Layer directories that had no entry of their own;
            an existing rootfs directory at such a path keeps its metadata
        metadata: Best-effort metadata applier collecting degradations

    Returns:
        Number of entries merged

    Raises:
        MergeFailedError: If a rootfs node cannot be created or replaced
        WalkFailedError: If the layer tree cannot be traversed
        LinkRelocationError: If a symlink target cannot be relocated
    """
    layer_dir = Path(layer_dir)
    rootfs = Path(rootfs)
    metadata = metadata or MetadataApplier()

    directories: list[tuple[Path, WalkEntry]] = []
    linked: dict[tuple[int, int], Path] = {}
    merged = 0

    try:
        for entry in walk_tree(layer_dir):
            dst = rootfs / entry.relpath
            if entry.is_dir:
                if entry.relpath in implicit_dirs:
                    _merge_implicit_directory(entry, dst, rootfs)
                else:
                    _merge_directory(dst)
                    directories.append((dst, entry))
            elif entry.is_symlink:
                _merge_symlink(entry, dst, rootfs, relocate_links, metadata)
            elif entry.is_file:
                _merge_file(entry, dst, linked, metadata)
            else:
                _merge_special(entry, dst, metadata)
            merged += 1

        # Directory metadata last, deepest first
        directories.sort(key=lambda item: item[1].relpath.count("/"), reverse=True)
        for dst, entry in directories:
            metadata.chown(dst, entry.stat.st_uid, entry.stat.st_gid)
            os.chmod(dst, stat.S_IMODE(entry.stat.st_mode))
            metadata.utime(dst, entry.stat.st_atime, entry.stat.st_mtime)

    except OSError as e:
        raise MergeFailedError(f"Failed to merge {layer_dir} into {rootfs}: {e}") from e

    return merged


def _merge_directory(dst: Path) -> None:
    if is_real_dir(dst):
        return
    remove_path(dst)
    os.mkdir(dst)


def _merge_implicit_directory(entry: WalkEntry, dst: Path, rootfs: Path) -> None:
    if os.path.islink(dst) and os.path.isdir(dst):
        # Layer writes through a directory symlink of an earlier layer
        real_root = os.path.realpath(rootfs)
        real_dst = os.path.realpath(dst)
        if os.path.commonpath([real_root, real_dst]) != real_root:
            raise MergeFailedError(
                f"Directory symlink {dst} leads outside the rootfs: {real_dst}"
            )
        return
    if is_real_dir(dst):
        return

    remove_path(dst)
    os.mkdir(dst)
    os.chmod(dst, stat.S_IMODE(entry.stat.st_mode))


def _merge_symlink(
    entry: WalkEntry,
    dst: Path,
    rootfs: Path,
    relocate_links: bool,
    metadata: MetadataApplier,
) -> None:
    target = os.readlink(entry.path)
    if relocate_links:
        target = relocate_link(rootfs, dst, target)

    remove_path(dst)
    os.symlink(target, dst)
    metadata.chown(dst, entry.stat.st_uid, entry.stat.st_gid)
    metadata.utime(dst, entry.stat.st_atime, entry.stat.st_mtime)


def _merge_file(
    entry: WalkEntry,
    dst: Path,
    linked: dict[tuple[int, int], Path],
    metadata: MetadataApplier,
) -> None:
    remove_path(dst)

    if entry.stat.st_nlink > 1:
        key = (entry.stat.st_dev, entry.stat.st_ino)
        first = linked.get(key)
        if first is not None:
            os.link(first, dst)
            return
        linked[key] = dst

    with open(entry.path, "rb") as src, open(dst, "wb") as out:
        shutil.copyfileobj(src, out, COPY_BUFSIZE)

    metadata.chown(dst, entry.stat.st_uid, entry.stat.st_gid)
    os.chmod(dst, stat.S_IMODE(entry.stat.st_mode))
    metadata.utime(dst, time.time(), entry.stat.st_mtime)


def _merge_special(entry: WalkEntry, dst: Path, metadata: MetadataApplier) -> None:
    remove_path(dst)
    if not metadata.mknod(dst, entry.stat.st_mode, entry.stat.st_rdev):
        return
    metadata.chown(dst, entry.stat.st_uid, entry.stat.st_gid)
    os.chmod(dst, stat.S_IMODE(entry.stat.st_mode))
    metadata.utime(dst, entry.stat.st_atime, entry.stat.st_mtime)
