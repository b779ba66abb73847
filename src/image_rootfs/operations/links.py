"""Symlink target relocation into the rootfs namespace."""

import os
import posixpath
from pathlib import Path

from ..exceptions import LinkRelocationError


def relocate_link(rootfs: Path, link_path: Path, target: str) -> str:
    """Re-express a symlink target relative to the link inside the rootfs.

    The target is resolved the way it would be inside a container whose
    root is ``rootfs``: absolute targets are anchored at the image root,
    relative ones at the link's directory, and ``..`` never climbs above the
    image root. The result is always relative to the link's own directory,
    so the link keeps working wherever the rootfs is later moved and can
    never point outside it.

    Args:
        rootfs: Root of the merged filesystem
        link_path: Path the symlink occupies below rootfs
        target: Target string as recorded in the layer

    Returns:
        Relative target string (unchanged if empty)

    Raises:
        LinkRelocationError: If link_path is not below rootfs or no relative
            path can be computed

    Examples:
        relocate_link(Path("/r"), Path("/r/usr/bin/vi"), "/bin/vim")
        # "../../bin/vim"

        relocate_link(Path("/r"), Path("/r/lib"), "../../usr/lib")
        # "usr/lib"
    """
    if not target:
        return target

    root = os.path.abspath(rootfs)
    link_dir = os.path.dirname(os.path.abspath(link_path))

    try:
        link_dir_rel = os.path.relpath(link_dir, root)
    except ValueError as e:
        raise LinkRelocationError(
            f"Cannot relate link {link_path} to rootfs {rootfs}: {e}"
        ) from e
    if link_dir_rel == ".." or link_dir_rel.startswith("../"):
        raise LinkRelocationError(f"Link {link_path} is outside rootfs {rootfs}")

    # Resolve inside the image namespace, where "/" is the rootfs
    image_dir = "/" if link_dir_rel == "." else "/" + link_dir_rel
    resolved = posixpath.normpath(posixpath.join(image_dir, target))
    anchored = os.path.join(root, resolved.lstrip("/"))

    try:
        relocated = os.path.relpath(anchored, link_dir)
    except ValueError as e:
        raise LinkRelocationError(
            f"Cannot compute relative target for {link_path} -> {target}: {e}"
        ) from e
    return relocated
