"""Streaming extraction of one layer tar into a scratch directory."""

import logging
import os
import stat
import tarfile
from pathlib import Path
from typing import IO

from ..core.types import LayerContents
from ..exceptions import ArchiveCorruptError, LayerExtractError
from ..tar.models import EntryType, FileEntry
from ..utils.metadata import MetadataApplier
from ..utils.paths import is_real_dir, normalize_member_name, remove_path

logger = logging.getLogger(__name__)

COPY_BUFSIZE = 1024 * 1024
IMPLICIT_DIR_MODE = 0o755

_NODE_TYPES = {
    EntryType.CHARDEV: stat.S_IFCHR,
    EntryType.BLOCKDEV: stat.S_IFBLK,
    EntryType.FIFO: stat.S_IFIFO,
}


def unpack_layer(
    stream: IO[bytes],
    dest: Path,
    *,
    source: str = "<layer>",
    metadata: MetadataApplier | None = None,
) -> LayerContents:
    """Extract a layer tar stream into a directory.

    Entries are materialized strictly in stream order. Symlink targets are
    written exactly as recorded; relocation happens when the layer is merged.
    Compressed streams (gzip, bzip2, xz) are detected transparently.

    Args:
        stream: Binary file object positioned at the start of the layer tar
        dest: Existing, empty scratch directory
        source: Layer identifier used in error messages
        metadata: Best-effort metadata applier collecting degradations

    Returns:
        LayerContents with the entries in stream order and the parent
        directories that had to be created implicitly

    Raises:
        ArchiveCorruptError: If the stream is malformed or truncated, or an
            entry escapes the destination
        LayerExtractError: If writing to the destination fails
    """
    dest = Path(dest)
    metadata = metadata or MetadataApplier()
    contents = LayerContents()
    directories: list[tuple[Path, FileEntry]] = []

    try:
        with tarfile.open(fileobj=stream, mode="r|*") as tar:
            for member in tar:
                path = normalize_member_name(member.name)
                if path is None:
                    continue

                entry = FileEntry.from_tarinfo(member, path)
                _extract_entry(tar, member, entry, dest, contents, directories, metadata)
                contents.entries.append(entry)

            _check_end_of_archive(tar, source)

        # Directory modes last, deepest first, so read-only dirs accept children
        directories.sort(key=lambda item: item[1].path.count("/"), reverse=True)
        for target, entry in directories:
            if not is_real_dir(target):
                # Replaced by a later entry of the same layer
                continue
            metadata.chown(target, entry.uid, entry.gid)
            os.chmod(target, entry.mode)
            metadata.utime(target, entry.atime, entry.mtime)

    except (tarfile.TarError, EOFError) as e:
        raise ArchiveCorruptError(f"Corrupt layer archive {source}: {e}") from e
    except OSError as e:
        raise LayerExtractError(
            f"Failed to extract layer {source} into {dest}: {e}"
        ) from e

    logger.debug(
        "Unpacked %d entries from %s (%d whiteout markers, %d implicit directories)",
        len(contents.entries),
        source,
        sum(1 for entry in contents.entries if entry.is_whiteout),
        len(contents.implicit_dirs),
    )
    return contents


def _extract_entry(
    tar: tarfile.TarFile,
    member: tarfile.TarInfo,
    entry: FileEntry,
    dest: Path,
    contents: LayerContents,
    directories: list[tuple[Path, FileEntry]],
    metadata: MetadataApplier,
) -> None:
    target = dest / entry.path
    _ensure_parents(dest, entry.path, contents.implicit_dirs)

    if entry.type is EntryType.DIRECTORY:
        if not is_real_dir(target):
            remove_path(target)
            os.mkdir(target, IMPLICIT_DIR_MODE)
        contents.implicit_dirs.discard(entry.path)
        directories.append((target, entry))
        return

    if entry.type is EntryType.REGULAR:
        remove_path(target)
        fileobj = tar.extractfile(member)
        if fileobj is None:
            raise ArchiveCorruptError(f"No data for regular file {entry.path}")
        with fileobj, open(target, "wb") as out:
            _copy_exact(fileobj, out, entry.size, entry.path)
        _apply_metadata(target, entry, metadata)
        return

    if entry.type is EntryType.SYMLINK:
        if not entry.linkname:
            raise ArchiveCorruptError(f"Symlink {entry.path} has an empty target")
        remove_path(target)
        os.symlink(entry.linkname, target)
        _apply_metadata(target, entry, metadata, chmod=False)
        return

    if entry.type is EntryType.HARDLINK:
        _extract_hardlink(entry, target, dest)
        _apply_metadata(target, entry, metadata, chmod=False)
        return

    if entry.type in _NODE_TYPES:
        remove_path(target)
        device = os.makedev(entry.devmajor, entry.devminor)
        if metadata.mknod(target, _NODE_TYPES[entry.type] | entry.mode, device):
            _apply_metadata(target, entry, metadata)
        return

    logger.debug("Skipping unsupported entry %s (type %r)", entry.path, member.type)


def _extract_hardlink(entry: FileEntry, target: Path, dest: Path) -> None:
    link_path = normalize_member_name(entry.linkname)
    if link_path is None:
        raise ArchiveCorruptError(f"Hardlink {entry.path} has no target")

    source = dest / link_path
    if not os.path.lexists(source):
        raise ArchiveCorruptError(
            f"Hardlink {entry.path} refers to {entry.linkname}, "
            "which does not precede it in the layer"
        )
    if link_path == entry.path:
        return

    remove_path(target)
    os.link(source, target, follow_symlinks=False)


def _ensure_parents(dest: Path, relpath: str, implicit_dirs: set[str]) -> None:
    parts = relpath.split("/")[:-1]
    current = dest
    for depth, part in enumerate(parts):
        current = current / part
        try:
            mode = os.lstat(current).st_mode
        except FileNotFoundError:
            os.mkdir(current)
            os.chmod(current, IMPLICIT_DIR_MODE)
            implicit_dirs.add("/".join(parts[: depth + 1]))
            continue

        if not stat.S_ISDIR(mode):
            raise ArchiveCorruptError(
                f"Cannot extract {relpath}: {'/'.join(parts[: depth + 1])} "
                "is not a directory"
            )


def _copy_exact(src: IO[bytes], dst: IO[bytes], size: int, name: str) -> None:
    remaining = size
    while remaining > 0:
        chunk = src.read(min(COPY_BUFSIZE, remaining))
        if not chunk:
            raise ArchiveCorruptError(
                f"Unexpected end of data in {name}: "
                f"{size - remaining} of {size} bytes"
            )
        dst.write(chunk)
        remaining -= len(chunk)


def _apply_metadata(
    target: Path, entry: FileEntry, metadata: MetadataApplier, chmod: bool = True
) -> None:
    # chown before chmod: changing owner clears setuid/setgid bits
    metadata.chown(target, entry.uid, entry.gid)
    if chmod:
        os.chmod(target, entry.mode)
    metadata.utime(target, entry.atime, entry.mtime)


def _check_end_of_archive(tar: tarfile.TarFile, source: str) -> None:
    # tarfile stops silently on a partial trailing header; the stream position
    # then sits strictly inside (or before) the header block it tried to read
    tell = getattr(tar.fileobj, "tell", None)
    if tell is None:
        return
    overrun = tell() - tar.offset
    if overrun < 0 or 0 < overrun < tarfile.BLOCKSIZE:
        raise ArchiveCorruptError(f"Layer archive {source} is truncated")
