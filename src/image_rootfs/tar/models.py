"""Data models for image archives and layer entries."""

import tarfile
import time
from dataclasses import dataclass, field
from enum import Enum


class ArchiveFormat(str, Enum):
    """Known shapes of an image archive."""

    DOCKER_SAVE = "docker-save"
    OCI_LAYOUT = "oci-layout"


class EntryType(str, Enum):
    """Filesystem node type encoded by a tar header."""

    REGULAR = "regular"
    DIRECTORY = "directory"
    SYMLINK = "symlink"
    HARDLINK = "hardlink"
    CHARDEV = "chardev"
    BLOCKDEV = "blockdev"
    FIFO = "fifo"
    OTHER = "other"


def _entry_type(member: tarfile.TarInfo) -> EntryType:
    if member.isreg():
        return EntryType.REGULAR
    if member.isdir():
        return EntryType.DIRECTORY
    if member.issym():
        return EntryType.SYMLINK
    if member.islnk():
        return EntryType.HARDLINK
    if member.ischr():
        return EntryType.CHARDEV
    if member.isblk():
        return EntryType.BLOCKDEV
    if member.isfifo():
        return EntryType.FIFO
    return EntryType.OTHER


def _pax_time(member: tarfile.TarInfo, key: str) -> float | None:
    value = member.pax_headers.get(key)
    if not value:
        return None
    try:
        return float(value)
    except ValueError:
        return None


@dataclass
class FileEntry:
    """One tar header, as unpacked into a layer directory."""

    path: str  # Normalized, relative to the layer root
    type: EntryType
    mode: int
    uid: int
    gid: int
    size: int
    atime: float
    mtime: float
    linkname: str = ""
    devmajor: int = 0
    devminor: int = 0

    @classmethod
    def from_tarinfo(cls, member: tarfile.TarInfo, path: str) -> "FileEntry":
        """Build an entry from a tar header.

        Zero or missing timestamps default to the current time.
        """
        now = time.time()
        mtime = member.mtime or now
        atime = _pax_time(member, "atime") or now
        return cls(
            path=path,
            type=_entry_type(member),
            mode=member.mode & 0o7777,
            uid=member.uid,
            gid=member.gid,
            size=member.size,
            atime=atime,
            mtime=mtime,
            linkname=member.linkname,
            devmajor=member.devmajor,
            devminor=member.devminor,
        )

    @property
    def is_whiteout(self) -> bool:
        """Check if the entry is a whiteout or opaque marker."""
        return self.path.rsplit("/", 1)[-1].startswith(".wh.")


@dataclass(frozen=True)
class LayerRef:
    """Reference to one layer blob inside an image archive."""

    path: str  # Member path within the image archive
    digest: str | None = None
    media_type: str | None = None
    size: int = 0

    def __str__(self) -> str:
        return self.digest or self.path


@dataclass
class LayerInfo:
    """Layer summary reported by archive inspection."""

    path: str
    digest: str | None
    size: int
    media_type: str | None


@dataclass
class ImageInspect:
    """Summary of an image archive."""

    format: ArchiveFormat
    repo_tags: list[str]
    layers: list[LayerInfo] = field(default_factory=list)

    @property
    def size(self) -> int:
        return sum(layer.size for layer in self.layers)
