"""Best-effort metadata operations.

Ownership changes, timestamp changes and device node creation routinely fail
when extracting as an unprivileged user or onto filesystems that do not
support them. Such failures never abort an extraction; they are recorded as
Degradation entries so callers and tests can tell a degraded run from a
clean one.
"""

import logging
import os
import stat
from pathlib import Path

from ..core.types import Degradation

logger = logging.getLogger(__name__)


class MetadataApplier:
    """Applies best-effort metadata and records what could not be applied."""

    def __init__(self, preserve_ownership: bool = True) -> None:
        """Initialize the applier.

        Args:
            preserve_ownership: Apply uid/gid from the source; when False,
                ownership is left to the extracting process
        """
        self.preserve_ownership = preserve_ownership
        self.degraded: list[Degradation] = []

    def chown(self, path: Path, uid: int, gid: int) -> bool:
        """Set ownership without following symlinks."""
        if not self.preserve_ownership:
            return True
        try:
            os.lchown(path, uid, gid)
        except OSError as e:
            self._degrade(path, "chown", e)
            return False
        return True

    def utime(self, path: Path, atime: float, mtime: float) -> bool:
        """Set access and modification times without following symlinks."""
        try:
            os.utime(path, (atime, mtime), follow_symlinks=False)
        except (OSError, NotImplementedError) as e:
            self._degrade(path, "utime", e)
            return False
        return True

    def mknod(self, path: Path, mode: int, device: int = 0) -> bool:
        """Create a device or FIFO node.

        Args:
            path: Node to create
            mode: File type and permission bits (e.g. stat.S_IFCHR | 0o666)
            device: Device number from os.makedev, ignored for FIFOs

        Returns:
            True if the node was created
        """
        try:
            if stat.S_ISFIFO(mode):
                os.mkfifo(path, stat.S_IMODE(mode))
            else:
                os.mknod(path, mode, device)
        except OSError as e:
            self._degrade(path, "mknod", e)
            return False
        return True

    def _degrade(self, path: Path, operation: str, error: BaseException) -> None:
        reason = getattr(error, "strerror", None) or str(error)
        logger.debug("Skipping %s on %s: %s", operation, path, reason)
        self.degraded.append(
            Degradation(path=str(path), operation=operation, reason=reason)
        )
