"""Custom exceptions for image rootfs extraction."""


class RootfsError(Exception):
    """Base exception for all rootfs extraction errors."""

    pass


class ValidationError(RootfsError):
    """Raised when caller input is invalid (missing archive, bad digest)."""

    pass


class ArchiveCorruptError(RootfsError):
    """Raised when a tar stream or manifest JSON is malformed or truncated."""

    pass


class UnsupportedFormatError(RootfsError):
    """Raised when an archive is neither a Docker save nor an OCI layout."""

    pass


class LayerExtractError(RootfsError):
    """Raised when writing a layer into its scratch directory fails."""

    pass


class WalkFailedError(RootfsError):
    """Raised when a layer tree cannot be traversed."""

    pass


class MergeFailedError(RootfsError):
    """Raised when copying a layer into the rootfs fails."""

    pass


class LinkRelocationError(RootfsError):
    """Raised when a symlink target cannot be re-expressed inside the rootfs."""

    pass
