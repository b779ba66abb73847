"""Image Rootfs - build a root filesystem from Docker save and OCI image tarballs."""

__version__ = "0.1.0"

from .core.types import Degradation, LayerReport, UnpackConfig, UnpackReport
from .core.unpacker import ImageUnpacker, unpack_layers
from .exceptions import (
    ArchiveCorruptError,
    LayerExtractError,
    LinkRelocationError,
    MergeFailedError,
    RootfsError,
    UnsupportedFormatError,
    ValidationError,
    WalkFailedError,
)
from .operations.links import relocate_link
from .rootfs import extract_rootfs, extract_rootfs_async
from .tar.reader import ImageArchive
from .utils.inspect import inspect_image_tar
from .utils.validator import validate_image_tar

__all__ = [
    # Extraction
    "extract_rootfs",
    "extract_rootfs_async",
    "unpack_layers",
    "ImageUnpacker",
    "ImageArchive",
    "relocate_link",
    # Inspection
    "inspect_image_tar",
    "validate_image_tar",
    # Types
    "UnpackConfig",
    "UnpackReport",
    "LayerReport",
    "Degradation",
    # Errors
    "RootfsError",
    "ValidationError",
    "ArchiveCorruptError",
    "UnsupportedFormatError",
    "LayerExtractError",
    "WalkFailedError",
    "MergeFailedError",
    "LinkRelocationError",
]
