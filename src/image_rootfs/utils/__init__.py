"""Utility functions for image rootfs extraction."""

from .digest import blob_path_for_digest, validate_digest
from .validator import validate_image_tar

__all__ = ["blob_path_for_digest", "validate_digest", "validate_image_tar"]
