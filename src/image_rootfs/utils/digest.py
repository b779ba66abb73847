"""Digest validation and blob path mapping for OCI image layouts."""

import re

from ..exceptions import ValidationError

# Regex pattern for valid digest format (algorithm:hex)
DIGEST_PATTERN = re.compile(r"^[a-z0-9]+:[a-f0-9]+$")

SUPPORTED_ALGORITHMS = ("sha256", "sha512")


def validate_digest(digest: str) -> bool:
    """Validate digest format.

    Args:
        digest: Digest string to validate

    Returns:
        True if valid digest format
    """
    if not isinstance(digest, str):
        return False

    if not DIGEST_PATTERN.match(digest):
        return False

    # Check if algorithm is valid
    algorithm, _ = digest.split(":", 1)
    return algorithm in SUPPORTED_ALGORITHMS


def blob_path_for_digest(digest: str) -> str:
    """Map a digest to its blob path inside an OCI image layout.

    Args:
        digest: Digest string (e.g. "sha256:abc123...")

    Returns:
        Blob path (e.g. "blobs/sha256/abc123...")

    Raises:
        ValidationError: If the digest format is invalid
    """
    if not validate_digest(digest):
        raise ValidationError(f"Invalid digest format: {digest!r}")

    algorithm, encoded = digest.split(":", 1)
    return f"blobs/{algorithm}/{encoded}"


def digest_from_blob_path(path: str) -> str | None:
    """Recover a digest from a blob path, if the path follows the layout."""
    parts = path.strip("/").split("/")
    if len(parts) < 3 or parts[-3] != "blobs":
        return None
    digest = f"{parts[-2]}:{parts[-1]}"
    return digest if validate_digest(digest) else None
