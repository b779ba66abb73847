"""Tests for digest validation and blob path mapping."""

import pytest

from image_rootfs.exceptions import ValidationError
from image_rootfs.utils.digest import (
    blob_path_for_digest,
    digest_from_blob_path,
    validate_digest,
)

SHA256_HEX = "a" * 64


def test_validate_digest():
    """Test digest format validation."""
    assert validate_digest(f"sha256:{SHA256_HEX}") is True
    assert validate_digest(f"sha512:{'b' * 128}") is True
    assert validate_digest(f"md5:{SHA256_HEX}") is False
    assert validate_digest(f"sha256:{SHA256_HEX.upper()}") is False
    assert validate_digest(SHA256_HEX) is False
    assert validate_digest("") is False
    assert validate_digest(None) is False


def test_blob_path_for_digest():
    """Test digests map to blob paths."""
    assert blob_path_for_digest(f"sha256:{SHA256_HEX}") == f"blobs/sha256/{SHA256_HEX}"


@pytest.mark.parametrize("digest", ["", "sha256:", "sha256:../../etc", "latest"])
def test_blob_path_for_invalid_digest(digest):
    """Test invalid digests cannot be turned into paths."""
    with pytest.raises(ValidationError):
        blob_path_for_digest(digest)


def test_digest_from_blob_path():
    """Test digests are recovered from blob paths."""
    assert digest_from_blob_path(f"blobs/sha256/{SHA256_HEX}") == f"sha256:{SHA256_HEX}"
    assert digest_from_blob_path(f"/blobs/sha256/{SHA256_HEX}") == f"sha256:{SHA256_HEX}"
    assert digest_from_blob_path("abc123/layer.tar") is None
    assert digest_from_blob_path("blobs/md5/abc") is None
