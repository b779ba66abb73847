"""Tests for image archive inspection."""

import pytest

from image_rootfs import inspect_image_tar
from image_rootfs.exceptions import UnsupportedFormatError, ValidationError
from image_rootfs.tar.models import ArchiveFormat
from tests.helpers import build_docker_image, build_layer, build_oci_image, file_entry, sha256


@pytest.fixture
def layer_blobs():
    """Two layer blobs of different sizes."""
    return [
        build_layer([file_entry("bin/busybox", b"\x7fELF" * 512)]),
        build_layer([file_entry("etc/hostname", b"box\n")]),
    ]


def test_inspect_docker_save(tmp_path, layer_blobs):
    """Test inspection of a Docker save tarball."""
    tar_path = build_docker_image(tmp_path / "image.tar", layer_blobs, ["busybox:latest"])

    info = inspect_image_tar(tar_path)

    assert info.format is ArchiveFormat.DOCKER_SAVE
    assert info.repo_tags == ["busybox:latest"]
    assert [layer.digest for layer in info.layers] == [sha256(blob) for blob in layer_blobs]
    assert info.size == sum(len(blob) for blob in layer_blobs)


def test_inspect_oci_layout(tmp_path, layer_blobs):
    """Test inspection of an OCI layout tarball."""
    tar_path = build_oci_image(tmp_path / "image.tar", layer_blobs, ref_name="stable")

    info = inspect_image_tar(tar_path)

    assert info.format is ArchiveFormat.OCI_LAYOUT
    assert info.repo_tags == ["stable"]
    assert [layer.size for layer in info.layers] == [len(blob) for blob in layer_blobs]
    assert all(layer.media_type.startswith("application/vnd.oci") for layer in info.layers)


def test_inspect_unsupported(tmp_path):
    """Test inspection of an archive that is not an image."""
    import tarfile

    tar_path = tmp_path / "plain.tar"
    with tarfile.open(tar_path, "w"):
        pass

    with pytest.raises(UnsupportedFormatError):
        inspect_image_tar(tar_path)


def test_inspect_missing_file(tmp_path):
    """Test inspection of a file that does not exist."""
    with pytest.raises(ValidationError):
        inspect_image_tar(tmp_path / "missing.tar")
