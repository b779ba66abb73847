"""Image archive inspection utilities."""

from pathlib import Path

from ..tar.models import ImageInspect, LayerInfo
from ..tar.reader import ImageArchive


def inspect_image_tar(tar_path: Path) -> ImageInspect:
    """
    Inspect an image archive and summarize its layers.

    Args:
        tar_path: Path to a Docker save or OCI layout tarball

    Returns:
        ImageInspect with the format, tags and ordered layers

    Raises:
        ValidationError: If the archive does not exist
        UnsupportedFormatError: If the archive shape is unknown
        ArchiveCorruptError: If manifests are malformed
    """
    with ImageArchive(tar_path) as archive:
        layers = [
            LayerInfo(
                path=ref.path,
                digest=ref.digest,
                size=ref.size,
                media_type=ref.media_type,
            )
            for ref in archive.layers()
        ]
        return ImageInspect(
            format=archive.format,
            repo_tags=archive.repo_tags(),
            layers=layers,
        )
