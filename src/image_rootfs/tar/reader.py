"""Image archive reader: format detection and ordered layer resolution."""

import json
import logging
import tarfile
from pathlib import Path
from typing import IO, Any, Iterator

from ..exceptions import (
    ArchiveCorruptError,
    UnsupportedFormatError,
    ValidationError,
)
from ..utils.digest import blob_path_for_digest, digest_from_blob_path
from ..utils.paths import normalize_member_name
from ..utils.validator import (
    DOCKER_MANIFEST,
    OCI_INDEX,
    are_layers_valid,
    detect_archive_format,
    get_tar_members,
)
from .models import ArchiveFormat, LayerRef

logger = logging.getLogger(__name__)

OCI_REF_NAME = "org.opencontainers.image.ref.name"
MAX_INDEX_DEPTH = 8


class ImageArchive:
    """Reader for Docker save and OCI image layout tarballs."""

    def __init__(self, tar_path: str | Path) -> None:
        """Initialize archive reader.

        Args:
            tar_path: Path to the image tarball

        Raises:
            ValidationError: If the file does not exist
        """
        self.tar_path = Path(tar_path)
        if not self.tar_path.is_file():
            raise ValidationError(f"Image archive not found: {tar_path}")
        self._tar_file: tarfile.TarFile | None = None
        self._members: dict[str, tarfile.TarInfo] = {}
        self._format: ArchiveFormat | None = None

    def __enter__(self) -> "ImageArchive":
        """Enter context manager."""
        self.open()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        """Exit context manager."""
        self.close()

    def open(self) -> None:
        """Open the tarball and index its members.

        Raises:
            ArchiveCorruptError: If the file is not a readable tar archive
        """
        try:
            self._tar_file = tarfile.open(self.tar_path, "r:*")
            self._members = get_tar_members(self._tar_file)
        except (tarfile.TarError, EOFError) as e:
            self.close()
            raise ArchiveCorruptError(
                f"Cannot read image archive {self.tar_path}: {e}"
            ) from e
        except OSError as e:
            self.close()
            raise ValidationError(f"Cannot open image archive {self.tar_path}: {e}") from e

    def close(self) -> None:
        """Close the tarball."""
        if self._tar_file:
            self._tar_file.close()
            self._tar_file = None

    @property
    def format(self) -> ArchiveFormat:
        """Detected archive format.

        Raises:
            UnsupportedFormatError: If the archive has neither a Docker
                manifest.json nor an OCI layout
        """
        if self._format is None:
            archive_format = detect_archive_format(self._members)
            if archive_format is None:
                raise UnsupportedFormatError(
                    f"Unrecognized archive format (not Docker save or OCI layout): "
                    f"{self.tar_path}"
                )
            self._format = archive_format
        return self._format

    def layers(self) -> list[LayerRef]:
        """Resolve the ordered layer list, bottom-most layer first.

        Returns:
            List of LayerRef, every one present in the archive

        Raises:
            UnsupportedFormatError: If the format is unknown or a layer uses
                an unsupported compression
            ArchiveCorruptError: If manifests are malformed or reference
                missing blobs
        """
        if self.format is ArchiveFormat.DOCKER_SAVE:
            refs = self._docker_layers()
        else:
            refs = self._oci_layers()

        for ref in refs:
            if ref.path not in self._members:
                raise ArchiveCorruptError(f"Layer {ref.path} not found in archive")

        logger.debug("Resolved %d layers from %s", len(refs), self.tar_path)
        return refs

    def repo_tags(self) -> list[str]:
        """Get the image's repository tags, if recorded."""
        if self.format is ArchiveFormat.DOCKER_SAVE:
            tags = self._docker_manifest_entry().get("RepoTags") or []
            return [tag for tag in tags if isinstance(tag, str)]

        descriptor = self._oci_index_descriptor()
        annotations = descriptor.get("annotations") or {}
        ref_name = annotations.get(OCI_REF_NAME)
        return [ref_name] if isinstance(ref_name, str) else []

    def open_layer(self, ref: LayerRef) -> IO[bytes]:
        """Open a layer blob for reading.

        Raises:
            ArchiveCorruptError: If the blob is missing or not a regular file
        """
        member = self._members.get(ref.path)
        fileobj = self._require_tar().extractfile(member) if member else None
        if fileobj is None:
            raise ArchiveCorruptError(f"Cannot read layer {ref.path}")
        return fileobj

    def iter_layer_streams(self) -> Iterator[tuple[str, IO[bytes]]]:
        """Yield (identifier, stream) for each layer, opening one at a time."""
        for ref in self.layers():
            with self.open_layer(ref) as stream:
                yield str(ref), stream

    def _docker_layers(self) -> list[LayerRef]:
        entry = self._docker_manifest_entry()
        layer_paths = entry.get("Layers")
        if not are_layers_valid(layer_paths):
            raise ArchiveCorruptError("manifest.json Layers must be a list of paths")

        layer_sources = entry.get("LayerSources") or {}
        refs = []
        for layer_path in layer_paths:
            path = normalize_member_name(layer_path)
            if path is None:
                raise ArchiveCorruptError(f"Invalid layer path in manifest.json: {layer_path!r}")

            digest = digest_from_blob_path(path)
            source = layer_sources.get(digest, {}) if digest else {}
            member = self._members.get(path)
            refs.append(
                LayerRef(
                    path=path,
                    digest=digest,
                    media_type=source.get("mediaType"),
                    size=member.size if member else 0,
                )
            )
        return refs

    def _oci_layers(self) -> list[LayerRef]:
        manifest = self._read_blob(self._oci_index_descriptor())

        # Follow nested indexes (multi-platform images) to their first manifest
        depth = 0
        while "layers" not in manifest and isinstance(manifest.get("manifests"), list):
            depth += 1
            if depth > MAX_INDEX_DEPTH or not manifest["manifests"]:
                raise ArchiveCorruptError("No image manifest reachable from index.json")
            manifest = self._read_blob(manifest["manifests"][0])

        layers = manifest.get("layers")
        if not isinstance(layers, list):
            raise ArchiveCorruptError("Image manifest has no layers list")

        refs = []
        for descriptor in layers:
            if not isinstance(descriptor, dict):
                raise ArchiveCorruptError(f"Invalid layer descriptor: {descriptor!r}")

            digest = descriptor.get("digest", "")
            media_type = descriptor.get("mediaType")
            if media_type and media_type.endswith("+zstd"):
                raise UnsupportedFormatError(
                    f"Layer {digest} uses unsupported compression: {media_type}"
                )
            refs.append(
                LayerRef(
                    path=self._blob_path(digest),
                    digest=digest,
                    media_type=media_type,
                    size=descriptor.get("size", 0),
                )
            )
        return refs

    def _docker_manifest_entry(self) -> dict[str, Any]:
        manifest_data = self._read_json(DOCKER_MANIFEST)
        if not isinstance(manifest_data, list) or not manifest_data:
            raise ArchiveCorruptError("manifest.json must be a non-empty array")

        # Use first manifest entry
        entry = manifest_data[0]
        if not isinstance(entry, dict):
            raise ArchiveCorruptError("Invalid manifest entry structure")
        return entry

    def _oci_index_descriptor(self) -> dict[str, Any]:
        index = self._read_json(OCI_INDEX)
        manifests = index.get("manifests") if isinstance(index, dict) else None
        if not isinstance(manifests, list) or not manifests:
            raise ArchiveCorruptError("No manifests in index.json")

        descriptor = manifests[0]
        if not isinstance(descriptor, dict):
            raise ArchiveCorruptError("Invalid manifest descriptor in index.json")
        return descriptor

    def _read_blob(self, descriptor: Any) -> dict[str, Any]:
        if not isinstance(descriptor, dict):
            raise ArchiveCorruptError(f"Invalid descriptor: {descriptor!r}")
        data = self._read_json(self._blob_path(descriptor.get("digest", "")))
        if not isinstance(data, dict):
            raise ArchiveCorruptError(f"Blob {descriptor.get('digest')} is not a JSON object")
        return data

    def _blob_path(self, digest: str) -> str:
        try:
            return blob_path_for_digest(digest)
        except ValidationError as e:
            raise ArchiveCorruptError(str(e)) from e

    def _read_json(self, name: str) -> Any:
        member = self._members.get(name)
        if member is None:
            raise ArchiveCorruptError(f"{name} not found in archive")

        try:
            fileobj = self._require_tar().extractfile(member)
            if fileobj is None:
                raise ArchiveCorruptError(f"{name} is not a regular file")
            with fileobj:
                return json.loads(fileobj.read().decode("utf-8"))
        except json.JSONDecodeError as e:
            raise ArchiveCorruptError(f"Invalid JSON in {name}: {e}") from e
        except UnicodeDecodeError as e:
            raise ArchiveCorruptError(f"Cannot decode {name}: {e}") from e
        except tarfile.TarError as e:
            raise ArchiveCorruptError(f"Failed to read {name}: {e}") from e

    def _require_tar(self) -> tarfile.TarFile:
        if not self._tar_file:
            raise ArchiveCorruptError("Image archive not opened")
        return self._tar_file
