"""Image archive validation utilities for Docker save and OCI layout tarballs."""

import json
import tarfile
from pathlib import Path
from typing import Any

from ..exceptions import RootfsError, ValidationError
from ..tar.models import ArchiveFormat
from .digest import blob_path_for_digest
from .paths import normalize_member_name

DOCKER_MANIFEST = "manifest.json"
OCI_LAYOUT = "oci-layout"
OCI_INDEX = "index.json"


def is_path_exists(path: Path) -> bool:
    """Check if file path exists."""
    return path.exists()


def is_valid_tarfile(path: Path) -> bool:
    """Check if file is a valid tar file."""
    return tarfile.is_tarfile(path)


def get_tar_members(tar: tarfile.TarFile) -> dict[str, tarfile.TarInfo]:
    """Map normalized member names to members ("./manifest.json" -> "manifest.json")."""
    members = {}
    for member in tar.getmembers():
        name = normalize_member_name(member.name)
        if name is not None:
            members[name] = member
    return members


def has_required_files(tar_members: dict[str, Any], required_files: list[str]) -> bool:
    """Check if tar contains all required files."""
    return all(required_file in tar_members for required_file in required_files)


def detect_archive_format(tar_members: dict[str, Any]) -> ArchiveFormat | None:
    """Detect the archive shape from its member names.

    A Docker save manifest wins when both shapes are present, as newer
    Docker releases write both.
    """
    if has_required_files(tar_members, [DOCKER_MANIFEST]):
        return ArchiveFormat.DOCKER_SAVE
    if has_required_files(tar_members, [OCI_LAYOUT, OCI_INDEX]):
        return ArchiveFormat.OCI_LAYOUT
    return None


def read_member_json(tar: tarfile.TarFile, member: tarfile.TarInfo) -> Any:
    """Read and parse a JSON member, or return None if unreadable."""
    try:
        fileobj = tar.extractfile(member)
        if fileobj is None:
            return None
        with fileobj:
            return json.loads(fileobj.read().decode("utf-8"))
    except (json.JSONDecodeError, UnicodeDecodeError):
        return None


def are_layers_valid(layers: Any) -> bool:
    """Check if layers field is a list of member paths."""
    return isinstance(layers, list) and all(isinstance(layer, str) for layer in layers)


def are_all_layers_exist(layers: list[str], tar_members: dict[str, Any]) -> bool:
    """Check if all layer files exist in tar members."""
    return all(normalize_member_name(layer) in tar_members for layer in layers)


def validate_manifest_entry(
    manifest_entry: Any, tar_members: dict[str, Any]
) -> bool:
    """Validate a single Docker manifest entry."""
    if not isinstance(manifest_entry, dict) or "Layers" not in manifest_entry:
        return False

    layers = manifest_entry["Layers"]
    if not are_layers_valid(layers):
        return False

    return are_all_layers_exist(layers, tar_members)


def validate_docker_manifest(manifest_data: Any, tar_members: dict[str, Any]) -> bool:
    """Validate a parsed Docker manifest.json (the first image is used)."""
    if not isinstance(manifest_data, list) or len(manifest_data) == 0:
        return False
    return validate_manifest_entry(manifest_data[0], tar_members)


def validate_oci_index(index_data: Any, tar_members: dict[str, Any]) -> bool:
    """Validate a parsed OCI index.json and its first manifest reference."""
    if not isinstance(index_data, dict):
        return False

    manifests = index_data.get("manifests")
    if not isinstance(manifests, list) or len(manifests) == 0:
        return False

    descriptor = manifests[0]
    if not isinstance(descriptor, dict):
        return False

    try:
        manifest_path = blob_path_for_digest(descriptor.get("digest", ""))
    except ValidationError:
        return False
    return manifest_path in tar_members


def validate_image_tar(tar_path: Path) -> bool:
    """Check if a file is an image archive this package can unpack.

    Args:
        tar_path: Path to the image tarball

    Returns:
        True for a well-formed Docker save or OCI layout tarball

    Raises:
        ValidationError: If the file does not exist or cannot be read
    """
    tar_path = Path(tar_path)
    if not is_path_exists(tar_path):
        raise ValidationError(f"Image archive does not exist: {tar_path}")

    try:
        if not is_valid_tarfile(tar_path):
            return False

        with tarfile.open(tar_path, "r:*") as tar:
            tar_members = get_tar_members(tar)

            archive_format = detect_archive_format(tar_members)
            if archive_format is ArchiveFormat.DOCKER_SAVE:
                manifest_data = read_member_json(tar, tar_members[DOCKER_MANIFEST])
                return validate_docker_manifest(manifest_data, tar_members)

            if archive_format is ArchiveFormat.OCI_LAYOUT:
                index_data = read_member_json(tar, tar_members[OCI_INDEX])
                return validate_oci_index(index_data, tar_members)

            return False

    except RootfsError:
        # Member paths escaping the archive root
        return False
    except (tarfile.TarError, OSError) as e:
        raise ValidationError(f"Error reading image archive: {e}") from e
