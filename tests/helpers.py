"""Test helpers for building layer tarballs, image archives and tree snapshots."""

import hashlib
import io
import json
import os
import stat
import tarfile
from pathlib import Path

MTIME = 1_700_000_000

Entry = tuple[tarfile.TarInfo, bytes]


def _info(name: str, type_: bytes, mode: int, mtime: float) -> tarfile.TarInfo:
    info = tarfile.TarInfo(name)
    info.type = type_
    info.mode = mode
    info.mtime = mtime
    info.uid = os.getuid()
    info.gid = os.getgid()
    return info


def file_entry(name: str, data: bytes = b"", mode: int = 0o644, mtime: float = MTIME) -> Entry:
    """Regular file entry."""
    info = _info(name, tarfile.REGTYPE, mode, mtime)
    info.size = len(data)
    return info, data


def dir_entry(name: str, mode: int = 0o755, mtime: float = MTIME) -> Entry:
    """Directory entry."""
    return _info(name, tarfile.DIRTYPE, mode, mtime), b""


def symlink_entry(name: str, target: str) -> Entry:
    """Symbolic link entry."""
    info = _info(name, tarfile.SYMTYPE, 0o777, MTIME)
    info.linkname = target
    return info, b""


def hardlink_entry(name: str, target: str) -> Entry:
    """Hard link entry pointing at an earlier member."""
    info = _info(name, tarfile.LNKTYPE, 0o644, MTIME)
    info.linkname = target
    return info, b""


def fifo_entry(name: str, mode: int = 0o600) -> Entry:
    """FIFO entry."""
    return _info(name, tarfile.FIFOTYPE, mode, MTIME), b""


def chardev_entry(name: str, major: int, minor: int, mode: int = 0o666) -> Entry:
    """Character device entry."""
    info = _info(name, tarfile.CHRTYPE, mode, MTIME)
    info.devmajor = major
    info.devminor = minor
    return info, b""


def whiteout_entry(path: str) -> Entry:
    """Whiteout marker deleting `path` from earlier layers."""
    parent, _, name = path.rpartition("/")
    marker = f".wh.{name}"
    return file_entry(f"{parent}/{marker}" if parent else marker, mode=0o600)


def opaque_entry(directory: str) -> Entry:
    """Opaque marker for `directory` ("" for the image root)."""
    marker = ".wh..wh..opq"
    return file_entry(f"{directory}/{marker}" if directory else marker, mode=0o600)


def build_layer(entries: list[Entry], compression: str = "") -> bytes:
    """Build a layer tarball from entries, in order."""
    buffer = io.BytesIO()
    mode = f"w:{compression}" if compression else "w"
    with tarfile.open(fileobj=buffer, mode=mode, format=tarfile.PAX_FORMAT) as tar:
        for info, data in entries:
            tar.addfile(info, io.BytesIO(data) if data else None)
    return buffer.getvalue()


def sha256(data: bytes) -> str:
    """Compute the sha256 digest string of data."""
    return f"sha256:{hashlib.sha256(data).hexdigest()}"


def add_member(tar: tarfile.TarFile, name: str, data: bytes) -> None:
    """Add an in-memory regular file to an open tarball."""
    info = tarfile.TarInfo(name)
    info.size = len(data)
    info.mtime = MTIME
    tar.addfile(info, io.BytesIO(data))


def add_blob(tar: tarfile.TarFile, data: bytes) -> str:
    """Add a content-addressed blob and return its digest."""
    digest = sha256(data)
    add_member(tar, f"blobs/sha256/{digest.split(':', 1)[1]}", data)
    return digest


def build_docker_image(
    path: Path,
    layers: list[bytes],
    repo_tags: list[str] | None = None,
    layer_sources: bool = False,
) -> Path:
    """Write a Docker save tarball with the given layer blobs."""
    with tarfile.open(path, "w") as tar:
        config = json.dumps({"os": "linux", "architecture": "amd64"}).encode()
        config_digest = add_blob(tar, config)

        layer_paths = []
        sources = {}
        for layer in layers:
            digest = add_blob(tar, layer)
            layer_paths.append(f"blobs/sha256/{digest.split(':', 1)[1]}")
            sources[digest] = {
                "mediaType": "application/vnd.docker.image.rootfs.diff.tar",
                "size": len(layer),
                "digest": digest,
            }

        entry = {
            "Config": f"blobs/sha256/{config_digest.split(':', 1)[1]}",
            "RepoTags": repo_tags if repo_tags is not None else ["test/image:latest"],
            "Layers": layer_paths,
        }
        if layer_sources:
            entry["LayerSources"] = sources
        add_member(tar, "manifest.json", json.dumps([entry]).encode())
    return path


def _descriptor(media_type: str, data: bytes, **extra) -> dict:
    return {"mediaType": media_type, "digest": sha256(data), "size": len(data), **extra}


def build_oci_image(
    path: Path,
    layers: list[bytes],
    ref_name: str | None = "latest",
    nested: bool = False,
    layer_media_type: str = "application/vnd.oci.image.layer.v1.tar",
) -> Path:
    """Write an OCI image layout tarball with the given layer blobs.

    With `nested`, index.json points at a second image index (as written
    for multi-platform images) which in turn points at the manifest.
    """
    with tarfile.open(path, "w") as tar:
        add_member(tar, "oci-layout", json.dumps({"imageLayoutVersion": "1.0.0"}).encode())

        config = json.dumps({"os": "linux", "architecture": "amd64"}).encode()
        add_blob(tar, config)
        layer_descriptors = []
        for layer in layers:
            add_blob(tar, layer)
            layer_descriptors.append(_descriptor(layer_media_type, layer))

        manifest = json.dumps(
            {
                "schemaVersion": 2,
                "mediaType": "application/vnd.oci.image.manifest.v1+json",
                "config": _descriptor("application/vnd.oci.image.config.v1+json", config),
                "layers": layer_descriptors,
            }
        ).encode()
        add_blob(tar, manifest)
        top = _descriptor("application/vnd.oci.image.manifest.v1+json", manifest)

        if nested:
            platform = {"architecture": "amd64", "os": "linux"}
            inner = json.dumps(
                {
                    "schemaVersion": 2,
                    "mediaType": "application/vnd.oci.image.index.v1+json",
                    "manifests": [{**top, "platform": platform}],
                }
            ).encode()
            add_blob(tar, inner)
            top = _descriptor("application/vnd.oci.image.index.v1+json", inner)

        if ref_name:
            top["annotations"] = {"org.opencontainers.image.ref.name": ref_name}
        index = {"schemaVersion": 2, "manifests": [top]}
        add_member(tar, "index.json", json.dumps(index).encode())
    return path


def snapshot(root: Path) -> dict[str, tuple]:
    """Describe a tree as {relpath: (kind, mode, payload, mtime)}.

    Payload is file content for regular files and the target for symlinks.
    Directory mtimes are left out since merging children touches them.
    """
    result: dict[str, tuple] = {}

    def visit(directory: Path, prefix: str) -> None:
        for name in sorted(os.listdir(directory)):
            path = directory / name
            relpath = f"{prefix}{name}"
            st = os.lstat(path)
            mode = stat.S_IMODE(st.st_mode)
            if stat.S_ISDIR(st.st_mode):
                result[relpath] = ("dir", mode, None, None)
                visit(path, f"{relpath}/")
            elif stat.S_ISLNK(st.st_mode):
                result[relpath] = ("symlink", None, os.readlink(path), None)
            elif stat.S_ISREG(st.st_mode):
                result[relpath] = ("file", mode, path.read_bytes(), int(st.st_mtime))
            else:
                result[relpath] = ("other", mode, None, None)

    visit(Path(root), "")
    return result
