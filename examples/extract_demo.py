"""Demonstration of layer merging with whiteouts and link relocation."""

import hashlib
import io
import json
import logging
import os
import sys
import tarfile
import tempfile
from pathlib import Path

# Add parent directory to path
sys.path.insert(0, "src")

from image_rootfs import RootfsError, extract_rootfs, inspect_image_tar

# Set up logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


def create_layer(files, symlinks=()):
    """Create an in-memory layer tar."""
    buffer = io.BytesIO()
    with tarfile.open(fileobj=buffer, mode="w") as tar:
        for name, content in files:
            info = tarfile.TarInfo(name)
            info.size = len(content)
            info.mode = 0o644
            tar.addfile(info, fileobj=io.BytesIO(content))
        for name, target in symlinks:
            info = tarfile.TarInfo(name)
            info.type = tarfile.SYMTYPE
            info.linkname = target
            tar.addfile(info)
    return buffer.getvalue()


def create_demo_image(tar_path):
    """Create a two-layer Docker save tarball."""
    base = create_layer(
        [
            ("etc/motd", b"Welcome to the base layer\n"),
            ("var/cache/apt/pkgcache.bin", b"cache"),
            ("usr/bin/python3.12", b"#!python"),
        ],
        symlinks=[("usr/bin/python3", "/usr/bin/python3.12")],
    )
    # Remove the apt cache and replace the motd
    top = create_layer(
        [
            ("var/cache/.wh.apt", b""),
            ("etc/motd", b"Welcome to the top layer\n"),
        ]
    )

    layers = [base, top]
    digests = [hashlib.sha256(layer).hexdigest() for layer in layers]
    manifest = [
        {
            "RepoTags": ["demo:latest"],
            "Layers": [f"blobs/sha256/{digest}" for digest in digests],
        }
    ]

    with tarfile.open(tar_path, "w") as tar:
        for digest, layer in zip(digests, layers, strict=True):
            info = tarfile.TarInfo(f"blobs/sha256/{digest}")
            info.size = len(layer)
            tar.addfile(info, fileobj=io.BytesIO(layer))

        manifest_content = json.dumps(manifest).encode("utf-8")
        info = tarfile.TarInfo("manifest.json")
        info.size = len(manifest_content)
        tar.addfile(info, fileobj=io.BytesIO(manifest_content))


def main():
    """Build a rootfs from the demo image and show the result."""
    with tempfile.TemporaryDirectory() as workdir:
        tar_path = Path(workdir) / "demo.tar"
        rootfs = Path(workdir) / "rootfs"
        create_demo_image(tar_path)

        try:
            info = inspect_image_tar(tar_path)
            logger.info(f"Image format: {info.format.value}, tags: {info.repo_tags}")
            for layer in info.layers:
                logger.info(f"  Layer {layer.digest} ({layer.size} bytes)")

            report = extract_rootfs(tar_path, rootfs, marker=Path(workdir) / "rootfs.done")
        except RootfsError as e:
            logger.error(f"Extraction failed: {e}")
            return

        logger.info(f"✓ Applied {len(report.layers)} layers")
        for layer in report.layers:
            logger.info(
                f"  {layer.layer}: {layer.entries} entries, "
                f"{layer.whiteouts.whiteouts} whiteouts"
            )

        logger.info(f"motd: {(rootfs / 'etc' / 'motd').read_text().strip()}")
        logger.info(f"apt cache present: {(rootfs / 'var' / 'cache' / 'apt').exists()}")
        logger.info(f"python3 -> {os.readlink(rootfs / 'usr' / 'bin' / 'python3')}")
        if report.is_degraded:
            logger.info(f"Skipped metadata operations: {len(report.degraded)}")


if __name__ == "__main__":
    main()
