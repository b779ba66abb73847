"""Command line interface: extract an image tarball into a rootfs directory."""

import argparse
import logging
import os
import sys
from pathlib import Path

from . import __version__
from .exceptions import RootfsError
from .rootfs import extract_rootfs
from .utils.inspect import inspect_image_tar

logger = logging.getLogger("image_rootfs.cli")

LOG_LEVEL_ENV = "IMAGE_ROOTFS_LOG_LEVEL"
SCRATCH_DIR_ENV = "IMAGE_ROOTFS_SCRATCH_DIR"
LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"

_LEVEL_MAP = {
    "CRITICAL": logging.CRITICAL,
    "ERROR": logging.ERROR,
    "WARNING": logging.WARNING,
    "INFO": logging.INFO,
    "DEBUG": logging.DEBUG,
}


def configure_logging(level: str | None = None) -> None:
    """Configure the root logger.

    Order of precedence for level:
    1. Explicit `level` argument if given
    2. Environment variable `IMAGE_ROOTFS_LOG_LEVEL`
    3. Fallback to `INFO`
    """
    name = (level or os.environ.get(LOG_LEVEL_ENV) or "INFO").upper()
    logging.basicConfig(
        level=_LEVEL_MAP.get(name, logging.INFO),
        format=LOG_FORMAT,
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="image-rootfs",
        description="Build a root filesystem from a Docker save or OCI layout tarball.",
    )
    parser.add_argument(
        "--image-tar", required=True, type=Path, help="The TAR archive of the image"
    )
    parser.add_argument(
        "--rootfs-dir",
        type=Path,
        help="Directory to put the extracted rootfs in (required unless --list-layers)",
    )
    parser.add_argument(
        "--no-relocate-links",
        dest="relocate_links",
        action="store_false",
        help="Copy symlink targets verbatim instead of rewriting them inside the rootfs",
    )
    parser.add_argument(
        "--no-preserve-ownership",
        dest="preserve_ownership",
        action="store_false",
        help="Do not apply uid/gid from the layers",
    )
    parser.add_argument(
        "--scratch-dir",
        type=Path,
        default=os.environ.get(SCRATCH_DIR_ENV) or None,
        help=f"Where per-layer scratch directories go (env: {SCRATCH_DIR_ENV})",
    )
    parser.add_argument(
        "--marker", type=Path, help="Empty file to create after a successful extraction"
    )
    parser.add_argument(
        "--list-layers",
        action="store_true",
        help="Print the resolved layer list and exit",
    )
    parser.add_argument(
        "--log-level",
        choices=sorted(_LEVEL_MAP),
        type=str.upper,
        help=f"Logging level (env: {LOG_LEVEL_ENV}, default: INFO)",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    return parser


def list_layers(image_tar: Path) -> None:
    info = inspect_image_tar(image_tar)
    print(f"format: {info.format.value}")
    for tag in info.repo_tags:
        print(f"tag: {tag}")
    for index, layer in enumerate(info.layers, start=1):
        print(f"{index:3d}  {layer.size:>12,}  {layer.digest or '-'}  {layer.path}")


def main(argv: list[str] | None = None) -> int:
    """Run the CLI and return the process exit code."""
    parser = build_parser()
    args = parser.parse_args(argv)
    if not args.list_layers and args.rootfs_dir is None:
        parser.error("--rootfs-dir is required")

    configure_logging(args.log_level)

    try:
        if args.list_layers:
            list_layers(args.image_tar)
            return 0

        report = extract_rootfs(
            args.image_tar,
            args.rootfs_dir,
            relocate_links=args.relocate_links,
            preserve_ownership=args.preserve_ownership,
            scratch_dir=args.scratch_dir,
            marker=args.marker,
        )
    except RootfsError as e:
        logger.error(f"Error while processing {args.image_tar} into {args.rootfs_dir}: {e}")
        return 1
    except KeyboardInterrupt:
        logger.error("Interrupted")
        return 130

    logger.info(f"Extracted {len(report.layers)} layers into {report.rootfs}")
    return 0


def run() -> None:
    """Console script entry point."""
    sys.exit(main())
