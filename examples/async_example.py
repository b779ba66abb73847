"""Example usage of the async rootfs extraction API."""

import asyncio
import logging
import sys

# Add parent directory to path
sys.path.insert(0, "src")

from image_rootfs import (
    RootfsError,
    extract_rootfs_async,
    validate_image_tar,
)

# Set up logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)


async def main(image_tars):
    """Extract several images concurrently, each into its own rootfs."""
    valid = []
    for tar_path in image_tars:
        try:
            if validate_image_tar(tar_path):
                valid.append(tar_path)
            else:
                logger.warning(f"Skipping {tar_path}: not a Docker save or OCI layout tarball")
        except RootfsError as e:
            logger.error(f"Skipping {tar_path}: {e}")

    tasks = [
        extract_rootfs_async(tar_path, f"{tar_path}.rootfs", marker=f"{tar_path}.done")
        for tar_path in valid
    ]
    results = await asyncio.gather(*tasks, return_exceptions=True)

    for tar_path, result in zip(valid, results, strict=True):
        if isinstance(result, RootfsError):
            logger.error(f"✗ {tar_path}: {result}")
        elif isinstance(result, BaseException):
            raise result
        else:
            logger.info(f"✓ {tar_path}: {len(result.layers)} layers -> {result.rootfs}")


if __name__ == "__main__":
    if len(sys.argv) < 2:
        print(f"Usage: {sys.argv[0]} IMAGE_TAR [IMAGE_TAR ...]")
        sys.exit(1)
    asyncio.run(main(sys.argv[1:]))
