"""
Main entry point when run as a module.

This allows the package to be executed with: python -m image_rootfs
"""

from .cli import run

if __name__ == "__main__":
    run()
