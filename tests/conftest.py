"""Test configuration and fixtures."""

import io
import os

import pytest

from tests.helpers import build_layer


@pytest.fixture
def rootfs(tmp_path):
    """Empty rootfs directory."""
    path = tmp_path / "rootfs"
    path.mkdir()
    return path


@pytest.fixture
def scratch(tmp_path):
    """Empty layer scratch directory."""
    path = tmp_path / "scratch"
    path.mkdir()
    return path


@pytest.fixture
def layer_stream():
    """Factory turning a list of entries into a layer tar stream."""

    def make(entries, compression=""):
        return io.BytesIO(build_layer(entries, compression))

    return make


# Pytest configuration
def pytest_collection_modifyitems(config, items):
    """Modify test collection."""
    # Skip privileged tests when not running as root
    skip_root = pytest.mark.skip(reason="Requires root privileges")

    for item in items:
        if item.get_closest_marker("root") and os.geteuid() != 0:
            item.add_marker(skip_root)
