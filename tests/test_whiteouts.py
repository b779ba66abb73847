"""Tests for whiteout resolution."""

import os

import pytest

from image_rootfs.exceptions import ArchiveCorruptError, WalkFailedError
from image_rootfs.operations.whiteouts import is_whiteout_name, resolve_whiteouts


def make_tree(root, files):
    """Create files (and their parents) below root; a trailing "/" makes a directory."""
    for name in files:
        path = root / name
        if name.endswith("/"):
            path.mkdir(parents=True, exist_ok=True)
        else:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(name)


def test_is_whiteout_name():
    """Test marker name detection."""
    assert is_whiteout_name(".wh.passwd")
    assert is_whiteout_name(".wh..wh..opq")
    assert not is_whiteout_name("passwd")
    assert not is_whiteout_name("a.wh.b")


def test_explicit_whiteout_removes_file(scratch, rootfs):
    """Test a whiteout deletes the named file and is not left in the layer."""
    make_tree(rootfs, ["a/b.txt", "a/c.txt"])
    make_tree(scratch, ["a/.wh.b.txt"])

    summary = resolve_whiteouts(scratch, rootfs)

    assert not (rootfs / "a" / "b.txt").exists()
    assert (rootfs / "a" / "c.txt").exists()
    assert not (scratch / "a" / ".wh.b.txt").exists()
    assert (summary.whiteouts, summary.opaque_dirs, summary.meta_markers) == (1, 0, 0)


def test_explicit_whiteout_removes_directory_tree(scratch, rootfs):
    """Test a whiteout naming a directory removes the whole subtree."""
    make_tree(rootfs, ["var/cache/apt/archives/pkg.deb", "var/log/"])
    make_tree(scratch, ["var/.wh.cache"])

    resolve_whiteouts(scratch, rootfs)

    assert not (rootfs / "var" / "cache").exists()
    assert (rootfs / "var" / "log").is_dir()


def test_explicit_whiteout_of_absent_path(scratch, rootfs):
    """Test a whiteout for a path no earlier layer created is a no-op."""
    make_tree(scratch, ["etc/.wh.nothing"])

    summary = resolve_whiteouts(scratch, rootfs)

    assert summary.whiteouts == 1
    assert os.listdir(rootfs) == []


def test_explicit_whiteout_removes_symlink_not_target(scratch, rootfs):
    """Test whiting out a symlink leaves what it points at."""
    make_tree(rootfs, ["usr/lib/libc.so.6"])
    os.symlink("usr/lib", rootfs / "lib")
    make_tree(scratch, [".wh.lib"])

    resolve_whiteouts(scratch, rootfs)

    assert not os.path.lexists(rootfs / "lib")
    assert (rootfs / "usr" / "lib" / "libc.so.6").exists()


def test_opaque_directory_is_cleared(scratch, rootfs):
    """Test an opaque marker hides all earlier contents but keeps the directory."""
    make_tree(rootfs, ["d/old1", "d/sub/old2", "keep/k"])
    make_tree(scratch, ["d/.wh..wh..opq", "d/new"])

    summary = resolve_whiteouts(scratch, rootfs)

    assert (rootfs / "d").is_dir()
    assert os.listdir(rootfs / "d") == []
    assert (rootfs / "keep" / "k").exists()
    assert sorted(os.listdir(scratch / "d")) == ["new"]
    assert summary.opaque_dirs == 1


def test_opaque_directory_absent_from_rootfs(scratch, rootfs):
    """Test an opaque marker for a new directory is a no-op."""
    make_tree(scratch, ["fresh/.wh..wh..opq"])

    summary = resolve_whiteouts(scratch, rootfs)

    assert summary.opaque_dirs == 1
    assert os.listdir(rootfs) == []
    assert os.listdir(scratch / "fresh") == []


def test_opaque_root(scratch, rootfs):
    """Test an opaque marker at the layer root clears the whole rootfs."""
    make_tree(rootfs, ["etc/passwd", "usr/bin/ls"])
    make_tree(scratch, [".wh..wh..opq", "etc/hostname"])

    resolve_whiteouts(scratch, rootfs)

    assert os.listdir(rootfs) == []


def test_opaque_and_explicit_in_same_directory(scratch, rootfs):
    """Test explicit whiteouts inside an opaque directory do not fail."""
    make_tree(rootfs, ["d/x", "d/y"])
    make_tree(scratch, ["d/.wh..wh..opq", "d/.wh.x", "d/z"])

    summary = resolve_whiteouts(scratch, rootfs)

    assert os.listdir(rootfs / "d") == []
    assert os.listdir(scratch / "d") == ["z"]
    assert summary.total == 2


def test_metadata_markers_are_dropped(scratch, rootfs):
    """Test aufs metadata markers are removed without touching the rootfs."""
    make_tree(rootfs, ["plnk", "etc/passwd"])
    make_tree(scratch, [".wh..wh.plnk/", ".wh..wh.aufs", "etc/hosts"])

    summary = resolve_whiteouts(scratch, rootfs)

    assert sorted(os.listdir(scratch)) == ["etc"]
    assert (rootfs / "plnk").exists()
    assert (rootfs / "etc" / "passwd").exists()
    assert summary.meta_markers == 2


def test_marker_removal_keeps_directory_times(scratch, rootfs):
    """Test dropping a marker does not change its directory's mtime."""
    make_tree(scratch, ["etc/.wh.motd"])
    os.utime(scratch / "etc", (1_600_000_000, 1_600_000_000))

    resolve_whiteouts(scratch, rootfs)

    assert os.stat(scratch / "etc").st_mtime == 1_600_000_000


def test_invalid_whiteout_name(scratch, rootfs):
    """Test a marker naming nothing is rejected."""
    make_tree(scratch, [".wh."])

    with pytest.raises(ArchiveCorruptError):
        resolve_whiteouts(scratch, rootfs)


def test_missing_layer_directory(tmp_path, rootfs):
    """Test a layer directory that does not exist cannot be walked."""
    with pytest.raises(WalkFailedError):
        resolve_whiteouts(tmp_path / "missing", rootfs)
