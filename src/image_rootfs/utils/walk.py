"""Deterministic traversal of on-disk layer trees."""

import os
import stat
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator

from ..exceptions import WalkFailedError


@dataclass(frozen=True)
class WalkEntry:
    """One node found while walking a tree."""

    relpath: str  # POSIX path relative to the walk root
    path: Path
    stat: os.stat_result

    @property
    def name(self) -> str:
        return self.path.name

    @property
    def is_dir(self) -> bool:
        return stat.S_ISDIR(self.stat.st_mode)

    @property
    def is_symlink(self) -> bool:
        return stat.S_ISLNK(self.stat.st_mode)

    @property
    def is_file(self) -> bool:
        return stat.S_ISREG(self.stat.st_mode)


def walk_tree(root: Path) -> Iterator[WalkEntry]:
    """Walk a tree in lexical pre-order without following symlinks.

    A directory is always yielded before its contents, and siblings are
    yielded sorted by name, so two walks of equal trees agree entry by entry.

    Args:
        root: Directory to walk (not yielded itself)

    Yields:
        WalkEntry for every node below root

    Raises:
        WalkFailedError: If a directory cannot be listed or stat'ed
    """
    root = Path(root)
    if not root.is_dir():
        raise WalkFailedError(f"Not a directory: {root}")
    yield from _walk(root, "")


def _walk(directory: Path, prefix: str) -> Iterator[WalkEntry]:
    try:
        with os.scandir(directory) as it:
            children = sorted(it, key=lambda entry: entry.name)
        stats = [(child, child.stat(follow_symlinks=False)) for child in children]
    except OSError as e:
        raise WalkFailedError(f"Failed to read directory {directory}: {e}") from e

    for child, child_stat in stats:
        relpath = f"{prefix}{child.name}"
        entry = WalkEntry(relpath=relpath, path=Path(child.path), stat=child_stat)
        yield entry
        if entry.is_dir:
            yield from _walk(entry.path, f"{relpath}/")
