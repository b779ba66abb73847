"""Core data types for rootfs extraction."""

from dataclasses import dataclass, field
from pathlib import Path

from ..tar.models import FileEntry


@dataclass
class UnpackConfig:
    """Extraction settings shared by every layer of a run."""

    relocate_links: bool = True
    preserve_ownership: bool = True
    scratch_dir: Path | None = None  # Parent for per-layer scratch dirs


@dataclass(frozen=True)
class Degradation:
    """A best-effort operation that failed and was skipped."""

    path: str
    operation: str  # "chown", "utime" or "mknod"
    reason: str


@dataclass
class LayerContents:
    """Result of unpacking one layer into its scratch directory."""

    entries: list[FileEntry] = field(default_factory=list)
    implicit_dirs: set[str] = field(default_factory=set)


@dataclass
class WhiteoutSummary:
    """Markers consumed while resolving one layer."""

    whiteouts: int = 0
    opaque_dirs: int = 0
    meta_markers: int = 0

    @property
    def total(self) -> int:
        return self.whiteouts + self.opaque_dirs + self.meta_markers


@dataclass
class LayerReport:
    """Outcome of applying one layer to the rootfs."""

    layer: str
    entries: int = 0
    merged: int = 0
    whiteouts: WhiteoutSummary = field(default_factory=WhiteoutSummary)
    degraded: list[Degradation] = field(default_factory=list)

    @property
    def is_degraded(self) -> bool:
        return bool(self.degraded)


@dataclass
class UnpackReport:
    """Outcome of a full extraction run."""

    rootfs: Path
    layers: list[LayerReport] = field(default_factory=list)

    @property
    def degraded(self) -> list[Degradation]:
        return [item for layer in self.layers for item in layer.degraded]

    @property
    def is_degraded(self) -> bool:
        return any(layer.is_degraded for layer in self.layers)
