"""Ordered layer application: unpack, resolve whiteouts, merge."""

import logging
import tempfile
from pathlib import Path
from typing import IO, Iterable

from ..exceptions import LayerExtractError
from ..operations.merge import merge_layer
from ..operations.unpack import unpack_layer
from ..operations.whiteouts import resolve_whiteouts
from ..utils.metadata import MetadataApplier
from ..utils.paths import remove_tree
from .types import LayerReport, UnpackConfig, UnpackReport

logger = logging.getLogger(__name__)


class ImageUnpacker:
    """Builds a rootfs by applying layers one at a time, bottom-most first.

    The rootfs is owned by the unpacker for the duration of a run; callers
    must not apply layers to the same rootfs from more than one unpacker at
    a time.
    """

    def __init__(self, rootfs: Path, config: UnpackConfig | None = None) -> None:
        """Initialize the unpacker.

        Args:
            rootfs: Existing directory to build the rootfs in
            config: Extraction settings
        """
        self.rootfs = Path(rootfs)
        self.config = config or UnpackConfig()

    def apply_layer(self, stream: IO[bytes], ref: str) -> LayerReport:
        """Apply one layer to the rootfs.

        The layer is unpacked into a private scratch directory, its whiteouts
        are applied to the rootfs, and the remaining entries are merged. The
        scratch directory is removed whether or not the layer succeeds.

        Args:
            stream: Layer tar stream
            ref: Layer identifier for reports and error messages

        Returns:
            LayerReport for the layer

        Raises:
            RootfsError: On the first fatal error; the rootfs is left as is
        """
        metadata = MetadataApplier(preserve_ownership=self.config.preserve_ownership)
        report = LayerReport(layer=ref)

        try:
            scratch = Path(
                tempfile.mkdtemp(prefix="layer-", dir=self.config.scratch_dir)
            )
        except OSError as e:
            raise LayerExtractError(f"Failed to create scratch directory: {e}") from e

        try:
            contents = unpack_layer(stream, scratch, source=ref, metadata=metadata)
            report.entries = len(contents.entries)

            report.whiteouts = resolve_whiteouts(scratch, self.rootfs)

            report.merged = merge_layer(
                scratch,
                self.rootfs,
                relocate_links=self.config.relocate_links,
                implicit_dirs=contents.implicit_dirs,
                metadata=metadata,
            )
        finally:
            report.degraded = metadata.degraded
            try:
                remove_tree(scratch)
            except OSError as e:
                logger.error("Failed to remove scratch directory %s: %s", scratch, e)

        logger.info(
            "Applied layer %s: %d entries, %d whiteout markers (%d opaque directories)",
            ref,
            report.entries,
            report.whiteouts.total,
            report.whiteouts.opaque_dirs,
        )
        if report.is_degraded:
            logger.debug(
                "Layer %s: %d metadata operations skipped", ref, len(report.degraded)
            )
        return report

    def unpack(self, layers: Iterable[tuple[str, IO[bytes]]]) -> UnpackReport:
        """Apply layers in order.

        Layers are consumed lazily; a layer's stream is not requested until
        the previous layer has been fully merged. The first failure aborts
        the run and no later layer is read.

        Args:
            layers: (identifier, tar stream) pairs, bottom-most layer first

        Returns:
            UnpackReport covering every applied layer
        """
        report = UnpackReport(rootfs=self.rootfs)
        for index, (ref, stream) in enumerate(layers, start=1):
            logger.info("Applying layer %d: %s", index, ref)
            report.layers.append(self.apply_layer(stream, ref))

        if report.is_degraded:
            logger.warning(
                "Rootfs %s built with %d skipped metadata operations "
                "(ownership, timestamps or device nodes)",
                self.rootfs,
                len(report.degraded),
            )
        return report


def unpack_layers(
    layers: Iterable[tuple[str, IO[bytes]]],
    rootfs: Path,
    config: UnpackConfig | None = None,
) -> UnpackReport:
    """Apply ordered layer streams to an existing rootfs directory."""
    return ImageUnpacker(rootfs, config).unpack(layers)
