"""Functional rootfs extraction operations."""

import asyncio
import functools
import logging
from pathlib import Path

import aiofiles

from .core.types import UnpackConfig, UnpackReport
from .core.unpacker import ImageUnpacker
from .exceptions import LayerExtractError
from .tar.reader import ImageArchive

logger = logging.getLogger(__name__)


def _extract(
    image_tar: str | Path,
    rootfs_dir: str | Path,
    config: UnpackConfig,
) -> UnpackReport:
    rootfs = Path(rootfs_dir).absolute()

    with ImageArchive(image_tar) as archive:
        # Resolve everything before touching the destination
        layers = archive.layers()
        logger.info(
            "Extracting %s (%s, %d layers) into %s",
            archive.tar_path,
            archive.format.value,
            len(layers),
            rootfs,
        )

        try:
            rootfs.mkdir(mode=0o755, parents=True, exist_ok=True)
        except OSError as e:
            raise LayerExtractError(f"Cannot create rootfs directory {rootfs}: {e}") from e

        return ImageUnpacker(rootfs, config).unpack(archive.iter_layer_streams())


def extract_rootfs(
    image_tar: str | Path,
    rootfs_dir: str | Path,
    *,
    relocate_links: bool = True,
    preserve_ownership: bool = True,
    scratch_dir: str | Path | None = None,
    marker: str | Path | None = None,
) -> UnpackReport:
    """이미지 tar 파일의 레이어를 순서대로 적용하여 rootfs를 생성합니다.

    Docker save 형식(manifest.json)과 OCI 이미지 레이아웃(oci-layout, index.json)을
    자동으로 감지합니다. 레이어 목록을 모두 확인한 뒤에 rootfs 디렉토리를 만들기
    때문에, 지원하지 않는 형식의 파일은 아무 디렉토리도 생성하지 않습니다.

    Args:
        image_tar: 이미지 tar 파일 경로 (예: "nginx.tar", "./images/app-oci.tar")
        rootfs_dir: rootfs를 만들 디렉토리 (없으면 생성됨)
        relocate_links: 심볼릭 링크 대상을 rootfs 내부 상대경로로 변환 (기본값: True)
        preserve_ownership: 레이어의 uid/gid를 적용 (기본값: True, 권한이 없으면 건너뜀)
        scratch_dir: 레이어 임시 디렉토리를 만들 위치 (기본값: 시스템 임시 디렉토리)
        marker: 성공 시 생성할 빈 마커 파일 경로 (선택사항)

    Returns:
        UnpackReport: 레이어별 처리 결과와 건너뛴 메타데이터 작업 목록

    Raises:
        ValidationError: tar 파일이 존재하지 않는 경우
        UnsupportedFormatError: Docker save 또는 OCI 레이아웃이 아닌 경우
        ArchiveCorruptError: tar 또는 매니페스트가 손상된 경우
        RootfsError: 레이어 적용 중 복구할 수 없는 오류가 발생한 경우

    Examples:
        # Docker save 파일에서 rootfs 생성
        report = extract_rootfs("nginx.tar", "./rootfs")
        print(f"적용된 레이어: {len(report.layers)}개")

        # 심볼릭 링크를 원본 그대로 유지
        extract_rootfs("app-oci.tar", "/srv/rootfs", relocate_links=False)

        # 완료 마커 파일 생성
        extract_rootfs("nginx.tar", "./rootfs", marker="./rootfs.done")
    """
    config = UnpackConfig(
        relocate_links=relocate_links,
        preserve_ownership=preserve_ownership,
        scratch_dir=Path(scratch_dir) if scratch_dir else None,
    )
    report = _extract(image_tar, rootfs_dir, config)

    if marker is not None:
        Path(marker).write_bytes(b"")
    return report


async def extract_rootfs_async(
    image_tar: str | Path,
    rootfs_dir: str | Path,
    *,
    relocate_links: bool = True,
    preserve_ownership: bool = True,
    scratch_dir: str | Path | None = None,
    marker: str | Path | None = None,
) -> UnpackReport:
    """이미지 tar 파일에서 rootfs를 비동기로 생성합니다.

    추출 작업 전체를 스레드 풀에서 실행합니다. 레이어는 여전히 하나씩 순서대로
    적용됩니다.

    Args:
        image_tar: 이미지 tar 파일 경로 (예: "nginx.tar")
        rootfs_dir: rootfs를 만들 디렉토리
        relocate_links: 심볼릭 링크 대상을 rootfs 내부 상대경로로 변환 (기본값: True)
        preserve_ownership: 레이어의 uid/gid를 적용 (기본값: True)
        scratch_dir: 레이어 임시 디렉토리를 만들 위치 (선택사항)
        marker: 성공 시 생성할 빈 마커 파일 경로 (선택사항)

    Returns:
        UnpackReport: 레이어별 처리 결과

    Raises:
        RootfsError: extract_rootfs와 동일

    Examples:
        report = await extract_rootfs_async("nginx.tar", "./rootfs")
    """
    config = UnpackConfig(
        relocate_links=relocate_links,
        preserve_ownership=preserve_ownership,
        scratch_dir=Path(scratch_dir) if scratch_dir else None,
    )

    # Run extraction in thread pool since it is blocking file I/O
    loop = asyncio.get_running_loop()
    report = await loop.run_in_executor(
        None, functools.partial(_extract, image_tar, rootfs_dir, config)
    )

    if marker is not None:
        async with aiofiles.open(marker, "wb"):
            pass
    return report
