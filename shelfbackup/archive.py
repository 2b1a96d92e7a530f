# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Shelfbackup Archive - Packing and unpacking of backup data archives.

An archive is a zip file holding the contents of a directory directly, with
no enclosing folder. Zip work is CPU and disk bound, so it runs in a thread
pool off the event loop.
"""

import asyncio
import os
import shutil
import tempfile
import zipfile
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path, PurePosixPath

import structlog

from shelfbackup.exceptions import ArchiveError

logger = structlog.get_logger()

# Thread pool for blocking zip operations
_executor = ThreadPoolExecutor(max_workers=2)


async def pack_directory(source_dir: Path, archive_path: Path) -> int:
    """
    Zip the contents of a directory into an archive.

    The archive is written to a temporary file beside the destination and
    then moved into place, so a reader never sees a partial archive.

    Args:
        source_dir: Directory whose contents are archived
        archive_path: Destination archive path (replaced if it exists)

    Returns:
        Size of the written archive in bytes
    """
    loop = asyncio.get_running_loop()
    try:
        size = await loop.run_in_executor(_executor, _pack_directory_sync, source_dir, archive_path)
    except ArchiveError:
        raise
    except Exception as e:
        raise ArchiveError(
            f"Failed to pack {source_dir}: {e}",
            details={"source_dir": str(source_dir), "archive_path": str(archive_path)},
        ) from e

    logger.info("archive_packed", archive_path=str(archive_path), size=size)
    return size


def _pack_directory_sync(source_dir: Path, archive_path: Path) -> int:
    if not source_dir.is_dir():
        raise ArchiveError(
            f"Source directory does not exist: {source_dir}",
            details={"source_dir": str(source_dir)},
        )

    archive_path.parent.mkdir(parents=True, exist_ok=True)
    fd, temp_name = tempfile.mkstemp(prefix=f".{archive_path.name}.", suffix=".tmp", dir=archive_path.parent)
    os.close(fd)
    temp_path = Path(temp_name)

    try:
        with zipfile.ZipFile(temp_path, "w", compression=zipfile.ZIP_DEFLATED) as archive:
            for path in sorted(source_dir.rglob("*")):
                if path.is_file():
                    archive.write(path, path.relative_to(source_dir).as_posix())
        os.replace(temp_path, archive_path)
    except BaseException:
        temp_path.unlink(missing_ok=True)
        raise

    return archive_path.stat().st_size


async def unpack_archive(archive_path: Path, dest_dir: Path) -> Path:
    """
    Extract an archive into a directory.

    Members with absolute paths or parent references are rejected before
    anything is written.

    Returns:
        The destination directory

    Raises:
        ArchiveError: If the archive is missing, corrupt, or unsafe
    """
    loop = asyncio.get_running_loop()
    try:
        await loop.run_in_executor(_executor, _unpack_archive_sync, archive_path, dest_dir)
    except ArchiveError:
        raise
    except Exception as e:
        raise ArchiveError(
            f"Failed to unpack {archive_path}: {e}",
            details={"archive_path": str(archive_path), "dest_dir": str(dest_dir)},
        ) from e

    logger.info("archive_unpacked", archive_path=str(archive_path), dest_dir=str(dest_dir))
    return dest_dir


def _unpack_archive_sync(archive_path: Path, dest_dir: Path) -> None:
    with zipfile.ZipFile(archive_path) as archive:
        for name in archive.namelist():
            member = PurePosixPath(name)
            if member.is_absolute() or ".." in member.parts or name.startswith("\\"):
                raise ArchiveError(
                    f"Unsafe archive member: {name}",
                    details={"archive_path": str(archive_path), "member": name},
                )

        dest_dir.mkdir(parents=True, exist_ok=True)
        archive.extractall(dest_dir)


def create_scratch_directory(prefix: str = "shelfbackup-") -> Path:
    """Create a fresh, uniquely named temporary directory."""
    return Path(tempfile.mkdtemp(prefix=prefix))


def remove_scratch_directory(path: Path | None) -> None:
    """Remove a temporary directory. Failures are logged, never raised."""
    if path is None:
        return
    try:
        shutil.rmtree(path)
    except FileNotFoundError:
        pass
    except OSError as e:
        logger.warning("scratch_directory_cleanup_failed", path=str(path), error=str(e))
