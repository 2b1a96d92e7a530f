# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Shelfbackup Catalog - Discovery of the backups visible in a synced root.

Every immediate subdirectory of <root>/Backups is a candidate backup. A
candidate whose marker file is missing (not yet synced) or invalid is
skipped, so one damaged backup never hides the others.
"""

import uuid
from pathlib import Path
from typing import List

import structlog

from shelfbackup.cloud.base import SyncedRoot
from shelfbackup.constants import (
    BACKUP_ARCHIVE_FILENAME,
    BACKUP_INFO_FILENAME,
    BACKUPS_DIRECTORY_NAME,
)
from shelfbackup.exceptions import MarkerDecodeError
from shelfbackup.marker import BackupEntry, rank_entries, read_marker_file

logger = structlog.get_logger()


def backups_directory(root: SyncedRoot) -> Path | None:
    """The directory holding every installation's backup, or None if unresolvable."""
    container = root.container_path()
    if container is None:
        return None
    return container / BACKUPS_DIRECTORY_NAME


def installation_backup_directory(root: SyncedRoot, device_id: uuid.UUID) -> Path | None:
    """The backup slot belonging to one installation."""
    directory = backups_directory(root)
    if directory is None:
        return None
    return directory / str(device_id).upper()


async def read_backup_entry(directory: Path) -> BackupEntry:
    """
    Read the backup held in one backup directory.

    Raises:
        MarkerDecodeError: If the marker file is missing or invalid
    """
    marker = await read_marker_file(directory / BACKUP_INFO_FILENAME)
    return BackupEntry(
        marker=marker,
        directory=directory,
        archive_path=directory / BACKUP_ARCHIVE_FILENAME,
    )


async def read_backups(
    root: SyncedRoot,
    current_device_id: uuid.UUID | None,
) -> List[BackupEntry]:
    """
    Return every readable backup in the synced root, most preferable first.

    Args:
        root: Synced storage root
        current_device_id: This installation's identifier, used for ranking

    Returns:
        Ranked list of backup entries (empty if the root is unresolvable)
    """
    directory = backups_directory(root)
    if directory is None:
        logger.info("backups_directory_unavailable")
        return []

    try:
        candidates = sorted(path for path in directory.iterdir() if path.is_dir())
    except FileNotFoundError:
        return []
    except OSError as e:
        logger.error(
            "backups_directory_unreadable",
            path=str(directory),
            error=str(e),
        )
        return []

    entries: List[BackupEntry] = []
    for candidate in candidates:
        try:
            entries.append(await read_backup_entry(candidate))
        except MarkerDecodeError as e:
            logger.warning(
                "backup_marker_skipped",
                path=str(candidate),
                error=str(e),
            )

    logger.info(
        "backups_read",
        found=len(entries),
        skipped=len(candidates) - len(entries),
    )

    return rank_entries(entries, current_device_id)
