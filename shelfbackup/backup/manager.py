# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Shelfbackup Backup Manager - Producing this installation's backup.

Each installation owns one slot, <root>/Backups/<installation id>/, which
every backup overwrites in place:

1. Ensure the slot directory exists
2. Snapshot the live store into a scratch directory
3. Pack the snapshot into the slot's data archive
4. Discard the scratch directory
5. Measure the archive
6. Write the marker record describing the archive
7. Hand both files to the synced root for upload

No rollback is needed: a failure leaves at most an orphaned archive, which
the next successful backup overwrites.
"""

from pathlib import Path

import structlog

from shelfbackup.archive import (
    create_scratch_directory,
    pack_directory,
    remove_scratch_directory,
)
from shelfbackup.catalog import installation_backup_directory
from shelfbackup.cloud.base import SyncedRoot
from shelfbackup.constants import BACKUP_ARCHIVE_FILENAME, BACKUP_INFO_FILENAME
from shelfbackup.device import DeviceInfo, InstallationIdentity
from shelfbackup.exceptions import (
    ArchiveError,
    BackupError,
    NoContainerUrlError,
    NoDeviceIdentifierError,
)
from shelfbackup.marker import BackupEntry, BackupMarkerRecord, write_marker_file
from shelfbackup.store.base import PersistentStore
from shelfbackup.store.schema import SchemaRegistry

logger = structlog.get_logger()


async def perform_backup(
    root: SyncedRoot,
    store: PersistentStore,
    identity: InstallationIdentity,
    device: DeviceInfo,
    schema: SchemaRegistry,
) -> BackupEntry:
    """
    Back up the live store into this installation's slot.

    Args:
        root: Synced storage root
        store: The live persistent store
        identity: Provider of this installation's identifier
        device: Description of this device
        schema: Schema registry the store was migrated with

    Returns:
        The entry describing the new backup

    Raises:
        NoContainerUrlError: If the synced root cannot be resolved
        NoDeviceIdentifierError: If no installation identifier is available yet
        BackupError: If snapshotting, packing, the marker write, or publishing fails
    """
    if root.container_path() is None:
        raise NoContainerUrlError("Synced storage root is unavailable")

    device_id = identity.identifier()
    if device_id is None:
        raise NoDeviceIdentifierError("No installation identifier is available")

    directory = installation_backup_directory(root, device_id)
    if directory is None:
        raise NoContainerUrlError("Synced storage root is unavailable")

    logger.info("backup_started", directory=str(directory), device_id=str(device_id))

    try:
        directory.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise BackupError(
            f"Failed to create backup directory: {e}",
            details={"directory": str(directory)},
        ) from e

    _remove_stale_files(directory)

    archive_path = directory / BACKUP_ARCHIVE_FILENAME
    await _pack_store_snapshot(store, archive_path)

    size = _archive_size(archive_path)

    marker = BackupMarkerRecord.for_current_device(
        device_id=device_id,
        device=device,
        schema_version=schema.latest.name,
        archive_size_bytes=size,
    )
    marker_path = directory / BACKUP_INFO_FILENAME
    try:
        await write_marker_file(marker_path, marker)
    except OSError as e:
        raise BackupError(
            f"Failed to write backup marker: {e}",
            details={"marker_path": str(marker_path)},
        ) from e

    # The marker goes last so a peer never sees a marker without its archive
    try:
        await root.publish(archive_path)
        await root.publish(marker_path)
    except Exception as e:
        raise BackupError(
            f"Failed to publish backup: {e}",
            details={"directory": str(directory)},
        ) from e

    logger.info(
        "backup_completed",
        archive_path=str(archive_path),
        size=size,
        schema_version=marker.schema_version,
    )

    return BackupEntry(marker=marker, directory=directory, archive_path=archive_path)


async def _pack_store_snapshot(store: PersistentStore, archive_path: Path) -> None:
    scratch = create_scratch_directory("shelfbackup-snapshot-")
    try:
        try:
            await store.snapshot_copy(scratch)
        except Exception as e:
            raise BackupError(f"Failed to snapshot store: {e}", details={"scratch": str(scratch)}) from e

        try:
            await pack_directory(scratch, archive_path)
        except ArchiveError as e:
            raise BackupError(
                f"Failed to pack backup archive: {e.message}",
                details={"archive_path": str(archive_path)},
            ) from e
    finally:
        remove_scratch_directory(scratch)


def _archive_size(archive_path: Path) -> int:
    try:
        return archive_path.stat().st_size
    except OSError as e:
        logger.warning("backup_archive_size_unavailable", archive_path=str(archive_path), error=str(e))
        return 0


def _remove_stale_files(directory: Path) -> None:
    """Remove temporary files left behind by an interrupted backup."""
    for path in directory.glob(".*.tmp"):
        try:
            path.unlink()
            logger.debug("stale_backup_file_removed", path=str(path))
        except OSError as e:
            logger.warning("stale_backup_file_removal_failed", path=str(path), error=str(e))
