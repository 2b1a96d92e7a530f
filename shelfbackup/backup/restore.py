# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Shelfbackup Restore - Replacing the live store with a backup.

The restore procedure runs once the backup's archive is fully local:

1. Check the backup's schema version is one this installation recognizes
2. Check the archive exists
3. Unpack the archive into a scratch directory
4. Snapshot the live store into a second scratch directory (the insurance copy)
5. Replace the live store files with the unpacked ones
6. Reinitialize the live store, migrating it if needed
7. If step 5 or 6 failed, put the insurance copy back and reinitialize from it

Both scratch directories are removed whatever the outcome.

The caller must guarantee that nothing else uses the live store while the
procedure runs, and must only resume using it once a result is returned.
"""

from dataclasses import dataclass
from datetime import datetime, UTC
from enum import Enum
from pathlib import Path
from typing import List

import structlog
from ulid import ULID

from shelfbackup.archive import (
    create_scratch_directory,
    remove_scratch_directory,
    unpack_archive,
)
from shelfbackup.exceptions import (
    ArchiveError,
    FailureKind,
    RestorationFailure,
    RestoreError,
)
from shelfbackup.marker import BackupEntry
from shelfbackup.store.base import PersistentStore
from shelfbackup.store.schema import SchemaRegistry

logger = structlog.get_logger()


class RestoreState(str, Enum):
    """States of a restoration."""

    IDLE = "idle"
    DETERMINING_AVAILABILITY = "determining_availability"
    DOWNLOADING = "downloading"
    RESTORING = "restoring"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (RestoreState.SUCCEEDED, RestoreState.FAILED, RestoreState.CANCELLED)


@dataclass
class RestoreResult:
    """Result of a restoration."""

    restore_id: str
    backup_directory: Path
    state: RestoreState
    failure: RestorationFailure | None = None
    duration_seconds: float = 0.0

    @property
    def succeeded(self) -> bool:
        return self.state == RestoreState.SUCCEEDED

    def raise_for_failure(self) -> None:
        """Raise RestoreError if the restoration failed."""
        if self.failure is not None:
            raise RestoreError(
                self.failure,
                details={"restore_id": self.restore_id, "backup_directory": str(self.backup_directory)},
            )

    def to_dict(self) -> dict:
        return {
            "restore_id": self.restore_id,
            "backup_directory": str(self.backup_directory),
            "state": self.state.value,
            "failure": self.failure.to_dict() if self.failure else None,
            "duration_seconds": self.duration_seconds,
        }


async def restore_from_backup(
    entry: BackupEntry,
    store: PersistentStore,
    schema: SchemaRegistry,
    restore_id: str | None = None,
) -> RestoreResult:
    """
    Restore the live store from a backup whose archive is local.

    Args:
        entry: The backup to restore
        store: The live persistent store, quiesced by the caller
        schema: Schema versions this installation recognizes
        restore_id: Identifier for logging (a new ULID if omitted)

    Returns:
        RestoreResult in state SUCCEEDED or FAILED
    """
    restore_id = restore_id or str(ULID())
    start_time = datetime.now(UTC)

    logger.info(
        "restore_started",
        restore_id=restore_id,
        backup_directory=str(entry.directory),
        schema_version=entry.marker.schema_version,
    )

    scratch_dirs: List[Path] = []
    try:
        failure = _check_version(entry, schema) or _check_archive(entry)
        if failure is None:
            failure = await _restore_files(entry, store, scratch_dirs)
    finally:
        for path in scratch_dirs:
            remove_scratch_directory(path)

    duration = (datetime.now(UTC) - start_time).total_seconds()
    state = RestoreState.SUCCEEDED if failure is None else RestoreState.FAILED

    if failure is None:
        logger.info("restore_completed", restore_id=restore_id, duration=duration)
    elif failure.is_unrecoverable:
        logger.critical(
            "restore_recovery_failed",
            restore_id=restore_id,
            failure=str(failure),
            duration=duration,
        )
    else:
        logger.error(
            "restore_failed",
            restore_id=restore_id,
            failure=str(failure),
            duration=duration,
        )

    return RestoreResult(
        restore_id=restore_id,
        backup_directory=entry.directory,
        state=state,
        failure=failure,
        duration_seconds=duration,
    )


async def _restore_files(
    entry: BackupEntry,
    store: PersistentStore,
    scratch_dirs: List[Path],
) -> RestorationFailure | None:
    """Steps 3 to 7. Scratch directories created are appended to scratch_dirs."""
    try:
        unpacked_dir = create_scratch_directory("shelfbackup-unpacked-")
    except OSError as e:
        logger.error("restore_scratch_directory_failed", purpose="unpack", error=str(e))
        return RestorationFailure(FailureKind.UNPACK_ARCHIVE_FAILURE, cause=e)
    scratch_dirs.append(unpacked_dir)

    failure = await _unpack(entry, unpacked_dir)
    if failure is not None:
        return failure

    try:
        insurance_dir = create_scratch_directory("shelfbackup-insurance-")
    except OSError as e:
        logger.error("restore_scratch_directory_failed", purpose="insurance", error=str(e))
        return RestorationFailure(FailureKind.BACKUP_CREATION_FAILURE, cause=e)
    scratch_dirs.append(insurance_dir)

    failure = await _take_insurance_copy(store, insurance_dir)
    if failure is not None:
        return failure

    failure = await _replace_store(store, unpacked_dir)
    if failure is not None:
        failure = await _recover(store, insurance_dir, failure)
    return failure


def _check_version(entry: BackupEntry, schema: SchemaRegistry) -> RestorationFailure | None:
    if schema.recognizes(entry.marker.schema_version):
        return None
    logger.warning("restore_unsupported_version", schema_version=entry.marker.schema_version)
    return RestorationFailure(FailureKind.UNSUPPORTED_VERSION)


def _check_archive(entry: BackupEntry) -> RestorationFailure | None:
    if entry.archive_path.is_file():
        return None
    logger.warning("restore_archive_missing", archive_path=str(entry.archive_path))
    return RestorationFailure(FailureKind.MISSING_DATA_ARCHIVE)


async def _unpack(entry: BackupEntry, destination: Path) -> RestorationFailure | None:
    try:
        await unpack_archive(entry.archive_path, destination)
    except ArchiveError as e:
        return RestorationFailure(FailureKind.UNPACK_ARCHIVE_FAILURE, cause=e)
    return None


async def _take_insurance_copy(store: PersistentStore, destination: Path) -> RestorationFailure | None:
    try:
        await store.snapshot_copy(destination)
    except Exception as e:
        return RestorationFailure(FailureKind.BACKUP_CREATION_FAILURE, cause=e)
    return None


async def _replace_store(store: PersistentStore, source: Path) -> RestorationFailure | None:
    """Swap in the files from source and reopen the store."""
    try:
        await store.replace_files(source)
    except Exception as e:
        return RestorationFailure(FailureKind.REPLACE_STORE_FAILURE, cause=e)

    try:
        schema_version = await store.reinitialize()
    except Exception as e:
        return RestorationFailure(FailureKind.INITIALISATION_FAILURE, cause=e)

    logger.info("restore_store_reinitialized", schema_version=schema_version)
    return None


async def _recover(
    store: PersistentStore,
    insurance_dir: Path,
    original: RestorationFailure,
) -> RestorationFailure:
    """
    Put the insurance copy back after a failed replacement.

    Returns the original failure if the store was recovered, otherwise an
    ERROR_RECOVERY_FAILURE wrapping it.
    """
    logger.warning("restore_recovery_started", failure=str(original))

    recovery_failure = await _replace_store(store, insurance_dir)
    if recovery_failure is None:
        logger.info("restore_recovery_succeeded", failure=str(original))
        return original

    return RestorationFailure(
        FailureKind.ERROR_RECOVERY_FAILURE,
        cause=recovery_failure.cause,
        original=original,
    )
