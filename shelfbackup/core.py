# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Shelfbackup Core - Service wiring for backup and restore.

This module builds the explicitly owned runtime state (synced root, live
store, catalog monitor) from a configuration and coordinates backups and
restores against it. Nothing here is global: every function takes the
state it works on.
"""

import asyncio
import uuid
from dataclasses import dataclass
from datetime import datetime, UTC
from typing import Dict, List, TypedDict

import structlog

from shelfbackup.backup.manager import perform_backup
from shelfbackup.backup.restore import RestoreState
from shelfbackup.backup.session import RestoreSession
from shelfbackup.catalog import read_backups
from shelfbackup.cloud.base import SyncedRoot
from shelfbackup.cloud.local import LocalSyncedRoot
from shelfbackup.cloud.monitor import BackupInfoMonitor
from shelfbackup.cloud.s3 import S3SyncedRoot
from shelfbackup.config import BackupConfig, CloudBackend
from shelfbackup.device import DeviceInfo, InstallationIdentity
from shelfbackup.exceptions import BackupError, ConfigurationError, ShelfBackupError
from shelfbackup.marker import BackupEntry
from shelfbackup.store.base import PersistentStore
from shelfbackup.store.schema import BOOKS_SCHEMA, SchemaRegistry
from shelfbackup.store.sqlite import SQLiteStore

logger = structlog.get_logger()


@dataclass
class BackupStatus:
    """Snapshot of the backup service's state."""

    cloud_available: bool
    installation_id: str | None
    initial_sync_complete: bool
    last_backup_at: datetime | None
    total_backups: int
    total_restores: int
    active_restore_id: str | None
    active_restore_state: str | None
    last_error: str | None


class BackupState(TypedDict):
    """Runtime state for backup and restore operations."""

    root: SyncedRoot
    store: PersistentStore
    owns_store: bool
    schema: SchemaRegistry
    identity: InstallationIdentity
    device: DeviceInfo
    monitor: BackupInfoMonitor
    restore_sessions: Dict[str, RestoreSession]
    restore_tasks: Dict[str, asyncio.Task]
    active_restore: RestoreSession | None
    backups_in_progress: int
    last_backup_at: datetime | None
    total_backups: int
    total_restores: int
    last_error: str | None


def create_synced_root(config: BackupConfig) -> SyncedRoot:
    """Create the synced root the configuration describes."""
    if config.cloud_backend == CloudBackend.S3:
        if config.bucket is None or config.cloud_root is None:
            raise ConfigurationError(
                "S3 cloud backend requires a bucket and a cache directory",
                details={"bucket": config.bucket, "cloud_root": str(config.cloud_root)},
            )
        return S3SyncedRoot(
            config.bucket,
            config.cloud_root,
            prefix=config.prefix,
            region=config.region,
            endpoint_url=config.endpoint_url,
        )
    return LocalSyncedRoot(config.cloud_root)


def create_device_info(config: BackupConfig) -> DeviceInfo:
    if config.device_name:
        return DeviceInfo(name=config.device_name, device_class=config.device_class)
    return DeviceInfo(device_class=config.device_class)


async def initialize_backup_state(
    config: BackupConfig,
    root: SyncedRoot | None = None,
    store: PersistentStore | None = None,
    schema: SchemaRegistry = BOOKS_SCHEMA,
) -> BackupState:
    """
    Initialize runtime state for backup operations.

    Opens (and migrates) the live store, and starts watching the synced
    root for backup markers.

    Args:
        config: Backup configuration
        root: Synced root to use instead of the configured one
        store: An already initialized store to use instead of opening config.store_path
        schema: Schema versions this installation recognizes

    Returns:
        Initialized BackupState dictionary
    """
    config.state_dir.mkdir(parents=True, exist_ok=True)

    root = root or create_synced_root(config)

    owns_store = store is None
    if store is None:
        sqlite_store = SQLiteStore(config.store_path, schema)
        await sqlite_store.initialize()
        store = sqlite_store

    monitor = BackupInfoMonitor(root, poll_interval=config.poll_interval_seconds)
    await monitor.start()

    logger.info(
        "backup_state_initialized",
        cloud_backend=config.cloud_backend.value,
        container=str(root.container_path()),
    )

    return BackupState(
        root=root,
        store=store,
        owns_store=owns_store,
        schema=schema,
        identity=InstallationIdentity(config.state_dir),
        device=create_device_info(config),
        monitor=monitor,
        restore_sessions={},
        restore_tasks={},
        active_restore=None,
        backups_in_progress=0,
        last_backup_at=None,
        total_backups=0,
        total_restores=0,
        last_error=None,
    )


def _restore_in_progress(state: BackupState) -> RestoreSession | None:
    session = state["active_restore"]
    if session is not None and not session.state.is_terminal:
        return session
    return None


async def run_backup(config: BackupConfig, state: BackupState) -> BackupEntry:
    """
    Back up the live store into this installation's slot.

    Raises:
        BackupError: If a restore is running, or the backup fails
    """
    active = _restore_in_progress(state)
    if active is not None:
        raise BackupError(
            "Cannot back up while a restore is in progress",
            details={"restore_id": active.restore_id, "state": active.state.value},
        )

    state["backups_in_progress"] += 1
    try:
        entry = await perform_backup(
            state["root"],
            state["store"],
            state["identity"],
            state["device"],
            state["schema"],
        )
    except ShelfBackupError as e:
        state["last_error"] = str(e)
        logger.error("backup_failed", error=str(e))
        raise
    finally:
        state["backups_in_progress"] -= 1

    state["last_backup_at"] = datetime.now(UTC)
    state["total_backups"] += 1
    state["last_error"] = None
    return entry


async def list_backups(state: BackupState) -> List[BackupEntry]:
    """All readable backups, most preferable first."""
    return await read_backups(state["root"], state["identity"].identifier())


async def find_backup(state: BackupState, device_id: uuid.UUID) -> BackupEntry | None:
    """The backup made by the installation with the given identifier."""
    for entry in await list_backups(state):
        if entry.marker.device_vendor_id == device_id:
            return entry
    return None


def begin_restore(config: BackupConfig, state: BackupState, entry: BackupEntry) -> RestoreSession:
    """
    Start restoring a backup in the background.

    The returned session can be inspected, and cancelled while downloading.
    Backups are refused until it reaches a terminal state.

    Raises:
        ShelfBackupError: If another restore or a backup is already running
    """
    active = _restore_in_progress(state)
    if active is not None:
        raise ShelfBackupError(
            "A restore is already in progress",
            details={"restore_id": active.restore_id, "state": active.state.value},
        )
    if state["backups_in_progress"]:
        raise ShelfBackupError(
            "Cannot restore while a backup is in progress",
            details={"backups_in_progress": state["backups_in_progress"]},
        )

    session = RestoreSession(
        entry,
        state["root"],
        state["store"],
        state["schema"],
        download_timeout=config.archive_download_timeout_seconds,
        poll_interval=config.poll_interval_seconds,
    )
    state["active_restore"] = session
    state["restore_sessions"][session.restore_id] = session

    task = asyncio.create_task(session.run(), name=f"restore:{session.restore_id}")
    state["restore_tasks"][session.restore_id] = task

    def finished(done: asyncio.Task) -> None:
        state["restore_tasks"].pop(session.restore_id, None)
        if done.cancelled():
            return
        error = done.exception()
        if error is not None:
            state["last_error"] = str(error)
            logger.error("restore_task_failed", restore_id=session.restore_id, error=str(error))
            return
        result = done.result()
        if result.succeeded:
            state["total_restores"] += 1
        elif result.failure is not None:
            state["last_error"] = str(result.failure)

    task.add_done_callback(finished)
    logger.info("restore_begun", restore_id=session.restore_id, directory=str(entry.directory))
    return session


def get_restore(state: BackupState, restore_id: str) -> RestoreSession | None:
    return state["restore_sessions"].get(restore_id)


async def get_status(config: BackupConfig, state: BackupState) -> BackupStatus:
    """Get the current backup service status."""
    installation_id = state["identity"].identifier()
    active = state["active_restore"]

    return BackupStatus(
        cloud_available=state["root"].container_path() is not None,
        installation_id=str(installation_id) if installation_id else None,
        initial_sync_complete=state["monitor"].has_downloaded_all_initial_info_files,
        last_backup_at=state["last_backup_at"],
        total_backups=state["total_backups"],
        total_restores=state["total_restores"],
        active_restore_id=active.restore_id if active else None,
        active_restore_state=active.state.value if active else None,
        last_error=state["last_error"],
    )


async def shutdown_backup_state(state: BackupState) -> None:
    """Cleanup resources."""
    for session in list(state["restore_sessions"].values()):
        if session.state == RestoreState.DOWNLOADING:
            session.cancel()

    # A restore already mutating the store must run to completion
    pending = list(state["restore_tasks"].values())
    if pending:
        await asyncio.gather(*pending, return_exceptions=True)

    state["monitor"].stop()

    if state["owns_store"]:
        try:
            await state["store"].close()
        except Exception as e:
            logger.warning("store_close_failed", error=str(e))

    logger.info("backup_state_shutdown_complete")
