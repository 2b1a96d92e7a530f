# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
First-launch restoration prompt - deciding whether to offer a restore.

On a fresh install the catalog may still be syncing. The wait for the
monitor's initial download is bounded here rather than in the monitor: a
prompt appearing long after launch would be confusing, but other users of
the monitor are happy to wait indefinitely.

Backups are only offered between devices of the same class. They are meant
for restoring to the same device (after a reinstall) or its replacement,
not for moving data between a phone and a tablet.
"""

import structlog

from shelfbackup.catalog import read_backups
from shelfbackup.cloud.base import SyncedRoot
from shelfbackup.cloud.monitor import BackupInfoMonitor
from shelfbackup.device import DeviceInfo, InstallationIdentity
from shelfbackup.marker import BackupEntry, preferred_entry

logger = structlog.get_logger()

# How long to wait for the catalog's initial sync before giving up
DEFAULT_FIRST_LAUNCH_WAIT_SECONDS = 10.0

RESTORE_PROMPT_TITLE = "Restore from Backup?"


async def find_restoration_candidate(
    monitor: BackupInfoMonitor,
    root: SyncedRoot,
    identity: InstallationIdentity,
    device: DeviceInfo,
    wait_timeout: float | None = DEFAULT_FIRST_LAUNCH_WAIT_SECONDS,
) -> BackupEntry | None:
    """
    Find the backup to offer for restoration on first launch, if any.

    Args:
        monitor: A started BackupInfoMonitor for the root
        root: Synced storage root
        identity: Provider of this installation's identifier
        device: Description of this device
        wait_timeout: Longest wait for the initial marker downloads

    Returns:
        The preferred backup from a device of the same class, or None
    """
    if root.container_path() is None:
        logger.info("restoration_candidate_no_cloud_root")
        return None

    if not await monitor.wait_for_initial_download(timeout=wait_timeout):
        logger.info("restoration_candidate_wait_expired", timeout=wait_timeout)
        return None

    current_device_id = identity.identifier()
    backups = await read_backups(root, current_device_id)
    if not backups:
        logger.info("restoration_candidate_no_backups")
        return None

    eligible = [entry for entry in backups if entry.marker.device_class == device.device_class]
    candidate = preferred_entry(eligible, current_device_id)
    if candidate is None:
        logger.info(
            "restoration_candidate_no_match",
            backup_count=len(backups),
            device_class=device.device_class.value,
        )
        return None

    logger.info(
        "restoration_candidate_found",
        directory=str(candidate.directory),
        device_name=candidate.marker.device_name,
    )
    return candidate


def describe_candidate(entry: BackupEntry) -> str:
    created = entry.marker.created_at.astimezone()
    return (
        f"A data backup made on {created:%d %b %Y} at {created:%H:%M} on "
        f"{entry.marker.device_name} was found. "
        "Do you want to restore the data from the backup?"
    )
