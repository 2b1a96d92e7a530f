# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Cloud Availability - Synced storage roots and the monitors watching them.
"""

from shelfbackup.cloud.base import (
    DownloadStatus,
    RemoteItem,
    SyncedRoot,
    name_equals,
    path_equals,
)

from shelfbackup.cloud.local import LocalSyncedRoot
from shelfbackup.cloud.s3 import S3SyncedRoot

from shelfbackup.cloud.queue import SerialQueue
from shelfbackup.cloud.query import MetadataQuery
from shelfbackup.cloud.monitor import BackupInfoMonitor

__all__ = [
    # Roots
    "DownloadStatus",
    "RemoteItem",
    "SyncedRoot",
    "LocalSyncedRoot",
    "S3SyncedRoot",
    "name_equals",
    "path_equals",
    # Watching
    "SerialQueue",
    "MetadataQuery",
    "BackupInfoMonitor",
]
