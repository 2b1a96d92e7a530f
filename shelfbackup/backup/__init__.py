# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Backup Engine - Backup production and restore operations.
"""

from shelfbackup.backup.manager import perform_backup

from shelfbackup.backup.restore import (
    restore_from_backup,
    RestoreResult,
    RestoreState,
)

from shelfbackup.backup.download import ArchiveDownloadWatch
from shelfbackup.backup.session import RestoreSession

__all__ = [
    # Manager
    "perform_backup",
    # Restore
    "restore_from_backup",
    "RestoreResult",
    "RestoreState",
    "ArchiveDownloadWatch",
    "RestoreSession",
]
