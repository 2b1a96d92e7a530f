# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Shared constants describing the on-disk backup layout.

    <root>/Backups/<installation id>/
        backup.info     (marker record)
        data.zip        (data archive)
"""

# The name of the file recording information about a backup
BACKUP_INFO_FILENAME = "backup.info"

# The name of the archive holding the backed up data
BACKUP_ARCHIVE_FILENAME = "data.zip"

# The directory within the synced root which holds all the backups
BACKUPS_DIRECTORY_NAME = "Backups"
