# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Shelfbackup - Backup and restore for a reading-list library.

Backs the book store up into a synced storage root (a synced directory or
an S3 bucket), one slot per installation, and restores it with automatic
rollback if a restore cannot be completed. Package name: shelfbackup.
"""

__version__ = "0.1.0"

# Configuration creation (user-facing API)
from shelfbackup.builder import create_config

# Core functions
from shelfbackup.core import (
    initialize_backup_state,
    run_backup,
    list_backups,
    begin_restore,
    get_status,
    shutdown_backup_state,
)

# Environment-based configuration
from shelfbackup.env import create_config_from_env

__all__ = [
    # Version
    "__version__",
    # Configuration creation (primary user-facing APIs)
    "create_config",
    "create_config_from_env",
    # Core orchestration functions
    "initialize_backup_state",
    "run_backup",
    "list_backups",
    "begin_restore",
    "get_status",
    "shutdown_backup_state",
]
