# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Framework Integrations - FastAPI plugin.
"""

from shelfbackup.integrations.fastapi import (
    setup_backup_plugin,
    register_backup_routes,
    shelfbackup_lifespan,
    verify_api_key,
)

__all__ = [
    "setup_backup_plugin",
    "register_backup_routes",
    "shelfbackup_lifespan",
    "verify_api_key",
]
