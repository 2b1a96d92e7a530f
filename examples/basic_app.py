# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Example FastAPI Application with shelfbackup Integration.

This example demonstrates how to add backup and restore of a book store
to a FastAPI application, with automatic weekly backups to S3 or to a
synced directory.

Run with:
    uvicorn examples.basic_app:app --reload

Environment variables:
    SHELFBACKUP_STORE_PATH: Path to the book store (default: ./books.sqlite)
    SHELFBACKUP_BUCKET: S3 bucket for backups (optional; a synced directory is used otherwise)
    SHELFBACKUP_CLOUD_ROOT: Synced directory, or the S3 cache directory
    AWS_ACCESS_KEY_ID / AWS_SECRET_ACCESS_KEY: AWS credentials (S3 only)
    SHELFBACKUP_ADMIN_API_KEY: API key for admin endpoints
"""

import os
from pathlib import Path

from fastapi import FastAPI
from pydantic import BaseModel

from shelfbackup.builder import (
    backup_weekly,
    build_config,
    create_empty_config,
    with_device,
    with_local_cloud_root,
    with_poll_interval,
    with_s3_cloud_root,
    with_state_dir,
    with_store,
)
from shelfbackup.integrations.fastapi import get_backup_state, setup_backup_plugin

# Create FastAPI app
app = FastAPI(
    title="Reading List with shelfbackup",
    description="Example application demonstrating book store backup and restore",
    version="1.0.0",
)


def create_backup_config():
    """
    Create backup configuration from environment variables.

    This uses the functional builder pattern for clean, composable configuration.
    """
    store_path = Path(os.getenv("SHELFBACKUP_STORE_PATH", "./books.sqlite"))
    cloud_root = Path(os.getenv("SHELFBACKUP_CLOUD_ROOT", "./synced"))
    bucket = os.getenv("SHELFBACKUP_BUCKET")

    config = create_empty_config()
    config = with_store(config, store_path)
    config = with_state_dir(config, store_path.parent / "shelfbackup_state")

    # Back up to S3 when a bucket is given, otherwise to a synced directory
    if bucket:
        config = with_s3_cloud_root(
            config,
            bucket,
            cloud_root,
            prefix="reading-list/",
            region=os.getenv("AWS_REGION", "us-east-1"),
        )
        config = with_poll_interval(config, 30.0)
    else:
        config = with_local_cloud_root(config, cloud_root)

    config = with_device(config, os.getenv("SHELFBACKUP_DEVICE_NAME"), "desktop")
    config = backup_weekly(config)

    return build_config(config)


backup_config = create_backup_config()

# Setup shelfbackup plugin
setup_backup_plugin(app, backup_config)


# ============================================================================
# Application Routes
# ============================================================================


class Book(BaseModel):
    """Example book model."""

    id: str
    title: str
    authors: str = "[]"


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "message": "Welcome to Reading List with shelfbackup",
        "docs": "/docs",
        "backup_admin": "/admin/backups/health",
    }


@app.get("/books")
async def list_books() -> list[Book]:
    """List books in the live store."""
    store = get_backup_state(app)["store"]
    async with store.connection.execute("SELECT id, title, authors FROM book ORDER BY title") as cursor:
        return [Book(id=row[0], title=row[1], authors=row[2]) async for row in cursor]


# ============================================================================
# Backup Admin Endpoints (auto-registered by plugin)
# ============================================================================
#
# The following endpoints are automatically registered by setup_backup_plugin:
#
# GET  /admin/backups                       - List backups, most preferable first
# POST /admin/backups/run                   - Back up now
# GET  /admin/backups/candidate             - Backup a fresh install would offer
# POST /admin/backups/restore/{device_id}   - Start restoring an installation's backup
# GET  /admin/backups/restores/{restore_id} - Restore progress
# POST /admin/backups/restores/{restore_id}/cancel - Cancel a downloading restore
# PUT  /admin/backups/schedule              - Change the automatic backup frequency
# GET  /admin/backups/status                - Service status
# GET  /admin/backups/health                - Health check
# GET  /admin/backups/config                - Configuration
#
# All admin endpoints require: Authorization: Bearer <SHELFBACKUP_ADMIN_API_KEY>


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
