# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Shelfbackup FastAPI Integration - Plugin for FastAPI applications.

This module provides a complete integration with FastAPI including:
- Lifespan management (startup/shutdown)
- Protected admin endpoints for backups and restores
- Scheduled automatic backups
- Health checks
"""

import os
import uuid
from contextlib import asynccontextmanager
from dataclasses import asdict
from datetime import datetime, UTC

import structlog
from fastapi import Depends, FastAPI, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from shelfbackup.backup.session import RestoreSession
from shelfbackup.config import BackupConfig, BackupFrequency
from shelfbackup.core import (
    BackupState,
    begin_restore,
    find_backup,
    get_restore,
    get_status,
    initialize_backup_state,
    list_backups,
    run_backup,
    shutdown_backup_state,
)
from shelfbackup.errors import explain_backup_error, explain_restoration_failure
from shelfbackup.exceptions import (
    BackupError,
    NoContainerUrlError,
    NoDeviceIdentifierError,
    ShelfBackupError,
)
from shelfbackup.prompt import describe_candidate, find_restoration_candidate
from shelfbackup.scheduler import AutoBackupScheduler

logger = structlog.get_logger()

# Security
security = HTTPBearer(auto_error=False)


async def verify_api_key(
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
) -> bool:
    """
    Verify API key from Authorization header.

    The API key is read from the SHELFBACKUP_ADMIN_API_KEY environment variable.
    Requests must include: Authorization: Bearer <api_key>

    Raises:
        HTTPException: If API key is missing or invalid
    """
    api_key = os.getenv("SHELFBACKUP_ADMIN_API_KEY")

    if not api_key:
        raise HTTPException(
            status_code=500,
            detail="SHELFBACKUP_ADMIN_API_KEY environment variable not set",
        )

    if not credentials:
        raise HTTPException(
            status_code=401,
            detail="Authorization header required",
        )

    if credentials.credentials != api_key:
        raise HTTPException(
            status_code=403,
            detail="Invalid API key",
        )

    return True


def _session_to_dict(session: RestoreSession) -> dict:
    result = session.result
    failure = result.failure if result else None
    return {
        "restore_id": session.restore_id,
        "backup_directory": str(session.entry.directory),
        "state": session.state.value,
        "history": [state.value for state in session.history],
        "can_cancel": session.can_cancel,
        "result": result.to_dict() if result else None,
        "message": explain_restoration_failure(failure) if failure else None,
        "unrecoverable": failure.is_unrecoverable if failure else False,
    }


def register_backup_routes(
    app: FastAPI,
    config: BackupConfig,
    state: BackupState,
    prefix: str = "/admin/backups",
    scheduler: AutoBackupScheduler | None = None,
) -> None:
    """
    Register backup admin endpoints on a FastAPI app.

    All endpoints require Bearer token authentication.

    Args:
        app: FastAPI application
        config: Backup configuration
        state: Runtime state
        prefix: URL prefix for endpoints (default: /admin/backups)
        scheduler: Automatic backup scheduler, if one is running
    """

    @app.get(f"{prefix}", dependencies=[Depends(verify_api_key)])
    async def list_available_backups() -> list:
        """
        List readable backups, most preferable first.
        """
        return [entry.to_dict() for entry in await list_backups(state)]

    @app.post(f"{prefix}/run", dependencies=[Depends(verify_api_key)])
    async def trigger_backup() -> dict:
        """
        Back up the live store now.

        Returns the new backup's details.
        """
        try:
            entry = await run_backup(config, state)
        except (NoContainerUrlError, NoDeviceIdentifierError) as e:
            raise HTTPException(status_code=503, detail=explain_backup_error(e))
        except BackupError as e:
            status_code = 409 if "restore_id" in e.details else 500
            raise HTTPException(status_code=status_code, detail=explain_backup_error(e))
        return entry.to_dict()

    @app.get(f"{prefix}/candidate", dependencies=[Depends(verify_api_key)])
    async def restoration_candidate() -> dict:
        """
        The backup a fresh installation would offer to restore, if any.
        """
        entry = await find_restoration_candidate(
            state["monitor"],
            state["root"],
            state["identity"],
            state["device"],
            wait_timeout=config.first_launch_wait_seconds,
        )
        if entry is None:
            return {"candidate": None, "message": None}
        return {"candidate": entry.to_dict(), "message": describe_candidate(entry)}

    @app.post(f"{prefix}/restore/{{device_id}}", dependencies=[Depends(verify_api_key)])
    async def start_restore(device_id: str) -> dict:
        """
        Start restoring the backup made by the given installation.

        Args:
            device_id: Installation identifier of the backup to restore
        """
        try:
            installation_id = uuid.UUID(device_id)
        except ValueError:
            raise HTTPException(status_code=422, detail=f"Invalid installation id: {device_id}")

        entry = await find_backup(state, installation_id)
        if entry is None:
            raise HTTPException(status_code=404, detail=f"No backup found for installation {device_id}")

        try:
            session = begin_restore(config, state, entry)
        except ShelfBackupError as e:
            raise HTTPException(status_code=409, detail=e.message)

        return _session_to_dict(session)

    @app.get(f"{prefix}/restores/{{restore_id}}", dependencies=[Depends(verify_api_key)])
    async def restore_status(restore_id: str) -> dict:
        """
        Get the state of a restore.
        """
        session = get_restore(state, restore_id)
        if session is None:
            raise HTTPException(status_code=404, detail=f"Unknown restore: {restore_id}")
        return _session_to_dict(session)

    @app.post(f"{prefix}/restores/{{restore_id}}/cancel", dependencies=[Depends(verify_api_key)])
    async def cancel_restore(restore_id: str) -> dict:
        """
        Cancel a restore which is still downloading its archive.
        """
        session = get_restore(state, restore_id)
        if session is None:
            raise HTTPException(status_code=404, detail=f"Unknown restore: {restore_id}")
        if not session.cancel():
            raise HTTPException(
                status_code=409,
                detail=f"Restore cannot be cancelled in state {session.state.value}",
            )
        return _session_to_dict(session)

    @app.put(f"{prefix}/schedule", dependencies=[Depends(verify_api_key)])
    async def set_schedule(frequency: BackupFrequency) -> dict:
        """
        Change the automatic backup frequency.

        Args:
            frequency: daily, weekly or off
        """
        if scheduler is None:
            raise HTTPException(status_code=409, detail="Automatic backups are not running")
        await scheduler.set_frequency(frequency)
        return {
            "frequency": scheduler.frequency.value,
            "next_run_at": scheduler.next_run_time.isoformat() if scheduler.next_run_time else None,
        }

    @app.get(f"{prefix}/status", dependencies=[Depends(verify_api_key)])
    async def backup_status() -> dict:
        """
        Get current backup service status.
        """
        status = asdict(await get_status(config, state))
        if status["last_backup_at"]:
            status["last_backup_at"] = status["last_backup_at"].isoformat()
        if scheduler is not None:
            status["auto_backup"] = {
                "frequency": scheduler.frequency.value,
                "last_auto_backup_failed": scheduler.record.last_auto_backup_failed,
                "next_run_at": scheduler.next_run_time.isoformat() if scheduler.next_run_time else None,
            }
        return status

    @app.get(f"{prefix}/health", dependencies=[Depends(verify_api_key)])
    async def health_check() -> dict:
        """
        Health check endpoint.

        Verifies the synced root and the live store.
        """
        container = state["root"].container_path()
        cloud_ok = container is not None and container.exists()

        store_ok = False
        store_error = None
        try:
            store_ok = bool(state["store"].schema_version)
        except ShelfBackupError as e:
            store_error = e.message

        status = "healthy"
        if not cloud_ok or not store_ok:
            status = "degraded"
        if not cloud_ok and not store_ok:
            status = "unhealthy"

        return {
            "status": status,
            "cloud_available": cloud_ok,
            "store_open": store_ok,
            "store_error": store_error,
            "monitor_running": state["monitor"].is_running,
            "timestamp": datetime.now(UTC).isoformat(),
        }

    @app.get(f"{prefix}/config", dependencies=[Depends(verify_api_key)])
    async def get_config() -> dict:
        """
        Get current configuration.
        """
        return {
            "store_path": str(config.store_path),
            "cloud_backend": config.cloud_backend.value,
            "cloud_root": str(config.cloud_root) if config.cloud_root else None,
            "bucket": config.bucket,
            "prefix": config.prefix,
            "region": config.region,
            "device_name": state["device"].name,
            "device_class": config.device_class.value,
            "backup_frequency": config.backup_frequency.value,
            "poll_interval_seconds": config.poll_interval_seconds,
            "first_launch_wait_seconds": config.first_launch_wait_seconds,
            "archive_download_timeout_seconds": config.archive_download_timeout_seconds,
        }


async def _start_scheduler(config: BackupConfig, state: BackupState) -> AutoBackupScheduler | None:
    scheduler = AutoBackupScheduler(config, state)
    try:
        await scheduler.start()
    except Exception as e:
        logger.error("scheduler_setup_failed", error=str(e))
        return None
    return scheduler


def setup_backup_plugin(
    app: FastAPI,
    config: BackupConfig,
    prefix: str = "/admin/backups",
) -> None:
    """
    Set up the backup plugin with lifespan management.

    This is the main entry point for integrating shelfbackup with a FastAPI
    app. It sets up:
    - Startup/shutdown lifecycle events
    - Admin endpoints
    - Automatic backups

    Args:
        app: FastAPI application
        config: Backup configuration
        prefix: URL prefix for admin endpoints
    """
    # Store state in app.state for access across requests
    app.state.shelfbackup_config = config
    app.state.shelfbackup_state = None
    app.state.shelfbackup_scheduler = None

    @app.on_event("startup")
    async def startup():
        """Initialize shelfbackup on app startup."""
        logger.info("shelfbackup_plugin_starting", cloud_backend=config.cloud_backend.value)

        state = await initialize_backup_state(config)
        app.state.shelfbackup_state = state

        scheduler = await _start_scheduler(config, state)
        app.state.shelfbackup_scheduler = scheduler

        register_backup_routes(app, config, state, prefix, scheduler)

        logger.info("shelfbackup_plugin_started")

    @app.on_event("shutdown")
    async def shutdown():
        """Cleanup shelfbackup on app shutdown."""
        logger.info("shelfbackup_plugin_stopping")

        scheduler = app.state.shelfbackup_scheduler
        if scheduler:
            scheduler.shutdown()

        state = app.state.shelfbackup_state
        if state:
            await shutdown_backup_state(state)

        logger.info("shelfbackup_plugin_stopped")


@asynccontextmanager
async def shelfbackup_lifespan(app: FastAPI, config: BackupConfig, prefix: str = "/admin/backups"):
    """
    Alternative lifespan context manager for FastAPI.

    Use this instead of setup_backup_plugin if you prefer the
    lifespan pattern:

        app = FastAPI(lifespan=lambda app: shelfbackup_lifespan(app, config))

    Args:
        app: FastAPI application
        config: Backup configuration
        prefix: URL prefix for admin endpoints
    """
    logger.info("shelfbackup_lifespan_starting")

    state = await initialize_backup_state(config)
    scheduler = await _start_scheduler(config, state)
    app.state.shelfbackup_state = state
    app.state.shelfbackup_config = config
    app.state.shelfbackup_scheduler = scheduler

    register_backup_routes(app, config, state, prefix, scheduler)

    logger.info("shelfbackup_lifespan_started")

    try:
        yield
    finally:
        logger.info("shelfbackup_lifespan_stopping")
        if scheduler:
            scheduler.shutdown()
        await shutdown_backup_state(state)
        logger.info("shelfbackup_lifespan_stopped")


def get_backup_state(app: FastAPI) -> BackupState:
    """
    Get shelfbackup state from a FastAPI app.

    Useful for accessing state in custom endpoints.

    Raises:
        RuntimeError: If shelfbackup is not initialized
    """
    state = getattr(app.state, "shelfbackup_state", None)
    if not state:
        raise RuntimeError("shelfbackup not initialized. Call setup_backup_plugin first.")
    return state
