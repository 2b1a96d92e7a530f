# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Environment-based configuration helpers.

A small wrapper around create_config() which reads a set of well-known
SHELFBACKUP_* environment variables, for deployments configured through the
environment.
"""

from __future__ import annotations

import os

from shelfbackup.builder import create_config
from shelfbackup.config import BackupConfig, BackupFrequency, CloudBackend
from shelfbackup.device import DeviceClass
from shelfbackup.errors import (
    explain_invalid_cloud_backend_env,
    explain_invalid_device_class_env,
    explain_invalid_frequency_env,
    explain_invalid_seconds_env,
    explain_missing_cloud_root,
    explain_missing_store_path_env,
)
from shelfbackup.exceptions import ConfigurationError


def _parse_cloud_backend(value: str | None) -> CloudBackend:
    if not value:
        return CloudBackend.LOCAL
    try:
        return CloudBackend(value.lower())
    except ValueError as exc:
        raise ConfigurationError(explain_invalid_cloud_backend_env(value)) from exc


def _parse_device_class(value: str | None) -> DeviceClass:
    if not value:
        return DeviceClass.DESKTOP
    try:
        return DeviceClass(value.lower())
    except ValueError as exc:
        raise ConfigurationError(explain_invalid_device_class_env(value)) from exc


def _parse_frequency(value: str | None) -> BackupFrequency:
    if not value:
        return BackupFrequency.DAILY
    try:
        return BackupFrequency(value.lower())
    except ValueError as exc:
        raise ConfigurationError(explain_invalid_frequency_env(value)) from exc


def _parse_seconds(name: str, default: float | None) -> float | None:
    value = os.getenv(name)
    if not value:
        return default
    try:
        seconds = float(value)
    except (TypeError, ValueError) as exc:
        raise ConfigurationError(explain_invalid_seconds_env(name, value)) from exc
    if seconds <= 0:
        raise ConfigurationError(explain_invalid_seconds_env(name, value))
    return seconds


def create_config_from_env() -> BackupConfig:
    """
    Create a BackupConfig from environment variables.

    Required:
        - SHELFBACKUP_STORE_PATH: Path to the live SQLite store

    Optional environment variables:
        - SHELFBACKUP_STATE_DIR: Directory for identity and scheduler state
        - SHELFBACKUP_CLOUD_BACKEND: 'local' | 's3' (default: local)
        - SHELFBACKUP_CLOUD_ROOT: Synced directory (local) or cache directory (s3)
        - SHELFBACKUP_BUCKET: S3 bucket (required for s3)
        - SHELFBACKUP_PREFIX: S3 key prefix
        - AWS_REGION: AWS region (default: us-east-1)
        - SHELFBACKUP_ENDPOINT_URL: S3-compatible endpoint
        - SHELFBACKUP_DEVICE_NAME: Device name recorded in backups
        - SHELFBACKUP_DEVICE_CLASS: 'phone' | 'tablet' | 'desktop' | 'unspecified'
        - SHELFBACKUP_BACKUP_FREQUENCY: 'daily' | 'weekly' | 'off' (default: daily)
        - SHELFBACKUP_POLL_INTERVAL: Seconds between remote polls (default: 5)
        - SHELFBACKUP_FIRST_LAUNCH_WAIT: Seconds to wait for the initial sync (default: 10)
        - SHELFBACKUP_ARCHIVE_DOWNLOAD_TIMEOUT: Seconds to wait for an archive download
    """

    store_path = os.getenv("SHELFBACKUP_STORE_PATH")
    if not store_path:
        raise ConfigurationError(explain_missing_store_path_env())

    backend = _parse_cloud_backend(os.getenv("SHELFBACKUP_CLOUD_BACKEND"))
    cloud_root = os.getenv("SHELFBACKUP_CLOUD_ROOT") or None
    bucket = os.getenv("SHELFBACKUP_BUCKET") or None

    if backend == CloudBackend.S3 and not (bucket and cloud_root):
        raise ConfigurationError(explain_missing_cloud_root())

    return create_config(
        store_path=store_path,
        cloud_root=cloud_root,
        cloud_backend=backend,
        bucket=bucket,
        prefix=os.getenv("SHELFBACKUP_PREFIX", ""),
        region=os.getenv("AWS_REGION", "us-east-1"),
        endpoint_url=os.getenv("SHELFBACKUP_ENDPOINT_URL") or None,
        state_dir=os.getenv("SHELFBACKUP_STATE_DIR") or None,
        device_name=os.getenv("SHELFBACKUP_DEVICE_NAME") or None,
        device_class=_parse_device_class(os.getenv("SHELFBACKUP_DEVICE_CLASS")),
        backup_frequency=_parse_frequency(os.getenv("SHELFBACKUP_BACKUP_FREQUENCY")),
        poll_interval_seconds=_parse_seconds("SHELFBACKUP_POLL_INTERVAL", 5.0),
        first_launch_wait_seconds=_parse_seconds("SHELFBACKUP_FIRST_LAUNCH_WAIT", 10.0),
        archive_download_timeout_seconds=_parse_seconds("SHELFBACKUP_ARCHIVE_DOWNLOAD_TIMEOUT", None),
    )
