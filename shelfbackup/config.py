# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Shelfbackup Configuration - Immutable configuration data structures.

All configuration is frozen (immutable) after creation to prevent
accidental modification while backups and restores are running.
"""

from dataclasses import dataclass, field
from datetime import timedelta
from enum import Enum
from pathlib import Path
from typing import List
import re

from shelfbackup.device import DeviceClass


class CloudBackend(str, Enum):
    """Where the synced root lives."""

    LOCAL = "local"  # A directory kept in sync by an external client
    S3 = "s3"  # An S3 bucket, mirrored into a local cache directory


class BackupFrequency(str, Enum):
    """How often automatic backups run."""

    DAILY = "daily"
    WEEKLY = "weekly"
    OFF = "off"

    @property
    def duration(self) -> timedelta | None:
        if self == BackupFrequency.DAILY:
            return timedelta(days=1)
        if self == BackupFrequency.WEEKLY:
            return timedelta(days=7)
        return None


def _validate_bucket_name(bucket: str) -> bool:
    """
    Validate S3 bucket name according to AWS rules.

    Rules:
    - 3-63 characters
    - Lowercase letters, numbers, hyphens
    - Must start and end with letter or number
    - No consecutive periods
    - Not formatted as IP address
    """
    if not bucket or len(bucket) < 3 or len(bucket) > 63:
        return False

    if not re.match(r"^[a-z0-9][a-z0-9.-]*[a-z0-9]$", bucket):
        return False

    if ".." in bucket:
        return False

    if re.match(r"^\d+\.\d+\.\d+\.\d+$", bucket):
        return False

    return True


@dataclass(frozen=True)
class BackupConfig:
    """
    Immutable configuration for backing up and restoring the book store.
    """

    # Required: path to the live SQLite store
    store_path: Path

    # Directory for installation identity and scheduler state
    state_dir: Path = field(default_factory=lambda: Path("./shelfbackup_state"))

    # Synced root backend
    cloud_backend: CloudBackend = CloudBackend.LOCAL

    # Local synced directory (local backend); None means no synced root is available
    cloud_root: Path | None = None

    # S3 backend settings
    bucket: str | None = None
    prefix: str = ""
    region: str = "us-east-1"
    endpoint_url: str | None = None

    # Description of this device, recorded in backup markers
    device_name: str | None = None
    device_class: DeviceClass = DeviceClass.DESKTOP

    # Fallback poll interval for remote changes
    poll_interval_seconds: float = 5.0

    # Longest wait for the catalog's initial sync before a first-launch prompt
    first_launch_wait_seconds: float = 10.0

    # Longest wait for a backup archive download; None waits indefinitely
    archive_download_timeout_seconds: float | None = None

    # Automatic backup schedule
    backup_frequency: BackupFrequency = BackupFrequency.DAILY

    def __post_init__(self) -> None:
        """Validate configuration after creation."""
        errors: List[str] = []

        if not self.store_path or not str(self.store_path):
            errors.append("store_path is required")

        if self.cloud_backend == CloudBackend.S3:
            if not self.bucket or not _validate_bucket_name(self.bucket):
                errors.append(f"Invalid bucket name: {self.bucket}")
            if self.cloud_root is None:
                errors.append("cloud_root (local cache directory) required for the s3 backend")

        if self.prefix and self.prefix.startswith("/"):
            errors.append(f"prefix must not start with '/', got {self.prefix}")

        if self.poll_interval_seconds <= 0:
            errors.append(f"poll_interval_seconds must be > 0, got {self.poll_interval_seconds}")

        if self.first_launch_wait_seconds < 0:
            errors.append(f"first_launch_wait_seconds must be >= 0, got {self.first_launch_wait_seconds}")

        if self.archive_download_timeout_seconds is not None and self.archive_download_timeout_seconds <= 0:
            errors.append(
                f"archive_download_timeout_seconds must be > 0, got {self.archive_download_timeout_seconds}"
            )

        if errors:
            from shelfbackup.exceptions import ConfigurationError

            raise ConfigurationError(
                "Configuration validation failed",
                details={"errors": errors},
            )

    def with_updates(self, **kwargs) -> "BackupConfig":
        """
        Create a new config with updated values.

        Since the config is frozen, this creates a new instance.
        """
        from dataclasses import asdict

        current = asdict(self)
        current.update(kwargs)
        return BackupConfig(**current)
