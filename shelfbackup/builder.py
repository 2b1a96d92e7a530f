# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Shelfbackup Builder - Functional builder pattern for configuration.

This module provides pure functions for building BackupConfig objects.
Each function takes a config dict and returns a new dict with the
modification applied (immutable updates).
"""

from pathlib import Path
from typing import Any, Callable, Dict

from shelfbackup.config import BackupConfig, BackupFrequency, CloudBackend
from shelfbackup.device import DeviceClass


# Type alias for builder functions
ConfigDict = Dict[str, Any]
BuilderFunc = Callable[[ConfigDict], ConfigDict]


def create_empty_config() -> ConfigDict:
    """
    Create an initial empty configuration dictionary.

    Returns:
        Dict with default values for all configuration fields
    """
    return {
        "store_path": None,
        "state_dir": Path("./shelfbackup_state"),
        "cloud_backend": CloudBackend.LOCAL,
        "cloud_root": None,
        "bucket": None,
        "prefix": "",
        "region": "us-east-1",
        "endpoint_url": None,
        "device_name": None,
        "device_class": DeviceClass.DESKTOP,
        "poll_interval_seconds": 5.0,
        "first_launch_wait_seconds": 10.0,
        "archive_download_timeout_seconds": None,
        "backup_frequency": BackupFrequency.DAILY,
    }


def with_store(config: ConfigDict, store_path: Path | str) -> ConfigDict:
    """
    Set the path of the live SQLite store.

    Args:
        config: Current configuration dictionary
        store_path: Path to the store's primary file

    Returns:
        New configuration dictionary with the store path set
    """
    return {**config, "store_path": Path(store_path)}


def with_state_dir(config: ConfigDict, state_dir: Path | str) -> ConfigDict:
    """Set the directory holding installation identity and scheduler state."""
    return {**config, "state_dir": Path(state_dir)}


def with_local_cloud_root(config: ConfigDict, directory: Path | str) -> ConfigDict:
    """
    Use a locally synced directory as the synced root.

    Args:
        config: Current configuration dictionary
        directory: Directory kept in sync by an external client

    Returns:
        New configuration dictionary with the local backend selected
    """
    return {
        **config,
        "cloud_backend": CloudBackend.LOCAL,
        "cloud_root": Path(directory),
    }


def with_s3_cloud_root(
    config: ConfigDict,
    bucket: str,
    cache_dir: Path | str,
    *,
    prefix: str = "",
    region: str = "us-east-1",
    endpoint_url: str | None = None,
) -> ConfigDict:
    """
    Use an S3 bucket as the synced root.

    Args:
        config: Current configuration dictionary
        bucket: S3 bucket holding the backups
        cache_dir: Local directory mirroring downloaded objects
        prefix: Key prefix under which the root lives
        region: AWS region (e.g., 'us-east-1', 'eu-west-1')
        endpoint_url: Alternative endpoint for S3-compatible storage

    Returns:
        New configuration dictionary with the S3 backend selected
    """
    return {
        **config,
        "cloud_backend": CloudBackend.S3,
        "cloud_root": Path(cache_dir),
        "bucket": bucket,
        "prefix": prefix,
        "region": region,
        "endpoint_url": endpoint_url,
    }


def with_device(
    config: ConfigDict,
    name: str | None = None,
    device_class: DeviceClass | str = DeviceClass.DESKTOP,
) -> ConfigDict:
    """
    Describe this device for backup markers.

    Args:
        config: Current configuration dictionary
        name: Human-readable device name (defaults to the host name)
        device_class: 'phone', 'tablet', 'desktop' or 'unspecified'

    Returns:
        New configuration dictionary with the device set
    """
    if isinstance(device_class, str):
        device_class = DeviceClass(device_class.lower())
    return {**config, "device_name": name, "device_class": device_class}


def backup_daily(config: ConfigDict) -> ConfigDict:
    """Run automatic backups once a day."""
    return {**config, "backup_frequency": BackupFrequency.DAILY}


def backup_weekly(config: ConfigDict) -> ConfigDict:
    """Run automatic backups once a week."""
    return {**config, "backup_frequency": BackupFrequency.WEEKLY}


def disable_auto_backup(config: ConfigDict) -> ConfigDict:
    """Turn automatic backups off."""
    return {**config, "backup_frequency": BackupFrequency.OFF}


def with_poll_interval(config: ConfigDict, seconds: float) -> ConfigDict:
    """
    Set the fallback poll interval for remote changes.

    Args:
        config: Current configuration dictionary
        seconds: Interval between polls

    Returns:
        New configuration dictionary with the poll interval set
    """
    if seconds <= 0:
        raise ValueError(f"poll interval must be > 0, got {seconds}")
    return {**config, "poll_interval_seconds": seconds}


def with_first_launch_wait(config: ConfigDict, seconds: float) -> ConfigDict:
    if seconds < 0:
        raise ValueError(f"first launch wait must be >= 0, got {seconds}")
    return {**config, "first_launch_wait_seconds": seconds}


def with_archive_download_timeout(config: ConfigDict, seconds: float | None) -> ConfigDict:
    if seconds is not None and seconds <= 0:
        raise ValueError(f"archive download timeout must be > 0, got {seconds}")
    return {**config, "archive_download_timeout_seconds": seconds}


def build_config(config_dict: ConfigDict) -> BackupConfig:
    """
    Validate and build an immutable BackupConfig from a configuration dictionary.

    Args:
        config_dict: Configuration dictionary built using builder functions

    Returns:
        Validated, immutable BackupConfig instance

    Raises:
        ConfigurationError: If validation fails
    """
    if not config_dict.get("store_path"):
        from shelfbackup.exceptions import ConfigurationError

        raise ConfigurationError("store_path is required")

    return BackupConfig(**config_dict)


def pipe(*funcs: BuilderFunc) -> BuilderFunc:
    """
    Compose multiple builder functions into a single function.

    This allows a more readable pipeline style:

        config = pipe(
            lambda c: with_store(c, "books.sqlite"),
            lambda c: with_local_cloud_root(c, "~/Sync"),
            backup_weekly,
        )(create_empty_config())

    Args:
        *funcs: Builder functions to compose

    Returns:
        A single function that applies all functions in sequence
    """

    def composed(config: ConfigDict) -> ConfigDict:
        result = config
        for func in funcs:
            result = func(result)
        return result

    return composed


def build_from_steps(*steps: BuilderFunc) -> BackupConfig:
    """
    Build config by applying a sequence of builder functions.

    This is a convenience function that combines pipe() and build_config().

    Example:
        config = build_from_steps(
            lambda c: with_store(c, "books.sqlite"),
            lambda c: with_s3_cloud_root(c, "my-backups", "./cache"),
            disable_auto_backup,
        )

    Args:
        *steps: Builder functions to apply in sequence

    Returns:
        Validated, immutable BackupConfig instance
    """
    return build_config(pipe(*steps)(create_empty_config()))


def create_config(
    store_path: str | Path,
    *,
    cloud_root: str | Path | None = None,
    cloud_backend: str | CloudBackend = "local",
    bucket: str | None = None,
    prefix: str = "",
    region: str = "us-east-1",
    endpoint_url: str | None = None,
    state_dir: str | Path | None = None,
    device_name: str | None = None,
    device_class: str | DeviceClass = "desktop",
    backup_frequency: str | BackupFrequency = "daily",
    **kwargs: Any,
) -> BackupConfig:
    """
    Create backup configuration from simple parameters.

    This is the recommended user-facing API for creating configurations.

    Args:
        store_path: Path to the live SQLite store (required)
        cloud_root: Synced directory (local backend) or cache directory (s3 backend)
        cloud_backend: "local" or "s3" (default: "local")
        bucket: S3 bucket name (s3 backend only)
        prefix: S3 key prefix (s3 backend only)
        region: AWS region (default: "us-east-1")
        endpoint_url: S3-compatible endpoint (optional)
        state_dir: Directory for identity and scheduler state
        device_name: Device name recorded in backups (default: host name)
        device_class: "phone", "tablet", "desktop" or "unspecified"
        backup_frequency: "daily", "weekly" or "off" (default: "daily")
        **kwargs: Additional configuration options

    Returns:
        Validated, immutable BackupConfig instance

    Example:
        # A directory synced by another client
        config = create_config(
            store_path="~/.local/share/books/books.sqlite",
            cloud_root="~/Dropbox/Books",
        )

        # An S3 bucket
        config = create_config(
            store_path="books.sqlite",
            cloud_backend="s3",
            bucket="my-book-backups",
            cloud_root="./s3-cache",
            backup_frequency="weekly",
        )
    """
    config_dict = with_store(create_empty_config(), store_path)

    backend = CloudBackend(cloud_backend.lower()) if isinstance(cloud_backend, str) else cloud_backend
    if backend == CloudBackend.S3:
        config_dict = with_s3_cloud_root(
            config_dict,
            bucket or "",
            cloud_root or "",
            prefix=prefix,
            region=region,
            endpoint_url=endpoint_url,
        )
        if cloud_root is None:
            config_dict["cloud_root"] = None
    elif cloud_root is not None:
        config_dict = with_local_cloud_root(config_dict, cloud_root)

    if state_dir:
        config_dict = with_state_dir(config_dict, state_dir)

    config_dict = with_device(config_dict, device_name, device_class)

    if isinstance(backup_frequency, str):
        backup_frequency = BackupFrequency(backup_frequency.lower())
    config_dict["backup_frequency"] = backup_frequency

    # Apply any additional kwargs
    for key, value in kwargs.items():
        if key in config_dict:
            config_dict[key] = value

    return build_config(config_dict)
