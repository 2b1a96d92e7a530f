# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Human-friendly error message helpers for shelfbackup.

These helpers centralize wording for restore failures, backup errors and
configuration problems so that every caller presents consistent,
actionable messages.
"""

from shelfbackup.exceptions import (
    BackupError,
    FailureKind,
    NoContainerUrlError,
    NoDeviceIdentifierError,
    RestorationFailure,
)

_RESTORATION_MESSAGES = {
    FailureKind.ARCHIVE_DOWNLOAD_TIMEOUT: (
        "The backup data could not be downloaded. "
        "Please ensure your device is connected to the Internet and try again."
    ),
    FailureKind.UNSUPPORTED_VERSION: (
        "The backup was made on a newer version of this app. "
        "Please update the app and try again."
    ),
    FailureKind.MISSING_DATA_ARCHIVE: "The backup data could not be found in cloud storage.",
    FailureKind.BACKUP_CREATION_FAILURE: (
        "An attempt to temporarily back up the current data failed, "
        "so the restore process was aborted."
    ),
    FailureKind.UNPACK_ARCHIVE_FAILURE: "The backup data could not be unpacked.",
    FailureKind.REPLACE_STORE_FAILURE: "The restoration process failed. Your existing data has been kept.",
    FailureKind.INITIALISATION_FAILURE: "The backup data could not be loaded. Your existing data has been kept.",
    FailureKind.ERROR_RECOVERY_FAILURE: (
        "An unrecoverable error occurred while restoring. "
        "Your library data may be damaged: do not make further changes, "
        "and restore from a backup as soon as possible."
    ),
}


def explain_restoration_failure(failure: RestorationFailure) -> str:
    """
    Explain a restoration failure to the user.
    """

    return _RESTORATION_MESSAGES[failure.kind]


def explain_backup_error(error: BackupError) -> str:
    """
    Explain why a backup could not be made.
    """

    if isinstance(error, NoContainerUrlError):
        return (
            "Cloud storage is not available. "
            "Check that a cloud storage root is configured and reachable."
        )
    if isinstance(error, NoDeviceIdentifierError):
        return "This device could not be identified right now. Please try again later."
    return f"The backup could not be completed: {error.message}"


def explain_missing_store_path_env() -> str:
    """
    Explain that the store path environment variable is missing.
    """

    return (
        "Persistent store path is not configured. "
        "Set the SHELFBACKUP_STORE_PATH environment variable or pass store_path=... to create_config()."
    )


def explain_missing_cloud_root() -> str:
    """
    Explain that a cloud backend has no root configured.
    """

    return (
        "No cloud storage root is configured. "
        "Set SHELFBACKUP_CLOUD_ROOT (local backend) or SHELFBACKUP_BUCKET (s3 backend)."
    )


def explain_invalid_cloud_backend_env(value: str | None) -> str:
    """
    Explain that SHELFBACKUP_CLOUD_BACKEND is invalid.
    """

    return (
        f"Invalid SHELFBACKUP_CLOUD_BACKEND value: {value!r}. "
        "Expected 'local' or 's3'."
    )


def explain_invalid_device_class_env(value: str | None) -> str:
    """
    Explain that SHELFBACKUP_DEVICE_CLASS is invalid.
    """

    return (
        f"Invalid SHELFBACKUP_DEVICE_CLASS value: {value!r}. "
        "Expected one of: 'phone', 'tablet', 'desktop', or 'unspecified'."
    )


def explain_invalid_frequency_env(value: str | None) -> str:
    """
    Explain that SHELFBACKUP_BACKUP_FREQUENCY is invalid.
    """

    return (
        f"Invalid SHELFBACKUP_BACKUP_FREQUENCY value: {value!r}. "
        "Expected 'daily', 'weekly', or 'off'."
    )


def explain_invalid_seconds_env(name: str, value: str | None) -> str:
    """
    Explain that a duration environment variable is invalid.
    """

    return f"Invalid {name} value: {value!r}. It must be a positive number of seconds."
