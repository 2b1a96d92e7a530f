# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Shelfbackup Exceptions - Custom exceptions and restore failure taxonomy.
"""

from dataclasses import dataclass
from enum import Enum


class ShelfBackupError(Exception):
    """Base exception for all shelfbackup errors."""

    def __init__(self, message: str, details: dict | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} | Details: {self.details}"
        return self.message


class ConfigurationError(ShelfBackupError):
    """Raised when configuration is invalid."""

    pass


class BackupError(ShelfBackupError):
    """Raised when a backup cannot be produced."""

    pass


class NoContainerUrlError(BackupError):
    """Raised when the synced storage root cannot be resolved."""

    pass


class NoDeviceIdentifierError(BackupError):
    """Raised when no installation identifier is currently available."""

    pass


class ArchiveError(ShelfBackupError):
    """Raised when packing or unpacking a data archive fails."""

    pass


class MarkerDecodeError(ShelfBackupError):
    """Raised when a backup marker file cannot be decoded."""

    pass


class StoreError(ShelfBackupError):
    """Raised when persistent store operations fail."""

    pass


class CloudStorageError(ShelfBackupError):
    """Raised when synced storage operations fail."""

    pass


class FailureKind(str, Enum):
    """The ways in which a restoration can fail."""

    ARCHIVE_DOWNLOAD_TIMEOUT = "archive_download_timeout"
    UNSUPPORTED_VERSION = "unsupported_version"
    MISSING_DATA_ARCHIVE = "missing_data_archive"
    BACKUP_CREATION_FAILURE = "backup_creation_failure"
    UNPACK_ARCHIVE_FAILURE = "unpack_archive_failure"
    REPLACE_STORE_FAILURE = "replace_store_failure"
    INITIALISATION_FAILURE = "initialisation_failure"
    ERROR_RECOVERY_FAILURE = "error_recovery_failure"


@dataclass(frozen=True)
class RestorationFailure:
    """
    A typed restoration failure.

    ERROR_RECOVERY_FAILURE wraps the failure which triggered the recovery
    attempt in `original`, or carries only a `cause` when the restore stopped
    part way through. Every other kind may carry the underlying exception in
    `cause`.
    """

    kind: FailureKind
    cause: BaseException | None = None
    original: "RestorationFailure | None" = None

    @property
    def is_unrecoverable(self) -> bool:
        """True when the live store may have been left in an unknown state."""
        return self.kind == FailureKind.ERROR_RECOVERY_FAILURE

    def to_dict(self) -> dict:
        return {
            "kind": self.kind.value,
            "cause": str(self.cause) if self.cause else None,
            "original": self.original.to_dict() if self.original else None,
            "unrecoverable": self.is_unrecoverable,
        }

    def __str__(self) -> str:
        if self.original is not None:
            return f"{self.kind.value} ({self.original})"
        if self.cause is not None:
            return f"{self.kind.value}: {self.cause}"
        return self.kind.value


class RestoreError(ShelfBackupError):
    """Raised when a restoration fails, wrapping the typed failure."""

    def __init__(self, failure: RestorationFailure, details: dict | None = None):
        self.failure = failure
        super().__init__(f"Restoration failed: {failure}", details)
