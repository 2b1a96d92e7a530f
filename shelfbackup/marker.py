# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Shelfbackup Marker Records - The small metadata file stored beside each archive.

A marker record describes one backup: which installation made it, when,
on what kind of device, against which schema version, and how large the
paired archive is. Marker records are immutable; every backup writes a
fresh one.

The JSON keys match the marker files written by the mobile app, so
that existing backups stay readable. Decoding is deliberately tolerant:
unknown keys are ignored, and the legacy numeric date and device idiom
encodings are accepted alongside the current ones.
"""

import os
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, UTC
from functools import cmp_to_key
from pathlib import Path
from typing import Iterable, List

import aiofiles
import structlog
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from shelfbackup.device import DeviceClass, DeviceInfo
from shelfbackup.exceptions import MarkerDecodeError

logger = structlog.get_logger()

# Numeric "created" values are seconds since this instant
REFERENCE_DATE = datetime(2001, 1, 1, tzinfo=UTC)

# Integer device idiom codes written by older app versions
_IDIOM_CODES = {
    0: DeviceClass.PHONE,
    1: DeviceClass.TABLET,
    5: DeviceClass.DESKTOP,
}


class BackupMarkerRecord(BaseModel):
    """Metadata describing a single backup."""

    model_config = ConfigDict(frozen=True, extra="ignore", populate_by_name=True)

    device_vendor_id: uuid.UUID = Field(alias="deviceVendorIdentifier")
    device_name: str = Field(alias="deviceName")
    created_at: datetime = Field(alias="created")
    device_class: DeviceClass = Field(alias="deviceIdiom")
    schema_version: str = Field(alias="modelVersion")
    archive_size_bytes: int = Field(alias="sizeBytes", ge=0)

    @field_validator("created_at", mode="before")
    @classmethod
    def _parse_reference_date(cls, value):
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return REFERENCE_DATE + timedelta(seconds=value)
        return value

    @field_validator("created_at")
    @classmethod
    def _ensure_utc(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=UTC)
        return value.astimezone(UTC)

    @field_validator("device_class", mode="before")
    @classmethod
    def _parse_device_class(cls, value):
        if isinstance(value, int) and not isinstance(value, bool):
            return _IDIOM_CODES.get(value, DeviceClass.UNSPECIFIED)
        if isinstance(value, str) and value not in DeviceClass._value2member_map_:
            return DeviceClass.UNSPECIFIED
        return value

    @classmethod
    def for_current_device(
        cls,
        device_id: uuid.UUID,
        device: DeviceInfo,
        schema_version: str,
        archive_size_bytes: int,
    ) -> "BackupMarkerRecord":
        """Build a new marker record stamped with the current time."""
        return cls(
            device_vendor_id=device_id,
            device_name=device.name,
            created_at=datetime.now(UTC),
            device_class=device.device_class,
            schema_version=schema_version,
            archive_size_bytes=archive_size_bytes,
        )

    def is_preferable_to(
        self,
        other: "BackupMarkerRecord",
        current_device_id: uuid.UUID | None,
    ) -> bool:
        """
        Whether this backup should be used in preference to `other`.

        Backups made by the current installation win. Otherwise the earlier
        backup wins: a foreign device's earliest backup is the most likely
        original source of the data.
        """
        this_is_current = current_device_id is not None and self.device_vendor_id == current_device_id
        other_is_current = current_device_id is not None and other.device_vendor_id == current_device_id
        if this_is_current and not other_is_current:
            return True
        if other_is_current and not this_is_current:
            return False
        return self.created_at < other.created_at


@dataclass(frozen=True)
class BackupEntry:
    """A marker record together with the locations of its backup on disk."""

    marker: BackupMarkerRecord
    directory: Path
    archive_path: Path

    def is_preferable_to(self, other: "BackupEntry", current_device_id: uuid.UUID | None) -> bool:
        return self.marker.is_preferable_to(other.marker, current_device_id)

    def to_dict(self) -> dict:
        return {
            "device_id": str(self.marker.device_vendor_id),
            "device_name": self.marker.device_name,
            "device_class": self.marker.device_class.value,
            "created_at": self.marker.created_at.isoformat(),
            "schema_version": self.marker.schema_version,
            "archive_size_bytes": self.marker.archive_size_bytes,
            "directory": str(self.directory),
            "archive_path": str(self.archive_path),
        }


def encode_marker(record: BackupMarkerRecord) -> bytes:
    """Encode a marker record as UTF-8 JSON."""
    return record.model_dump_json(by_alias=True).encode("utf-8")


def decode_marker(data: bytes) -> BackupMarkerRecord:
    """
    Decode a marker record.

    Raises:
        MarkerDecodeError: If the data is not a valid marker record
    """
    try:
        return BackupMarkerRecord.model_validate_json(data)
    except ValidationError as e:
        raise MarkerDecodeError(
            f"Invalid backup marker: {e.error_count()} validation error(s)",
            details={"errors": [err["msg"] for err in e.errors()]},
        ) from e


async def read_marker_file(path: Path) -> BackupMarkerRecord:
    """
    Read and decode a marker file.

    Raises:
        MarkerDecodeError: If the file is missing, unreadable or invalid
    """
    try:
        async with aiofiles.open(path, "rb") as f:
            data = await f.read()
    except OSError as e:
        raise MarkerDecodeError(
            f"Could not read backup marker: {e}",
            details={"path": str(path)},
        ) from e

    return decode_marker(data)


async def write_marker_file(path: Path, record: BackupMarkerRecord) -> Path:
    """
    Write a marker file, replacing any existing one.

    The file is written atomically (write to temp, then rename) so that a
    reader never observes a partially written marker.
    """
    temp_path = path.with_name(f".{path.name}.tmp")

    async with aiofiles.open(temp_path, "wb") as f:
        await f.write(encode_marker(record))

    os.replace(temp_path, path)

    logger.debug("marker_file_written", path=str(path))
    return path


def rank_entries(
    entries: Iterable[BackupEntry],
    current_device_id: uuid.UUID | None,
) -> List[BackupEntry]:
    """
    Sort entries so the most preferable comes first.

    The preference relation is used as a strict-less-than predicate; the
    sort is stable, so entries which neither precede the other keep their
    input order.
    """

    def compare(a: BackupEntry, b: BackupEntry) -> int:
        if a.is_preferable_to(b, current_device_id):
            return -1
        if b.is_preferable_to(a, current_device_id):
            return 1
        return 0

    return sorted(entries, key=cmp_to_key(compare))


def preferred_entry(
    entries: Iterable[BackupEntry],
    current_device_id: uuid.UUID | None,
) -> BackupEntry | None:
    """Return the most preferable entry, or None if there are none."""
    best: BackupEntry | None = None
    for entry in entries:
        if best is None or entry.is_preferable_to(best, current_device_id):
            best = entry
    return best
