# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Test fixtures for shelfbackup tests.

Provides a scriptable synced root, a scriptable persistent store, an
in-memory S3 session, SQLite store fixtures, and backup-writing helpers.
"""

import asyncio
import hashlib
import io
import os
import shutil
import tempfile
import uuid
import zipfile
from dataclasses import replace
from datetime import datetime, timedelta, UTC
from pathlib import Path
from typing import Dict, Generator, List, Set

import pytest
import pytest_asyncio
from botocore.exceptions import ClientError

from shelfbackup.cloud.base import DownloadStatus
from shelfbackup.cloud.local import LocalSyncedRoot
from shelfbackup.constants import (
    BACKUP_ARCHIVE_FILENAME,
    BACKUP_INFO_FILENAME,
    BACKUPS_DIRECTORY_NAME,
)
from shelfbackup.device import DeviceClass
from shelfbackup.exceptions import CloudStorageError, StoreError
from shelfbackup.marker import BackupEntry, BackupMarkerRecord, encode_marker

# Set test environment variables
os.environ["SHELFBACKUP_ADMIN_API_KEY"] = "test-api-key-12345"

AUTH_HEADERS = {"Authorization": "Bearer test-api-key-12345"}

# Short poll interval so fallback polling does not slow tests down
FAST_POLL = 0.05


# ============================================================================
# Synced root
# ============================================================================


class FakeSyncedRoot(LocalSyncedRoot):
    """
    A local synced root whose per-file download status can be scripted.

    Files exist on disk as usual; `statuses` overrides the status reported
    for individual paths. Download requests are recorded, never fulfilled,
    until the test calls complete_download().
    """

    def __init__(self, directory: Path, available: bool = True):
        super().__init__(directory)
        self.available = available
        self.statuses: Dict[Path, DownloadStatus] = {}
        self.download_requests: List[Path] = []
        self.failing_downloads: Set[Path] = set()
        self.published: List[Path] = []
        self.not_uploaded: Set[Path] = set()
        self.fail_status_queries = False
        self.fail_publish = False

    def container_path(self) -> Path | None:
        return self.directory if self.available else None

    def set_status(self, path: Path, status: DownloadStatus) -> None:
        self.statuses[Path(path)] = status

    def _item_for(self, path: Path):
        item = super()._item_for(path)
        return replace(
            item,
            status=self.statuses.get(path, item.status),
            is_uploaded=path not in self.not_uploaded,
        )

    async def download_status(self, path: Path) -> DownloadStatus:
        if self.fail_status_queries:
            raise CloudStorageError("Status query failed", details={"path": str(path)})
        path = Path(path)
        if path in self.statuses:
            return self.statuses[path]
        return await super().download_status(path)

    async def request_download(self, path: Path) -> None:
        path = Path(path)
        self.download_requests.append(path)
        if path in self.failing_downloads:
            raise CloudStorageError("Download request failed", details={"path": str(path)})

    async def publish(self, path: Path) -> None:
        if self.fail_publish:
            raise CloudStorageError("Upload failed", details={"path": str(path)})
        self.published.append(Path(path))
        await super().publish(path)

    def complete_download(self, path: Path) -> None:
        """Mark a file as fully downloaded and notify subscribers."""
        self.statuses[Path(path)] = DownloadStatus.CURRENT
        self.notify_changed()


# ============================================================================
# Persistent store
# ============================================================================


class FakeStore:
    """
    A persistent store made of one plain file, with scriptable failures.

    replace_failures / reinitialize_failures count down: each failing call
    consumes one. When corrupt_on_failed_replace is set, a failing
    replace_files() first overwrites the live file, like an interrupted swap.
    """

    def __init__(self, path: Path, content: bytes = b"live data", schema_version: str = "books_3"):
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_bytes(content)
        self._schema_version = schema_version
        self.fail_snapshot = False
        self.replace_failures = 0
        self.reinitialize_failures = 0
        self.corrupt_on_failed_replace = False
        self.calls: List[str] = []

    @property
    def schema_version(self) -> str:
        return self._schema_version

    @property
    def content(self) -> bytes:
        return self.path.read_bytes()

    async def snapshot_copy(self, destination_dir: Path) -> Path:
        self.calls.append("snapshot_copy")
        if self.fail_snapshot:
            raise StoreError("Snapshot failed")
        destination = Path(destination_dir) / self.path.name
        shutil.copy2(self.path, destination)
        return destination

    async def replace_files(self, source_dir: Path) -> None:
        self.calls.append("replace_files")
        if self.replace_failures:
            self.replace_failures -= 1
            if self.corrupt_on_failed_replace:
                self.path.write_bytes(b"half written")
            raise StoreError("Replace failed")
        source = Path(source_dir) / self.path.name
        if not source.is_file():
            raise StoreError("Replacement store file is missing")
        shutil.copy2(source, self.path)

    async def reinitialize(self) -> str:
        self.calls.append("reinitialize")
        if self.reinitialize_failures:
            self.reinitialize_failures -= 1
            raise StoreError("Store would not open")
        return self._schema_version

    async def close(self) -> None:
        self.calls.append("close")


# ============================================================================
# In-memory S3
# ============================================================================


class FakeS3Body:
    """Streaming body of a get_object response."""

    def __init__(self, data: bytes):
        self._buffer = io.BytesIO(data)

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        return False

    async def read(self, amt: int = -1) -> bytes:
        return self._buffer.read(amt)


class FakeS3Paginator:
    def __init__(self, session: "FakeS3Session"):
        self._session = session
        self._objects = session.objects

    async def paginate(self, Bucket: str, Prefix: str = ""):
        if Bucket != self._session.bucket:
            raise ClientError({"Error": {"Code": "NoSuchBucket", "Message": Bucket}}, "ListObjectsV2")
        keys = sorted(key for key in self._objects if key.startswith(Prefix))
        # Two pages, to exercise pagination
        middle = len(keys) // 2
        for page_keys in (keys[:middle], keys[middle:]):
            yield {"Contents": [{"Key": key, "Size": len(self._objects[key])} for key in page_keys]}


class FakeS3Client:
    def __init__(self, session: "FakeS3Session"):
        self._session = session

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc_info):
        return False

    def _check_bucket(self, bucket: str, operation: str) -> None:
        if bucket != self._session.bucket:
            raise ClientError({"Error": {"Code": "NoSuchBucket", "Message": bucket}}, operation)

    def get_paginator(self, operation_name: str) -> FakeS3Paginator:
        assert operation_name == "list_objects_v2"
        return FakeS3Paginator(self._session)

    async def head_object(self, Bucket: str, Key: str) -> dict:
        self._check_bucket(Bucket, "HeadObject")
        if Key not in self._session.objects:
            raise ClientError({"Error": {"Code": "404", "Message": "Not Found"}}, "HeadObject")
        return {"ContentLength": len(self._session.objects[Key])}

    async def get_object(self, Bucket: str, Key: str) -> dict:
        self._check_bucket(Bucket, "GetObject")
        if Key not in self._session.objects:
            raise ClientError({"Error": {"Code": "NoSuchKey", "Message": Key}}, "GetObject")
        return {"Body": FakeS3Body(self._session.objects[Key])}

    async def put_object(self, Bucket: str, Key: str, Body: bytes) -> dict:
        self._check_bucket(Bucket, "PutObject")
        if self._session.fail_uploads:
            raise ClientError({"Error": {"Code": "AccessDenied", "Message": "denied"}}, "PutObject")
        self._session.objects[Key] = bytes(Body)
        return {}


class FakeS3Session:
    """Stands in for an aiobotocore session, holding one bucket in memory."""

    def __init__(self, bucket: str = "test-bucket"):
        self.bucket = bucket
        self.objects: Dict[str, bytes] = {}
        self.fail_uploads = False

    def create_client(self, service_name: str, **kwargs) -> FakeS3Client:
        assert service_name == "s3"
        return FakeS3Client(self)


# ============================================================================
# Fixtures
# ============================================================================


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for tests."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def cloud_dir(temp_dir: Path) -> Path:
    directory = temp_dir / "cloud"
    directory.mkdir()
    return directory


@pytest.fixture
def fake_root(cloud_dir: Path) -> FakeSyncedRoot:
    return FakeSyncedRoot(cloud_dir)


@pytest.fixture
def fake_store(temp_dir: Path) -> FakeStore:
    return FakeStore(temp_dir / "live" / "books.sqlite")


@pytest.fixture
def fake_s3_session() -> FakeS3Session:
    return FakeS3Session()


@pytest_asyncio.fixture
async def sqlite_store(temp_dir: Path):
    """An initialized SQLite store at the latest schema version."""
    from shelfbackup.store.sqlite import SQLiteStore

    store = SQLiteStore(temp_dir / "live" / "books.sqlite")
    await store.initialize()
    yield store
    await store.close()


# ============================================================================
# Helpers
# ============================================================================


def write_backup_slot(
    cloud_dir: Path,
    device_id: uuid.UUID | None = None,
    *,
    device_name: str = "Reading Phone",
    device_class: DeviceClass = DeviceClass.PHONE,
    created_at: datetime | None = None,
    days_ago: float = 0,
    schema_version: str = "books_3",
    files: Dict[str, bytes] | None = None,
    with_archive: bool = True,
) -> BackupEntry:
    """Write a marker file and a zip archive holding `files` into a backup slot."""
    device_id = device_id or uuid.uuid4()
    created_at = created_at or datetime.now(UTC) - timedelta(days=days_ago)
    files = files if files is not None else {"books.sqlite": b"backup data"}

    directory = cloud_dir / BACKUPS_DIRECTORY_NAME / str(device_id).upper()
    directory.mkdir(parents=True, exist_ok=True)

    archive_path = directory / BACKUP_ARCHIVE_FILENAME
    if with_archive:
        with zipfile.ZipFile(archive_path, "w") as archive:
            for name, data in files.items():
                archive.writestr(name, data)

    marker = BackupMarkerRecord(
        device_vendor_id=device_id,
        device_name=device_name,
        created_at=created_at,
        device_class=device_class,
        schema_version=schema_version,
        archive_size_bytes=archive_path.stat().st_size if with_archive else 0,
    )
    (directory / BACKUP_INFO_FILENAME).write_bytes(encode_marker(marker))

    return BackupEntry(marker=marker, directory=directory, archive_path=archive_path)


async def wait_until(predicate, timeout: float = 2.0) -> None:
    """Poll until predicate() is true; fails the test with TimeoutError otherwise."""
    async with asyncio.timeout(timeout):
        while not predicate():
            await asyncio.sleep(0.01)


def file_checksum(path: Path) -> str:
    """SHA-256 of a file's contents."""
    return hashlib.sha256(Path(path).read_bytes()).hexdigest()


async def insert_book(store, book_id: str, title: str) -> None:
    """Insert a book into an open SQLite store."""
    await store.connection.execute(
        "INSERT INTO book (id, title, added_when) VALUES (?, ?, ?)",
        (book_id, title, datetime.now(UTC).isoformat()),
    )
    await store.connection.commit()


async def book_titles(store) -> List[str]:
    async with store.connection.execute("SELECT title FROM book ORDER BY title") as cursor:
        return [row[0] async for row in cursor]
