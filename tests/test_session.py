# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Restore session tests.

These tests verify the restoration state machine:
- A local archive goes straight to RESTORING
- A remote archive is downloaded first, and only then restored
- Cancellation while downloading leaves the live store untouched
- Download problems end the session in FAILED with a typed reason
"""

import asyncio
from pathlib import Path
from typing import List

import pytest

from conftest import FAST_POLL, FakeStore, FakeSyncedRoot, file_checksum, wait_until, write_backup_slot
from shelfbackup.backup.restore import RestoreState
from shelfbackup.backup import session as session_module
from shelfbackup.backup.session import RestoreSession
from shelfbackup.cloud.base import DownloadStatus
from shelfbackup.exceptions import FailureKind
from shelfbackup.store.schema import BOOKS_SCHEMA

S = RestoreState


def make_session(entry, root, store, **kwargs) -> RestoreSession:
    return RestoreSession(entry, root, store, BOOKS_SCHEMA, poll_interval=FAST_POLL, **kwargs)


class StalledDownloadRoot(FakeSyncedRoot):
    """A root whose download requests block until they are cancelled."""

    def __init__(self, directory: Path):
        super().__init__(directory)
        self.cancelled_requests: List[Path] = []

    async def request_download(self, path: Path) -> None:
        self.download_requests.append(Path(path))
        try:
            await asyncio.sleep(3600)
        except asyncio.CancelledError:
            self.cancelled_requests.append(Path(path))
            raise


@pytest.fixture
def stalled_root(cloud_dir: Path) -> StalledDownloadRoot:
    return StalledDownloadRoot(cloud_dir)


# ============================================================================
# Availability
# ============================================================================


@pytest.mark.asyncio
async def test_local_archive_skips_downloading(fake_root: FakeSyncedRoot, fake_store: FakeStore, cloud_dir: Path):
    """An archive which is already local never enters DOWNLOADING."""
    entry = write_backup_slot(cloud_dir, files={"books.sqlite": b"restored data"})
    session = make_session(entry, fake_root, fake_store)

    result = await session.run()

    assert result.state == S.SUCCEEDED
    assert session.history == [S.IDLE, S.DETERMINING_AVAILABILITY, S.RESTORING, S.SUCCEEDED]
    assert fake_root.download_requests == []
    assert fake_store.content == b"restored data"
    assert session.result is result
    assert result.restore_id == session.restore_id


@pytest.mark.asyncio
async def test_remote_archive_is_downloaded_first(fake_root: FakeSyncedRoot, fake_store: FakeStore, cloud_dir: Path):
    """An archive which is not local enters DOWNLOADING before RESTORING."""
    entry = write_backup_slot(cloud_dir, files={"books.sqlite": b"restored data"})
    fake_root.set_status(entry.archive_path, DownloadStatus.NOT_DOWNLOADED)
    session = make_session(entry, fake_root, fake_store)

    task = asyncio.create_task(session.run())
    await wait_until(lambda: entry.archive_path in fake_root.download_requests)

    assert session.state == S.DOWNLOADING
    assert session.can_cancel
    assert fake_store.calls == []

    fake_root.complete_download(entry.archive_path)
    result = await asyncio.wait_for(task, timeout=5)

    assert result.state == S.SUCCEEDED
    assert session.history == [
        S.IDLE,
        S.DETERMINING_AVAILABILITY,
        S.DOWNLOADING,
        S.RESTORING,
        S.SUCCEEDED,
    ]
    assert fake_store.content == b"restored data"
    assert fake_root._listeners == []


@pytest.mark.asyncio
async def test_failed_availability_query_waits_for_download(
    fake_root: FakeSyncedRoot,
    fake_store: FakeStore,
    cloud_dir: Path,
):
    """A status query which fails is treated as "not local", never as "local"."""
    entry = write_backup_slot(cloud_dir, files={"books.sqlite": b"restored data"})
    fake_root.fail_status_queries = True
    session = make_session(entry, fake_root, fake_store)

    result = await asyncio.wait_for(session.run(), timeout=5)

    assert result.state == S.SUCCEEDED
    assert S.DOWNLOADING in session.history
    assert fake_root.download_requests == [entry.archive_path]


# ============================================================================
# Cancellation
# ============================================================================


@pytest.mark.asyncio
async def test_cancel_while_downloading(fake_root: FakeSyncedRoot, fake_store: FakeStore, cloud_dir: Path):
    """Cancelling during the download leaves the live store byte-for-byte unchanged."""
    entry = write_backup_slot(cloud_dir, files={"books.sqlite": b"restored data"})
    fake_root.set_status(entry.archive_path, DownloadStatus.NOT_DOWNLOADED)
    checksum = file_checksum(fake_store.path)
    session = make_session(entry, fake_root, fake_store)

    task = asyncio.create_task(session.run())
    await wait_until(lambda: session.state == S.DOWNLOADING)

    assert session.cancel()
    assert session.state == S.CANCELLED
    assert not session.cancel()

    result = await asyncio.wait_for(task, timeout=5)

    assert result.state == S.CANCELLED
    assert result.failure is None
    assert session.history[-1] == S.CANCELLED
    assert S.RESTORING not in session.history
    assert fake_store.calls == []
    assert file_checksum(fake_store.path) == checksum
    assert fake_root._listeners == []

    # A download completing afterwards changes nothing
    fake_root.complete_download(entry.archive_path)
    await asyncio.sleep(FAST_POLL * 2)
    assert file_checksum(fake_store.path) == checksum


@pytest.mark.asyncio
async def test_cancel_outside_downloading(fake_root: FakeSyncedRoot, fake_store: FakeStore, cloud_dir: Path):
    entry = write_backup_slot(cloud_dir, files={"books.sqlite": b"restored data"})
    session = make_session(entry, fake_root, fake_store)

    assert not session.cancel()
    assert session.state == S.IDLE

    await session.run()

    assert not session.cancel()
    assert session.state == S.SUCCEEDED


@pytest.mark.asyncio
async def test_cancel_abandons_stalled_transfer(stalled_root: StalledDownloadRoot, fake_store: FakeStore, cloud_dir: Path):
    """Cancel takes effect while the root is still busy with the transfer."""
    entry = write_backup_slot(cloud_dir, files={"books.sqlite": b"restored data"})
    stalled_root.set_status(entry.archive_path, DownloadStatus.NOT_DOWNLOADED)
    session = make_session(entry, stalled_root, fake_store)

    task = asyncio.create_task(session.run())
    await wait_until(lambda: stalled_root.download_requests)
    assert session.state == S.DOWNLOADING

    assert session.cancel()
    result = await asyncio.wait_for(task, timeout=1)

    assert result.state == S.CANCELLED
    await wait_until(lambda: stalled_root.cancelled_requests == [entry.archive_path])
    assert fake_store.calls == []
    assert stalled_root._listeners == []


# ============================================================================
# Download failures
# ============================================================================


@pytest.mark.asyncio
async def test_download_timeout(fake_root: FakeSyncedRoot, fake_store: FakeStore, cloud_dir: Path):
    entry = write_backup_slot(cloud_dir)
    fake_root.set_status(entry.archive_path, DownloadStatus.NOT_DOWNLOADED)
    session = make_session(entry, fake_root, fake_store, download_timeout=0.2)

    result = await asyncio.wait_for(session.run(), timeout=5)

    assert result.state == S.FAILED
    assert result.failure.kind == FailureKind.ARCHIVE_DOWNLOAD_TIMEOUT
    assert session.history == [S.IDLE, S.DETERMINING_AVAILABILITY, S.DOWNLOADING, S.FAILED]
    assert fake_store.calls == []
    assert fake_root._listeners == []


@pytest.mark.asyncio
async def test_download_timeout_with_stalled_transfer(
    stalled_root: StalledDownloadRoot,
    fake_store: FakeStore,
    cloud_dir: Path,
):
    """The timeout runs from the start of DOWNLOADING, not from the end of the request."""
    entry = write_backup_slot(cloud_dir)
    stalled_root.set_status(entry.archive_path, DownloadStatus.NOT_DOWNLOADED)
    session = make_session(entry, stalled_root, fake_store, download_timeout=0.2)

    result = await asyncio.wait_for(session.run(), timeout=2)

    assert result.state == S.FAILED
    assert result.failure.kind == FailureKind.ARCHIVE_DOWNLOAD_TIMEOUT
    await wait_until(lambda: stalled_root.cancelled_requests == [entry.archive_path])
    assert fake_store.calls == []


@pytest.mark.asyncio
async def test_archive_missing_from_root(fake_root: FakeSyncedRoot, fake_store: FakeStore, cloud_dir: Path):
    entry = write_backup_slot(cloud_dir, with_archive=False)
    fake_root.set_status(entry.archive_path, DownloadStatus.NOT_DOWNLOADED)
    session = make_session(entry, fake_root, fake_store)

    result = await asyncio.wait_for(session.run(), timeout=5)

    assert result.state == S.FAILED
    assert result.failure.kind == FailureKind.MISSING_DATA_ARCHIVE
    assert fake_store.calls == []


@pytest.mark.asyncio
async def test_download_request_failure(fake_root: FakeSyncedRoot, fake_store: FakeStore, cloud_dir: Path):
    entry = write_backup_slot(cloud_dir)
    fake_root.set_status(entry.archive_path, DownloadStatus.NOT_DOWNLOADED)
    fake_root.failing_downloads.add(entry.archive_path)
    session = make_session(entry, fake_root, fake_store)

    result = await asyncio.wait_for(session.run(), timeout=5)

    assert result.failure.kind == FailureKind.MISSING_DATA_ARCHIVE
    assert result.failure.cause is not None


@pytest.mark.asyncio
async def test_restore_failure_ends_session_failed(fake_root: FakeSyncedRoot, fake_store: FakeStore, cloud_dir: Path):
    entry = write_backup_slot(cloud_dir, schema_version="books_99")
    session = make_session(entry, fake_root, fake_store)

    result = await session.run()

    assert result.state == S.FAILED
    assert result.failure.kind == FailureKind.UNSUPPORTED_VERSION
    assert session.history[-2:] == [S.RESTORING, S.FAILED]


@pytest.mark.asyncio
async def test_unexpected_error_ends_session_failed(
    fake_root: FakeSyncedRoot,
    fake_store: FakeStore,
    cloud_dir: Path,
    monkeypatch,
):
    """An error escaping the restore still leaves the session in a terminal state."""
    entry = write_backup_slot(cloud_dir)

    async def crash(*args, **kwargs):
        raise RuntimeError("unexpected")

    monkeypatch.setattr(session_module, "restore_from_backup", crash)
    session = make_session(entry, fake_root, fake_store)

    result = await session.run()

    assert result.state == S.FAILED
    assert session.state.is_terminal
    assert result.failure.kind == FailureKind.ERROR_RECOVERY_FAILURE
    assert isinstance(result.failure.cause, RuntimeError)
    assert session.history[-2:] == [S.RESTORING, S.FAILED]


# ============================================================================
# Lifecycle
# ============================================================================


@pytest.mark.asyncio
async def test_session_runs_once(fake_root: FakeSyncedRoot, fake_store: FakeStore, cloud_dir: Path):
    entry = write_backup_slot(cloud_dir)
    session = make_session(entry, fake_root, fake_store)
    await session.run()

    with pytest.raises(RuntimeError):
        await session.run()


@pytest.mark.asyncio
async def test_state_listener(fake_root: FakeSyncedRoot, fake_store: FakeStore, cloud_dir: Path):
    entry = write_backup_slot(cloud_dir, files={"books.sqlite": b"restored data"})
    seen = []

    def listener(state):
        seen.append(state)
        raise RuntimeError("listener bug")

    session = make_session(entry, fake_root, fake_store, on_state_change=listener)

    result = await session.run()

    assert result.succeeded
    assert seen == [S.DETERMINING_AVAILABILITY, S.RESTORING, S.SUCCEEDED]
