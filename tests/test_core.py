# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Service wiring tests.

These tests verify:
- Backups and restores never run against the live store at the same time
- Incomplete S3 configurations are rejected with a typed error
"""

import asyncio
from pathlib import Path

import pytest
import pytest_asyncio

from conftest import FakeStore, FakeSyncedRoot, wait_until
from shelfbackup.backup.restore import RestoreState
from shelfbackup.builder import create_config
from shelfbackup.core import (
    begin_restore,
    create_synced_root,
    initialize_backup_state,
    run_backup,
    shutdown_backup_state,
)
from shelfbackup.exceptions import BackupError, ConfigurationError, ShelfBackupError


class GatedStore(FakeStore):
    """A store whose snapshots wait for the test to let them finish."""

    def __init__(self, path: Path):
        super().__init__(path)
        self.snapshot_started = asyncio.Event()
        self.release = asyncio.Event()
        self.release.set()

    async def snapshot_copy(self, destination_dir: Path) -> Path:
        self.snapshot_started.set()
        await self.release.wait()
        return await super().snapshot_copy(destination_dir)


def make_config(temp_dir: Path, cloud_dir: Path, **kwargs):
    return create_config(
        store_path=temp_dir / "live" / "books.sqlite",
        cloud_root=cloud_dir,
        state_dir=temp_dir / "state",
        poll_interval_seconds=0.05,
        **kwargs,
    )


@pytest_asyncio.fixture
async def gated_service(temp_dir: Path, cloud_dir: Path, fake_root: FakeSyncedRoot):
    config = make_config(temp_dir, cloud_dir)
    store = GatedStore(temp_dir / "live" / "books.sqlite")
    state = await initialize_backup_state(config, root=fake_root, store=store)
    yield config, state, store
    store.release.set()
    await shutdown_backup_state(state)


# ============================================================================
# Backup and restore exclusion
# ============================================================================


@pytest.mark.asyncio
async def test_restore_refused_while_backup_runs(gated_service):
    """A restore begun mid-backup is refused instead of interleaving with it."""
    config, state, store = gated_service
    first = await run_backup(config, state)
    store.calls.clear()
    store.snapshot_started.clear()
    store.release.clear()

    backup = asyncio.create_task(run_backup(config, state))
    await asyncio.wait_for(store.snapshot_started.wait(), timeout=2)
    assert state["backups_in_progress"] == 1

    with pytest.raises(ShelfBackupError, match="backup is in progress"):
        begin_restore(config, state, first)
    assert state["restore_sessions"] == {}
    assert state["active_restore"] is None

    store.release.set()
    await asyncio.wait_for(backup, timeout=2)
    assert state["backups_in_progress"] == 0

    session = begin_restore(config, state, first)
    await wait_until(lambda: session.state.is_terminal)

    assert session.state == RestoreState.SUCCEEDED
    assert store.calls == ["snapshot_copy", "snapshot_copy", "replace_files", "reinitialize"]


@pytest.mark.asyncio
async def test_failed_backup_releases_restore(gated_service, fake_root: FakeSyncedRoot):
    config, state, store = gated_service
    entry = await run_backup(config, state)

    fake_root.available = False
    with pytest.raises(BackupError):
        await run_backup(config, state)
    fake_root.available = True

    assert state["backups_in_progress"] == 0
    session = begin_restore(config, state, entry)
    await wait_until(lambda: session.state.is_terminal)
    assert session.state == RestoreState.SUCCEEDED


# ============================================================================
# Synced root construction
# ============================================================================


def test_s3_root_requires_bucket(temp_dir: Path, cloud_dir: Path):
    config = make_config(temp_dir, cloud_dir, cloud_backend="s3", bucket="shelf-backups")
    # Bypass the frozen config's validation to reach the construction check
    object.__setattr__(config, "bucket", None)

    with pytest.raises(ConfigurationError, match="requires a bucket"):
        create_synced_root(config)
