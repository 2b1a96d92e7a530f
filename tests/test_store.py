# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Persistent store tests.

These tests verify:
- Schema registry bookkeeping
- Opening and migrating SQLite stores
- Coherent snapshots and whole-store replacement
"""

from pathlib import Path

import aiosqlite
import pytest

from conftest import book_titles, insert_book
from shelfbackup.exceptions import StoreError
from shelfbackup.store.schema import BOOKS_SCHEMA, SchemaRegistry, SchemaVersion
from shelfbackup.store.sqlite import SQLiteStore


# ============================================================================
# Schema registry
# ============================================================================


def test_schema_registry_lookup():
    assert BOOKS_SCHEMA.latest.name == "books_3"
    assert BOOKS_SCHEMA.recognizes("books_1")
    assert not BOOKS_SCHEMA.recognizes("books_99")
    assert BOOKS_SCHEMA.user_version_of("books_2") == 2
    assert BOOKS_SCHEMA.name_of(1) == "books_1"
    assert BOOKS_SCHEMA.name_of(0) is None
    assert BOOKS_SCHEMA.name_of(4) is None

    with pytest.raises(KeyError):
        BOOKS_SCHEMA.user_version_of("books_99")


def test_schema_registry_pending():
    assert [index for index, _ in BOOKS_SCHEMA.pending(0)] == [1, 2, 3]
    assert [version.name for _, version in BOOKS_SCHEMA.pending(2)] == ["books_3"]
    assert BOOKS_SCHEMA.pending(3) == ()


def test_schema_registry_validation():
    with pytest.raises(ValueError):
        SchemaRegistry(())

    version = SchemaVersion(name="v1", statements=())
    with pytest.raises(ValueError):
        SchemaRegistry((version, version))


# ============================================================================
# Opening and migrating
# ============================================================================


@pytest.mark.asyncio
async def test_initialize_new_store(temp_dir: Path):
    """A new store is created at the latest schema version."""
    store = SQLiteStore(temp_dir / "books.sqlite")

    assert await store.initialize() == "books_3"
    assert store.is_open
    assert store.schema_version == "books_3"

    async with store.connection.execute("PRAGMA user_version") as cursor:
        assert (await cursor.fetchone())[0] == 3

    await store.close()
    assert not store.is_open
    with pytest.raises(StoreError):
        store.connection


@pytest.mark.asyncio
async def test_initialize_migrates_older_store(temp_dir: Path):
    """A store at an older schema version is migrated forward, keeping its rows."""
    path = temp_dir / "books.sqlite"
    old_schema = SchemaRegistry(BOOKS_SCHEMA.versions[:1])
    old_store = SQLiteStore(path, old_schema)
    await old_store.initialize()
    await insert_book(old_store, "b1", "Middlemarch")
    await old_store.close()

    store = SQLiteStore(path)
    assert await store.initialize() == "books_3"

    assert await book_titles(store) == ["Middlemarch"]
    async with store.connection.execute("SELECT current_page FROM book") as cursor:
        assert (await cursor.fetchone())[0] is None
    await store.close()


@pytest.mark.asyncio
async def test_initialize_rejects_newer_store(temp_dir: Path):
    path = temp_dir / "books.sqlite"
    async with aiosqlite.connect(path) as db:
        await db.execute("PRAGMA user_version = 9")
        await db.commit()

    store = SQLiteStore(path)
    with pytest.raises(StoreError) as exc_info:
        await store.initialize()

    assert exc_info.value.details["user_version"] == 9
    assert not store.is_open


@pytest.mark.asyncio
async def test_initialize_rejects_non_database(temp_dir: Path):
    path = temp_dir / "books.sqlite"
    path.write_bytes(b"definitely not sqlite" * 100)

    store = SQLiteStore(path)
    with pytest.raises(StoreError):
        await store.initialize()


@pytest.mark.asyncio
async def test_reinitialize(sqlite_store: SQLiteStore):
    await insert_book(sqlite_store, "b1", "Emma")

    assert await sqlite_store.reinitialize() == "books_3"
    assert await book_titles(sqlite_store) == ["Emma"]


# ============================================================================
# Snapshots and replacement
# ============================================================================


@pytest.mark.asyncio
async def test_snapshot_copy(sqlite_store: SQLiteStore, temp_dir: Path):
    """A snapshot is one self-contained file holding the committed data."""
    await insert_book(sqlite_store, "b1", "Persuasion")
    destination = temp_dir / "snapshot"
    destination.mkdir()

    copy = await sqlite_store.snapshot_copy(destination)

    assert copy == destination / "books.sqlite"
    assert [p.name for p in destination.iterdir()] == ["books.sqlite"]

    snapshot = SQLiteStore(copy)
    await snapshot.initialize()
    assert await book_titles(snapshot) == ["Persuasion"]
    await snapshot.close()


@pytest.mark.asyncio
async def test_snapshot_copy_refuses_existing_destination(sqlite_store: SQLiteStore, temp_dir: Path):
    destination = temp_dir / "snapshot"
    destination.mkdir()
    (destination / "books.sqlite").write_bytes(b"occupied")

    with pytest.raises(StoreError):
        await sqlite_store.snapshot_copy(destination)

    assert (destination / "books.sqlite").read_bytes() == b"occupied"


@pytest.mark.asyncio
async def test_snapshot_copy_requires_open_store(temp_dir: Path):
    store = SQLiteStore(temp_dir / "books.sqlite")

    with pytest.raises(StoreError):
        await store.snapshot_copy(temp_dir)


@pytest.mark.asyncio
async def test_replace_files(sqlite_store: SQLiteStore, temp_dir: Path):
    """Replacing the store swaps in the other store's data."""
    other = SQLiteStore(temp_dir / "other" / "books.sqlite")
    await other.initialize()
    await insert_book(other, "b9", "Dracula")
    snapshot_dir = temp_dir / "snapshot"
    snapshot_dir.mkdir()
    await other.snapshot_copy(snapshot_dir)
    await other.close()

    await insert_book(sqlite_store, "b1", "Ivanhoe")

    await sqlite_store.replace_files(snapshot_dir)
    assert not sqlite_store.is_open

    await sqlite_store.reinitialize()
    assert await book_titles(sqlite_store) == ["Dracula"]


@pytest.mark.asyncio
async def test_replace_files_rejects_invalid_source(sqlite_store: SQLiteStore, temp_dir: Path):
    """An unusable source is rejected before the live store is touched."""
    await insert_book(sqlite_store, "b1", "Ivanhoe")
    source = temp_dir / "source"
    source.mkdir()
    (source / "books.sqlite").write_bytes(b"garbage")

    with pytest.raises(StoreError):
        await sqlite_store.replace_files(source)

    assert sqlite_store.is_open
    assert await book_titles(sqlite_store) == ["Ivanhoe"]


@pytest.mark.asyncio
async def test_replace_files_missing_source(sqlite_store: SQLiteStore, temp_dir: Path):
    with pytest.raises(StoreError):
        await sqlite_store.replace_files(temp_dir / "empty")

    assert sqlite_store.is_open


def test_store_files(temp_dir: Path):
    store = SQLiteStore(temp_dir / "books.sqlite")

    assert [p.name for p in store.store_files] == [
        "books.sqlite",
        "books.sqlite-wal",
        "books.sqlite-shm",
        "books.sqlite-journal",
    ]
