# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Shelfbackup SQLite Store - The application's book database.

The store is a single SQLite database in WAL mode, so on disk it is a
primary file plus up to three companion files. Snapshots use the SQLite
online backup API and are therefore coherent even while the store is being
written to. A snapshot is always a single self-contained file.
"""

import asyncio
import os
import shutil
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import List

import aiosqlite
import structlog

from shelfbackup.exceptions import StoreError
from shelfbackup.store.schema import BOOKS_SCHEMA, SchemaRegistry

logger = structlog.get_logger()

# Companion files SQLite may keep beside the primary file
COMPANION_SUFFIXES = ("-wal", "-shm", "-journal")

SQLITE_HEADER = b"SQLite format 3\x00"

# Thread pool for blocking file copies
_executor = ThreadPoolExecutor(max_workers=1)


class SQLiteStore:
    """A migrated SQLite database usable as a PersistentStore."""

    def __init__(self, store_path: Path, schema: SchemaRegistry = BOOKS_SCHEMA):
        self.store_path = Path(store_path)
        self.schema = schema
        self._db: aiosqlite.Connection | None = None
        self._schema_version: str | None = None

    @property
    def store_files(self) -> List[Path]:
        """Every file which makes up the store, whether or not it exists."""
        return [self.store_path] + [
            self.store_path.with_name(self.store_path.name + suffix) for suffix in COMPANION_SUFFIXES
        ]

    @property
    def is_open(self) -> bool:
        return self._db is not None

    @property
    def connection(self) -> aiosqlite.Connection:
        if self._db is None:
            raise StoreError("Store is not open", details={"store_path": str(self.store_path)})
        return self._db

    @property
    def schema_version(self) -> str:
        if self._schema_version is None:
            raise StoreError("Store is not open", details={"store_path": str(self.store_path)})
        return self._schema_version

    async def initialize(self) -> str:
        """
        Open the store, migrating it to the latest schema version.

        Returns:
            The name of the schema version the store is now at

        Raises:
            StoreError: If the file is not a usable database of this schema
        """
        if self._db is not None:
            return self.schema_version

        self.store_path.parent.mkdir(parents=True, exist_ok=True)

        try:
            db = await aiosqlite.connect(self.store_path)
        except Exception as e:
            raise StoreError(
                f"Failed to open store: {e}",
                details={"store_path": str(self.store_path)},
            ) from e

        try:
            await db.execute("PRAGMA journal_mode=WAL")
            await db.execute("PRAGMA foreign_keys=ON")
            user_version = await _user_version(db)
            await self._migrate(db, user_version)
            await _quick_check(db)
        except Exception as e:
            await db.close()
            if isinstance(e, StoreError):
                raise
            raise StoreError(
                f"Failed to initialize store: {e}",
                details={"store_path": str(self.store_path)},
            ) from e

        self._db = db
        self._schema_version = self.schema.latest.name

        logger.info(
            "store_initialized",
            store_path=str(self.store_path),
            schema_version=self._schema_version,
        )
        return self._schema_version

    async def _migrate(self, db: aiosqlite.Connection, user_version: int) -> None:
        if user_version > len(self.schema.versions):
            raise StoreError(
                f"Store was written by a newer schema (user_version {user_version})",
                details={"store_path": str(self.store_path), "user_version": user_version},
            )

        for index, version in self.schema.pending(user_version):
            script = "BEGIN;\n"
            script += "".join(f"{statement.strip()};\n" for statement in version.statements)
            script += f"PRAGMA user_version = {index};\nCOMMIT;\n"
            try:
                await db.executescript(script)
            except Exception:
                await db.rollback()
                raise
            logger.info("store_migrated", store_path=str(self.store_path), schema_version=version.name)

    async def reinitialize(self) -> str:
        """Close and reopen the store."""
        await self.close()
        return await self.initialize()

    async def close(self) -> None:
        if self._db is None:
            return
        db, self._db = self._db, None
        self._schema_version = None
        await db.close()
        logger.debug("store_closed", store_path=str(self.store_path))

    async def snapshot_copy(self, destination_dir: Path) -> Path:
        """
        Write a coherent copy of the open store into destination_dir.

        Raises:
            StoreError: If the store is closed, the copy already exists, or the copy fails
        """
        db = self.connection
        destination = Path(destination_dir) / self.store_path.name
        if destination.exists():
            raise StoreError(
                "Snapshot destination already exists",
                details={"destination": str(destination)},
            )

        try:
            destination.parent.mkdir(parents=True, exist_ok=True)
            async with aiosqlite.connect(destination) as target:
                await db.backup(target)
                # Fold the copy back into a single rollback-journal file
                await target.execute("PRAGMA journal_mode=DELETE")
        except Exception as e:
            for path in [destination] + [
                destination.with_name(destination.name + suffix) for suffix in COMPANION_SUFFIXES
            ]:
                path.unlink(missing_ok=True)
            raise StoreError(
                f"Failed to snapshot store: {e}",
                details={"store_path": str(self.store_path), "destination": str(destination)},
            ) from e

        logger.info("store_snapshot_created", destination=str(destination))
        return destination

    async def replace_files(self, source_dir: Path) -> None:
        """
        Replace the live store with the store files found in source_dir.

        The source is validated before anything is touched. The connection
        is closed; call reinitialize() afterwards.

        Raises:
            StoreError: If the source is unusable or the swap fails
        """
        source_dir = Path(source_dir)
        source_primary = source_dir / self.store_path.name

        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(_executor, _validate_store_file, source_primary)
        except StoreError:
            raise
        except OSError as e:
            raise StoreError(
                f"Replacement store is unreadable: {e}",
                details={"source": str(source_primary)},
            ) from e

        await self.close()

        try:
            await loop.run_in_executor(_executor, self._swap_files_sync, source_dir)
        except Exception as e:
            raise StoreError(
                f"Failed to replace store files: {e}",
                details={"store_path": str(self.store_path), "source_dir": str(source_dir)},
            ) from e

        logger.info("store_files_replaced", store_path=str(self.store_path), source_dir=str(source_dir))

    def _swap_files_sync(self, source_dir: Path) -> None:
        primary, *companions = self.store_files

        # Stale companions must not be replayed against the new primary file
        for path in companions:
            path.unlink(missing_ok=True)

        for path in companions:
            source = source_dir / path.name
            if source.is_file():
                shutil.copy2(source, path)

        temp_path = primary.with_name(f".{primary.name}.tmp")
        shutil.copy2(source_dir / primary.name, temp_path)
        os.replace(temp_path, primary)


def _validate_store_file(path: Path) -> None:
    if not path.is_file():
        raise StoreError("Replacement store file is missing", details={"source": str(path)})
    with open(path, "rb") as f:
        header = f.read(len(SQLITE_HEADER))
    if header != SQLITE_HEADER:
        raise StoreError("Replacement store file is not a SQLite database", details={"source": str(path)})


async def _user_version(db: aiosqlite.Connection) -> int:
    async with db.execute("PRAGMA user_version") as cursor:
        row = await cursor.fetchone()
        return row[0] if row else 0


async def _quick_check(db: aiosqlite.Connection) -> None:
    async with db.execute("PRAGMA quick_check") as cursor:
        row = await cursor.fetchone()
    if not row or row[0] != "ok":
        raise StoreError("Store failed integrity check", details={"result": row[0] if row else None})
