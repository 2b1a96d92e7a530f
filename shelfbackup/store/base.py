# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
The persistent store contract used by backup and restore.
"""

from pathlib import Path
from typing import Protocol


class PersistentStore(Protocol):
    """A live application store whose files can be copied and swapped."""

    @property
    def schema_version(self) -> str:
        """Name of the schema version the store is at."""
        ...

    async def snapshot_copy(self, destination_dir: Path) -> Path:
        """
        Write a coherent copy of the store into an empty directory.

        Returns the path of the copied primary file.
        """
        ...

    async def replace_files(self, source_dir: Path) -> None:
        """Replace the live store files with those in source_dir."""
        ...

    async def reinitialize(self) -> str:
        """Reopen the store, returning the schema version name."""
        ...

    async def close(self) -> None:
        ...
