# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Store schema versions.

Each version is identified by a name, which is what backup markers record,
and by its position in the registry, which is what the store file records in
PRAGMA user_version (position 1 is the first version).
"""

from dataclasses import dataclass
from typing import Tuple


@dataclass(frozen=True)
class SchemaVersion:
    """One step of the store schema."""

    name: str
    statements: Tuple[str, ...]


class SchemaRegistry:
    """The ordered, append-only list of schema versions an application knows."""

    def __init__(self, versions: Tuple[SchemaVersion, ...]):
        if not versions:
            raise ValueError("A schema registry needs at least one version")
        names = [version.name for version in versions]
        if len(set(names)) != len(names):
            raise ValueError(f"Duplicate schema version names: {names}")
        self.versions = tuple(versions)

    @property
    def latest(self) -> SchemaVersion:
        return self.versions[-1]

    def recognizes(self, name: str) -> bool:
        return any(version.name == name for version in self.versions)

    def user_version_of(self, name: str) -> int:
        for index, version in enumerate(self.versions, start=1):
            if version.name == name:
                return index
        raise KeyError(name)

    def name_of(self, user_version: int) -> str | None:
        if 1 <= user_version <= len(self.versions):
            return self.versions[user_version - 1].name
        return None

    def pending(self, from_user_version: int) -> Tuple[Tuple[int, SchemaVersion], ...]:
        """Versions still to apply to a store at the given user_version."""
        return tuple(
            (index, version)
            for index, version in enumerate(self.versions, start=1)
            if index > from_user_version
        )


BOOKS_SCHEMA = SchemaRegistry(
    (
        SchemaVersion(
            name="books_1",
            statements=(
                """
                CREATE TABLE book (
                    id TEXT PRIMARY KEY,
                    title TEXT NOT NULL,
                    subtitle TEXT,
                    authors TEXT NOT NULL DEFAULT '[]',
                    isbn13 TEXT,
                    page_count INTEGER,
                    notes TEXT,
                    rating INTEGER,
                    started_when TEXT,
                    finished_when TEXT,
                    added_when TEXT NOT NULL
                )
                """,
                "CREATE INDEX idx_book_title ON book(title)",
            ),
        ),
        SchemaVersion(
            name="books_2",
            statements=(
                """
                CREATE TABLE list (
                    id TEXT PRIMARY KEY,
                    name TEXT NOT NULL UNIQUE,
                    sort_order INTEGER NOT NULL DEFAULT 0
                )
                """,
                """
                CREATE TABLE list_item (
                    list_id TEXT NOT NULL REFERENCES list(id) ON DELETE CASCADE,
                    book_id TEXT NOT NULL REFERENCES book(id) ON DELETE CASCADE,
                    sort_index INTEGER NOT NULL,
                    PRIMARY KEY (list_id, book_id)
                )
                """,
            ),
        ),
        SchemaVersion(
            name="books_3",
            statements=(
                "ALTER TABLE book ADD COLUMN current_page INTEGER",
                "ALTER TABLE book ADD COLUMN current_percentage INTEGER",
                "ALTER TABLE book ADD COLUMN language_code TEXT",
            ),
        ),
    )
)
