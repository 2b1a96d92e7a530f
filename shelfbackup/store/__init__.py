# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Persistent store - the live application database and its schema history.
"""

from shelfbackup.store.base import PersistentStore
from shelfbackup.store.schema import BOOKS_SCHEMA, SchemaRegistry, SchemaVersion
from shelfbackup.store.sqlite import SQLiteStore

__all__ = [
    "PersistentStore",
    "SchemaRegistry",
    "SchemaVersion",
    "BOOKS_SCHEMA",
    "SQLiteStore",
]
