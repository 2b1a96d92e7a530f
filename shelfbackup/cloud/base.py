# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Synced storage roots - the contract for cloud-backed directory trees.

A synced root is a directory tree which is visible across a user's devices.
Files may be present remotely before they are present locally, so every
file carries a download status, and a download can be requested explicitly.
"""

from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Callable, List, Protocol

ChangeCallback = Callable[[], None]
Unsubscribe = Callable[[], None]


class DownloadStatus(str, Enum):
    """Local availability of a remote file."""

    NOT_DOWNLOADED = "not_downloaded"
    DOWNLOADED = "downloaded"  # A local copy exists but is not the latest version
    CURRENT = "current"


@dataclass(frozen=True)
class RemoteItem:
    """A single file within a synced root."""

    path: Path
    status: DownloadStatus
    is_uploaded: bool = True
    size: int | None = None

    @property
    def name(self) -> str:
        return self.path.name

    @property
    def is_downloaded(self) -> bool:
        return self.status == DownloadStatus.CURRENT


ItemPredicate = Callable[[RemoteItem], bool]


class SyncedRoot(Protocol):
    """A remote-synced storage root."""

    def container_path(self) -> Path | None:
        """Local path of the root, or None if no account/container is configured."""
        ...

    async def list_items(self) -> List[RemoteItem]:
        """All files known under the root, local or remote."""
        ...

    async def download_status(self, path: Path) -> DownloadStatus:
        """Current download status of one file. Raises CloudStorageError if unknown."""
        ...

    async def request_download(self, path: Path) -> None:
        """Ask for a file to be made locally available."""
        ...

    async def publish(self, path: Path) -> None:
        """Push a locally written file to the remote side."""
        ...

    def subscribe(self, callback: ChangeCallback) -> Unsubscribe:
        """Register a change hook; returns a function removing it."""
        ...


def name_equals(name: str) -> ItemPredicate:
    """Match items by file name."""

    def predicate(item: RemoteItem) -> bool:
        return item.name == name

    return predicate


def path_equals(path: Path) -> ItemPredicate:
    """Match the single item at an exact path."""
    target = Path(path)

    def predicate(item: RemoteItem) -> bool:
        return item.path == target

    return predicate
