# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Local synced root - a plain directory kept in sync by an external tool.

Suitable for folders replicated by a desktop sync client (Dropbox,
Syncthing, a network share). Every file present is treated as fully
downloaded; the sync client is responsible for fetching remote changes.
"""

from pathlib import Path
from typing import List

import structlog

from shelfbackup.cloud.base import ChangeCallback, DownloadStatus, RemoteItem, Unsubscribe
from shelfbackup.exceptions import CloudStorageError

logger = structlog.get_logger()


def is_temporary_file(path: Path) -> bool:
    """Partially written files (".name.tmp") are never reported."""
    return path.name.startswith(".") and path.name.endswith(".tmp")


class LocalSyncedRoot:
    """A synced root backed by a local directory."""

    def __init__(self, directory: Path | None):
        self.directory = Path(directory) if directory is not None else None
        self._listeners: List[ChangeCallback] = []

    def container_path(self) -> Path | None:
        return self.directory

    async def list_items(self) -> List[RemoteItem]:
        if self.directory is None or not self.directory.exists():
            return []

        return [
            self._item_for(path)
            for path in sorted(self.directory.rglob("*"))
            if path.is_file() and not is_temporary_file(path)
        ]

    def _item_for(self, path: Path) -> RemoteItem:
        return RemoteItem(
            path=path,
            status=DownloadStatus.CURRENT,
            is_uploaded=True,
            size=path.stat().st_size,
        )

    async def download_status(self, path: Path) -> DownloadStatus:
        if not Path(path).is_file():
            raise CloudStorageError(
                f"File not present in synced root: {path}",
                details={"path": str(path)},
            )
        return DownloadStatus.CURRENT

    async def request_download(self, path: Path) -> None:
        logger.debug("local_download_not_required", path=str(path))

    async def publish(self, path: Path) -> None:
        logger.debug("local_file_published", path=str(path))
        self.notify_changed()

    def subscribe(self, callback: ChangeCallback) -> Unsubscribe:
        self._listeners.append(callback)

        def unsubscribe() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return unsubscribe

    def notify_changed(self) -> None:
        """Tell subscribers that the contents of the root may have changed."""
        for listener in list(self._listeners):
            try:
                listener()
            except Exception as e:
                logger.error("change_listener_failed", error=str(e))
