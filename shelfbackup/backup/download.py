# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Archive download watch - waits for one backup archive to become fully local.

This is independent of the BackupInfoMonitor: it watches exactly one path
on its own serial queue and is torn down as soon as the wait ends.
"""

import asyncio
from pathlib import Path

import structlog

from shelfbackup.cloud.base import DownloadStatus, RemoteItem, SyncedRoot, path_equals
from shelfbackup.cloud.query import DEFAULT_POLL_INTERVAL, MetadataQuery, Results
from shelfbackup.cloud.queue import SerialQueue
from shelfbackup.exceptions import FailureKind, RestorationFailure, RestoreError

logger = structlog.get_logger()


class ArchiveDownloadWatch:
    """Requests the download of an archive and watches until it is current."""

    def __init__(
        self,
        root: SyncedRoot,
        archive_path: Path,
        poll_interval: float | None = DEFAULT_POLL_INTERVAL,
    ):
        self.root = root
        self.archive_path = Path(archive_path)
        self.queue = SerialQueue("archive-download-watch")
        self._query = MetadataQuery(
            root,
            path_equals(self.archive_path),
            self.queue,
            on_finish_gathering=self._process_results,
            on_update=self._process_results,
            poll_interval=poll_interval,
            name="archive-download",
        )
        self._outcome: asyncio.Future | None = None
        self._request_task: asyncio.Task | None = None
        self._cancelled = False

    @property
    def is_running(self) -> bool:
        return self._query.is_running

    async def start(self) -> None:
        """
        Start watching and ask the root to download the archive.

        The request runs in the background, so a slow transfer never holds
        up wait() or cancel().
        """
        self._outcome = asyncio.get_running_loop().create_future()
        if self._cancelled:
            self._outcome.set_result(None)
            return

        logger.info("archive_download_watch_started", archive_path=str(self.archive_path))
        self.queue.start()
        await self._query.start()
        self._request_task = asyncio.create_task(
            self._request_download(),
            name=f"archive-download:{self.archive_path.parent.name}",
        )

    async def _request_download(self) -> None:
        try:
            await self.root.request_download(self.archive_path)
        except asyncio.CancelledError:
            logger.info("archive_download_request_cancelled", archive_path=str(self.archive_path))
            raise
        except Exception as e:
            logger.error("archive_download_request_failed", archive_path=str(self.archive_path), error=str(e))
            self._fail(RestorationFailure(FailureKind.MISSING_DATA_ARCHIVE, cause=e))

    async def wait(self, timeout: float | None = None) -> RemoteItem | None:
        """
        Wait for the archive to become current.

        Returns:
            The archive's item, or None if the watch was cancelled

        Raises:
            RestoreError: MISSING_DATA_ARCHIVE if the archive is not in the
                root, ARCHIVE_DOWNLOAD_TIMEOUT if the timeout elapses first
        """
        if self._outcome is None:
            raise RuntimeError("ArchiveDownloadWatch.start() must be called before wait()")

        try:
            return await asyncio.wait_for(asyncio.shield(self._outcome), timeout=timeout)
        except TimeoutError:
            logger.warning("archive_download_timed_out", archive_path=str(self.archive_path), timeout=timeout)
            raise RestoreError(
                RestorationFailure(FailureKind.ARCHIVE_DOWNLOAD_TIMEOUT),
                details={"archive_path": str(self.archive_path), "timeout": timeout},
            )
        finally:
            self.stop()

    def cancel(self) -> None:
        """Stop watching; a pending wait() returns None."""
        logger.info("archive_download_watch_cancelled", archive_path=str(self.archive_path))
        self._cancelled = True
        self.stop()
        if self._outcome is not None and not self._outcome.done():
            self._outcome.set_result(None)

    def stop(self) -> None:
        """Stop watching and abandon a transfer still in flight."""
        if self._request_task is not None and not self._request_task.done():
            self._request_task.cancel()
        self._query.stop()
        self.queue.stop()

    def _process_results(self, results: Results) -> None:
        if self._outcome is None or self._outcome.done():
            return

        if len(results) != 1:
            logger.error(
                "archive_download_unexpected_results",
                archive_path=str(self.archive_path),
                result_count=len(results),
            )
            self._fail(RestorationFailure(FailureKind.MISSING_DATA_ARCHIVE))
            return

        item = results[0]
        logger.debug("archive_download_status", archive_path=str(item.path), status=item.status.value)
        if item.status == DownloadStatus.CURRENT:
            logger.info("archive_downloaded", archive_path=str(item.path))
            self._outcome.set_result(item)

    def _fail(self, failure: RestorationFailure) -> None:
        if self._outcome is None or self._outcome.done():
            return
        self._outcome.set_exception(
            RestoreError(failure, details={"archive_path": str(self.archive_path)})
        )
