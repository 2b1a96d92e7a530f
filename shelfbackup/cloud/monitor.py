# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Backup info monitor - watches a synced root for backup marker files.

Marker files are small, so the monitor requests the download of every one
it sees and keeps track of which are locally available. Interested parties
register typed listeners on the monitor instance:

- on_initial_files_downloaded: fired at most once per monitor lifetime, as
  soon as every marker file present at the first completed gather is
  downloaded (immediately, if there were none).
- on_file_downloaded: fired for every individual not-downloaded -> downloaded
  transition.
- on_downloaded_set_changed: fired whenever the set of downloaded marker
  files changes.
- on_archive_upload_state_changed: fired when the upload state of any data
  archive changes.

Listeners are called from the monitor's serial queue.
"""

import asyncio
from pathlib import Path
from typing import Callable, Dict, List, Set

import structlog

from shelfbackup.cloud.base import SyncedRoot, name_equals
from shelfbackup.cloud.query import DEFAULT_POLL_INTERVAL, MetadataQuery, Results
from shelfbackup.cloud.queue import SerialQueue
from shelfbackup.constants import BACKUP_ARCHIVE_FILENAME, BACKUP_INFO_FILENAME

logger = structlog.get_logger()

Listener = Callable[[], None]
PathListener = Callable[[Path], None]
UploadStateListener = Callable[[Dict[Path, bool]], None]


class BackupInfoMonitor:
    """Tracks download completion of backup marker files in a synced root."""

    def __init__(
        self,
        root: SyncedRoot,
        *,
        poll_interval: float | None = DEFAULT_POLL_INTERVAL,
        info_file_name: str = BACKUP_INFO_FILENAME,
        archive_file_name: str = BACKUP_ARCHIVE_FILENAME,
    ):
        self.root = root
        self.queue = SerialQueue("backup-info-monitor")

        self._info_query = MetadataQuery(
            root,
            name_equals(info_file_name),
            self.queue,
            on_finish_gathering=self._process_initial_info_results,
            on_update=self._process_info_results,
            poll_interval=poll_interval,
            name="backup-info-files",
        )
        self._archive_query = MetadataQuery(
            root,
            name_equals(archive_file_name),
            self.queue,
            on_finish_gathering=self._process_archive_results,
            on_update=self._process_archive_results,
            poll_interval=poll_interval,
            name="backup-archives",
        )

        self._initial_info_files: Set[Path] | None = None
        self._info_download_state: Dict[Path, bool] = {}
        self._archive_upload_state: Dict[Path, bool] = {}
        self._has_downloaded_all_initial_info_files = False
        self._pending_downloads: Set[asyncio.Task] = set()

        self._initial_listeners: List[Listener] = []
        self._file_listeners: List[PathListener] = []
        self._set_listeners: List[Listener] = []
        self._upload_listeners: List[UploadStateListener] = []

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def has_downloaded_all_initial_info_files(self) -> bool:
        return self._has_downloaded_all_initial_info_files

    @property
    def download_state(self) -> Dict[Path, bool]:
        return dict(self._info_download_state)

    @property
    def archive_upload_state(self) -> Dict[Path, bool]:
        return dict(self._archive_upload_state)

    @property
    def is_running(self) -> bool:
        return self._info_query.is_running

    # ------------------------------------------------------------------
    # Listener registration
    # ------------------------------------------------------------------

    def on_initial_files_downloaded(self, listener: Listener) -> Callable[[], None]:
        return _register(self._initial_listeners, listener)

    def on_file_downloaded(self, listener: PathListener) -> Callable[[], None]:
        return _register(self._file_listeners, listener)

    def on_downloaded_set_changed(self, listener: Listener) -> Callable[[], None]:
        return _register(self._set_listeners, listener)

    def on_archive_upload_state_changed(self, listener: UploadStateListener) -> Callable[[], None]:
        return _register(self._upload_listeners, listener)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """
        Start watching. Must not be called again without an intervening stop().
        """
        logger.info("backup_info_monitor_starting")
        self.queue.start()
        await self._info_query.start()
        await self._archive_query.start()

    def stop(self) -> None:
        """Stop watching and release subscriptions. Safe when not started."""
        logger.info("backup_info_monitor_stopping")
        self._info_query.stop()
        self._archive_query.stop()
        for task in list(self._pending_downloads):
            task.cancel()
        self._pending_downloads.clear()
        self.queue.stop()

    async def drain(self) -> None:
        """Wait for queued notifications and in-flight download requests."""
        await self.queue.join()
        if self._pending_downloads:
            await asyncio.gather(*list(self._pending_downloads), return_exceptions=True)

    async def wait_for_initial_download(self, timeout: float | None = None) -> bool:
        """
        Wait until the initially present marker files are all downloaded.

        Returns False if the timeout elapses first. The timeout is the
        caller's policy; the monitor itself never gives up.
        """
        event = asyncio.Event()
        # Register before checking the latch so a concurrent firing is not missed
        unregister = self.on_initial_files_downloaded(event.set)
        try:
            if self._has_downloaded_all_initial_info_files:
                return True
            try:
                await asyncio.wait_for(event.wait(), timeout=timeout)
            except TimeoutError:
                logger.info("initial_info_files_wait_timed_out", timeout=timeout)
                return False
            return True
        finally:
            unregister()

    # ------------------------------------------------------------------
    # Query processing (runs on self.queue)
    # ------------------------------------------------------------------

    def _process_initial_info_results(self, results: Results) -> None:
        self._process_info_results(results, is_initial_gathering=True)

    def _process_info_results(self, results: Results, is_initial_gathering: bool = False) -> None:
        logger.info("backup_info_query_results", result_count=len(results))

        seen_download_states: Dict[Path, bool] = {}
        for item in results:
            if item.is_downloaded:
                seen_download_states[item.path] = True
                continue
            seen_download_states[item.path] = False
            self._request_download(item.path)

        # Remember which files were present initially, to detect when they are all downloaded
        if is_initial_gathering:
            if self._initial_info_files is not None:
                logger.warning("backup_info_initial_gathering_repeated")
            else:
                self._initial_info_files = set(seen_download_states)
                logger.info("backup_info_initial_gathering_complete", file_count=len(results))

        previous_downloaded = {path for path, done in self._info_download_state.items() if done}
        downloaded = {path for path, done in seen_download_states.items() if done}
        newly_downloaded = sorted(downloaded - previous_downloaded)

        # Vanished paths are pruned by replacing the map wholesale
        self._info_download_state = seen_download_states

        for path in newly_downloaded:
            logger.info("backup_info_file_downloaded", path=str(path))
            _notify(self._file_listeners, path)

        if downloaded != previous_downloaded:
            logger.info("backup_info_downloaded_set_changed", downloaded_count=len(downloaded))
            _notify(self._set_listeners)

        # Initial files which have since vanished no longer block
        if (
            self._initial_info_files is not None
            and not self._has_downloaded_all_initial_info_files
            and all(self._info_download_state.get(path, True) for path in self._initial_info_files)
        ):
            logger.info("initial_backup_info_files_downloaded", file_count=len(self._initial_info_files))
            self._has_downloaded_all_initial_info_files = True
            _notify(self._initial_listeners)

    def _process_archive_results(self, results: Results) -> None:
        logger.debug("backup_archive_query_results", result_count=len(results))

        seen_upload_states = {item.path: item.is_uploaded for item in results}
        if seen_upload_states != self._archive_upload_state:
            self._archive_upload_state = seen_upload_states
            _notify(self._upload_listeners, dict(seen_upload_states))

    def _request_download(self, path: Path) -> None:
        task = asyncio.create_task(self._download(path))
        self._pending_downloads.add(task)
        task.add_done_callback(self._pending_downloads.discard)

    async def _download(self, path: Path) -> None:
        try:
            logger.info("backup_info_download_requested", path=str(path))
            await self.root.request_download(path)
        except Exception as e:
            # The file stays "not downloaded", so the next notification retries
            logger.error("backup_info_download_request_failed", path=str(path), error=str(e))


def _register(listeners: list, listener) -> Callable[[], None]:
    listeners.append(listener)

    def unregister() -> None:
        if listener in listeners:
            listeners.remove(listener)

    return unregister


def _notify(listeners: list, *args) -> None:
    for listener in list(listeners):
        try:
            listener(*args)
        except Exception as e:
            logger.error("backup_monitor_listener_failed", error=str(e))
