# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Restore session - the restoration state machine.

    IDLE -> DETERMINING_AVAILABILITY -> [DOWNLOADING] -> RESTORING -> SUCCEEDED | FAILED
                                              |
                                              +-> CANCELLED | FAILED

DOWNLOADING is skipped when the archive is already fully local. Only
DOWNLOADING can be cancelled; once RESTORING begins the live store is being
mutated and the session runs to completion.
"""

from datetime import datetime, UTC
from typing import Callable, List

import structlog
from ulid import ULID

from shelfbackup.backup.download import ArchiveDownloadWatch
from shelfbackup.backup.restore import RestoreResult, RestoreState, restore_from_backup
from shelfbackup.cloud.base import DownloadStatus, SyncedRoot
from shelfbackup.cloud.query import DEFAULT_POLL_INTERVAL
from shelfbackup.exceptions import FailureKind, RestorationFailure, RestoreError
from shelfbackup.marker import BackupEntry
from shelfbackup.store.base import PersistentStore
from shelfbackup.store.schema import SchemaRegistry

logger = structlog.get_logger()

StateListener = Callable[[RestoreState], None]


class RestoreSession:
    """Drives one restoration of a backup from start to a terminal state."""

    def __init__(
        self,
        entry: BackupEntry,
        root: SyncedRoot,
        store: PersistentStore,
        schema: SchemaRegistry,
        *,
        download_timeout: float | None = None,
        poll_interval: float | None = DEFAULT_POLL_INTERVAL,
        on_state_change: StateListener | None = None,
    ):
        self.entry = entry
        self.root = root
        self.store = store
        self.schema = schema
        self.download_timeout = download_timeout
        self.poll_interval = poll_interval
        self.on_state_change = on_state_change

        self.restore_id = str(ULID())
        self._state = RestoreState.IDLE
        self._history: List[RestoreState] = [RestoreState.IDLE]
        self._watch: ArchiveDownloadWatch | None = None
        self._result: RestoreResult | None = None

    @property
    def state(self) -> RestoreState:
        return self._state

    @property
    def history(self) -> List[RestoreState]:
        return list(self._history)

    @property
    def result(self) -> RestoreResult | None:
        return self._result

    @property
    def can_cancel(self) -> bool:
        return self._state == RestoreState.DOWNLOADING

    def cancel(self) -> bool:
        """
        Cancel the restoration if it is still downloading.

        The download watch is stopped before this returns.

        Returns:
            True if the session was cancelled
        """
        if not self.can_cancel or self._watch is None:
            logger.info("restore_cancel_ignored", restore_id=self.restore_id, state=self._state.value)
            return False

        self._watch.cancel()
        self._transition(RestoreState.CANCELLED)
        return True

    async def run(self) -> RestoreResult:
        """Run the session to a terminal state."""
        if self._state != RestoreState.IDLE:
            raise RuntimeError(f"Restore session {self.restore_id} has already been run")

        start_time = datetime.now(UTC)
        logger.info(
            "restore_session_started",
            restore_id=self.restore_id,
            archive_path=str(self.entry.archive_path),
        )

        try:
            return await self._run(start_time)
        except Exception as e:
            logger.error(
                "restore_session_crashed",
                restore_id=self.restore_id,
                state=self._state.value,
                error=str(e),
                exc_info=True,
            )
            if self._state.is_terminal:
                return self._finish(start_time)
            failure = self._unexpected_failure(e)
            self._transition(RestoreState.FAILED)
            return self._finish(start_time, failure)

    async def _run(self, start_time: datetime) -> RestoreResult:
        self._transition(RestoreState.DETERMINING_AVAILABILITY)

        if not await self._is_archive_local():
            failure = await self._download()
            if self._state == RestoreState.CANCELLED:
                return self._finish(start_time)
            if failure is not None:
                self._transition(RestoreState.FAILED)
                return self._finish(start_time, failure)

        self._transition(RestoreState.RESTORING)
        result = await restore_from_backup(self.entry, self.store, self.schema, restore_id=self.restore_id)
        self._transition(result.state)
        return self._finish(start_time, result.failure)

    def _unexpected_failure(self, error: Exception) -> RestorationFailure:
        # Once RESTORING has begun the live store's state is unknown
        if self._state == RestoreState.RESTORING:
            return RestorationFailure(FailureKind.ERROR_RECOVERY_FAILURE, cause=error)
        return RestorationFailure(FailureKind.MISSING_DATA_ARCHIVE, cause=error)

    async def _is_archive_local(self) -> bool:
        try:
            status = await self.root.download_status(self.entry.archive_path)
        except Exception as e:
            # Never skip the download wait on a failed query
            logger.warning(
                "restore_availability_query_failed",
                restore_id=self.restore_id,
                archive_path=str(self.entry.archive_path),
                error=str(e),
            )
            return False

        logger.info("restore_archive_availability", restore_id=self.restore_id, status=status.value)
        return status == DownloadStatus.CURRENT

    async def _download(self) -> RestorationFailure | None:
        self._watch = ArchiveDownloadWatch(self.root, self.entry.archive_path, poll_interval=self.poll_interval)
        self._transition(RestoreState.DOWNLOADING)

        try:
            await self._watch.start()
            await self._watch.wait(timeout=self.download_timeout)
        except RestoreError as e:
            return e.failure
        finally:
            self._watch.stop()
            self._watch = None
        return None

    def _transition(self, state: RestoreState) -> None:
        logger.info(
            "restore_state_changed",
            restore_id=self.restore_id,
            from_state=self._state.value,
            to_state=state.value,
        )
        self._state = state
        self._history.append(state)
        if self.on_state_change is not None:
            try:
                self.on_state_change(state)
            except Exception as e:
                logger.error("restore_state_listener_failed", restore_id=self.restore_id, error=str(e))

    def _finish(self, start_time: datetime, failure: RestorationFailure | None = None) -> RestoreResult:
        self._result = RestoreResult(
            restore_id=self.restore_id,
            backup_directory=self.entry.directory,
            state=self._state,
            failure=failure,
            duration_seconds=(datetime.now(UTC) - start_time).total_seconds(),
        )
        logger.info(
            "restore_session_finished",
            restore_id=self.restore_id,
            state=self._state.value,
            failure=str(failure) if failure else None,
        )
        return self._result
