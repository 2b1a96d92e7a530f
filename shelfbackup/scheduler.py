# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Shelfbackup Scheduler - Automatic periodic backups.

Backups run on an APScheduler interval job. The schedule's bookkeeping
(chosen frequency, last completion, whether the last automatic backup
failed) is persisted as JSON in the state directory, so the next run after
a restart is computed from the last completed backup.
"""

import os
from datetime import datetime, UTC
from pathlib import Path

import aiofiles
import structlog
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from pydantic import BaseModel, ConfigDict, ValidationError

from shelfbackup.config import BackupConfig, BackupFrequency
from shelfbackup.core import BackupState, run_backup

logger = structlog.get_logger()

AUTO_BACKUP_STATE_FILENAME = "auto-backup.json"
AUTO_BACKUP_JOB_ID = "shelfbackup_auto_backup"


class AutoBackupRecord(BaseModel):
    """Persisted automatic backup bookkeeping."""

    model_config = ConfigDict(frozen=True)

    frequency: BackupFrequency = BackupFrequency.DAILY
    last_backup_completion: datetime | None = None
    next_backup_earliest_start: datetime | None = None
    last_auto_backup_failed: bool = False


async def load_auto_backup_record(path: Path, default_frequency: BackupFrequency) -> AutoBackupRecord:
    """Load the record, falling back to a fresh one if it is missing or invalid."""
    try:
        async with aiofiles.open(path, "rb") as f:
            data = await f.read()
    except FileNotFoundError:
        return AutoBackupRecord(frequency=default_frequency)

    try:
        return AutoBackupRecord.model_validate_json(data)
    except ValidationError as e:
        logger.warning("auto_backup_record_invalid", path=str(path), error=str(e))
        return AutoBackupRecord(frequency=default_frequency)


async def save_auto_backup_record(path: Path, record: AutoBackupRecord) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)

    # Write atomically: temp file -> rename
    temp_path = path.with_name(f".{path.name}.tmp")
    async with aiofiles.open(temp_path, "w") as f:
        await f.write(record.model_dump_json())
    os.replace(temp_path, path)


class AutoBackupScheduler:
    """Runs backups at the configured frequency."""

    def __init__(self, config: BackupConfig, state: BackupState):
        self.config = config
        self.state = state
        self.record_path = config.state_dir / AUTO_BACKUP_STATE_FILENAME
        self.record = AutoBackupRecord(frequency=config.backup_frequency)
        self._scheduler: AsyncIOScheduler | None = None

    @property
    def frequency(self) -> BackupFrequency:
        return self.record.frequency

    @property
    def next_run_time(self) -> datetime | None:
        if self._scheduler is None:
            return None
        job = self._scheduler.get_job(AUTO_BACKUP_JOB_ID)
        return job.next_run_time if job else None

    async def start(self) -> None:
        """Load the persisted record and schedule the next backup."""
        self.record = await load_auto_backup_record(self.record_path, self.config.backup_frequency)
        self._scheduler = AsyncIOScheduler(timezone=UTC)
        self._scheduler.start()
        await self._schedule()

        logger.info(
            "auto_backup_scheduler_started",
            frequency=self.record.frequency.value,
            next_run=self.next_run_time.isoformat() if self.next_run_time else None,
        )

    def shutdown(self) -> None:
        if self._scheduler is not None and self._scheduler.running:
            self._scheduler.shutdown(wait=False)
        self._scheduler = None
        logger.info("auto_backup_scheduler_stopped")

    async def set_frequency(self, frequency: BackupFrequency) -> None:
        """Change the backup frequency, rescheduling or cancelling the job."""
        if frequency == self.record.frequency:
            return

        logger.info(
            "auto_backup_frequency_changed",
            old_frequency=self.record.frequency.value,
            new_frequency=frequency.value,
        )
        self.record = self.record.model_copy(update={"frequency": frequency})
        await self._schedule()

    async def _schedule(self) -> None:
        interval = self.record.frequency.duration

        if self._scheduler is not None and self._scheduler.get_job(AUTO_BACKUP_JOB_ID):
            self._scheduler.remove_job(AUTO_BACKUP_JOB_ID)

        if interval is None or self._scheduler is None:
            self.record = self.record.model_copy(update={"next_backup_earliest_start": None})
            await save_auto_backup_record(self.record_path, self.record)
            return

        now = datetime.now(UTC)
        first_run = now
        if self.record.last_backup_completion is not None:
            first_run = max(now, self.record.last_backup_completion + interval)

        self._scheduler.add_job(
            self.run_scheduled_backup,
            trigger=IntervalTrigger(seconds=interval.total_seconds(), timezone=UTC),
            id=AUTO_BACKUP_JOB_ID,
            next_run_time=first_run,
            replace_existing=True,
            coalesce=True,
            max_instances=1,
        )

        self.record = self.record.model_copy(update={"next_backup_earliest_start": first_run})
        await save_auto_backup_record(self.record_path, self.record)

    async def run_scheduled_backup(self) -> bool:
        """
        Run one automatic backup. Never raises.

        Returns:
            True if the backup succeeded
        """
        logger.info("scheduled_backup_starting")
        succeeded = True
        try:
            entry = await run_backup(self.config, self.state)
            logger.info("scheduled_backup_completed", archive_path=str(entry.archive_path))
        except Exception as e:
            succeeded = False
            logger.error("scheduled_backup_failed", error=str(e))

        completed = datetime.now(UTC)
        interval = self.record.frequency.duration
        self.record = self.record.model_copy(
            update={
                "last_backup_completion": completed,
                "last_auto_backup_failed": not succeeded,
                "next_backup_earliest_start": completed + interval if interval else None,
            }
        )
        try:
            await save_auto_backup_record(self.record_path, self.record)
        except OSError as e:
            logger.error("auto_backup_record_save_failed", path=str(self.record_path), error=str(e))

        return succeeded
