# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Metadata query - a live, predicate-filtered view of a synced root.

The query gathers the full result set whenever the root reports a change,
and at least once per poll interval as a fallback for roots (such as S3)
which cannot push remote changes. Each gather yields one consistent
snapshot. The first snapshot is delivered to on_finish_gathering. Later
snapshots are delivered to on_update after every change notification, and
after a poll only when they differ from the previous one. Deliveries always
happen on the owner's SerialQueue.
"""

import asyncio
import inspect
from typing import Any, Awaitable, Callable, Tuple

import structlog

from shelfbackup.cloud.base import ItemPredicate, RemoteItem, SyncedRoot, Unsubscribe
from shelfbackup.cloud.queue import SerialQueue

logger = structlog.get_logger()

Results = Tuple[RemoteItem, ...]
ResultsHandler = Callable[[Results], Awaitable[Any] | Any]

# Default fallback poll interval in seconds
DEFAULT_POLL_INTERVAL = 5.0


class MetadataQuery:
    """Watches a synced root for files matching a predicate."""

    def __init__(
        self,
        root: SyncedRoot,
        predicate: ItemPredicate,
        queue: SerialQueue,
        *,
        on_finish_gathering: ResultsHandler,
        on_update: ResultsHandler,
        poll_interval: float | None = DEFAULT_POLL_INTERVAL,
        name: str = "metadata-query",
    ):
        self.root = root
        self.predicate = predicate
        self.queue = queue
        self.on_finish_gathering = on_finish_gathering
        self.on_update = on_update
        self.poll_interval = poll_interval
        self.name = name

        self._results: Results = ()
        self._has_gathered = False
        self._stopped = True
        self._task: asyncio.Task | None = None
        self._unsubscribe: Unsubscribe | None = None
        self._loop: asyncio.AbstractEventLoop | None = None
        self._wake: asyncio.Event | None = None
        self._gather_lock = asyncio.Lock()

    @property
    def results(self) -> Results:
        return self._results

    @property
    def is_running(self) -> bool:
        return not self._stopped

    async def start(self) -> None:
        if self.is_running:
            logger.warning("metadata_query_already_running", query=self.name)
            return

        self._stopped = False
        self._loop = asyncio.get_running_loop()
        self._wake = asyncio.Event()
        self._unsubscribe = self.root.subscribe(self._root_changed)
        self._task = asyncio.create_task(self._run(self._wake), name=f"metadata-query:{self.name}")
        logger.debug("metadata_query_started", query=self.name)

    def stop(self) -> None:
        """Stop watching. Deliveries still queued are dropped."""
        self._stopped = True
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        if self._task is not None:
            self._task.cancel()
            self._task = None
        logger.debug("metadata_query_stopped", query=self.name)

    async def refresh(self) -> None:
        """Gather now and deliver the snapshot, even if it is unchanged."""
        await self._gather(notified=True)

    def _root_changed(self) -> None:
        if self._stopped or self._loop is None or self._wake is None:
            return
        self._loop.call_soon_threadsafe(self._wake.set)

    async def _run(self, wake: asyncio.Event) -> None:
        await self._gather()

        while not self._stopped:
            notified = True
            try:
                await asyncio.wait_for(wake.wait(), timeout=self.poll_interval)
            except TimeoutError:
                notified = False
            wake.clear()
            await self._gather(notified=notified)

    async def _gather(self, notified: bool = False) -> None:
        async with self._gather_lock:
            try:
                items = await self.root.list_items()
            except Exception as e:
                # Try again on the next change or poll
                logger.warning("metadata_query_gather_failed", query=self.name, error=str(e))
                return

            if self._stopped:
                return

            results = tuple(sorted((item for item in items if self.predicate(item)), key=lambda i: i.path))

            if not self._has_gathered:
                self._has_gathered = True
                self._results = results
                logger.info("metadata_query_gathered", query=self.name, result_count=len(results))
                self.queue.submit(self._deliver, self.on_finish_gathering, results)
            elif notified or results != self._results:
                self._results = results
                logger.debug("metadata_query_updated", query=self.name, result_count=len(results))
                self.queue.submit(self._deliver, self.on_update, results)

    async def _deliver(self, handler: ResultsHandler, results: Results) -> None:
        if self._stopped:
            return
        outcome = handler(results)
        if inspect.isawaitable(outcome):
            await outcome
