# SPDX-License-Identifier: LGPL-2.1-only
# Copyright (c) 2026 Akshat Kotpalliwar (alias IntegerAlex)

"""
Serial work queue - one worker task processing submitted work in order.

Each monitor owns exactly one SerialQueue. All of its callback handling is
funnelled through the queue, so the monitor's own state is only ever
mutated by one piece of work at a time and needs no locking.
"""

import asyncio
import inspect
from typing import Any, Callable

import structlog

logger = structlog.get_logger()


class SerialQueue:
    """Runs submitted callables (sync or async) strictly one after another."""

    def __init__(self, label: str):
        self.label = label
        self._queue: asyncio.Queue | None = None
        self._worker: asyncio.Task | None = None

    @property
    def is_running(self) -> bool:
        return self._worker is not None and not self._worker.done()

    def start(self) -> None:
        if self.is_running:
            return
        self._queue = asyncio.Queue()
        self._worker = asyncio.create_task(self._drain(self._queue), name=f"serial-queue:{self.label}")

    def stop(self) -> None:
        """Stop the worker. Work not yet started is discarded."""
        if self._worker is not None:
            self._worker.cancel()
        self._worker = None
        self._queue = None

    def submit(self, func: Callable[..., Any], *args: Any) -> None:
        if not self.is_running or self._queue is None:
            logger.debug("serial_queue_not_running", queue=self.label)
            return
        self._queue.put_nowait((func, args))

    async def join(self) -> None:
        """Wait until all submitted work has been processed."""
        if self._queue is not None and self.is_running:
            await self._queue.join()

    async def _drain(self, queue: asyncio.Queue) -> None:
        while True:
            func, args = await queue.get()
            try:
                result = func(*args)
                if inspect.isawaitable(result):
                    await result
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(
                    "serial_queue_work_failed",
                    queue=self.label,
                    error=str(e),
                    exc_info=True,
                )
            finally:
                queue.task_done()
