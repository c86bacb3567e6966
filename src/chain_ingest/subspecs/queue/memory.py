"""
In-process work queue backed by asyncio.

Jobs wait in an `asyncio.Queue` and a fixed pool of worker tasks runs them
through a handler. Delayed jobs (retries) are parked in timer tasks until
their delay elapses and then join the ready queue.

Depth
-----
`depth()` counts ready and delayed jobs. Jobs currently executing are not
counted; they already occupy a worker.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Final

from chain_ingest.subspecs.sync.config import DEFAULT_WORKERS
from chain_ingest.subspecs.sync.errors import QueueUnreachableError
from chain_ingest.subspecs.sync.models import SyncJob

logger = logging.getLogger(__name__)

JobHandler = Callable[[SyncJob], Awaitable[object]]
"""Coroutine function executing one job. Its return value is ignored."""

DEFAULT_QUEUE_NAME: Final = "blockchainCrawler"
"""Queue name used in log lines."""


class AsyncWorkQueue:
    """
    Work queue with a fixed pool of asyncio workers.

    A handler exception is logged and the worker moves on to the next job.
    """

    def __init__(
        self,
        handler: JobHandler,
        workers: int = DEFAULT_WORKERS,
        name: str = DEFAULT_QUEUE_NAME,
    ) -> None:
        """
        Initialize the queue. Call `start()` before submitting.

        Args:
            handler: Coroutine function executing one job.
            workers: Number of concurrent worker tasks.
            name: Queue name for log lines.
        """
        if workers < 1:
            raise ValueError(f"worker count must be positive, got {workers}")

        self.handler = handler
        self.workers = workers
        self.name = name

        self._queue: asyncio.Queue[SyncJob] | None = None
        self._worker_tasks: list[asyncio.Task[None]] = []
        self._delayed: set[asyncio.Task[None]] = set()
        self._processed = 0
        self._errors = 0

    @property
    def is_running(self) -> bool:
        """Check if workers are active."""
        return self._queue is not None

    @property
    def processed(self) -> int:
        """Jobs handled so far, failed handlers included."""
        return self._processed

    @property
    def errors(self) -> int:
        """Jobs whose handler raised."""
        return self._errors

    async def start(self) -> None:
        """Create the queue and spawn the worker tasks."""
        if self._queue is not None:
            return

        self._queue = asyncio.Queue()
        self._worker_tasks = [
            asyncio.create_task(self._worker(index), name=f"{self.name}-worker-{index}")
            for index in range(self.workers)
        ]
        logger.info("Queue %s started with %d workers", self.name, self.workers)

    async def stop(self) -> None:
        """
        Cancel workers and delayed jobs.

        Jobs still waiting are dropped; they resurface as gaps on the next pass.
        """
        tasks = [*self._worker_tasks, *self._delayed]
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

        dropped = self._queue.qsize() if self._queue is not None else 0
        self._worker_tasks = []
        self._delayed.clear()
        self._queue = None

        if dropped:
            logger.warning("Queue %s stopped with %d jobs still waiting", self.name, dropped)
        else:
            logger.info("Queue %s stopped", self.name)

    def depth(self) -> int:
        """Number of ready and delayed jobs."""
        if self._queue is None:
            raise QueueUnreachableError(f"queue {self.name} is not running")
        return self._queue.qsize() + len(self._delayed)

    def submit(self, job: SyncJob, delay: float = 0.0) -> None:
        """
        Append a job, optionally after a delay.

        Raises:
            QueueUnreachableError: If the queue is not running.
        """
        if self._queue is None:
            raise QueueUnreachableError(f"queue {self.name} is not running")

        if delay <= 0:
            self._queue.put_nowait(job)
            return

        task = asyncio.create_task(self._submit_later(job, delay))
        self._delayed.add(task)
        task.add_done_callback(self._delayed.discard)

    async def join(self) -> None:
        """
        Wait until no ready, delayed or running jobs remain.

        Retries submitted while waiting are waited for as well.
        """
        if self._queue is None:
            return

        while True:
            await self._queue.join()
            pending = {task for task in self._delayed if not task.done()}
            if not pending and self._queue.empty():
                return
            if pending:
                await asyncio.wait(pending)

    async def _submit_later(self, job: SyncJob, delay: float) -> None:
        """Hold a job for `delay` seconds, then make it runnable."""
        await asyncio.sleep(delay)
        if self._queue is not None:
            self._queue.put_nowait(job)

    async def _worker(self, index: int) -> None:
        """Run jobs until cancelled."""
        assert self._queue is not None
        queue = self._queue

        while True:
            job = await queue.get()
            try:
                await self.handler(job)
            except Exception:
                self._errors += 1
                logger.exception(
                    "Worker %d failed on batch %d..%d (attempt %d)",
                    index,
                    job.start_height,
                    job.end_height,
                    job.attempt,
                )
            finally:
                self._processed += 1
                queue.task_done()
