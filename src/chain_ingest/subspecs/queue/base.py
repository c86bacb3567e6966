"""
Abstract work queue interface.

The ingestion core only observes the queue's depth and appends jobs. It never
reorders or removes queued work.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from chain_ingest.subspecs.sync.models import SyncJob


class WorkQueue(Protocol):
    """Protocol for the asynchronous job execution substrate."""

    def depth(self) -> int:
        """
        Number of jobs waiting to run.

        Advisory only: the value may be stale by the time it is used.

        Raises:
            QueueUnreachableError: If the depth cannot be observed.
        """
        ...

    def submit(self, job: SyncJob, delay: float = 0.0) -> None:
        """
        Append a job.

        Args:
            job: The job to run.
            delay: Seconds to hold the job before it becomes runnable.
        """
        ...
