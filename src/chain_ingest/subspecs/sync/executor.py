"""
End-to-end execution of one batch job.

A job fetches its batch, persists every payload it got, and classifies the
result by its failure ratio:

- **SUCCESS**: nothing failed
- **PARTIAL_SUCCESS**: at most `failure_threshold` of the batch failed. The
  failed heights stay missing and are rediscovered as gaps by a later pass.
- **RETRY**: more than `failure_threshold` failed and attempts remain. The job
  is re-submitted with its attempt counter advanced, after a backoff delay.
- **TERMINAL_FAILURE**: more than `failure_threshold` failed on the last
  allowed attempt. Reported and never retried automatically.

Tolerating a minority of failures avoids retry storms when a few heights are
briefly unavailable, while a majority failure points at a systemic problem
worth a bounded retry.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Protocol

from chain_ingest.subspecs import metrics

from .backoff import BackoffPolicy, ConstantBackoff
from .config import DEFAULT_FAILURE_THRESHOLD, DEFAULT_MAX_ATTEMPTS, MAX_LOGGED_HEIGHTS
from .errors import WriteError
from .fetcher import BatchFetcher, FetchResult, HeightFailure
from .models import BlockPayload, Height, SyncJob
from .states import FailureKind, JobOutcome

logger = logging.getLogger(__name__)


class BlockWriter(Protocol):
    """Persistence side of the block store."""

    def write(self, height: Height, payload: BlockPayload) -> None:
        """
        Persist a payload. Rewriting a height replaces it.

        Raises:
            WriteError: If the store rejects the payload.
        """
        ...


class JobSubmitter(Protocol):
    """Submission side of the work queue."""

    def submit(self, job: SyncJob, delay: float = 0.0) -> None:
        """Enqueue a job, optionally after a delay in seconds."""
        ...


@dataclass(frozen=True, slots=True)
class JobResult:
    """Outcome of one job execution."""

    job: SyncJob
    """The job that ran."""

    outcome: JobOutcome
    """Classification of the execution."""

    written: int
    """Heights fetched and persisted."""

    failures: tuple[HeightFailure, ...] = ()
    """Heights that could not be fetched or persisted."""

    retry_delay: float | None = None
    """Seconds until the retry runs, for RETRY outcomes."""

    @property
    def failed_heights(self) -> list[Height]:
        """Heights that failed, in batch order."""
        return [failure.height for failure in self.failures]

    @property
    def failure_ratio(self) -> float:
        """Failed heights divided by the batch size."""
        return len(self.failures) / len(self.job.batch)


def _preview(heights: list[Height]) -> str:
    """Render at most MAX_LOGGED_HEIGHTS heights for a log line."""
    shown = ", ".join(str(height) for height in heights[:MAX_LOGGED_HEIGHTS])
    if len(heights) > MAX_LOGGED_HEIGHTS:
        shown += f", ... ({len(heights) - MAX_LOGGED_HEIGHTS} more)"
    return shown


@dataclass(slots=True)
class JobExecutor:
    """
    Runs batch jobs: fetch, persist, classify, decide retry.

    The executor never runs a batch more than `max_attempts` times. A job
    that arrives with its counter already past the limit is reported as a
    terminal failure without touching the network.
    """

    fetcher: BatchFetcher
    """Concurrent batch retrieval."""

    store: BlockWriter
    """Destination of fetched payloads."""

    queue: JobSubmitter | None = None
    """Where retries are re-submitted. None disables automatic retry."""

    max_attempts: int = DEFAULT_MAX_ATTEMPTS
    """Executions allowed per logical batch."""

    failure_threshold: float = DEFAULT_FAILURE_THRESHOLD
    """Failure ratio above which a batch counts as failed."""

    backoff: BackoffPolicy = field(default_factory=ConstantBackoff)
    """Delay before a retry."""

    def __post_init__(self) -> None:
        """Validate the retry policy."""
        if self.max_attempts < 1:
            raise ValueError(f"max attempts must be at least 1, got {self.max_attempts}")
        if not 0.0 < self.failure_threshold <= 1.0:
            raise ValueError(f"failure threshold must be in (0, 1], got {self.failure_threshold}")

    def classify(self, failed: int, batch_size: int, attempt: int) -> JobOutcome:
        """
        Classify a batch execution.

        Args:
            failed: Number of heights that failed.
            batch_size: Number of heights in the batch.
            attempt: Execution number that produced the failures.

        Returns:
            The outcome for this execution.
        """
        if failed == 0:
            return JobOutcome.SUCCESS
        if failed / batch_size <= self.failure_threshold:
            return JobOutcome.PARTIAL_SUCCESS
        if attempt < self.max_attempts:
            return JobOutcome.RETRY
        return JobOutcome.TERMINAL_FAILURE

    async def execute(self, job: SyncJob) -> JobResult:
        """
        Run one job end-to-end.

        Args:
            job: The batch and its attempt counter.

        Returns:
            The classified result. RETRY results have already been
            re-submitted when a queue is configured.
        """
        if job.attempt > self.max_attempts:
            logger.error(
                "Refusing batch %d..%d: attempt %d exceeds limit %d",
                job.start_height,
                job.end_height,
                job.attempt,
                self.max_attempts,
            )
            result = JobResult(job=job, outcome=JobOutcome.TERMINAL_FAILURE, written=0)
            metrics.job_outcomes.labels(outcome=result.outcome.name.lower()).inc()
            return result

        size = len(job.batch)
        logger.info(
            "Syncing batch of %d blocks: %d to %d (attempt %d)",
            size,
            job.start_height,
            job.end_height,
            job.attempt,
        )

        with metrics.batch_duration.time():
            payloads = await self.fetcher.fetch_batch(job.batch)
            written, failures = self._persist(job, payloads)

        outcome = self.classify(len(failures), size, job.attempt)
        retry_delay = self.backoff.delay(job.attempt) if outcome is JobOutcome.RETRY else None
        result = JobResult(
            job=job,
            outcome=outcome,
            written=written,
            failures=tuple(failures),
            retry_delay=retry_delay,
        )

        self._record(result)

        if outcome is JobOutcome.RETRY and self.queue is not None and retry_delay is not None:
            self.queue.submit(job.next_attempt(), delay=retry_delay)
            metrics.jobs_submitted.inc()

        return result

    def _persist(self, job: SyncJob, payloads: FetchResult) -> tuple[int, list[HeightFailure]]:
        """
        Write every fetched payload of the batch.

        Fetch failures and write failures both count as failed heights.
        """
        written = 0
        failures: list[HeightFailure] = []

        for height in job.batch:
            payload = payloads.get(height)
            if payload is None:
                failures.append(HeightFailure(height, FailureKind.UNEXPECTED, "no result"))
                continue
            if isinstance(payload, HeightFailure):
                failures.append(payload)
                continue

            try:
                self.store.write(height, payload)
            except WriteError as exc:
                logger.error("Failed to sync block %d in batch: %s", height, exc)
                failures.append(HeightFailure(height, FailureKind.WRITE, str(exc)))
                continue
            written += 1

        return written, failures

    def _record(self, result: JobResult) -> None:
        """Log and count one result."""
        job = result.job
        size = len(job.batch)

        metrics.job_outcomes.labels(outcome=result.outcome.name.lower()).inc()
        metrics.blocks_written.inc(result.written)
        for failure in result.failures:
            metrics.height_failures.labels(kind=failure.kind.value).inc()

        logger.info("Batch complete: %d/%d blocks synced successfully", result.written, size)

        match result.outcome:
            case JobOutcome.SUCCESS:
                pass
            case JobOutcome.PARTIAL_SUCCESS:
                logger.warning(
                    "Partial batch success: %d blocks failed: %s",
                    len(result.failures),
                    _preview(result.failed_heights),
                )
            case JobOutcome.RETRY:
                logger.warning(
                    "High failure rate: %d/%d blocks failed, retrying in %.0fs (attempt %d/%d)",
                    len(result.failures),
                    size,
                    result.retry_delay,
                    job.attempt,
                    self.max_attempts,
                )
            case JobOutcome.TERMINAL_FAILURE:
                logger.error(
                    "Batch failed permanently after %d attempts: %d/%d blocks failed",
                    job.attempt,
                    len(result.failures),
                    size,
                )
                logger.error("Failed block range: %d to %d", job.start_height, job.end_height)
