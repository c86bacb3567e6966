"""
Sync scheduler.

This is the main entry point for one ingestion pass.

The Core Problem
----------------
The local store must end up holding every block the remote node has. Blocks
are fetched by many parallel jobs, some of which fail, so the store collects
holes over time. A pass therefore always starts from what is actually
missing rather than from a saved cursor.

How It Works
------------
1. **Assess**: ask the node for its height, read store statistics
2. **Detect**: compute missing gaps (interior holes and the frontier)
3. **Plan**: flatten gaps into heights, split into batches and chunks
4. **Admit**: for each chunk, wait until the work queue has room
5. **Submit**: hand every batch of the chunk to the queue as a job

The pass does not wait for jobs to finish. Backpressure only limits how fast
chunks are admitted; execution happens asynchronously on the queue's workers.

Ordering
--------
Batches within a chunk are submitted in ascending order, but may complete in
any order. Heights that fail are not tracked across passes; they simply show
up as gaps next time.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Protocol

from chain_ingest.subspecs import metrics

from .backpressure import BackpressureController
from .errors import RemoteError, TargetHeightUnavailable, TransportError
from .gaps import GapDetector, count_missing, iter_missing_heights
from .models import Gap, Height, StoreStats, SyncJob
from .planner import ChunkPlanner
from .states import BackpressureState

if TYPE_CHECKING:
    from chain_ingest.subspecs.queue import WorkQueue
    from chain_ingest.subspecs.storage import BlockStore

logger = logging.getLogger(__name__)


class HeightSource(Protocol):
    """Reports the remote node's current height."""

    async def get_latest_height(self) -> Height:
        """
        Return the height of the node's latest block.

        Raises:
            TransportError: On network failures.
            RemoteError: If the node answers with an error.
        """
        ...


@dataclass(frozen=True, slots=True)
class PassReport:
    """Summary of one scheduling pass."""

    target_height: Height
    """Node height the pass synced toward."""

    gaps: tuple[Gap, ...] = ()
    """Gaps scheduled by the pass, after size limits."""

    skipped_gaps: tuple[Gap, ...] = ()
    """Gaps left out because they exceeded the maximum gap size."""

    heights_scheduled: int = 0
    """Heights handed to the work queue."""

    jobs_submitted: int = 0
    """Batch jobs handed to the work queue."""

    chunks_admitted: int = 0
    """Chunks that passed the backpressure gate."""

    cancelled: bool = False
    """Whether the pass stopped early on the cancellation signal."""


@dataclass(slots=True)
class SyncProgress:
    """
    Current scheduling progress.

    Provides a snapshot for monitoring and logging.
    """

    running: bool
    """Whether a pass is in progress."""

    target_height: Height | None = None
    """Node height seen by the latest pass."""

    store_max_height: Height | None = None
    """Highest persisted height seen by the latest pass."""

    heights_scheduled: int = 0
    """Heights scheduled this session."""

    jobs_submitted: int = 0
    """Jobs submitted by passes this session (retries excluded)."""

    chunks_admitted: int = 0
    """Chunks admitted this session."""

    passes_completed: int = 0
    """Passes that ran to the end or were cancelled."""

    backpressure_state: BackpressureState = BackpressureState.CHECK
    """State of the latest chunk admission."""

    queue_depth: int | None = None
    """Last observed work queue depth."""

    def to_dict(self) -> dict[str, Any]:
        """Render the snapshot as JSON-compatible values."""
        return {
            "running": self.running,
            "targetHeight": self.target_height,
            "storeMaxHeight": self.store_max_height,
            "heightsScheduled": self.heights_scheduled,
            "jobsSubmitted": self.jobs_submitted,
            "chunksAdmitted": self.chunks_admitted,
            "passesCompleted": self.passes_completed,
            "backpressureState": self.backpressure_state.name.lower(),
            "queueDepth": self.queue_depth,
        }


@dataclass(slots=True)
class SyncScheduler:
    """
    Drives full sync passes.

    The scheduler's own loop is sequential: one chunk is admitted at a time.
    Store and queue are injected; the scheduler never reaches for global state.
    """

    node: HeightSource
    """Remote node reporting the target height."""

    store: BlockStore
    """Block store providing statistics and persisted heights."""

    queue: WorkQueue
    """Work queue receiving batch jobs."""

    planner: ChunkPlanner
    """Batch and chunk sizing."""

    backpressure: BackpressureController
    """Admission gate on queue depth."""

    detector: GapDetector = field(default_factory=GapDetector)
    """Gap detection settings."""

    max_gap_size: int | None = None
    """Gaps larger than this are skipped; the frontier is clamped instead."""

    _target_height: Height | None = field(default=None)
    """Node height seen by the latest pass."""

    _store_max_height: Height | None = field(default=None)
    """Highest persisted height seen by the latest pass."""

    _heights_scheduled: int = field(default=0)
    """Counter for scheduled heights."""

    _jobs_submitted: int = field(default=0)
    """Counter for submitted jobs."""

    _chunks_admitted: int = field(default=0)
    """Counter for admitted chunks."""

    _passes_completed: int = field(default=0)
    """Counter for finished passes."""

    _running: bool = field(default=False)
    """Whether a pass is in progress."""

    _pass_lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    """Lock to prevent overlapping passes."""

    def __post_init__(self) -> None:
        """Validate the gap size limit."""
        if self.max_gap_size is not None and self.max_gap_size < 1:
            raise ValueError(f"max gap size must be positive, got {self.max_gap_size}")

    def get_progress(self) -> SyncProgress:
        """
        Get current scheduling progress.

        Returns:
            Snapshot of scheduler state for monitoring.
        """
        return SyncProgress(
            running=self._running,
            target_height=self._target_height,
            store_max_height=self._store_max_height,
            heights_scheduled=self._heights_scheduled,
            jobs_submitted=self._jobs_submitted,
            chunks_admitted=self._chunks_admitted,
            passes_completed=self._passes_completed,
            backpressure_state=self.backpressure.state,
            queue_depth=self.backpressure.last_depth,
        )

    async def run_pass(self, cancel: asyncio.Event | None = None) -> PassReport:
        """
        Run one full sync pass.

        Args:
            cancel: Optional cancellation signal, honored before each chunk
                admission and while waiting for the queue to drain.

        Returns:
            Report with the number of heights scheduled. A cancelled pass
            reports what was scheduled before the signal.

        Raises:
            TargetHeightUnavailable: If the node height cannot be obtained.
        """
        # Serialize passes so two passes never schedule the same gaps.
        async with self._pass_lock:
            self._running = True
            try:
                return await self._run_pass(cancel)
            finally:
                self._running = False
                self._passes_completed += 1

    async def _run_pass(self, cancel: asyncio.Event | None) -> PassReport:
        started = time.monotonic()

        target = await self._fetch_target_height()
        stats = self.store.stats()
        self._record_assessment(target, stats)

        gaps, skipped = self._select_gaps(
            self.detector.iter_gaps(stats, target, self.store.iter_heights()), stats
        )

        total = count_missing(gaps)
        if total == 0:
            if skipped:
                logger.warning("No gaps scheduled: %d gaps exceed the max gap size", len(skipped))
            else:
                logger.info("Blockchain is fully synchronized!")
            return PassReport(target_height=target, skipped_gaps=tuple(skipped))

        logger.info(
            "Syncing %d blocks across %d gaps (batch size %d, chunk size %d, queue threshold %d)",
            total,
            len(gaps),
            self.planner.batch_size,
            self.planner.chunk_size,
            self.backpressure.threshold,
        )

        heights_scheduled = 0
        jobs_submitted = 0
        chunks_admitted = 0
        cancelled = False

        for chunk in self.planner.plan(iter_missing_heights(gaps)):
            if cancel is not None and cancel.is_set():
                cancelled = True
                break

            if await self.backpressure.admit(cancel) is BackpressureState.CANCELLED:
                cancelled = True
                break

            for batch in chunk:
                self.queue.submit(SyncJob(batch=batch))
                jobs_submitted += 1

            heights_scheduled += chunk.height_count
            chunks_admitted += 1
            self._count_chunk(chunk.height_count, len(chunk))

            logger.info(
                "Queued chunk %d (processed %d/%d blocks)",
                chunk.index + 1,
                heights_scheduled,
                total,
            )

        if cancelled:
            logger.warning(
                "Sync pass cancelled: queued %d batches (%d/%d blocks)",
                jobs_submitted,
                heights_scheduled,
                total,
            )
        else:
            logger.info(
                "Sync pass complete: queued %d batches (%d blocks) in %.1fs",
                jobs_submitted,
                heights_scheduled,
                time.monotonic() - started,
            )

        return PassReport(
            target_height=target,
            gaps=tuple(gaps),
            skipped_gaps=tuple(skipped),
            heights_scheduled=heights_scheduled,
            jobs_submitted=jobs_submitted,
            chunks_admitted=chunks_admitted,
            cancelled=cancelled,
        )

    async def _fetch_target_height(self) -> Height:
        """Ask the node for its height, turning failures into a pass abort."""
        try:
            height = await self.node.get_latest_height()
        except (TransportError, RemoteError) as exc:
            raise TargetHeightUnavailable(f"node height could not be retrieved: {exc}") from exc

        if height < 0:
            raise TargetHeightUnavailable(f"node reported a negative height: {height}")
        return height

    def _record_assessment(self, target: Height, stats: StoreStats) -> None:
        """Remember and log where the node and the store stand."""
        self._target_height = target
        self._store_max_height = None if stats.is_empty else stats.max_height

        metrics.target_height.set(target)
        if not stats.is_empty:
            metrics.store_max_height.set(stats.max_height)

        logger.info("Node height: %d", target)
        logger.info(
            "Database stats: %d blocks, range %d-%d",
            stats.count,
            stats.min_height,
            stats.max_height,
        )

    def _select_gaps(
        self, gaps: Iterable[Gap], stats: StoreStats
    ) -> tuple[list[Gap], list[Gap]]:
        """
        Apply the maximum gap size, then the detector's gap limit.

        Oversized gaps are skipped, except the frontier: it is clamped to its
        first `max_gap_size` heights so each pass still moves toward the tip.
        Skipped gaps do not count toward the limit.
        """
        limit = self.detector.limit
        kept: list[Gap] = []
        skipped: list[Gap] = []
        for gap in gaps:
            if limit is not None and len(kept) >= limit:
                break
            if self.max_gap_size is None or gap.size <= self.max_gap_size:
                kept.append(gap)
            elif stats.is_empty or gap.start > stats.max_height:
                clamped = gap.clamp(self.max_gap_size)
                logger.info("Clamping frontier gap %s to %s", gap, clamped)
                kept.append(clamped)
            else:
                logger.warning(
                    "Skipping gap %s: %d blocks exceeds max gap size %d",
                    gap,
                    gap.size,
                    self.max_gap_size,
                )
                skipped.append(gap)
        return kept, skipped

    def _count_chunk(self, heights: int, jobs: int) -> None:
        """Update session counters and metrics for one admitted chunk."""
        self._heights_scheduled += heights
        self._jobs_submitted += jobs
        self._chunks_admitted += 1

        metrics.heights_scheduled.inc(heights)
        metrics.jobs_submitted.inc(jobs)
