"""
Block ingestion core.

What Is Ingestion?
------------------
A local store mirrors the blocks of a remote chain node. Ingestion finds
which heights the store is missing and fetches them, in parallel, without
overwhelming either the node or the work queue in between.

The Challenge
-------------
1. **Holes**: parallel jobs and partial failures leave gaps behind
2. **Volume**: a fresh store may be tens of millions of heights behind
3. **Load**: the node and the queue must not be flooded

How It Works
------------
- GapDetector computes missing ranges from store statistics
- ChunkPlanner lazily splits missing heights into batches and chunks
- BackpressureController admits a chunk only while the queue is shallow
- BatchFetcher retrieves a batch concurrently, tolerating per-height failures
- JobExecutor persists a batch and decides success, partial success or retry
- SyncScheduler composes all of the above into one pass
"""

from __future__ import annotations

__all__ = [
    # Scheduler
    "SyncScheduler",
    "SyncProgress",
    "PassReport",
    "HeightSource",
    # Gap detection and planning
    "GapDetector",
    "ChunkPlanner",
    "iter_missing_heights",
    "count_missing",
    # Admission control
    "BackpressureController",
    "QueueDepthSource",
    # Fetching and execution
    "BatchFetcher",
    "BlockSource",
    "HeightFailure",
    "JobExecutor",
    "JobResult",
    # Retry policy
    "BackoffPolicy",
    "ConstantBackoff",
    "ExponentialBackoff",
    # Data model
    "Batch",
    "BlockPayload",
    "Chunk",
    "Gap",
    "Height",
    "StoreStats",
    "SyncJob",
    # States and outcomes
    "BackpressureState",
    "FailureKind",
    "JobOutcome",
    # Errors
    "ConfigurationError",
    "QueueUnreachableError",
    "RemoteError",
    "SyncError",
    "TargetHeightUnavailable",
    "TransportError",
    "WriteError",
]

from .backoff import BackoffPolicy, ConstantBackoff, ExponentialBackoff
from .backpressure import BackpressureController, QueueDepthSource
from .errors import (
    ConfigurationError,
    QueueUnreachableError,
    RemoteError,
    SyncError,
    TargetHeightUnavailable,
    TransportError,
    WriteError,
)
from .executor import JobExecutor, JobResult
from .fetcher import BatchFetcher, BlockSource, HeightFailure
from .gaps import GapDetector, count_missing, iter_missing_heights
from .models import Batch, BlockPayload, Chunk, Gap, Height, StoreStats, SyncJob
from .planner import ChunkPlanner
from .scheduler import HeightSource, PassReport, SyncProgress, SyncScheduler
from .states import BackpressureState, FailureKind, JobOutcome
