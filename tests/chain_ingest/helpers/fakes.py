"""In-memory stand-ins for the node, the block store and the work queue."""

from __future__ import annotations

import asyncio
from collections.abc import Iterable, Iterator, Mapping
from typing import Any

from chain_ingest.subspecs.sync import (
    BlockPayload,
    Height,
    QueueUnreachableError,
    StoreStats,
    SyncJob,
    TransportError,
    WriteError,
)


def make_block(height: Height) -> dict[str, Any]:
    """Build a recognizable block payload for a height."""
    return {"height": height, "hash": f"0x{height:064x}", "transactions": []}


class FakeNode:
    """
    Remote node serving synthetic blocks.

    Heights listed in `failing` raise a transport error. A `height_error`
    makes the height query itself fail.
    """

    def __init__(
        self,
        height: Height = 0,
        failing: Iterable[Height] = (),
        height_error: Exception | None = None,
        delay: float = 0.0,
    ) -> None:
        self.height = height
        self.failing = set(failing)
        self.height_error = height_error
        self.delay = delay
        self.block_requests: list[Height] = []
        self.height_requests = 0

    async def get_latest_height(self) -> Height:
        self.height_requests += 1
        if self.height_error is not None:
            raise self.height_error
        return self.height

    async def get_block(self, height: Height) -> BlockPayload:
        self.block_requests.append(height)
        if self.delay:
            await asyncio.sleep(self.delay)
        if height in self.failing:
            raise TransportError(f"connection reset fetching block {height}")
        return make_block(height)


class InMemoryBlockStore:
    """Block store keeping payloads in a dict."""

    def __init__(
        self,
        heights: Iterable[Height] = (),
        rejected: Iterable[Height] = (),
    ) -> None:
        self.blocks: dict[Height, dict[str, Any]] = {h: make_block(h) for h in heights}
        self.rejected = set(rejected)
        self.writes: list[Height] = []
        self.closed = False

    def stats(self) -> StoreStats:
        if not self.blocks:
            return StoreStats(min_height=0, max_height=0, count=0)
        return StoreStats(
            min_height=min(self.blocks),
            max_height=max(self.blocks),
            count=len(self.blocks),
        )

    def exists(self, height: Height) -> bool:
        return height in self.blocks

    def write(self, height: Height, payload: Mapping[str, Any]) -> None:
        if height in self.rejected:
            raise WriteError(height, "disk full")
        self.writes.append(height)
        self.blocks[height] = dict(payload)

    def get(self, height: Height) -> dict[str, Any] | None:
        return self.blocks.get(height)

    def iter_heights(self) -> Iterator[Height]:
        return iter(sorted(self.blocks))

    def close(self) -> None:
        self.closed = True


class FakeQueue:
    """
    Work queue recording submissions.

    Reported depths are scripted: each `depth()` call pops the next value,
    then the last value repeats. With no script the depth is always 0.
    """

    def __init__(self, depths: Iterable[int] = (), unreachable: bool = False) -> None:
        self._depths = list(depths)
        self.unreachable = unreachable
        self.submitted: list[tuple[SyncJob, float]] = []
        self.depth_calls = 0

    @property
    def jobs(self) -> list[SyncJob]:
        """Submitted jobs, in order."""
        return [job for job, _ in self.submitted]

    def depth(self) -> int:
        self.depth_calls += 1
        if self.unreachable:
            raise QueueUnreachableError("fake queue is down")
        if not self._depths:
            return 0
        if len(self._depths) == 1:
            return self._depths[0]
        return self._depths.pop(0)

    def submit(self, job: SyncJob, delay: float = 0.0) -> None:
        self.submitted.append((job, delay))


class FakeClock:
    """Manually advanced time source."""

    def __init__(self, start: float = 0.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds
