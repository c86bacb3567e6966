"""
Data model shared by the ingestion components.

Gaps, batches, chunks and jobs are ephemeral. They are built for one sync pass
and discarded after dispatch. Only block payloads outlive a pass, through the
block store.
"""

from __future__ import annotations

from collections.abc import Iterator, Mapping
from dataclasses import dataclass
from typing import Any, Self

from pydantic import Field, model_validator

from chain_ingest.types import StrictBaseModel

Height = int
"""Position of a block in the chain. Non-negative and unique per store."""

BlockPayload = Mapping[str, Any]
"""Block data exactly as returned by the remote node. Never modified."""

Batch = tuple[Height, ...]
"""Heights fetched together by one job. Never empty."""


class Gap(StrictBaseModel):
    """
    Inclusive range of heights missing from the store.

    Gaps produced for one store snapshot are maximal, disjoint and ordered by
    their start height.
    """

    start: Height = Field(ge=0)
    """First missing height."""

    end: Height = Field(ge=0)
    """Last missing height (inclusive)."""

    @model_validator(mode="after")
    def validate_order(self) -> Self:
        if self.start > self.end:
            raise ValueError(f"gap start {self.start} is after end {self.end}")
        return self

    @property
    def size(self) -> int:
        """Number of heights covered by the gap."""
        return self.end - self.start + 1

    def heights(self) -> range:
        """Heights in the gap, ascending."""
        return range(self.start, self.end + 1)

    def clamp(self, max_size: int) -> Gap:
        """Return the first `max_size` heights of this gap."""
        if self.size <= max_size:
            return self
        return Gap(start=self.start, end=self.start + max_size - 1)

    def __str__(self) -> str:
        return f"[{self.start}, {self.end}]"


class StoreStats(StrictBaseModel):
    """Summary of the heights currently persisted."""

    min_height: Height = Field(ge=0)
    """Lowest persisted height (0 for an empty store)."""

    max_height: Height = Field(ge=0)
    """Highest persisted height (0 for an empty store)."""

    count: int = Field(ge=0)
    """Number of persisted heights."""

    @property
    def is_empty(self) -> bool:
        """Check if nothing has been persisted yet."""
        return self.count == 0


class SyncJob(StrictBaseModel):
    """
    One batch of heights plus its attempt counter.

    The counter starts at 1 and grows by one on every retry.
    """

    batch: Batch = Field(min_length=1)
    """Heights to fetch and persist."""

    attempt: int = Field(default=1, ge=1)
    """Execution number of this batch, starting at 1."""

    @property
    def start_height(self) -> Height:
        """Lowest height in the batch."""
        return min(self.batch)

    @property
    def end_height(self) -> Height:
        """Highest height in the batch."""
        return max(self.batch)

    def next_attempt(self) -> SyncJob:
        """Return the same batch with the attempt counter advanced."""
        return self.copy(attempt=self.attempt + 1)


@dataclass(frozen=True, slots=True)
class Chunk:
    """
    Admission unit against the work queue.

    A chunk holds consecutive batches whose total height count does not
    exceed the configured chunk size. A single oversized batch forms a chunk
    on its own.
    """

    index: int
    """Zero-based position of the chunk within its plan."""

    batches: tuple[Batch, ...]
    """Batches in submission order."""

    @property
    def height_count(self) -> int:
        """Total number of heights across all batches."""
        return sum(len(batch) for batch in self.batches)

    def heights(self) -> Iterator[Height]:
        """Heights of the chunk in submission order."""
        for batch in self.batches:
            yield from batch

    def __len__(self) -> int:
        return len(self.batches)

    def __iter__(self) -> Iterator[Batch]:
        return iter(self.batches)
