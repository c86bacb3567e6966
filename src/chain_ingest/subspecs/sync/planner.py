"""
Chunk planning for missing heights.

Turns a flat, ordered stream of heights into batches (the unit a single job
fetches) and groups consecutive batches into chunks (the unit admitted to the
work queue at once).

Memory
------
Planning is lazy. Only the chunk being built is held in memory, so planning a
range of tens of millions of heights costs memory proportional to the chunk
size, not to the range.
"""

from __future__ import annotations

from collections.abc import Iterable, Iterator
from dataclasses import dataclass
from itertools import batched

from .models import Batch, Chunk, Height


@dataclass(frozen=True, slots=True)
class ChunkPlanner:
    """
    Splits heights into batches and batches into chunks.

    Batches preserve input order; the concatenation of every batch of every
    chunk equals the input sequence exactly.
    """

    batch_size: int
    """Maximum heights per batch."""

    chunk_size: int
    """Maximum heights per chunk."""

    def __post_init__(self) -> None:
        """Validate the sizes."""
        if self.batch_size < 1:
            raise ValueError(f"batch size must be positive, got {self.batch_size}")
        if self.chunk_size < 1:
            raise ValueError(f"chunk size must be positive, got {self.chunk_size}")

    def batches(self, heights: Iterable[Height]) -> Iterator[Batch]:
        """
        Split heights into consecutive batches.

        Every batch holds `batch_size` heights except possibly the last one.
        """
        return batched(heights, self.batch_size)

    def plan(self, heights: Iterable[Height]) -> Iterator[Chunk]:
        """
        Group consecutive batches into chunks.

        A chunk is closed as soon as the next batch would push its height
        count past `chunk_size`. A batch larger than `chunk_size` is never
        split; it becomes a chunk on its own.

        Args:
            heights: Ordered heights to plan.

        Yields:
            Chunks in input order, numbered from 0.
        """
        index = 0
        pending: list[Batch] = []
        pending_count = 0

        for batch in self.batches(heights):
            if pending and pending_count + len(batch) > self.chunk_size:
                yield Chunk(index=index, batches=tuple(pending))
                index += 1
                pending = []
                pending_count = 0

            pending.append(batch)
            pending_count += len(batch)

        if pending:
            yield Chunk(index=index, batches=tuple(pending))
