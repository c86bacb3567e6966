"""
Gap detection over persisted block heights.

A store that ingests blocks out of order (parallel jobs, partial failures,
restarts) ends up with holes. This module computes exactly which heights are
missing for a store snapshot.

What Counts As Missing
----------------------
For a non-empty store with persisted heights between `min` and `max`:

1. **Leading gap**: heights `0 .. min-1`, when the store does not start at genesis
2. **Interior gaps**: every discontinuity between consecutive persisted heights
3. **Frontier**: heights `max+1 .. target` the node has but the store does not

An empty store has a single gap from genesis to the target height.

The detector is a pure function of its inputs. The persisted heights are
consumed as an ascending iterator, so a store can stream them from a cursor
without loading millions of integers at once.
"""

from __future__ import annotations

import itertools
from collections.abc import Iterable, Iterator
from dataclasses import dataclass

from .models import Gap, Height, StoreStats


@dataclass(frozen=True, slots=True)
class GapDetector:
    """
    Computes missing height ranges from store statistics.

    Output gaps are disjoint, maximal and ascending by start height.
    """

    limit: int | None = None
    """Maximum number of gaps returned per detection. None means unlimited."""

    include_below_min: bool = True
    """Whether heights below the lowest persisted height count as a gap."""

    def __post_init__(self) -> None:
        """Validate the gap limit."""
        if self.limit is not None and self.limit < 1:
            raise ValueError(f"gap limit must be positive, got {self.limit}")

    def detect(
        self,
        stats: StoreStats,
        target_height: Height,
        persisted_heights: Iterable[Height] = (),
    ) -> list[Gap]:
        """
        Detect missing heights for one store snapshot.

        Args:
            stats: Minimum, maximum and count of persisted heights.
            target_height: Current height reported by the remote node.
            persisted_heights: Persisted heights in strictly ascending order.
                Only consulted when the store is not empty.

        Returns:
            Gaps ascending by start, truncated to the first `limit` gaps.

        Raises:
            ValueError: If the target is negative or heights are not ascending.
        """
        if target_height < 0:
            raise ValueError(f"target height must be non-negative, got {target_height}")

        gaps = self.iter_gaps(stats, target_height, persisted_heights)
        return list(itertools.islice(gaps, self.limit))

    def iter_gaps(
        self,
        stats: StoreStats,
        target_height: Height,
        persisted_heights: Iterable[Height] = (),
    ) -> Iterator[Gap]:
        """
        Stream every gap in ascending order, ignoring `limit`.

        Callers that filter gaps apply the limit after filtering.
        """
        # Fresh store starts at genesis.
        if stats.is_empty:
            yield Gap(start=0, end=target_height)
            return

        if self.include_below_min and stats.min_height > 0:
            yield Gap(start=0, end=stats.min_height - 1)

        previous: Height | None = None
        for height in persisted_heights:
            if previous is not None:
                if height <= previous:
                    raise ValueError(
                        f"persisted heights must be strictly ascending: {previous} then {height}"
                    )
                if height - previous > 1:
                    yield Gap(start=previous + 1, end=height - 1)
            previous = height

        if stats.max_height < target_height:
            yield Gap(start=stats.max_height + 1, end=target_height)


def iter_missing_heights(gaps: Iterable[Gap]) -> Iterator[Height]:
    """
    Flatten gaps into one ascending stream of heights.

    The stream is lazy; a gap of millions of heights costs constant memory.
    """
    for gap in gaps:
        yield from gap.heights()


def count_missing(gaps: Iterable[Gap]) -> int:
    """Total number of heights covered by the gaps."""
    return sum(gap.size for gap in gaps)
