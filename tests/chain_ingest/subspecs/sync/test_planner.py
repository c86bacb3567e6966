"""Tests for batch and chunk planning."""

from __future__ import annotations

import itertools

import pytest
from hypothesis import given
from hypothesis import strategies as st

from chain_ingest.subspecs.sync import ChunkPlanner


class TestBatches:
    """Splitting heights into batches."""

    def test_fresh_store_scenario(self) -> None:
        """Eleven heights with batch size 4 split into 4, 4 and 3."""
        planner = ChunkPlanner(batch_size=4, chunk_size=1000)

        batches = list(planner.batches(range(11)))

        assert batches == [(0, 1, 2, 3), (4, 5, 6, 7), (8, 9, 10)]

    def test_sparse_heights_keep_order(self) -> None:
        """Batches need not be contiguous; they follow the input order."""
        planner = ChunkPlanner(batch_size=2, chunk_size=10)

        assert list(planner.batches([3, 4, 7, 8, 9])) == [(3, 4), (7, 8), (9,)]

    def test_empty_input_yields_nothing(self) -> None:
        """No heights means no batches and no chunks."""
        planner = ChunkPlanner(batch_size=3, chunk_size=9)

        assert list(planner.batches([])) == []
        assert list(planner.plan([])) == []


class TestChunks:
    """Grouping batches into admission chunks."""

    def test_chunks_fill_up_to_chunk_size(self) -> None:
        """Batches are grouped until the next one would overflow the chunk."""
        planner = ChunkPlanner(batch_size=4, chunk_size=10)

        chunks = list(planner.plan(range(22)))

        assert [chunk.height_count for chunk in chunks] == [8, 8, 6]
        assert [chunk.index for chunk in chunks] == [0, 1, 2]
        assert chunks[0].batches == ((0, 1, 2, 3), (4, 5, 6, 7))

    def test_oversized_batch_is_its_own_chunk(self) -> None:
        """A batch larger than the chunk size is never split."""
        planner = ChunkPlanner(batch_size=5, chunk_size=3)

        chunks = list(planner.plan(range(12)))

        assert [len(chunk) for chunk in chunks] == [1, 1, 1]
        assert [chunk.height_count for chunk in chunks] == [5, 5, 2]

    def test_plan_is_lazy(self) -> None:
        """Planning an unbounded stream only consumes what is requested."""
        planner = ChunkPlanner(batch_size=100, chunk_size=1000)

        first = next(planner.plan(itertools.count()))

        assert first.height_count == 1000
        assert list(first.heights())[-1] == 999

    @pytest.mark.parametrize(("batch_size", "chunk_size"), [(0, 10), (10, 0), (-1, 5)])
    def test_sizes_must_be_positive(self, batch_size: int, chunk_size: int) -> None:
        """Zero or negative sizes are rejected."""
        with pytest.raises(ValueError, match="must be positive"):
            ChunkPlanner(batch_size=batch_size, chunk_size=chunk_size)


class TestProperties:
    """Properties of every plan."""

    @given(
        heights=st.lists(st.integers(min_value=0, max_value=10_000), max_size=300),
        batch_size=st.integers(min_value=1, max_value=50),
        extra=st.integers(min_value=0, max_value=200),
    )
    def test_concatenation_preserves_input(
        self, heights: list[int], batch_size: int, extra: int
    ) -> None:
        """Every height appears once, in input order."""
        planner = ChunkPlanner(batch_size=batch_size, chunk_size=batch_size + extra)

        flattened = [h for chunk in planner.plan(heights) for batch in chunk for h in batch]

        assert flattened == heights

    @given(
        count=st.integers(min_value=0, max_value=2000),
        batch_size=st.integers(min_value=1, max_value=100),
        extra=st.integers(min_value=0, max_value=500),
    )
    def test_chunk_and_batch_bounds(self, count: int, batch_size: int, extra: int) -> None:
        """Batches hold 1..batch_size heights; chunks never exceed chunk_size."""
        chunk_size = batch_size + extra
        planner = ChunkPlanner(batch_size=batch_size, chunk_size=chunk_size)

        for chunk in planner.plan(range(count)):
            assert 1 <= chunk.height_count <= chunk_size
            assert all(1 <= len(batch) <= batch_size for batch in chunk)
