"""Tests for concurrent batch retrieval."""

from __future__ import annotations

import asyncio
import logging
from unittest.mock import AsyncMock, patch

import pytest

from chain_ingest.subspecs.sync import (
    BatchFetcher,
    BlockPayload,
    FailureKind,
    HeightFailure,
    RemoteError,
)
from tests.chain_ingest.helpers import FakeNode, make_block, run_async


class FlakyNode(FakeNode):
    """Node raising a different error kind per height."""

    async def get_block(self, height: int) -> BlockPayload:
        if height == 1:
            raise RemoteError("block not found", code=-32000)
        if height == 2:
            await asyncio.sleep(10)
        if height == 3:
            raise KeyError("result")
        return await super().get_block(height)


class CountingNode(FakeNode):
    """Node recording the peak number of concurrent retrievals."""

    def __init__(self) -> None:
        super().__init__()
        self.active = 0
        self.peak = 0

    async def get_block(self, height: int) -> BlockPayload:
        self.active += 1
        self.peak = max(self.peak, self.active)
        try:
            await asyncio.sleep(0.001)
            return await super().get_block(height)
        finally:
            self.active -= 1


class TestFetchBatch:
    """Per-height results."""

    def test_every_height_fetched(self) -> None:
        """A healthy node yields one payload per height, in request order."""
        node = FakeNode()
        fetcher = BatchFetcher(source=node)

        results = run_async(fetcher.fetch_batch((5, 6, 7)))

        assert list(results) == [5, 6, 7]
        assert results[6] == make_block(6)
        assert sorted(node.block_requests) == [5, 6, 7]

    def test_empty_batch(self) -> None:
        """Nothing to fetch yields an empty mapping."""
        assert run_async(BatchFetcher(source=FakeNode()).fetch_batch(())) == {}

    def test_failures_are_values(self) -> None:
        """A failing height never aborts the rest of the batch."""
        fetcher = BatchFetcher(source=FakeNode(failing={2, 4}))

        results = run_async(fetcher.fetch_batch((1, 2, 3, 4)))

        assert results[1] == make_block(1)
        assert results[3] == make_block(3)
        failure = results[2]
        assert isinstance(failure, HeightFailure)
        assert failure.height == 2
        assert failure.kind is FailureKind.TRANSPORT
        assert "connection reset" in failure.reason

    def test_failure_kinds(self) -> None:
        """Remote errors, timeouts and unexpected errors are classified."""
        fetcher = BatchFetcher(source=FlakyNode(), timeout=0.05)

        results = run_async(fetcher.fetch_batch((0, 1, 2, 3)))

        assert results[0] == make_block(0)
        kinds = {
            height: value.kind
            for height, value in results.items()
            if isinstance(value, HeightFailure)
        }
        assert kinds == {
            1: FailureKind.REMOTE,
            2: FailureKind.TIMEOUT,
            3: FailureKind.UNEXPECTED,
        }

    def test_concurrency_limit(self) -> None:
        """No more than max_concurrency retrievals run at once."""
        node = CountingNode()
        fetcher = BatchFetcher(source=node, max_concurrency=3)

        results = run_async(fetcher.fetch_batch(tuple(range(20))))

        assert len(results) == 20
        assert node.peak <= 3

    def test_unbounded_by_default(self) -> None:
        """Without a limit every retrieval starts together."""
        node = CountingNode()

        run_async(BatchFetcher(source=node).fetch_batch(tuple(range(10))))

        assert node.peak == 10


class TestSequentialFallback:
    """Degraded path when the concurrent fan-out breaks."""

    def test_falls_back_with_same_shape(self, caplog: pytest.LogCaptureFixture) -> None:
        """The sequential path returns the same mapping as the concurrent one."""
        node = FakeNode(failing={3})
        fetcher = BatchFetcher(source=node)
        expected = run_async(fetcher.fetch_batch((1, 2, 3)))

        broken = AsyncMock(side_effect=RuntimeError("cannot spawn tasks"))
        with (
            patch.object(BatchFetcher, "_fetch_concurrent", broken),
            caplog.at_level(logging.WARNING),
        ):
            results = run_async(fetcher.fetch_batch((1, 2, 3)))

        assert broken.await_count == 1
        assert results == expected
        assert "Falling back to sequential requests" in caplog.text
        assert node.block_requests[-3:] == [1, 2, 3]
