"""
Concurrent retrieval of one batch of blocks.

Every height in a batch is fetched independently. A failing height never
aborts the batch: the result maps it to a failure marker while the other
heights carry their payloads.

Degraded Path
-------------
If the concurrent mechanism itself fails (not a single retrieval, but the
fan-out), the fetcher falls back to one-by-one retrieval. The fallback is
slower but produces the same result shape.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Protocol

from .config import REQUEST_TIMEOUT
from .errors import RemoteError, TransportError
from .models import BlockPayload, Height
from .states import FailureKind

logger = logging.getLogger(__name__)


class BlockSource(Protocol):
    """
    Protocol for retrieving a single block from the remote node.

    Implementers should:
    - Raise TransportError on network or protocol failures
    - Raise RemoteError when the node answers with an explicit error
    """

    async def get_block(self, height: Height) -> BlockPayload:
        """
        Retrieve the block at a height.

        Args:
            height: Height of the block.

        Returns:
            The block payload as returned by the node.
        """
        ...


@dataclass(frozen=True, slots=True)
class HeightFailure:
    """Marker for a height that could not be fetched or persisted."""

    height: Height
    """Height that could not be retrieved."""

    kind: FailureKind
    """Category of the failure."""

    reason: str
    """Human-readable error message."""


FetchResult = dict[Height, BlockPayload | HeightFailure]
"""Payload or failure marker for every requested height."""


@dataclass(frozen=True, slots=True)
class BatchFetcher:
    """
    Fetches a batch of heights concurrently.

    Concurrency is unbounded within a batch by default; batches are already
    capped by the batch size. Each retrieval has its own deadline.
    """

    source: BlockSource
    """Remote node used for retrieval."""

    timeout: float = REQUEST_TIMEOUT
    """Deadline for one retrieval in seconds."""

    max_concurrency: int | None = None
    """Maximum retrievals in flight at once. None means one per height."""

    async def fetch_batch(self, heights: Sequence[Height]) -> FetchResult:
        """
        Fetch every height in the batch.

        Args:
            heights: Heights to fetch.

        Returns:
            Mapping from every requested height to its payload or a
            HeightFailure, in request order.
        """
        if not heights:
            return {}

        try:
            results = await self._fetch_concurrent(heights)
        except Exception as exc:
            logger.error("Parallel batch request failed: %s", exc)
            logger.warning("Falling back to sequential requests for %d blocks", len(heights))
            results = await self._fetch_sequential(heights)

        fetched = sum(1 for value in results.values() if not isinstance(value, HeightFailure))
        logger.debug("Batch fetch complete: %d/%d blocks fetched", fetched, len(heights))
        return results

    async def _fetch_concurrent(self, heights: Sequence[Height]) -> FetchResult:
        """Fan out one task per height and collect every result."""
        semaphore = asyncio.Semaphore(self.max_concurrency) if self.max_concurrency else None
        payloads = await asyncio.gather(*(self._fetch_one(height, semaphore) for height in heights))
        return dict(zip(heights, payloads, strict=True))

    async def _fetch_sequential(self, heights: Sequence[Height]) -> FetchResult:
        """Fetch heights one at a time."""
        return {height: await self._fetch_one(height) for height in heights}

    async def _fetch_one(
        self,
        height: Height,
        semaphore: asyncio.Semaphore | None = None,
    ) -> BlockPayload | HeightFailure:
        """Fetch one height, respecting the concurrency limit."""
        if semaphore is None:
            return await self._retrieve(height)
        async with semaphore:
            return await self._retrieve(height)

    async def _retrieve(self, height: Height) -> BlockPayload | HeightFailure:
        """
        Fetch one height and convert errors into a failure marker.

        Only cancellation escapes; every other error becomes a HeightFailure.
        """
        try:
            return await asyncio.wait_for(self.source.get_block(height), self.timeout)
        except TimeoutError:
            failure = HeightFailure(height, FailureKind.TIMEOUT, f"timed out after {self.timeout}s")
        except TransportError as exc:
            failure = HeightFailure(height, FailureKind.TRANSPORT, str(exc))
        except RemoteError as exc:
            failure = HeightFailure(height, FailureKind.REMOTE, str(exc))
        except Exception as exc:
            failure = HeightFailure(height, FailureKind.UNEXPECTED, repr(exc))

        logger.debug("Request failed for block %d: %s", height, failure.reason)
        return failure
