"""
Abstract block store interface.

Defines the Protocol that all block store implementations must follow.
Uses structural subtyping for flexibility.
"""

from __future__ import annotations

from collections.abc import Iterator
from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from chain_ingest.subspecs.sync.models import BlockPayload, Height, StoreStats


class BlockStore(Protocol):
    """
    Protocol for block persistence.

    Writes are idempotent upserts: rewriting a height replaces its payload
    and never changes the block count. Concurrent writes for the same height
    are safe.
    """

    def stats(self) -> StoreStats:
        """
        Summarize persisted heights.

        Returns:
            Minimum, maximum and count. All zero for an empty store.
        """
        ...

    def exists(self, height: Height) -> bool:
        """
        Check if a block is persisted.

        Args:
            height: Height of the block.

        Returns:
            True if the block exists.
        """
        ...

    def write(self, height: Height, payload: BlockPayload) -> None:
        """
        Persist a block payload.

        Args:
            height: Height of the block.
            payload: Block data as returned by the node.

        Raises:
            WriteError: If the payload cannot be persisted.
        """
        ...

    def get(self, height: Height) -> BlockPayload | None:
        """
        Retrieve a block payload.

        Args:
            height: Height of the block.

        Returns:
            The payload if found, None otherwise.
        """
        ...

    def iter_heights(self) -> Iterator[Height]:
        """
        Stream persisted heights in ascending order.

        Returns:
            Iterator over heights. Implementations should not materialize
            the full set in memory.
        """
        ...

    def close(self) -> None:
        """Close the store and release resources."""
        ...
