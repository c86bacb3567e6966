"""
Shared pytest fixtures for all chain_ingest tests.

Provides fakes for the node, block store and work queue.
"""

from __future__ import annotations

from collections.abc import Callable

import pytest

from chain_ingest.subspecs.metrics import REGISTRY
from tests.chain_ingest.helpers import FakeNode, FakeQueue, InMemoryBlockStore


@pytest.fixture
def node() -> FakeNode:
    """Node at height 0 serving every block."""
    return FakeNode()


@pytest.fixture
def store() -> InMemoryBlockStore:
    """Empty in-memory block store."""
    return InMemoryBlockStore()


@pytest.fixture
def queue() -> FakeQueue:
    """Recording work queue that always reports an empty depth."""
    return FakeQueue()


@pytest.fixture
def sample_value() -> Callable[..., float]:
    """Read a metric sample from the ingestion registry, 0 if absent."""

    def read(name: str, **labels: str) -> float:
        return REGISTRY.get_sample_value(name, labels or None) or 0.0

    return read
