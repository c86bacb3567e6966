"""Test helpers for chain ingestion tests."""

from __future__ import annotations

import asyncio
from collections.abc import Coroutine
from typing import TypeVar

from .fakes import FakeClock, FakeNode, FakeQueue, InMemoryBlockStore, make_block

_T = TypeVar("_T")


def run_async(coro: Coroutine[object, object, _T]) -> _T:
    """Run an async coroutine synchronously."""
    return asyncio.run(coro)


__all__ = [
    # Fakes
    "FakeClock",
    "FakeNode",
    "FakeQueue",
    "InMemoryBlockStore",
    "make_block",
    # Async utilities
    "run_async",
]
