"""
Storage module for persistent block storage.

Provides the block store abstraction consumed by the ingestion core.
Uses SQLite for simplicity and correctness.
"""

from .database import BlockStore
from .namespaces import BLOCKS, BlockNamespace
from .sqlite import SQLiteBlockStore

__all__ = [
    "BLOCKS",
    "BlockNamespace",
    "BlockStore",
    "SQLiteBlockStore",
]
