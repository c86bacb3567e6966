"""
Database namespace definitions for storage tables.

Defines table names and schema constants for SQLite storage.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True, slots=True)
class BlockNamespace:
    """
    Namespace for block storage.

    Blocks are keyed by height. The payload is stored as the JSON text the
    node returned, so it can be read back without knowing its schema.
    """

    TABLE_NAME: str = "blocks"
    """Table name for block storage."""

    CREATE_TABLE: str = """
        CREATE TABLE IF NOT EXISTS blocks (
            height INTEGER PRIMARY KEY,
            data TEXT NOT NULL
        )
    """
    """SQL to create blocks table."""


BLOCKS = BlockNamespace()
"""Singleton instance for block namespace."""
