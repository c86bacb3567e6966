"""
SQLite implementation of the block store.

Blocks are keyed by height and stored as the JSON text returned by the node.
The primary key on height gives upsert semantics for free: writing a height
twice replaces the row and leaves the count unchanged.
"""

from __future__ import annotations

import json
import sqlite3
from collections.abc import Iterator
from pathlib import Path
from typing import Final

from chain_ingest.subspecs.sync.errors import WriteError
from chain_ingest.subspecs.sync.models import BlockPayload, Height, StoreStats

from .namespaces import BLOCKS

HEIGHT_PAGE_SIZE: Final = 10_000
"""Heights read per query when streaming persisted heights."""


class SQLiteBlockStore:
    """
    SQLite implementation of the BlockStore protocol.

    Stores blocks in a single SQLite file.
    Thread-safe through SQLite's built-in locking.
    """

    def __init__(self, path: Path | str) -> None:
        """
        Initialize the store.

        Creates the database file and table if they don't exist.

        Args:
            path: Path to SQLite database file.
                  Use ":memory:" for in-memory database.
        """
        self._path = Path(path) if isinstance(path, str) else path

        # The check_same_thread=False flag allows multiple threads to share
        # this connection. SQLite serializes writes internally.
        self._conn = sqlite3.connect(
            str(self._path),
            check_same_thread=False,
        )

        # Row factory enables dict-like access: row["column_name"].
        self._conn.row_factory = sqlite3.Row

        self._init_schema()

    def _init_schema(self) -> None:
        """Create tables if they don't exist."""
        cursor = self._conn.cursor()
        cursor.execute(BLOCKS.CREATE_TABLE)
        self._conn.commit()

    # -------------------------------------------------------------------------
    # Statistics
    # -------------------------------------------------------------------------

    def stats(self) -> StoreStats:
        """Summarize persisted heights."""
        cursor = self._conn.cursor()

        # COALESCE keeps an empty table at (0, 0, 0) instead of NULLs.
        cursor.execute(
            f"""
            SELECT
                COUNT(*) AS total,
                COALESCE(MIN(height), 0) AS min_height,
                COALESCE(MAX(height), 0) AS max_height
            FROM {BLOCKS.TABLE_NAME}
            """
        )
        row = cursor.fetchone()
        return StoreStats(
            min_height=row["min_height"],
            max_height=row["max_height"],
            count=row["total"],
        )

    def iter_heights(self) -> Iterator[Height]:
        """
        Stream persisted heights in ascending order.

        Heights are read in pages keyed on the last height seen, so no cursor
        stays open between pages and writes can interleave freely.
        """
        last = -1
        while True:
            cursor = self._conn.cursor()
            cursor.execute(
                f"""
                SELECT height FROM {BLOCKS.TABLE_NAME}
                WHERE height > ?
                ORDER BY height
                LIMIT ?
                """,
                (last, HEIGHT_PAGE_SIZE),
            )
            rows = cursor.fetchall()
            if not rows:
                return

            for row in rows:
                yield row["height"]
            last = rows[-1]["height"]

    # -------------------------------------------------------------------------
    # Block Operations
    # -------------------------------------------------------------------------

    def exists(self, height: Height) -> bool:
        """Check if a block is persisted."""
        cursor = self._conn.cursor()

        # SELECT 1 is an existence check; the payload is never read.
        cursor.execute(
            f"SELECT 1 FROM {BLOCKS.TABLE_NAME} WHERE height = ?",
            (height,),
        )
        return cursor.fetchone() is not None

    def get(self, height: Height) -> BlockPayload | None:
        """Retrieve a block payload by height."""
        cursor = self._conn.cursor()
        cursor.execute(
            f"SELECT data FROM {BLOCKS.TABLE_NAME} WHERE height = ?",
            (height,),
        )
        row = cursor.fetchone()
        if row is None:
            return None
        return json.loads(row["data"])

    def write(self, height: Height, payload: BlockPayload) -> None:
        """
        Persist a block payload.

        Raises:
            WriteError: If the payload is not JSON-serializable or SQLite
                rejects the write.
        """
        try:
            data = json.dumps(dict(payload), separators=(",", ":"), sort_keys=True)
        except (TypeError, ValueError) as exc:
            raise WriteError(height, f"payload is not serializable: {exc}") from exc

        # The connection context commits on success and rolls back on error.
        #
        # Committing per block means a crashed pass loses nothing already written.
        try:
            with self._conn:
                # INSERT OR REPLACE makes the write an upsert.
                #
                # Jobs may overlap after retries; rewriting a height must be safe.
                self._conn.execute(
                    f"INSERT OR REPLACE INTO {BLOCKS.TABLE_NAME} (height, data) VALUES (?, ?)",
                    (height, data),
                )
        except sqlite3.Error as exc:
            raise WriteError(height, str(exc)) from exc

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    def close(self) -> None:
        """Close database connection."""
        self._conn.close()

    def __enter__(self) -> SQLiteBlockStore:
        """Context manager entry."""
        return self

    def __exit__(self, *args: object) -> None:
        """Context manager exit."""
        self.close()
