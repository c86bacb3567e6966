"""
Sync configuration constants.

Operational defaults for ingestion: batch sizes, admission limits, timeouts
and retry policy. Every value can be overridden through `SyncConfig`.
"""

from __future__ import annotations

from typing import Final

DEFAULT_BATCH_SIZE: Final[int] = 100
"""Heights fetched together by one job."""

DEFAULT_CHUNK_SIZE: Final[int] = 1000
"""Maximum heights admitted to the work queue in one admission step."""

DEFAULT_QUEUE_THRESHOLD: Final[int] = 100
"""Queue depth at or above which chunk admission waits."""

DEFAULT_MAX_ATTEMPTS: Final[int] = 3
"""Executions allowed for a single logical batch."""

DEFAULT_FAILURE_THRESHOLD: Final[float] = 0.5
"""Failure ratio above which a batch counts as a systemic failure."""

DEFAULT_RETRY_DELAY: Final[float] = 30.0
"""Seconds a failed batch waits before it is executed again."""

DEFAULT_POLL_INTERVAL: Final[float] = 30.0
"""Seconds between queue depth polls while admission is blocked."""

DEFAULT_PROGRESS_INTERVAL: Final[float] = 300.0
"""Seconds between progress log lines while admission is blocked."""

REQUEST_TIMEOUT: Final[float] = 30.0
"""Timeout for an individual block retrieval in seconds."""

CONNECT_TIMEOUT: Final[float] = 10.0
"""Timeout for establishing a connection to the remote node in seconds."""

DEFAULT_WORKERS: Final[int] = 4
"""Concurrent jobs executed by the in-process work queue."""

MAX_LOGGED_HEIGHTS: Final[int] = 10
"""Failed heights listed in a single log line."""
