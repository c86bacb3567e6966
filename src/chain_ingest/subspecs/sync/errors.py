"""
Error taxonomy for block ingestion.

Per-height and per-batch failures are recovered locally. They are turned into
explicit values (fetch failures, job outcomes) before they leave a job, and
only configuration and structural errors abort a sync pass.
"""

from __future__ import annotations

from typing import Any


class SyncError(Exception):
    """Base class for every error raised by the ingestion core."""


class TransportError(SyncError):
    """
    Network failure talking to the remote node.

    Covers connection errors, timeouts, HTTP error statuses and response
    bodies that are not valid JSON-RPC.
    """


class RemoteError(SyncError):
    """
    The remote node answered with an explicit JSON-RPC error.

    Treated identically to a transport failure for retry purposes.
    """

    def __init__(self, message: str, code: int | None = None, data: Any = None) -> None:
        """Store the JSON-RPC error fields alongside the message."""
        super().__init__(message)
        self.code = code
        self.data = data


class WriteError(SyncError):
    """The block store rejected a payload."""

    def __init__(self, height: int, message: str) -> None:
        """Record the height whose write failed."""
        super().__init__(f"failed to write block {height}: {message}")
        self.height = height


class ConfigurationError(SyncError):
    """
    Missing or invalid configuration.

    Fails the pass immediately. Never retried automatically.
    """


class QueueUnreachableError(SyncError):
    """Queue depth could not be observed."""


class TargetHeightUnavailable(SyncError):
    """The remote node did not report its current height."""
