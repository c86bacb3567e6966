"""
Work queue module.

Provides the queue abstraction consumed by the ingestion core and an
in-process implementation backed by asyncio workers.
"""

from .base import WorkQueue
from .memory import AsyncWorkQueue, JobHandler

__all__ = [
    "AsyncWorkQueue",
    "JobHandler",
    "WorkQueue",
]
