"""
Metrics module for observability.

Provides counters, gauges, and histograms for tracking ingestion behavior.
Exposes metrics in Prometheus text format.
"""

from .registry import (
    REGISTRY,
    backpressure_waits,
    batch_duration,
    blocks_written,
    generate_metrics,
    height_failures,
    heights_scheduled,
    job_outcomes,
    jobs_submitted,
    queue_depth,
    store_max_height,
    target_height,
)

__all__ = [
    "REGISTRY",
    "backpressure_waits",
    "batch_duration",
    "blocks_written",
    "generate_metrics",
    "height_failures",
    "heights_scheduled",
    "job_outcomes",
    "jobs_submitted",
    "queue_depth",
    "store_max_height",
    "target_height",
]
