"""
Metric registry using prometheus_client.

Provides pre-defined metrics for block ingestion.
Exposes metrics in Prometheus text format via the /metrics endpoint.
"""

from __future__ import annotations

from prometheus_client import (
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

# Create a dedicated registry for ingestion metrics.
#
# Using a dedicated registry avoids pollution from default Python process metrics.
REGISTRY = CollectorRegistry()

# -----------------------------------------------------------------------------
# Chain Position
# -----------------------------------------------------------------------------

target_height = Gauge(
    "chain_ingest_target_height",
    "Latest height reported by the remote node",
    registry=REGISTRY,
)

store_max_height = Gauge(
    "chain_ingest_store_max_height",
    "Highest height persisted in the block store",
    registry=REGISTRY,
)

# -----------------------------------------------------------------------------
# Scheduling
# -----------------------------------------------------------------------------

heights_scheduled = Counter(
    "chain_ingest_heights_scheduled_total",
    "Heights handed to the work queue",
    registry=REGISTRY,
)

jobs_submitted = Counter(
    "chain_ingest_jobs_submitted_total",
    "Batch jobs submitted to the work queue, retries included",
    registry=REGISTRY,
)

queue_depth = Gauge(
    "chain_ingest_queue_depth",
    "Last observed work queue depth",
    registry=REGISTRY,
)

backpressure_waits = Counter(
    "chain_ingest_backpressure_waits_total",
    "Polls spent waiting for the work queue to drain",
    registry=REGISTRY,
)

# -----------------------------------------------------------------------------
# Job Execution
# -----------------------------------------------------------------------------

job_outcomes = Counter(
    "chain_ingest_job_outcomes_total",
    "Executed jobs by outcome",
    ["outcome"],
    registry=REGISTRY,
)

blocks_written = Counter(
    "chain_ingest_blocks_written_total",
    "Blocks persisted to the store",
    registry=REGISTRY,
)

height_failures = Counter(
    "chain_ingest_height_failures_total",
    "Heights that could not be ingested, by failure kind",
    ["kind"],
    registry=REGISTRY,
)

batch_duration = Histogram(
    "chain_ingest_batch_seconds",
    "Duration of one batch job (fetch and persist)",
    buckets=(0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0),
    registry=REGISTRY,
)


def generate_metrics() -> bytes:
    """
    Generate Prometheus metrics output.

    Returns:
        Prometheus text format output as bytes.
    """
    return generate_latest(REGISTRY)
