"""Tests for the ingestion metrics registry."""

from __future__ import annotations

from chain_ingest.subspecs import metrics


class TestRegistry:
    """Exported metric families."""

    def test_output_is_prometheus_text(self) -> None:
        """The registry renders in text exposition format."""
        metrics.target_height.set(321)

        output = metrics.generate_metrics().decode()

        assert "# TYPE chain_ingest_target_height gauge" in output
        assert "chain_ingest_target_height 321.0" in output

    def test_labelled_counters(self) -> None:
        """Outcome and failure kind counters carry their labels."""
        metrics.job_outcomes.labels(outcome="retry").inc()
        metrics.height_failures.labels(kind="timeout").inc()

        output = metrics.generate_metrics().decode()

        assert 'chain_ingest_job_outcomes_total{outcome="retry"}' in output
        assert 'chain_ingest_height_failures_total{kind="timeout"}' in output

    def test_dedicated_registry(self) -> None:
        """Default process collectors are not exported."""
        output = metrics.generate_metrics().decode()

        assert "process_cpu_seconds_total" not in output
        assert "chain_ingest_batch_seconds_bucket" in output
