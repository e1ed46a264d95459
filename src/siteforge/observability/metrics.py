"""
Defines the Prometheus metrics exported by the pipeline.
"""

from __future__ import annotations

from typing import Any, Dict

from prometheus_client import REGISTRY as _PROM_REGISTRY
from prometheus_client import Counter as _OrigCounter
from prometheus_client import Gauge as _OrigGauge
from prometheus_client import Histogram as _OrigHistogram

# ---------------------------------------------------------------------------
# Duplicate-safe Prometheus metric wrappers
# ---------------------------------------------------------------------------
# Importing this module twice (test reloads, multiple pipelines in one
# process) must reuse the registered collectors instead of raising.


def _duplicate_safe_factory(metric_cls):
    """Return a factory that reuses an existing collector if already present."""

    def _factory(name: str, documentation: str, *args, **kwargs):  # type: ignore[override]
        existing = _PROM_REGISTRY._names_to_collectors.get(name)
        if existing is not None:
            return existing  # type: ignore[return-value]

        try:
            return metric_cls(name, documentation, *args, **kwargs)  # type: ignore[call-arg]
        except ValueError:
            # Registration lost the race, fall back to the now-existing collector.
            return _PROM_REGISTRY._names_to_collectors[name]  # type: ignore[return-value]

    return _factory


Counter = _duplicate_safe_factory(_OrigCounter)  # type: ignore[assignment]
Gauge = _duplicate_safe_factory(_OrigGauge)  # type: ignore[assignment]
Histogram = _duplicate_safe_factory(_OrigHistogram)  # type: ignore[assignment]


def _create_metrics() -> Dict[str, Any]:
    return {
        "pipeline_runs": Counter(
            "siteforge_pipeline_runs_total",
            "Pipeline runs by final outcome",
            ["status"],
        ),
        "stage_duration": Histogram(
            "siteforge_stage_duration_seconds",
            "Wall-clock time spent in each pipeline stage",
            ["stage"],
            buckets=(0.05, 0.1, 0.5, 1, 2, 5, 10, 30, 60, 120),
        ),
        "stage_resumed": Counter(
            "siteforge_stage_resumed_total",
            "Stages skipped because a checkpoint was restored",
            ["stage"],
        ),
        "retry_attempts": Counter(
            "siteforge_retry_attempts_total",
            "Retries scheduled after a retryable failure",
            ["context"],
        ),
        "circuit_state": Gauge(
            "siteforge_circuit_state",
            "Circuit breaker state (0=closed, 1=half_open, 2=open)",
            ["dependency"],
        ),
        "circuit_rejections": Counter(
            "siteforge_circuit_rejections_total",
            "Calls rejected while a circuit was open",
            ["dependency"],
        ),
        "scrape_cache_requests": Counter(
            "siteforge_scrape_cache_requests_total",
            "Scrape cache lookups by result",
            ["result"],
        ),
        "checkpoint_write_failures": Counter(
            "siteforge_checkpoint_write_failures_total",
            "Checkpoint writes that could not be persisted",
        ),
        "quality_regenerations": Counter(
            "siteforge_quality_regenerations_total",
            "Content regenerations requested by the quality gate",
        ),
        "quality_score": Histogram(
            "siteforge_quality_score",
            "Final quality score of generated content",
            ["industry"],
            buckets=(10, 20, 30, 40, 50, 60, 70, 78, 85, 90, 95, 100),
        ),
    }


METRICS: Dict[str, Any] = _create_metrics()
