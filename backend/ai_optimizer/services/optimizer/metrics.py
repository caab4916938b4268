"""Prometheus instruments for the optimization services."""
from __future__ import annotations

from typing import Tuple

from prometheus_client import CONTENT_TYPE_LATEST, CollectorRegistry, Counter, Histogram, generate_latest

registry = CollectorRegistry(auto_describe=True)

batch_items_total = Counter(
    "optimizer_batch_items_total",
    "Batch items reaching a terminal state",
    ["outcome"],
    registry=registry,
)
batch_retries_total = Counter("optimizer_batch_retries_total", "Batch items re-queued for retry", registry=registry)
batches_total = Counter("optimizer_batches_total", "Batches handed to the processing function", registry=registry)
batch_duration_seconds = Histogram(
    "optimizer_batch_duration_seconds",
    "Wall-clock time spent in the processing function per batch",
    registry=registry,
)
optimizations_total = Counter(
    "optimizer_optimizations_total",
    "Optimization requests handled",
    ["status"],
    registry=registry,
)
experiment_results_total = Counter(
    "optimizer_experiment_results_total",
    "A/B experiment results recorded",
    registry=registry,
)


def expose_metrics() -> Tuple[bytes, str]:
    return generate_latest(registry), CONTENT_TYPE_LATEST


__all__ = [
    "registry",
    "batch_items_total",
    "batch_retries_total",
    "batches_total",
    "batch_duration_seconds",
    "optimizations_total",
    "experiment_results_total",
    "expose_metrics",
]
