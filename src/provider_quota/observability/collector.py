# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
Metrics collector backed by prometheus_client with a dict snapshot.

Every metric the library emits is declared in METRIC_DEFINITIONS. The
collector registers them lazily against an injectable CollectorRegistry
(tests pass a fresh one) and mirrors every update into plain dicts so that
get_metrics() can be serialized to JSON or asserted on.

Thread Safety:
    All operations are thread-safe. Uses RLock for reentrant locking.
"""

from __future__ import annotations

import logging
import threading
from collections import defaultdict
from dataclasses import dataclass
from typing import Any

from prometheus_client import REGISTRY, CollectorRegistry, Counter, Histogram

from .constants import (
    CACHE_ERRORS_TOTAL,
    CACHE_HITS_TOTAL,
    CACHE_MISSES_TOTAL,
    KEYS_ACQUIRED_TOTAL,
    LATENCY_BUCKETS,
    LAZY_RESETS_TOTAL,
    PROVIDER_CALLS_TOTAL,
    QUOTA_EXHAUSTED_TOTAL,
    SWEEP_DURATION_SECONDS,
    SWEEP_FAILURES_TOTAL,
    SWEEP_RESETS_TOTAL,
    USAGE_UNITS_TOTAL,
)

logger = logging.getLogger(__name__)


@dataclass
class MetricDefinition:
    """Schema for a metric: type, description, labels and buckets."""

    name: str
    metric_type: str  # 'counter', 'histogram'
    description: str
    label_names: tuple[str, ...] = ()
    buckets: list[float] | None = None


METRIC_DEFINITIONS: dict[str, MetricDefinition] = {
    KEYS_ACQUIRED_TOTAL: MetricDefinition(
        KEYS_ACQUIRED_TOTAL, "counter", "Credentials handed out", ("provider",)
    ),
    QUOTA_EXHAUSTED_TOTAL: MetricDefinition(
        QUOTA_EXHAUSTED_TOTAL, "counter", "Exhausted acquisitions", ("provider",)
    ),
    LAZY_RESETS_TOTAL: MetricDefinition(
        LAZY_RESETS_TOTAL, "counter", "Lazy resets at selection", ("provider",)
    ),
    USAGE_UNITS_TOTAL: MetricDefinition(
        USAGE_UNITS_TOTAL, "counter", "Units charged to credentials", ("provider",)
    ),
    SWEEP_RESETS_TOTAL: MetricDefinition(
        SWEEP_RESETS_TOTAL, "counter", "Credentials reset by sweep", ("provider",)
    ),
    SWEEP_FAILURES_TOTAL: MetricDefinition(
        SWEEP_FAILURES_TOTAL, "counter", "Failed sweep ticks", ()
    ),
    SWEEP_DURATION_SECONDS: MetricDefinition(
        SWEEP_DURATION_SECONDS,
        "histogram",
        "Duration of a sweep tick",
        (),
        buckets=LATENCY_BUCKETS,
    ),
    CACHE_HITS_TOTAL: MetricDefinition(
        CACHE_HITS_TOTAL, "counter", "Response cache hits", ()
    ),
    CACHE_MISSES_TOTAL: MetricDefinition(
        CACHE_MISSES_TOTAL, "counter", "Response cache misses", ()
    ),
    CACHE_ERRORS_TOTAL: MetricDefinition(
        CACHE_ERRORS_TOTAL, "counter", "Cache failures degraded to miss", ("operation",)
    ),
    PROVIDER_CALLS_TOTAL: MetricDefinition(
        PROVIDER_CALLS_TOTAL,
        "counter",
        "Outbound provider operations",
        ("provider", "outcome"),
    ),
}


class MetricsCollector:
    """
    Records counters and histograms in Prometheus and in a dict snapshot.

    Example:
        >>> collector = MetricsCollector(registry=CollectorRegistry())
        >>> collector.inc_counter(KEYS_ACQUIRED_TOTAL, labels={"provider": "x"})
        >>> collector.get_metrics()["counters"][KEYS_ACQUIRED_TOTAL]
        {'provider=x': 1.0}
    """

    def __init__(
        self,
        enable_prometheus: bool = True,
        registry: CollectorRegistry | None = None,
    ) -> None:
        """
        Initialize the metrics collector.

        Args:
            enable_prometheus: Whether to register Prometheus metrics
            registry: Prometheus registry, defaults to the global REGISTRY
        """
        self._enable_prometheus = enable_prometheus
        self._registry = registry if registry is not None else REGISTRY

        self._counters: dict[str, dict[str, float]] = defaultdict(
            lambda: defaultdict(float)
        )
        self._histograms: dict[str, dict[str, list[float]]] = defaultdict(
            lambda: defaultdict(list)
        )
        self._prom_metrics: dict[str, Any] = {}
        self._lock = threading.RLock()

    @staticmethod
    def _labels_to_key(labels: dict[str, str] | None) -> str:
        if not labels:
            return ""
        return ",".join(f"{k}={v}" for k, v in sorted(labels.items()))

    def _get_or_create_prom(self, name: str) -> Any | None:
        if not self._enable_prometheus:
            return None
        if name in self._prom_metrics:
            return self._prom_metrics[name]

        defn = METRIC_DEFINITIONS.get(name)
        if defn is None:
            logger.debug(f"No definition for metric {name}, dict-only")
            return None
        try:
            if defn.metric_type == "histogram":
                metric: Any = Histogram(
                    name,
                    defn.description,
                    list(defn.label_names),
                    buckets=defn.buckets or LATENCY_BUCKETS,
                    registry=self._registry,
                )
            else:
                metric = Counter(
                    name,
                    defn.description,
                    list(defn.label_names),
                    registry=self._registry,
                )
        except ValueError as e:
            # Duplicated timeseries in a shared registry
            logger.warning(f"Failed to create Prometheus metric {name}: {e}")
            metric = None
        self._prom_metrics[name] = metric
        return metric

    def inc_counter(
        self,
        name: str,
        value: float = 1,
        labels: dict[str, str] | None = None,
    ) -> None:
        """
        Increment a counter metric.

        Raises:
            ValueError: If value is negative
        """
        if value < 0:
            raise ValueError("Counter increment must be non-negative")

        with self._lock:
            self._counters[name][self._labels_to_key(labels)] += value
            prom = self._get_or_create_prom(name)

        if prom is not None:
            (prom.labels(**labels) if labels else prom).inc(value)

    def observe_histogram(
        self,
        name: str,
        value: float,
        labels: dict[str, str] | None = None,
    ) -> None:
        """Record an observation in a histogram."""
        with self._lock:
            observations = self._histograms[name][self._labels_to_key(labels)]
            observations.append(value)
            # Keep only recent observations to prevent memory growth
            if len(observations) > 10000:
                del observations[:5000]
            prom = self._get_or_create_prom(name)

        if prom is not None:
            (prom.labels(**labels) if labels else prom).observe(value)

    def get_counter(self, name: str, labels: dict[str, str] | None = None) -> float:
        with self._lock:
            return self._counters.get(name, {}).get(self._labels_to_key(labels), 0)

    def get_metrics(self) -> dict[str, Any]:
        """
        Get a snapshot of all metrics.

        Returns:
            {"counters": {name: {label_key: value}},
             "histograms": {name: {label_key: {count, sum, min, max}}}}
        """
        with self._lock:
            counters = {name: dict(values) for name, values in self._counters.items()}
            histograms: dict[str, dict[str, dict[str, float]]] = {}
            for name, label_values in self._histograms.items():
                histograms[name] = {
                    label_key: {
                        "count": len(obs),
                        "sum": sum(obs),
                        "min": min(obs),
                        "max": max(obs),
                    }
                    for label_key, obs in label_values.items()
                    if obs
                }
        return {"counters": counters, "histograms": histograms}

    def reset(self) -> None:
        """Clear the dict snapshot. Prometheus series are left registered."""
        with self._lock:
            self._counters.clear()
            self._histograms.clear()
        logger.debug("Metrics collector reset")


__all__ = ["METRIC_DEFINITIONS", "MetricDefinition", "MetricsCollector"]
