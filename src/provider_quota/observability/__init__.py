# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
Observability for the provider quota subsystem.

Classes:
    MetricsCollector: Prometheus-backed collector with a dict snapshot.
    MetricDefinition: Schema entry for a declared metric.

Constants:
    All metric name constants from the constants module.
"""

from .collector import METRIC_DEFINITIONS, MetricDefinition, MetricsCollector
from .constants import (
    CACHE_ERRORS_TOTAL,
    CACHE_HITS_TOTAL,
    CACHE_MISSES_TOTAL,
    KEYS_ACQUIRED_TOTAL,
    LATENCY_BUCKETS,
    LAZY_RESETS_TOTAL,
    METRIC_PREFIX,
    PROVIDER_CALLS_TOTAL,
    QUOTA_EXHAUSTED_TOTAL,
    SWEEP_DURATION_SECONDS,
    SWEEP_FAILURES_TOTAL,
    SWEEP_RESETS_TOTAL,
    USAGE_UNITS_TOTAL,
)

__all__ = [
    "CACHE_ERRORS_TOTAL",
    "CACHE_HITS_TOTAL",
    "CACHE_MISSES_TOTAL",
    "KEYS_ACQUIRED_TOTAL",
    "LATENCY_BUCKETS",
    "LAZY_RESETS_TOTAL",
    "METRIC_DEFINITIONS",
    "METRIC_PREFIX",
    "PROVIDER_CALLS_TOTAL",
    "QUOTA_EXHAUSTED_TOTAL",
    "SWEEP_DURATION_SECONDS",
    "SWEEP_FAILURES_TOTAL",
    "SWEEP_RESETS_TOTAL",
    "USAGE_UNITS_TOTAL",
    "MetricDefinition",
    "MetricsCollector",
]
