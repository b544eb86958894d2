# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
Metric name constants following Prometheus naming conventions.

All metric names use the ``provider_quota_`` prefix.

Label Best Practices:
    Use only categorical labels:
    - ``provider`` - Provider name (basketApi, footApi, ...)
    - ``outcome`` - Call outcome (success, failure)
    - ``operation`` - Cache operation (get, set)

    NEVER use record ids, credential ids or secrets as labels.
"""

METRIC_PREFIX = "provider_quota"
"""Prefix for all Prometheus metrics in this library."""


# =============================================================================
# Admission Metrics (selector.py, recorder.py)
# =============================================================================

KEYS_ACQUIRED_TOTAL = f"{METRIC_PREFIX}_keys_acquired_total"
"""Total credentials handed out by the key selector."""

QUOTA_EXHAUSTED_TOTAL = f"{METRIC_PREFIX}_quota_exhausted_total"
"""Total acquisitions that failed because every credential was exhausted."""

LAZY_RESETS_TOTAL = f"{METRIC_PREFIX}_lazy_resets_total"
"""Total credentials zeroed at selection time because their deadline passed."""

USAGE_UNITS_TOTAL = f"{METRIC_PREFIX}_usage_units_total"
"""Total provider calls charged to credentials."""


# =============================================================================
# Reset Scheduler Metrics (scheduler.py)
# =============================================================================

SWEEP_RESETS_TOTAL = f"{METRIC_PREFIX}_sweep_resets_total"
"""Total credentials reset by the periodic sweep."""

SWEEP_FAILURES_TOTAL = f"{METRIC_PREFIX}_sweep_failures_total"
"""Total sweep ticks that failed."""

SWEEP_DURATION_SECONDS = f"{METRIC_PREFIX}_sweep_duration_seconds"
"""Duration of one sweep tick (histogram)."""


# =============================================================================
# Response Cache and Provider Call Metrics (cache.py, providers.py)
# =============================================================================

CACHE_HITS_TOTAL = f"{METRIC_PREFIX}_cache_hits_total"
"""Total response cache hits."""

CACHE_MISSES_TOTAL = f"{METRIC_PREFIX}_cache_misses_total"
"""Total response cache misses."""

CACHE_ERRORS_TOTAL = f"{METRIC_PREFIX}_cache_errors_total"
"""Total cache operations that failed and were degraded to a miss."""

PROVIDER_CALLS_TOTAL = f"{METRIC_PREFIX}_provider_calls_total"
"""Total outbound provider operations by outcome."""


# =============================================================================
# Histogram Buckets
# =============================================================================

LATENCY_BUCKETS: list[float] = [
    0.005,
    0.01,
    0.025,
    0.05,
    0.1,
    0.25,
    0.5,
    1.0,
    2.5,
    5.0,
    10.0,
]
"""Buckets for latency histograms in seconds."""


__all__ = [
    "CACHE_ERRORS_TOTAL",
    "CACHE_HITS_TOTAL",
    "CACHE_MISSES_TOTAL",
    "KEYS_ACQUIRED_TOTAL",
    "LATENCY_BUCKETS",
    "LAZY_RESETS_TOTAL",
    "METRIC_PREFIX",
    "PROVIDER_CALLS_TOTAL",
    "QUOTA_EXHAUSTED_TOTAL",
    "SWEEP_DURATION_SECONDS",
    "SWEEP_FAILURES_TOTAL",
    "SWEEP_RESETS_TOTAL",
    "USAGE_UNITS_TOTAL",
]
