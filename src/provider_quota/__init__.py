# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""Provider Quota - Admission control for rate-limited third-party APIs.

This library decides, for every outbound call to a metered provider, which
credential to use and whether the call may be made at all.

Key Features:
    - Per-provider credential pools with least-used-first selection
    - Lazy reset at selection time plus a periodic reset sweep
    - Daily or monthly reset cadence per provider
    - Fixed-spacing pacing for fan-out batches
    - Fail-safe response cache in front of every provider call
    - Memory and Redis ledgers

Quick Start:
    >>> from provider_quota import AdmissionContext, QuotaGate
    >>>
    >>> gate = QuotaGate(AdmissionContext.in_memory())
    >>> async with gate:
    ...     data = await gate.fetch("basketApi", "live", call)

Main Exports:
    - QuotaGate, AdmissionContext: Admission facade
    - KeySelector, UsageRecorder, ResetScheduler: Individual components
    - MemoryLedger, RedisLedger: Ledger implementations
    - AdmissionConfig, ProviderConfig: Configuration options
    - pace_sequence, ProviderPacer: Request pacing

Note: RedisLedger is imported lazily; redis.asyncio is only loaded when a
Redis-backed ledger is requested.

Version: 1.0.0
"""

__version__ = "1.0.0"

from typing import TYPE_CHECKING

from .cache import (
    FailSafeCache,
    MemoryResponseCache,
    RedisResponseCache,
    ResponseCache,
)
from .clock import Clock, ManualClock, ResetInterval, SystemClock, add_months
from .config import AdmissionConfig, ProviderConfig
from .exceptions import (
    ConfigurationError,
    LedgerUnavailableError,
    ProviderCallError,
    QuotaError,
    QuotaExhaustedError,
    ResponseValidationError,
    UsageRecordNotFoundError,
)
from .gate import AdmissionContext, QuotaGate
from .ledger import BaseLedger, MemoryLedger
from .models import CredentialRecord, HealthCheckResult, SweepResult
from .observability import MetricsCollector
from .providers import ProviderClient, ProviderEndpoint, parse_response
from .recorder import UsageRecorder
from .scheduler import ResetScheduler
from .selector import KeySelector
from .throttle import PacerRegistry, ProviderPacer, pace_sequence, staggered_sequence

# Lazy import for the redis ledger
if TYPE_CHECKING:
    from .ledger import RedisLedger

__all__ = [
    "AdmissionConfig",
    "AdmissionContext",
    "BaseLedger",
    "Clock",
    "ConfigurationError",
    "CredentialRecord",
    "FailSafeCache",
    "HealthCheckResult",
    "KeySelector",
    "LedgerUnavailableError",
    "ManualClock",
    "MemoryLedger",
    "MemoryResponseCache",
    "MetricsCollector",
    "PacerRegistry",
    "ProviderCallError",
    "ProviderClient",
    "ProviderConfig",
    "ProviderEndpoint",
    "ProviderPacer",
    "QuotaError",
    "QuotaExhaustedError",
    "QuotaGate",
    "RedisLedger",  # Lazy loaded
    "RedisResponseCache",
    "ResetInterval",
    "ResetScheduler",
    "ResponseCache",
    "ResponseValidationError",
    "SweepResult",
    "SystemClock",
    "UsageRecordNotFoundError",
    "UsageRecorder",
    "add_months",
    "pace_sequence",
    "parse_response",
    "staggered_sequence",
]


def __getattr__(name: str) -> type:
    """Lazy import for the redis ledger."""
    if name == "RedisLedger":
        from .ledger import RedisLedger

        return RedisLedger
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
