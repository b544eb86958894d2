# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
Quota ledger implementations.

Available ledgers:
- BaseLedger: Abstract base class defining the ledger interface
- MemoryLedger: In-memory ledger for tests and single-process deployments
- RedisLedger: Durable ledger shared across workers

Note: RedisLedger is lazily imported so that importing the package does not
open a Redis connection pool or import redis.asyncio until it is needed.
"""

from typing import TYPE_CHECKING, cast

from provider_quota.ledger.base import BaseLedger, validate_units
from provider_quota.ledger.memory import MemoryLedger

if TYPE_CHECKING:
    from provider_quota.ledger.redis import RedisLedger

__all__ = [
    "BaseLedger",
    "MemoryLedger",
    "RedisLedger",
    "validate_units",
]


def __getattr__(name: str) -> type:
    """Lazy import for the redis ledger."""
    if name == "RedisLedger":
        from provider_quota.ledger import redis as redis_module

        return cast(type, redis_module.RedisLedger)
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
