# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
Key selection for rate-limited providers.

acquire_key walks a provider's credential pool least-used-first and hands
out the first record with headroom. A record whose reset deadline has
already passed is zeroed on the spot (lazy reset), so progress never
depends on the reset sweep having run.

The read-decide-write sequence is deliberately not locked: two concurrent
callers can pick the same record before either charges it. Limits are
therefore soft. reserve_key is the opt-in hard-cap alternative that selects
and charges in one atomic ledger operation.
"""

from __future__ import annotations

import logging

from .clock import Clock
from .exceptions import QuotaExhaustedError
from .ledger.base import BaseLedger, validate_units
from .models import CredentialRecord
from .observability import (
    KEYS_ACQUIRED_TOTAL,
    LAZY_RESETS_TOTAL,
    QUOTA_EXHAUSTED_TOTAL,
    USAGE_UNITS_TOTAL,
    MetricsCollector,
)

logger = logging.getLogger(__name__)


class KeySelector:
    """Picks a usable credential for a provider or reports exhaustion."""

    def __init__(
        self,
        ledger: BaseLedger,
        clock: Clock,
        metrics: MetricsCollector | None = None,
    ) -> None:
        self._ledger = ledger
        self._clock = clock
        self._metrics = metrics

    def _count(self, name: str, provider: str, value: int = 1) -> None:
        if self._metrics is not None:
            self._metrics.inc_counter(name, value, labels={"provider": provider})

    async def acquire_key(self, provider: str) -> CredentialRecord:
        """
        Return a credential with headroom for ``provider``.

        Records are scanned by ascending ``used``:
        1. ``used < limit``: returned as is.
        2. ``reset_at <= now``: usage is persisted as 0 and the record is
           returned with ``used == 0``.
        3. otherwise the next record is tried.

        Raises:
            QuotaExhaustedError: If no record qualifies (including an empty pool)
            LedgerUnavailableError: If the ledger cannot be read or written
        """
        now = self._clock.now()
        records = await self._ledger.list_usage(provider)

        for record in records:
            if record.used < record.limit:
                self._count(KEYS_ACQUIRED_TOTAL, provider)
                logger.debug(
                    f"Using {provider} record {record.id} ({record.used}/{record.limit})"
                )
                return record
            if record.reset_at <= now:
                await self._ledger.zero_usage(record.id)
                self._count(LAZY_RESETS_TOTAL, provider)
                self._count(KEYS_ACQUIRED_TOTAL, provider)
                logger.info(
                    f"Lazily reset {provider} record {record.id} "
                    f"(deadline {record.reset_at.isoformat()} passed)"
                )
                return record.model_copy(update={"used": 0})

        self._count(QUOTA_EXHAUSTED_TOTAL, provider)
        retry_at = min((r.reset_at for r in records), default=None)
        logger.warning(
            f"All {len(records)} credential(s) for {provider} are exhausted"
            + (f"; earliest reset {retry_at.isoformat()}" if retry_at else "")
        )
        raise QuotaExhaustedError(provider, retry_at=retry_at)

    async def reserve_key(self, provider: str, units: int = 1) -> CredentialRecord:
        """
        Select and charge a credential atomically (hard cap).

        The returned record is already charged ``units``; callers must not
        pass it to record_usage for the same calls.

        Raises:
            QuotaExhaustedError: If no record has ``units`` of headroom
        """
        validate_units(units)
        now = self._clock.now()
        record = await self._ledger.try_charge(provider, units, now)
        if record is None:
            self._count(QUOTA_EXHAUSTED_TOTAL, provider)
            records = await self._ledger.list_usage(provider)
            retry_at = min((r.reset_at for r in records), default=None)
            raise QuotaExhaustedError(provider, retry_at=retry_at)

        self._count(KEYS_ACQUIRED_TOTAL, provider)
        if units:
            self._count(USAGE_UNITS_TOTAL, provider, units)
        logger.debug(f"Reserved {units} unit(s) on {provider} record {record.id}")
        return record


__all__ = ["KeySelector"]
