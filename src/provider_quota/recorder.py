# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""Usage accounting for dispatched provider calls."""

from __future__ import annotations

import logging

from .ledger.base import BaseLedger, validate_units
from .models import CredentialRecord
from .observability import USAGE_UNITS_TOTAL, MetricsCollector

logger = logging.getLogger(__name__)


class UsageRecorder:
    """
    Charges credentials after use.

    One call per logical outbound operation, with ``units`` equal to the
    number of physical provider calls it made. The outcome of those calls is
    not inspected: a dispatched credential is charged whether the provider
    answered or not.
    """

    def __init__(
        self, ledger: BaseLedger, metrics: MetricsCollector | None = None
    ) -> None:
        self._ledger = ledger
        self._metrics = metrics

    async def record_usage(
        self, record: CredentialRecord | str, units: int = 1
    ) -> int | None:
        """
        Add ``units`` to a usage record.

        Args:
            record: The record returned by acquire_key, or its id
            units: Physical calls made; 0 is accepted and records nothing

        Returns:
            The new ``used`` value, or None when ``units == 0``

        Raises:
            ValueError: If units is negative
            UsageRecordNotFoundError: If the record does not exist
            LedgerUnavailableError: If the ledger cannot be written
        """
        validate_units(units)
        record_id = record.id if isinstance(record, CredentialRecord) else record
        if units == 0:
            logger.debug(f"No calls dispatched on record {record_id}, nothing charged")
            return None

        used = await self._ledger.increment_usage(record_id, units)

        if self._metrics is not None:
            if isinstance(record, CredentialRecord):
                provider = record.provider
            else:
                provider = (await self._ledger.get_usage(record_id)).provider
            self._metrics.inc_counter(
                USAGE_UNITS_TOTAL, units, labels={"provider": provider}
            )
        logger.debug(f"Charged {units} unit(s) to record {record_id} (used={used})")
        return used


__all__ = ["UsageRecorder"]
