# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
Base Ledger for the provider quota subsystem

This module provides the BaseLedger abstract class that defines the common
interface for quota ledger implementations.

Features:
- Provisioning of credentials and their per-provider usage rows
- Ordered reads for least-used-first key selection
- Independent single-record writes (lazy reset, usage increment)
- Conditional reset for idempotent sweeps across processes
- Atomic select-and-charge for hard-cap admission
"""

import abc
import logging
from datetime import datetime

from ..models import CredentialRecord, HealthCheckResult

logger = logging.getLogger(__name__)


def validate_units(units: int) -> None:
    """
    Validate a usage charge.

    Raises:
        ValueError: If units is not an integer or is negative
    """
    if isinstance(units, bool) or not isinstance(units, int):
        raise ValueError(f"units must be an integer, got {type(units).__name__}")
    if units < 0:
        raise ValueError(f"units must be non-negative, got {units}")


class BaseLedger(abc.ABC):
    """
    An abstract base class for durable stores of credential usage.

    The ledger is shared by every concurrent request and by the reset
    scheduler. Implementations make each individual write valid on its own
    but do not wrap the selector's read-decide-write sequence in a lock;
    the only atomic multi-step operations are apply_reset and try_charge.
    """

    def __init__(self, namespace: str = "quota"):
        """
        Initialize the ledger with a namespace for isolation.

        Args:
            namespace: Namespace for isolating data across deployments
        """
        self.namespace = namespace

    # ==========================================================================
    # Provisioning
    # ==========================================================================

    @abc.abstractmethod
    async def add_credential(self, credential_id: str, secret: str) -> None:
        """Store a credential secret (the ``credentials`` table)."""
        pass

    @abc.abstractmethod
    async def add_usage(
        self,
        record_id: str,
        credential_id: str,
        provider: str,
        limit: int,
        reset_at: datetime,
        used: int = 0,
    ) -> CredentialRecord:
        """
        Create a usage row (the ``credential_usage`` table).

        Rows keep the order they were provisioned in; that order breaks ties
        between equally used credentials.

        Raises:
            ValueError: If credential_id was never added
        """
        pass

    # ==========================================================================
    # Reads
    # ==========================================================================

    @abc.abstractmethod
    async def list_usage(self, provider: str) -> list[CredentialRecord]:
        """
        Get all usage rows for a provider.

        Returns:
            Records sorted by ascending ``used``, ties in provisioning order
        """
        pass

    @abc.abstractmethod
    async def get_usage(self, record_id: str) -> CredentialRecord:
        """
        Get one usage row.

        Raises:
            UsageRecordNotFoundError: If the row does not exist
        """
        pass

    @abc.abstractmethod
    async def due_for_reset(self, now: datetime) -> list[CredentialRecord]:
        """All rows, across providers, with ``reset_at <= now AND used > 0``."""
        pass

    # ==========================================================================
    # Writes
    # ==========================================================================

    @abc.abstractmethod
    async def zero_usage(self, record_id: str) -> None:
        """Set ``used = 0`` without touching the deadline (lazy reset)."""
        pass

    @abc.abstractmethod
    async def increment_usage(self, record_id: str, units: int = 1) -> int:
        """
        Add ``units`` to ``used``.

        Returns:
            The new ``used`` value
        """
        pass

    @abc.abstractmethod
    async def apply_reset(
        self,
        record_id: str,
        expected_reset_at: datetime,
        next_reset_at: datetime,
    ) -> bool:
        """
        Conditionally zero usage and advance the deadline.

        The update only happens if the stored deadline still equals
        ``expected_reset_at`` and ``used > 0``, so two sweeps racing on the
        same row reset it exactly once.

        Returns:
            True if the row was reset, False if it no longer matched
        """
        pass

    @abc.abstractmethod
    async def try_charge(
        self, provider: str, units: int, now: datetime
    ) -> CredentialRecord | None:
        """
        Atomically select a usable row and charge it.

        Applies the same least-used-first policy and lazy reset as the key
        selector, but as one indivisible step, and only picks a row whose
        remaining headroom covers ``units``.

        Returns:
            The charged record (with updated ``used``), or None if none fits
        """
        pass

    # ==========================================================================
    # Health and Lifecycle
    # ==========================================================================

    @abc.abstractmethod
    async def health_check(self) -> HealthCheckResult:
        """Perform a health check on the ledger."""
        pass

    async def close(self) -> None:
        """Release ledger resources."""
        return None
