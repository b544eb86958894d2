# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
MemoryLedger for the provider quota subsystem

This module provides an in-memory ledger implementation that doesn't require
Redis. Perfect for testing, development, and single-process applications.
"""

import asyncio
import logging
from datetime import datetime
from typing import Any

from ..exceptions import UsageRecordNotFoundError
from ..models import CredentialRecord, HealthCheckResult
from .base import BaseLedger, validate_units

logger = logging.getLogger(__name__)


class MemoryLedger(BaseLedger):
    """
    An in-memory quota ledger.

    Key Features:
    - Pure dict-based storage; dict order doubles as provisioning order
    - Async-safe single operations using asyncio.Lock
    - No external dependencies beyond Python stdlib

    Note:
        State lives only as long as the process. Use RedisLedger when usage
        must survive restarts or be shared between workers.
    """

    def __init__(self, namespace: str = "quota_memory") -> None:
        super().__init__(namespace)

        # credentials(id, secret_value)
        self._credentials: dict[str, str] = {}
        # credential_usage(id, credential_id, provider_name, used, limit, reset_at)
        self._usage: dict[str, dict[str, Any]] = {}

        self._lock = asyncio.Lock()

        logger.debug(f"Initialized MemoryLedger with namespace '{namespace}'")

    def _to_record(self, row: dict[str, Any]) -> CredentialRecord:
        return CredentialRecord(
            id=row["id"],
            credential_id=row["credential_id"],
            provider=row["provider_name"],
            secret=self._credentials.get(row["credential_id"], ""),
            used=row["used"],
            limit=row["limit"],
            reset_at=row["reset_at"],
        )

    def _row(self, record_id: str) -> dict[str, Any]:
        row = self._usage.get(record_id)
        if row is None:
            raise UsageRecordNotFoundError(record_id)
        return row

    # Provisioning

    async def add_credential(self, credential_id: str, secret: str) -> None:
        async with self._lock:
            self._credentials[credential_id] = secret

    async def add_usage(
        self,
        record_id: str,
        credential_id: str,
        provider: str,
        limit: int,
        reset_at: datetime,
        used: int = 0,
    ) -> CredentialRecord:
        async with self._lock:
            if credential_id not in self._credentials:
                raise ValueError(f"unknown credential: {credential_id}")
            row = {
                "id": record_id,
                "credential_id": credential_id,
                "provider_name": provider,
                "used": used,
                "limit": limit,
                "reset_at": reset_at,
            }
            # Validate before storing
            record = self._to_record(row)
            self._usage[record_id] = row
            return record

    # Reads

    async def list_usage(self, provider: str) -> list[CredentialRecord]:
        async with self._lock:
            rows = [r for r in self._usage.values() if r["provider_name"] == provider]
            # sorted() is stable, so provisioning order breaks ties
            rows.sort(key=lambda r: r["used"])
            return [self._to_record(r) for r in rows]

    async def get_usage(self, record_id: str) -> CredentialRecord:
        async with self._lock:
            return self._to_record(self._row(record_id))

    async def due_for_reset(self, now: datetime) -> list[CredentialRecord]:
        async with self._lock:
            return [
                self._to_record(r)
                for r in self._usage.values()
                if r["reset_at"] <= now and r["used"] > 0
            ]

    # Writes

    async def zero_usage(self, record_id: str) -> None:
        async with self._lock:
            self._row(record_id)["used"] = 0

    async def increment_usage(self, record_id: str, units: int = 1) -> int:
        validate_units(units)
        async with self._lock:
            row = self._row(record_id)
            row["used"] += units
            new_used: int = row["used"]
            return new_used

    async def apply_reset(
        self,
        record_id: str,
        expected_reset_at: datetime,
        next_reset_at: datetime,
    ) -> bool:
        async with self._lock:
            row = self._row(record_id)
            if row["reset_at"] != expected_reset_at or row["used"] <= 0:
                return False
            row["used"] = 0
            row["reset_at"] = next_reset_at
            return True

    async def try_charge(
        self, provider: str, units: int, now: datetime
    ) -> CredentialRecord | None:
        validate_units(units)
        async with self._lock:
            rows = [r for r in self._usage.values() if r["provider_name"] == provider]
            rows.sort(key=lambda r: r["used"])
            for row in rows:
                used = row["used"]
                if used + units > row["limit"] and row["reset_at"] <= now:
                    used = 0
                if used + units <= row["limit"]:
                    row["used"] = used + units
                    return self._to_record(row)
            return None

    # Health and Lifecycle

    async def health_check(self) -> HealthCheckResult:
        async with self._lock:
            return HealthCheckResult(
                healthy=True,
                backend_type="memory",
                namespace=self.namespace,
                metadata={
                    "credentials": len(self._credentials),
                    "usage_records": len(self._usage),
                },
            )

    async def clear(self) -> None:
        """Drop every credential and usage row."""
        async with self._lock:
            self._credentials.clear()
            self._usage.clear()
            logger.debug("Cleared memory ledger")
