# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
Data models for the quota ledger.

CredentialRecord joins the two logical tables the ledger keeps:
``credentials(id, secret_value)`` and
``credential_usage(id, credential_id, provider_name, used, limit, reset_at)``.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class CredentialRecord(BaseModel):
    """
    One credential's usage counters for one provider.

    ``id`` identifies the usage row (what Usage Recorder charges), while
    ``credential_id`` identifies the underlying key. The secret is opaque
    to this library and is kept out of ``repr`` so it never lands in logs.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    credential_id: str
    provider: str
    secret: str = Field(repr=False)
    used: int = Field(ge=0)
    limit: int = Field(ge=0)
    reset_at: datetime

    @field_validator("reset_at")
    @classmethod
    def _require_aware(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            raise ValueError("reset_at must be timezone-aware")
        return value

    @property
    def remaining(self) -> int:
        return max(0, self.limit - self.used)

    def is_due_for_reset(self, now: datetime) -> bool:
        return self.reset_at <= now

    def is_exhausted(self, now: datetime) -> bool:
        """Exhausted: at or over the limit with the deadline still ahead."""
        return self.used >= self.limit and not self.is_due_for_reset(now)

    def is_usable(self, now: datetime) -> bool:
        return self.used < self.limit or self.is_due_for_reset(now)

    def to_row(self) -> dict[str, Any]:
        """Usage-table row, without the secret."""
        return {
            "id": self.id,
            "credential_id": self.credential_id,
            "provider_name": self.provider,
            "used": self.used,
            "limit": self.limit,
            "reset_at": self.reset_at.isoformat(),
        }


@dataclass
class SweepResult:
    """Outcome of one reset sweep."""

    checked_at: datetime
    reset_ids: list[str] = field(default_factory=list)
    skipped_ids: list[str] = field(default_factory=list)

    @property
    def count(self) -> int:
        return len(self.reset_ids)


@dataclass
class HealthCheckResult:
    """
    Structured health check result for ledger monitoring.

    Attributes:
        healthy: Whether the ledger is operational
        backend_type: Type of ledger (e.g., 'redis', 'memory')
        namespace: Ledger namespace
        error: Error message if unhealthy
        metadata: Additional backend-specific information
    """

    healthy: bool
    backend_type: str
    namespace: str
    error: str | None = None
    metadata: dict[str, Any] | None = None


__all__ = ["CredentialRecord", "HealthCheckResult", "SweepResult"]
