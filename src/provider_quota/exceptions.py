# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""Exception classes for the provider quota library.

This module defines the exception hierarchy used throughout the library.
All exceptions inherit from QuotaError, making it easy to catch every
admission-control failure with a single except clause while still letting
callers tell "wait and retry" apart from "the provider call failed".
"""

from __future__ import annotations

from datetime import datetime
from typing import Any


class QuotaError(Exception):
    """Base exception for all provider quota errors.

    Example:
        try:
            record = await gate.acquire_key("basketApi")
        except QuotaError as e:
            logger.error(f"Admission control error: {e}")
    """

    pass


class QuotaExhaustedError(QuotaError):
    """Raised when no credential for a provider is usable.

    Every credential in the provider's pool has ``used >= limit`` and none
    of them has reached its reset deadline yet. This is a retryable,
    rate-limit-style failure: nothing is retried automatically.

    Attributes:
        provider: Name of the provider whose pool is exhausted.
        retry_at: Earliest reset deadline in the pool, if any record exists.
            Callers can use it to build a Retry-After response.

    Example:
        try:
            record = await gate.acquire_key("footApi")
        except QuotaExhaustedError as e:
            raise HTTPException(status_code=429, detail=str(e))
    """

    def __init__(self, provider: str, retry_at: datetime | None = None):
        super().__init__(
            f"API limit reached for {provider}. Try again after reset time."
        )
        self.provider = provider
        self.retry_at = retry_at

    def retry_after(self, now: datetime) -> float | None:
        """Seconds until the earliest reset deadline, or None if unknown."""
        if self.retry_at is None:
            return None
        return max(0.0, (self.retry_at - now).total_seconds())


class ProviderCallError(QuotaError):
    """Raised when an outbound provider call fails.

    Covers network errors and non-success status codes. The credential used
    for the call has already been charged; usage is never rolled back.

    Attributes:
        provider: Provider the call was made against.
        status_code: HTTP status code, None for transport-level failures.
        record_id: Usage record that was charged for the call.
    """

    def __init__(
        self,
        message: str,
        provider: str,
        status_code: int | None = None,
        record_id: str | None = None,
    ):
        super().__init__(message)
        self.provider = provider
        self.status_code = status_code
        self.record_id = record_id


class LedgerUnavailableError(QuotaError):
    """Raised when the quota ledger cannot be read or written.

    Fatal for the in-flight operation. There is no fallback beyond whatever
    the response cache already holds.
    """

    pass


class UsageRecordNotFoundError(QuotaError):
    """Raised when a usage record id is not present in the ledger.

    Attributes:
        record_id: The identifier that was looked up.
    """

    def __init__(self, record_id: str):
        super().__init__(f"Credential usage record not found: {record_id}")
        self.record_id = record_id


class ResponseValidationError(QuotaError):
    """Raised when a provider payload does not match its declared schema.

    Attributes:
        provider: Provider the payload came from.
        errors: Structured validation errors from pydantic.
    """

    def __init__(self, provider: str, errors: list[dict[str, Any]]):
        super().__init__(
            f"Malformed response from {provider}: {len(errors)} validation error(s)"
        )
        self.provider = provider
        self.errors = errors


class ConfigurationError(QuotaError):
    """Raised when configuration values are invalid or incompatible."""

    pass


__all__ = [
    "ConfigurationError",
    "LedgerUnavailableError",
    "ProviderCallError",
    "QuotaError",
    "QuotaExhaustedError",
    "ResponseValidationError",
    "UsageRecordNotFoundError",
]
