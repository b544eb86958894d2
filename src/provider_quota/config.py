# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
Configuration for the provider quota subsystem.

This module provides configuration classes for providers, the reset sweep,
the response cache and the shared ledger.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from .clock import DEFAULT_TIMEZONE, ResetInterval
from .exceptions import ConfigurationError


@dataclass
class ProviderConfig:
    """
    Per-provider admission settings.

    Providers without an entry in AdmissionConfig.providers fall back to
    AdmissionConfig.default_reset_interval and are not paced.
    """

    name: str
    """Provider name as stored in the usage table (e.g. 'basketApi')."""

    reset_interval: ResetInterval = ResetInterval.DAILY
    """Cadence at which the reset sweep zeroes this provider's usage."""

    requests_per_second: float | None = None
    """Per-endpoint ceiling used when pacing fan-out batches."""

    def __post_init__(self) -> None:
        """Validate configuration after initialization."""
        if not self.name:
            raise ValueError("provider name must not be empty")
        if self.requests_per_second is not None and self.requests_per_second <= 0:
            raise ValueError("requests_per_second must be positive")


@dataclass
class AdmissionConfig:
    """
    Configuration for the admission-control subsystem.

    Environment Variables (see from_env):
        QUOTA_TIMEZONE: Time zone for deadline comparisons.
        QUOTA_SWEEP_INTERVAL: Seconds between reset sweeps.
        QUOTA_CACHE_TTL: Default response cache TTL in seconds.
        QUOTA_MONTHLY_PROVIDERS: Comma-separated providers with monthly resets.
        REDIS_URL: Ledger and cache connection URL.
    """

    # === Time ===

    timezone: str = DEFAULT_TIMEZONE
    """Named zone all reset comparisons are made in."""

    # === Reset Scheduler ===

    sweep_interval: float = 300.0
    """Interval between reset sweeps in seconds (every 5 minutes)."""

    default_reset_interval: ResetInterval = ResetInterval.DAILY
    """Reset cadence for providers with no explicit configuration."""

    providers: dict[str, ProviderConfig] = field(default_factory=dict)
    """Per-provider overrides keyed by provider name."""

    # === Response Cache ===

    cache_ttl: int = 900
    """Default TTL for cached provider responses in seconds."""

    # === Storage ===

    redis_url: str | None = None
    """Redis URL for the shared ledger and cache, None for in-memory."""

    namespace: str = "quota"
    """Key prefix isolating this deployment's ledger."""

    # === Metrics ===

    metrics_enabled: bool = True
    """Enable Prometheus metrics collection."""

    def __post_init__(self) -> None:
        """Validate configuration after initialization."""
        try:
            ZoneInfo(self.timezone)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ValueError(f"unknown timezone: {self.timezone!r}") from e
        if self.sweep_interval <= 0:
            raise ValueError("sweep_interval must be positive")
        if self.cache_ttl < 0:
            raise ValueError("cache_ttl must be non-negative")
        for name, provider in self.providers.items():
            if name != provider.name:
                raise ValueError(
                    f"provider key {name!r} does not match config name {provider.name!r}"
                )

    def interval_for(self, provider: str) -> ResetInterval:
        """Reset cadence for a provider."""
        config = self.providers.get(provider)
        if config is None:
            return self.default_reset_interval
        return config.reset_interval

    def requests_per_second_for(self, provider: str) -> float | None:
        config = self.providers.get(provider)
        return config.requests_per_second if config else None

    def add_provider(self, provider: ProviderConfig) -> None:
        self.providers[provider.name] = provider

    @classmethod
    def from_env(cls) -> AdmissionConfig:
        """
        Build a configuration from QUOTA_* environment variables.

        Raises:
            ConfigurationError: If a variable cannot be parsed or is out of range
        """
        providers: dict[str, ProviderConfig] = {}
        monthly = os.environ.get("QUOTA_MONTHLY_PROVIDERS", "")
        for name in (n.strip() for n in monthly.split(",")):
            if name:
                providers[name] = ProviderConfig(
                    name=name, reset_interval=ResetInterval.MONTHLY
                )

        try:
            return cls(
                timezone=os.environ.get("QUOTA_TIMEZONE") or DEFAULT_TIMEZONE,
                sweep_interval=float(os.environ.get("QUOTA_SWEEP_INTERVAL") or 300.0),
                cache_ttl=int(os.environ.get("QUOTA_CACHE_TTL") or 900),
                providers=providers,
                redis_url=os.environ.get("REDIS_URL"),
            )
        except ValueError as e:
            raise ConfigurationError(f"invalid QUOTA_* environment: {e}") from e


__all__ = ["AdmissionConfig", "ProviderConfig"]
