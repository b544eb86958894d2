# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
Admission facade for outbound provider calls.

QuotaGate ties the pieces together in the order every handler uses them:

    cache.get -> acquire_key -> call(record) -> record_usage -> cache.set

A cache hit touches neither the ledger nor the provider. A credential that
was handed to ``call`` is charged whether the call succeeded or not, and
only successful results are cached.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass, field
from typing import Any, TypeVar

from typing_extensions import Self

from .cache import FailSafeCache, MemoryResponseCache, RedisResponseCache
from .clock import Clock, SystemClock
from .config import AdmissionConfig
from .exceptions import LedgerUnavailableError
from .ledger.base import BaseLedger, validate_units
from .ledger.memory import MemoryLedger
from .models import CredentialRecord, SweepResult
from .observability import MetricsCollector
from .recorder import UsageRecorder
from .scheduler import ResetScheduler
from .selector import KeySelector
from .throttle import PacerRegistry, ProviderPacer, SleepFunc, pace_sequence

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")


@dataclass
class AdmissionContext:
    """
    Everything the admission flow needs, passed explicitly.

    The ledger is the single source of truth for quota state; the cache is
    always wrapped in a FailSafeCache so cache outages degrade to misses.
    """

    ledger: BaseLedger
    cache: FailSafeCache
    clock: Clock
    config: AdmissionConfig = field(default_factory=AdmissionConfig)
    metrics: MetricsCollector | None = None

    @classmethod
    def in_memory(
        cls,
        config: AdmissionConfig | None = None,
        clock: Clock | None = None,
        metrics: MetricsCollector | None = None,
    ) -> AdmissionContext:
        """Single-process context backed by MemoryLedger and MemoryResponseCache."""
        config = config or AdmissionConfig()
        return cls(
            ledger=MemoryLedger(namespace=config.namespace),
            cache=FailSafeCache(
                MemoryResponseCache(default_ttl=config.cache_ttl), metrics
            ),
            clock=clock or SystemClock(config.timezone),
            config=config,
            metrics=metrics,
        )

    @classmethod
    def from_config(
        cls,
        config: AdmissionConfig,
        metrics: MetricsCollector | None = None,
    ) -> AdmissionContext:
        """
        Build a context from configuration.

        Uses Redis for both the ledger and the cache when ``config.redis_url``
        is set, otherwise falls back to in_memory(). A MetricsCollector on the
        default registry is created when none is given and
        ``config.metrics_enabled`` is set.
        """
        if metrics is None and config.metrics_enabled:
            metrics = MetricsCollector()
        if config.redis_url is None:
            return cls.in_memory(config, metrics=metrics)

        from redis.asyncio import Redis

        from .ledger.redis import RedisLedger

        ledger = RedisLedger(
            redis_url=config.redis_url,
            namespace=config.namespace,
            timezone=config.timezone,
        )
        client = Redis.from_url(config.redis_url, decode_responses=True)
        cache = RedisResponseCache(
            client, namespace=config.namespace, default_ttl=config.cache_ttl
        )
        return cls(
            ledger=ledger,
            cache=FailSafeCache(cache, metrics),
            clock=SystemClock(config.timezone),
            config=config,
            metrics=metrics,
        )

    async def close(self) -> None:
        await self.ledger.close()
        inner = self.cache.inner
        if isinstance(inner, RedisResponseCache):
            await inner.close()


class QuotaGate:
    """
    Entry point for admission-controlled provider access.

    Example:
        gate = QuotaGate(AdmissionContext.in_memory())

        async def call(record):
            return await client.get_json(record, "/matches/live")

        data = await gate.fetch("basketApi", "live-matches", call)
    """

    def __init__(
        self, context: AdmissionContext, sleep: SleepFunc = asyncio.sleep
    ) -> None:
        self.context = context
        self._sleep = sleep
        self.selector = KeySelector(context.ledger, context.clock, context.metrics)
        self.recorder = UsageRecorder(context.ledger, context.metrics)
        self.pacers = PacerRegistry(sleep=sleep)
        self._scheduler: ResetScheduler | None = None

    async def acquire_key(self, provider: str) -> CredentialRecord:
        return await self.selector.acquire_key(provider)

    async def reserve_key(self, provider: str, units: int = 1) -> CredentialRecord:
        return await self.selector.reserve_key(provider, units)

    async def record_usage(
        self, record: CredentialRecord | str, units: int = 1
    ) -> int | None:
        return await self.recorder.record_usage(record, units)

    async def pace_sequence(
        self,
        provider: str,
        items: Iterable[T],
        per_item_fn: Callable[[T], Awaitable[R]],
        *,
        requests_per_second: float | None = None,
        return_exceptions: bool = False,
    ) -> list[Any]:
        """
        Pace a fan-out batch at the provider's configured ceiling.

        Raises:
            ValueError: If no rate is given and none is configured for provider,
                or the rate is not positive
        """
        rate = requests_per_second
        if rate is None:
            rate = self.context.config.requests_per_second_for(provider)
        if rate is None:
            raise ValueError(f"no requests_per_second configured for {provider}")
        return await pace_sequence(
            items,
            rate,
            per_item_fn,
            return_exceptions=return_exceptions,
            sleep=self._sleep,
        )

    def pacer(self, provider: str, endpoint: str) -> ProviderPacer:
        """
        Shared pacer for one provider endpoint at the configured rate.

        Raises:
            ValueError: If no requests_per_second is configured for provider
        """
        rate = self.context.config.requests_per_second_for(provider)
        if rate is None:
            raise ValueError(f"no requests_per_second configured for {provider}")
        return self.pacers.get(provider, endpoint, rate)

    async def sweep(self) -> SweepResult:
        return await self.scheduler().sweep()

    def scheduler(self, run_immediately: bool | None = None) -> ResetScheduler:
        """
        The gate's reset scheduler, created on first use.

        Raises:
            ValueError: If run_immediately contradicts the existing scheduler
        """
        if self._scheduler is None:
            self._scheduler = ResetScheduler(
                self.context.ledger,
                self.context.config,
                self.context.clock,
                metrics=self.context.metrics,
                sleep=self._sleep,
                run_immediately=bool(run_immediately),
            )
        elif (
            run_immediately is not None
            and run_immediately != self._scheduler.run_immediately
        ):
            raise ValueError(
                f"scheduler already created with run_immediately="
                f"{self._scheduler.run_immediately}"
            )
        return self._scheduler

    async def fetch(
        self,
        provider: str,
        cache_key: str,
        call: Callable[[CredentialRecord], Awaitable[R]],
        *,
        units: int = 1,
        ttl: int | None = None,
    ) -> R:
        """
        Serve ``cache_key`` from cache, or make an admission-controlled call.

        Args:
            provider: Provider whose credential pool pays for the call
            cache_key: Key the result is cached under
            call: Coroutine function issuing the provider call(s) with a record
            units: Physical provider calls ``call`` makes
            ttl: Cache TTL in seconds, defaults to config.cache_ttl

        Raises:
            QuotaExhaustedError: No credential is usable; nothing is charged
            ProviderCallError: The call failed; the credential was charged
            LedgerUnavailableError: The call succeeded but could not be charged
        """
        validate_units(units)
        cached = await self.context.cache.get(cache_key)
        if cached is not None:
            logger.debug(f"Cache hit for {cache_key}")
            return cached  # type: ignore[no-any-return]

        record = await self.acquire_key(provider)
        try:
            result = await call(record)
        except BaseException:
            try:
                await self.record_usage(record, units)
            except LedgerUnavailableError as e:
                logger.error(
                    f"Could not charge record {record.id} after failed call: {e}"
                )
            raise
        await self.record_usage(record, units)

        await self.context.cache.set(
            cache_key, result, self.context.config.cache_ttl if ttl is None else ttl
        )
        return result

    async def close(self) -> None:
        if self._scheduler is not None:
            await self._scheduler.stop()
        await self.context.close()

    async def __aenter__(self) -> Self:
        return self

    async def __aexit__(self, exc_type: Any, _exc_val: Any, _exc_tb: Any) -> None:
        await self.close()


__all__ = ["AdmissionContext", "QuotaGate"]
