# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
Periodic reset sweep for the quota ledger.

The sweep runs on a fixed interval, independent of request traffic. Each
tick selects every usage record whose deadline has passed and which has
been used, zeroes it and advances its deadline by exactly one provider
interval measured from the stored deadline.

The sweep is an optimisation: the key selector's lazy reset keeps pools
usable even if the sweep never runs.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from typing import Any

from typing_extensions import Self

from .clock import Clock
from .config import AdmissionConfig
from .ledger.base import BaseLedger
from .models import SweepResult
from .observability import (
    SWEEP_DURATION_SECONDS,
    SWEEP_FAILURES_TOTAL,
    SWEEP_RESETS_TOTAL,
    MetricsCollector,
)

logger = logging.getLogger(__name__)

SleepFunc = Callable[[float], Awaitable[Any]]


class ResetScheduler:
    """
    Explicitly startable, cancelable periodic reset task.

    Both the clock and the sleep function are injectable, so tests can
    simulate many intervals without real waiting.

    Example:
        async with ResetScheduler(ledger, config, clock) as scheduler:
            ...  # sweeps every config.sweep_interval seconds
    """

    def __init__(
        self,
        ledger: BaseLedger,
        config: AdmissionConfig,
        clock: Clock,
        metrics: MetricsCollector | None = None,
        sleep: SleepFunc = asyncio.sleep,
        run_immediately: bool = False,
    ) -> None:
        """
        Initialize the scheduler.

        Args:
            ledger: Ledger to sweep
            config: Supplies sweep_interval and per-provider reset intervals
            clock: Time source for deadline comparisons
            metrics: Optional metrics collector
            sleep: Coroutine used to wait between ticks
            run_immediately: Sweep once on start instead of after one interval
        """
        self._ledger = ledger
        self._config = config
        self._clock = clock
        self._metrics = metrics
        self._sleep = sleep
        self._run_immediately = run_immediately

        self._task: asyncio.Task[None] | None = None
        self._running = False
        self.ticks = 0
        self.last_result: SweepResult | None = None

    @property
    def is_running(self) -> bool:
        return self._running and self._task is not None and not self._task.done()

    @property
    def run_immediately(self) -> bool:
        return self._run_immediately

    async def sweep(self) -> SweepResult:
        """
        Run one reset pass over every provider.

        Idempotent: a second pass in the same window finds nothing to do.
        Records another worker reset between our read and our write are
        reported in ``skipped_ids``.

        Raises:
            LedgerUnavailableError: If the ledger cannot be read or written
        """
        now = self._clock.now()
        result = SweepResult(checked_at=now)

        for record in await self._ledger.due_for_reset(now):
            interval = self._config.interval_for(record.provider)
            next_reset_at = interval.advance(record.reset_at)
            applied = await self._ledger.apply_reset(
                record.id, record.reset_at, next_reset_at
            )
            if not applied:
                result.skipped_ids.append(record.id)
                continue

            result.reset_ids.append(record.id)
            if self._metrics is not None:
                self._metrics.inc_counter(
                    SWEEP_RESETS_TOTAL, labels={"provider": record.provider}
                )
            logger.info(
                f"Reset {record.provider} record {record.id}; "
                f"next reset {next_reset_at.isoformat()}"
            )

        if result.count:
            logger.info(f"Reset {result.count} API key(s) that reached reset time")
        return result

    async def tick(self) -> SweepResult | None:
        """
        Run one sweep, logging failures instead of raising.

        Returns:
            The sweep result, or None if the sweep failed
        """
        started = time.perf_counter()
        self.ticks += 1
        try:
            result = await self.sweep()
        except Exception as e:
            if self._metrics is not None:
                self._metrics.inc_counter(SWEEP_FAILURES_TOTAL)
            logger.error(f"Error resetting API keys: {e}", exc_info=True)
            return None
        finally:
            if self._metrics is not None:
                self._metrics.observe_histogram(
                    SWEEP_DURATION_SECONDS, time.perf_counter() - started
                )
        self.last_result = result
        return result

    async def run_ticks(self, count: int) -> list[SweepResult | None]:
        """Drive ``count`` ticks in the foreground, sleeping between them."""
        results: list[SweepResult | None] = []
        for i in range(count):
            if i or not self._run_immediately:
                await self._sleep(self._config.sweep_interval)
            results.append(await self.tick())
        return results

    async def _run_loop(self) -> None:
        """Background sweep loop."""
        if self._run_immediately:
            await self.tick()
        while self._running:
            try:
                await self._sleep(self._config.sweep_interval)
            except asyncio.CancelledError:
                break
            if not self._running:
                break
            await self.tick()

    async def start(self) -> None:
        """Start the background sweep task. No-op if already running."""
        if self.is_running:
            return
        self._running = True
        self._task = asyncio.create_task(
            self._run_loop(), name=f"quota_reset_sweep_{id(self)}"
        )
        logger.info(
            f"API key reset job scheduled to run every {self._config.sweep_interval:g}s"
        )

    async def stop(self) -> None:
        """Cancel the background task and wait for it to finish."""
        self._running = False
        task, self._task = self._task, None
        if task is None:
            return
        if not task.done():
            task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("API key reset job stopped")

    async def __aenter__(self) -> Self:
        await self.start()
        return self

    async def __aexit__(self, exc_type: Any, _exc_val: Any, _exc_tb: Any) -> None:
        await self.stop()


__all__ = ["ResetScheduler", "SleepFunc"]
