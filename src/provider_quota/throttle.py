# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
Request pacing for fan-out batches.

pace_sequence dispatches a batch one item at a time with a fixed gap of
``1 / requests_per_second`` seconds before every call after the first. No
state is kept between batches; the N-1 gaps alone keep a batch under the
endpoint's per-second ceiling.

ProviderPacer generalises the same guarantee to calls that are not issued
as one batch: every acquire() is spaced at least one interval after the
previous one for the same (provider, endpoint), across concurrent callers.
Independent endpoints get independent pacers and may run concurrently.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable, Iterable
from typing import Any, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")

SleepFunc = Callable[[float], Awaitable[Any]]


def spacing_for(requests_per_second: float) -> float:
    """
    Minimum gap between dispatches in seconds.

    Raises:
        ValueError: If requests_per_second is not positive
    """
    if requests_per_second <= 0:
        raise ValueError(
            f"requests_per_second must be positive, got {requests_per_second}"
        )
    return 1.0 / requests_per_second


async def pace_sequence(
    items: Iterable[T],
    requests_per_second: float,
    per_item_fn: Callable[[T], Awaitable[R]],
    *,
    return_exceptions: bool = False,
    sleep: SleepFunc = asyncio.sleep,
) -> list[Any]:
    """
    Call ``per_item_fn`` on each item in order, spaced by ``1/R`` seconds.

    The delay is applied before each call after the first, never skipped and
    never shortened to make up for a slow call, so dispatch of call i+1
    starts at least one interval after dispatch of call i.

    Args:
        items: Inputs, dispatched in iteration order
        requests_per_second: Endpoint ceiling R
        per_item_fn: Coroutine function issuing one provider call
        return_exceptions: Store an item's exception in its result slot and
            keep pacing instead of aborting the batch
        sleep: Coroutine used for the delay

    Returns:
        Results in input order

    Raises:
        ValueError: If requests_per_second is not positive
    """
    delay = spacing_for(requests_per_second)
    results: list[Any] = []

    for index, item in enumerate(items):
        if index:
            await sleep(delay)
        try:
            results.append(await per_item_fn(item))
        except Exception as e:
            if not return_exceptions:
                raise
            logger.warning(f"Paced call {index} failed: {e}")
            results.append(e)

    return results


async def staggered_sequence(
    items: Iterable[T],
    step: float,
    per_item_fn: Callable[[T], Awaitable[R]],
    *,
    sleep: SleepFunc = asyncio.sleep,
) -> list[R | BaseException]:
    """
    Sequential dispatch waiting ``index * step`` seconds before item ``index``.

    The wait grows with the position in the batch, backing off harder the
    longer a batch runs. Failures are logged and returned in place; the
    batch always completes.
    """
    if step < 0:
        raise ValueError(f"step must be non-negative, got {step}")

    results: list[R | BaseException] = []
    for index, item in enumerate(items):
        if index and step:
            await sleep(index * step)
        try:
            results.append(await per_item_fn(item))
        except Exception as e:
            logger.error(f"Staggered call {index} failed: {e}")
            results.append(e)
    return results


class ProviderPacer:
    """
    Minimum-interval pacer shared by every caller of one endpoint.

    Uses a two-phase approach:
    1. Reserve the next dispatch slot while holding the lock (fast, no I/O)
    2. Sleep OUTSIDE the lock so other callers can reserve later slots
    """

    def __init__(
        self,
        requests_per_second: float,
        sleep: SleepFunc = asyncio.sleep,
        monotonic: Callable[[], float] = time.monotonic,
    ) -> None:
        self.interval = spacing_for(requests_per_second)
        self.requests_per_second = requests_per_second
        self._sleep = sleep
        self._monotonic = monotonic
        self._next_slot = 0.0
        self._lock = asyncio.Lock()

    async def acquire(self) -> float:
        """
        Wait for this caller's dispatch slot.

        Returns:
            The delay (in seconds) that was applied
        """
        async with self._lock:
            now = self._monotonic()
            slot = max(now, self._next_slot)
            self._next_slot = slot + self.interval
            wait_time = slot - now

        if wait_time > 0:
            await self._sleep(wait_time)
        return wait_time

    async def run(self, fn: Callable[[], Awaitable[R]]) -> R:
        """Acquire a slot, then await ``fn()``."""
        await self.acquire()
        return await fn()


class PacerRegistry:
    """Hands out one ProviderPacer per (provider, endpoint)."""

    def __init__(self, sleep: SleepFunc = asyncio.sleep) -> None:
        self._sleep = sleep
        self._pacers: dict[tuple[str, str], ProviderPacer] = {}

    def get(
        self, provider: str, endpoint: str, requests_per_second: float
    ) -> ProviderPacer:
        key = (provider, endpoint)
        pacer = self._pacers.get(key)
        if pacer is None or pacer.requests_per_second != requests_per_second:
            pacer = ProviderPacer(requests_per_second, sleep=self._sleep)
            self._pacers[key] = pacer
        return pacer

    def __len__(self) -> int:
        return len(self._pacers)


__all__ = [
    "PacerRegistry",
    "ProviderPacer",
    "SleepFunc",
    "pace_sequence",
    "spacing_for",
    "staggered_sequence",
]
