"""
End-to-end tests for admission-controlled provider access.

These tests drive complete request flows through QuotaGate: cache lookup,
key selection, a real httpx client against a mock transport, usage
accounting and the reset sweep. Each flow runs against the in-memory
context and against a Redis-backed one on fakeredis.
"""

import asyncio
from datetime import datetime, timedelta
from unittest.mock import AsyncMock
from zoneinfo import ZoneInfo

import httpx
import pytest
from prometheus_client import CollectorRegistry

from provider_quota import (
    AdmissionConfig,
    AdmissionContext,
    FailSafeCache,
    ManualClock,
    MemoryResponseCache,
    MetricsCollector,
    ProviderCallError,
    ProviderClient,
    ProviderConfig,
    ProviderEndpoint,
    QuotaExhaustedError,
    QuotaGate,
    ResetInterval,
)

try:
    import fakeredis.aioredis as fakeredis
except ImportError:
    fakeredis = None

try:
    import lupa
except ImportError:
    lupa = None

IST = ZoneInfo("Asia/Kolkata")
START = datetime(2025, 3, 10, 12, 0, tzinfo=IST)
MIDNIGHT = datetime(2025, 3, 11, 0, 0, tzinfo=IST)

ENDPOINT = ProviderEndpoint(
    provider="basketApi",
    base_url="https://basketapi1.p.rapidapi.com/api",
    host="basketapi1.p.rapidapi.com",
)


def build_config():
    return AdmissionConfig(
        providers={
            "basketApi": ProviderConfig(name="basketApi", requests_per_second=5),
            "unofficial_cricbuzz": ProviderConfig(
                name="unofficial_cricbuzz", reset_interval=ResetInterval.MONTHLY
            ),
        }
    )


@pytest.fixture(params=["memory", "redis"])
async def context(request):
    clock = ManualClock(START)
    metrics = MetricsCollector(registry=CollectorRegistry())
    config = build_config()

    if request.param == "memory":
        yield AdmissionContext.in_memory(config, clock=clock, metrics=metrics)
        return

    if fakeredis is None or lupa is None:
        pytest.skip("fakeredis with lupa is required for the redis ledger")

    from provider_quota.ledger.redis import RedisLedger

    client = fakeredis.FakeRedis(decode_responses=True)
    yield AdmissionContext(
        ledger=RedisLedger(redis_client=client, namespace="e2e"),
        cache=FailSafeCache(MemoryResponseCache(), metrics),
        clock=clock,
        config=config,
        metrics=metrics,
    )
    await client.aclose()


@pytest.fixture
async def keys(context):
    ledger = context.ledger
    for i in range(2):
        await ledger.add_credential(f"key-{i}", f"rapid-{i}")
        await ledger.add_usage(
            f"basket-{i}", f"key-{i}", "basketApi", limit=3, reset_at=MIDNIGHT
        )
    return ledger


@pytest.fixture
def calls():
    return []


@pytest.fixture
def provider(calls):
    def handler(request):
        calls.append((request.url.path, request.headers["x-rapidapi-key"]))
        if request.url.path.endswith("/broken"):
            return httpx.Response(502)
        return httpx.Response(200, json={"path": request.url.path})

    http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return ProviderClient(ENDPOINT, client=http)


class TestRequestFlow:
    @pytest.mark.asyncio
    async def test_keys_rotate_then_exhaust_then_reset(
        self, context, keys, provider, calls
    ):
        gate = QuotaGate(context, sleep=AsyncMock())

        for i in range(6):

            async def call(record, i=i):
                return await provider.get_json(record, f"/match/{i}")

            await gate.fetch("basketApi", f"match-{i}", call)

        # Least-used-first alternates between the two keys
        assert [key for _, key in calls] == ["rapid-0", "rapid-1"] * 3

        with pytest.raises(QuotaExhaustedError) as exc_info:
            await gate.fetch("basketApi", "match-6", AsyncMock())
        assert exc_info.value.retry_at == MIDNIGHT

        # Cached pages are still served while the pool is exhausted
        assert await gate.fetch("basketApi", "match-0", AsyncMock()) == {
            "path": "/api/match/0"
        }

        context.clock.set(MIDNIGHT + timedelta(minutes=5))
        result = await gate.sweep()
        assert sorted(result.reset_ids) == ["basket-0", "basket-1"]

        record = await gate.acquire_key("basketApi")
        assert record.used == 0
        assert record.reset_at == MIDNIGHT + timedelta(days=1)

    @pytest.mark.asyncio
    async def test_failed_call_still_costs_a_unit(self, context, keys, provider):
        gate = QuotaGate(context)

        async def call(record):
            return await provider.get_json(record, "/broken")

        with pytest.raises(ProviderCallError) as exc_info:
            await gate.fetch("basketApi", "broken", call)

        assert exc_info.value.status_code == 502
        assert exc_info.value.record_id == "basket-0"
        assert (await context.ledger.get_usage("basket-0")).used == 1

    @pytest.mark.asyncio
    async def test_details_fan_out_charges_three_units(
        self, context, keys, provider, calls
    ):
        gate = QuotaGate(context)

        async def details(record):
            match, stats, lineups = await asyncio.gather(
                provider.get_json(record, "/match/1"),
                provider.get_json(record, "/match/1/statistics"),
                provider.get_json(record, "/match/1/lineups"),
            )
            return {"match": match, "stats": stats, "lineups": lineups}

        await gate.fetch("basketApi", "details-1", details, units=3)

        assert len(calls) == 3
        assert (await context.ledger.get_usage("basket-0")).used == 3

    @pytest.mark.asyncio
    async def test_paced_logo_batch(self, context, keys, provider, calls):
        sleep = AsyncMock()
        gate = QuotaGate(context, sleep=sleep)
        record = await gate.acquire_key("basketApi")

        async def logo(team_id):
            return await provider.get_json(record, f"/team/{team_id}/image")

        results = await gate.pace_sequence("basketApi", [1, 2, 3, 4, 5], logo)
        await gate.record_usage(record, units=len(results))

        assert [r["path"] for r in results] == [
            f"/api/team/{i}/image" for i in range(1, 6)
        ]
        assert sleep.await_count == 4
        assert (await context.ledger.get_usage(record.id)).used == 5


class TestResetCadence:
    @pytest.mark.asyncio
    async def test_scheduler_ticks_reset_daily_and_monthly(self, context):
        ledger = context.ledger
        await ledger.add_credential("shared", "rapid-x")
        await ledger.add_usage(
            "basket", "shared", "basketApi", 10, START + timedelta(minutes=7), used=10
        )
        await ledger.add_usage(
            "cricket",
            "shared",
            "unofficial_cricbuzz",
            10,
            START + timedelta(minutes=7),
            used=10,
        )

        async def advancing_sleep(seconds):
            context.clock.advance(seconds=seconds)

        gate = QuotaGate(context, sleep=advancing_sleep)
        results = await gate.scheduler().run_ticks(2)

        assert [r.count for r in results] == [0, 2]
        basket = await ledger.get_usage("basket")
        cricket = await ledger.get_usage("cricket")
        assert basket.used == cricket.used == 0
        assert basket.reset_at == START + timedelta(days=1, minutes=7)
        assert cricket.reset_at == datetime(2025, 4, 10, 12, 7, tzinfo=IST)
