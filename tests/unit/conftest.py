"""
Shared fixtures for the provider quota unit tests.

All deadlines are expressed in Asia/Kolkata, the zone the ledger compares
in, and time only moves when a test advances the ManualClock.
"""

from datetime import datetime
from zoneinfo import ZoneInfo

import pytest
from prometheus_client import CollectorRegistry

from provider_quota.clock import ManualClock
from provider_quota.ledger.memory import MemoryLedger
from provider_quota.observability import MetricsCollector

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


@pytest.fixture
def clock():
    return ManualClock(START)


@pytest.fixture
def ledger():
    return MemoryLedger(namespace="test")


@pytest.fixture(params=["memory", "redis"])
async def any_ledger(request):
    """MemoryLedger, then RedisLedger on fakeredis when fakeredis and lupa exist."""
    if request.param == "memory":
        yield MemoryLedger(namespace="contract")
        return

    if fakeredis is None or lupa is None:
        pytest.skip("fakeredis with lupa is required for the redis ledger")

    from provider_quota.ledger.redis import RedisLedger

    client = fakeredis.FakeRedis(decode_responses=True)
    ledger = RedisLedger(redis_client=client, namespace="contract")
    yield ledger
    await ledger.close()
    await client.aclose()


@pytest.fixture
def metrics():
    """Collector bound to a private registry so tests never collide."""
    return MetricsCollector(registry=CollectorRegistry())


async def _provision(ledger, provider, limits, reset_at, used=None):
    """
    Add one credential and usage row per entry in ``limits``.

    Record ids are ``{provider}-{i}``, credential ids ``cred-{i}``.
    """
    used = used or [0] * len(limits)
    records = []
    for i, (limit, count) in enumerate(zip(limits, used)):
        await ledger.add_credential(f"cred-{i}", f"secret-{i}")
        records.append(
            await ledger.add_usage(
                f"{provider}-{i}",
                f"cred-{i}",
                provider,
                limit=limit,
                reset_at=reset_at,
                used=count,
            )
        )
    return records


@pytest.fixture
def provision():
    """Helper that provisions a credential pool on a ledger."""
    return _provision
