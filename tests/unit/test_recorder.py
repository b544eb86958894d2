from datetime import timedelta

import pytest

from provider_quota.exceptions import UsageRecordNotFoundError
from provider_quota.observability import USAGE_UNITS_TOTAL
from provider_quota.recorder import UsageRecorder


class TestUsageRecorder:
    @pytest.fixture
    def recorder(self, ledger, metrics):
        return UsageRecorder(ledger, metrics)

    @pytest.mark.asyncio
    async def test_record_by_record(self, recorder, ledger, clock, metrics, provision):
        (record,) = await provision(ledger, "p", [10], clock.now() + timedelta(hours=1))

        assert await recorder.record_usage(record) == 1
        assert await recorder.record_usage(record, 3) == 4
        assert metrics.get_counter(USAGE_UNITS_TOTAL, {"provider": "p"}) == 4

    @pytest.mark.asyncio
    async def test_record_by_id(self, recorder, ledger, clock, metrics, provision):
        await provision(ledger, "p", [10], clock.now() + timedelta(hours=1))

        assert await recorder.record_usage("p-0", 2) == 2
        assert metrics.get_counter(USAGE_UNITS_TOTAL, {"provider": "p"}) == 2

    @pytest.mark.asyncio
    async def test_multi_call_operation_charges_each_call(
        self, recorder, ledger, clock, provision
    ):
        """A details page fanning out three calls costs three units."""
        (record,) = await provision(ledger, "p", [10], clock.now() + timedelta(hours=1))
        await recorder.record_usage(record, units=3)
        assert (await ledger.get_usage("p-0")).used == 3

    @pytest.mark.asyncio
    async def test_zero_units_is_a_no_op(self, recorder, ledger, clock, provision):
        (record,) = await provision(ledger, "p", [10], clock.now() + timedelta(hours=1))
        assert await recorder.record_usage(record, 0) is None
        assert (await ledger.get_usage("p-0")).used == 0

    @pytest.mark.asyncio
    async def test_negative_units(self, recorder):
        with pytest.raises(ValueError):
            await recorder.record_usage("p-0", -2)

    @pytest.mark.asyncio
    async def test_unknown_record(self, recorder):
        with pytest.raises(UsageRecordNotFoundError):
            await recorder.record_usage("missing")

    @pytest.mark.asyncio
    async def test_may_push_past_limit(self, recorder, ledger, clock, provision):
        (record,) = await provision(
            ledger, "p", [1], clock.now() + timedelta(hours=1), used=[1]
        )
        assert await recorder.record_usage(record) == 2
