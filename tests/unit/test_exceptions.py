from datetime import datetime, timedelta
from zoneinfo import ZoneInfo

import pytest

from provider_quota.exceptions import (
    ConfigurationError,
    LedgerUnavailableError,
    ProviderCallError,
    QuotaError,
    QuotaExhaustedError,
    ResponseValidationError,
    UsageRecordNotFoundError,
)

IST = ZoneInfo("Asia/Kolkata")


class TestExceptionHierarchy:
    @pytest.mark.parametrize(
        "exc",
        [
            QuotaExhaustedError("basketApi"),
            ProviderCallError("boom", "basketApi"),
            LedgerUnavailableError("down"),
            UsageRecordNotFoundError("rec-1"),
            ResponseValidationError("basketApi", []),
            ConfigurationError("bad"),
        ],
    )
    def test_all_inherit_from_quota_error(self, exc):
        assert isinstance(exc, QuotaError)

    def test_exhausted_is_distinct_from_provider_failure(self):
        assert not issubclass(QuotaExhaustedError, ProviderCallError)
        assert not issubclass(ProviderCallError, QuotaExhaustedError)


class TestQuotaExhaustedError:
    def test_message(self):
        err = QuotaExhaustedError("footApi")
        assert str(err) == "API limit reached for footApi. Try again after reset time."
        assert err.provider == "footApi"
        assert err.retry_at is None

    def test_retry_after(self):
        now = datetime(2025, 3, 10, 12, 0, tzinfo=IST)
        err = QuotaExhaustedError("footApi", retry_at=now + timedelta(minutes=5))
        assert err.retry_after(now) == 300.0

    def test_retry_after_clamps_past_deadline(self):
        now = datetime(2025, 3, 10, 12, 0, tzinfo=IST)
        err = QuotaExhaustedError("footApi", retry_at=now - timedelta(minutes=5))
        assert err.retry_after(now) == 0.0

    def test_retry_after_unknown(self):
        now = datetime(2025, 3, 10, 12, 0, tzinfo=IST)
        assert QuotaExhaustedError("footApi").retry_after(now) is None


class TestProviderCallError:
    def test_attributes(self):
        err = ProviderCallError(
            "failed", "basketApi", status_code=503, record_id="basketApi-0"
        )
        assert str(err) == "failed"
        assert err.provider == "basketApi"
        assert err.status_code == 503
        assert err.record_id == "basketApi-0"

    def test_defaults(self):
        err = ProviderCallError("failed", "basketApi")
        assert err.status_code is None
        assert err.record_id is None


class TestOtherErrors:
    def test_usage_record_not_found(self):
        err = UsageRecordNotFoundError("rec-9")
        assert err.record_id == "rec-9"
        assert "rec-9" in str(err)

    def test_response_validation_error(self):
        errors = [{"loc": ("id",), "msg": "Field required", "type": "missing"}]
        err = ResponseValidationError("footApi", errors)
        assert err.provider == "footApi"
        assert err.errors == errors
        assert "1 validation error" in str(err)
