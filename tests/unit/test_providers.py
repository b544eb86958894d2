from datetime import datetime
from zoneinfo import ZoneInfo

import httpx
import pytest
from pydantic import BaseModel

from provider_quota.exceptions import ProviderCallError, ResponseValidationError
from provider_quota.models import CredentialRecord
from provider_quota.observability import PROVIDER_CALLS_TOTAL
from provider_quota.providers import (
    HOST_HEADER,
    KEY_HEADER,
    ProviderClient,
    ProviderEndpoint,
    parse_response,
)

IST = ZoneInfo("Asia/Kolkata")

ENDPOINT = ProviderEndpoint(
    provider="basketApi",
    base_url="https://basketapi1.p.rapidapi.com/api/",
    host="basketapi1.p.rapidapi.com",
)


class Team(BaseModel):
    id: int
    name: str


@pytest.fixture
def record():
    return CredentialRecord(
        id="basketApi-0",
        credential_id="cred-0",
        provider="basketApi",
        secret="s3cr3t",
        used=0,
        limit=100,
        reset_at=datetime(2025, 3, 11, tzinfo=IST),
    )


def make_client(handler, metrics=None):
    http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return ProviderClient(ENDPOINT, client=http, metrics=metrics)


class TestProviderEndpoint:
    def test_url_join(self):
        assert (
            ENDPOINT.url("/matches/live")
            == "https://basketapi1.p.rapidapi.com/api/matches/live"
        )
        assert ENDPOINT.url("team/1") == "https://basketapi1.p.rapidapi.com/api/team/1"


class TestProviderClient:
    @pytest.mark.asyncio
    async def test_sends_credential_headers(self, record, metrics):
        seen = {}

        def handler(request):
            seen["key"] = request.headers[KEY_HEADER]
            seen["host"] = request.headers[HOST_HEADER]
            seen["url"] = str(request.url)
            return httpx.Response(200, json={"events": []})

        client = make_client(handler, metrics)
        data = await client.get_json(record, "matches/live", params={"page": 1})

        assert data == {"events": []}
        assert seen["key"] == "s3cr3t"
        assert seen["host"] == "basketapi1.p.rapidapi.com"
        assert seen["url"].endswith("/api/matches/live?page=1")
        assert (
            metrics.get_counter(
                PROVIDER_CALLS_TOTAL, {"provider": "basketApi", "outcome": "success"}
            )
            == 1
        )

    @pytest.mark.asyncio
    async def test_status_error(self, record, metrics):
        client = make_client(lambda request: httpx.Response(429), metrics)

        with pytest.raises(ProviderCallError) as exc_info:
            await client.get_json(record, "matches/live")

        err = exc_info.value
        assert err.status_code == 429
        assert err.provider == "basketApi"
        assert err.record_id == "basketApi-0"
        assert (
            metrics.get_counter(
                PROVIDER_CALLS_TOTAL, {"provider": "basketApi", "outcome": "failure"}
            )
            == 1
        )

    @pytest.mark.asyncio
    async def test_transport_error(self, record):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        client = make_client(handler)

        with pytest.raises(ProviderCallError) as exc_info:
            await client.get_json(record, "matches/live")
        assert exc_info.value.status_code is None
        assert isinstance(exc_info.value.__cause__, httpx.ConnectError)

    @pytest.mark.asyncio
    async def test_non_json_body(self, record):
        client = make_client(lambda request: httpx.Response(200, text="<html>"))

        with pytest.raises(ProviderCallError, match="non-JSON") as exc_info:
            await client.get_json(record, "matches/live")
        assert exc_info.value.status_code == 200

    @pytest.mark.asyncio
    async def test_secret_not_in_error_message(self, record):
        client = make_client(lambda request: httpx.Response(500))
        with pytest.raises(ProviderCallError) as exc_info:
            await client.get_json(record, "matches/live")
        assert "s3cr3t" not in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_get_model(self, record):
        client = make_client(
            lambda request: httpx.Response(200, json={"id": 7, "name": "Lakers"})
        )
        team = await client.get_model(record, "team/7", Team)
        assert team == Team(id=7, name="Lakers")

    @pytest.mark.asyncio
    async def test_injected_client_left_open(self, record):
        http = httpx.AsyncClient(
            transport=httpx.MockTransport(lambda r: httpx.Response(200, json={}))
        )
        async with ProviderClient(ENDPOINT, client=http):
            pass
        assert not http.is_closed
        await http.aclose()

    @pytest.mark.asyncio
    async def test_owned_client_closed(self):
        client = ProviderClient(ENDPOINT)
        await client.close()
        assert client.client.is_closed


class TestParseResponse:
    def test_valid(self):
        assert parse_response(Team, {"id": 1, "name": "Celtics"}).name == "Celtics"

    def test_invalid(self):
        with pytest.raises(ResponseValidationError) as exc_info:
            parse_response(Team, {"id": "not-a-number"}, provider="basketApi")

        err = exc_info.value
        assert err.provider == "basketApi"
        assert {tuple(e["loc"]) for e in err.errors} == {("id",), ("name",)}
