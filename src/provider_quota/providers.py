# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
HTTP client for RapidAPI-style providers.

Every provider in a pool is reached the same way: a base URL, a host name,
and a credential sent as request headers. ProviderClient issues the call
with the secret from a CredentialRecord and turns every failure into a
ProviderCallError carrying the record id, so the caller can report which
credential was charged for the failed call.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, TypeVar

import httpx
from pydantic import BaseModel, ValidationError
from typing_extensions import Self

from .exceptions import ProviderCallError, ResponseValidationError
from .models import CredentialRecord
from .observability import PROVIDER_CALLS_TOTAL, MetricsCollector

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)

KEY_HEADER = "x-rapidapi-key"
HOST_HEADER = "x-rapidapi-host"


@dataclass(frozen=True)
class ProviderEndpoint:
    """Where a provider lives and how it is addressed."""

    provider: str
    base_url: str
    host: str

    def url(self, path: str) -> str:
        return f"{self.base_url.rstrip('/')}/{path.lstrip('/')}"


def parse_response(
    model: type[ModelT], payload: Any, provider: str = "unknown"
) -> ModelT:
    """
    Validate a provider payload against a pydantic schema.

    Raises:
        ResponseValidationError: If the payload does not match ``model``
    """
    try:
        return model.model_validate(payload)
    except ValidationError as e:
        errors = [dict(err) for err in e.errors()]
        logger.warning(f"Malformed {provider} payload: {e.error_count()} error(s)")
        raise ResponseValidationError(provider, errors) from e


class ProviderClient:
    """
    Async client for one provider endpoint.

    Attributes:
        endpoint: Provider address and host header value
    """

    def __init__(
        self,
        endpoint: ProviderEndpoint,
        client: httpx.AsyncClient | None = None,
        timeout: float = 30.0,
        metrics: MetricsCollector | None = None,
    ) -> None:
        self.endpoint = endpoint
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(timeout=timeout)
        self._metrics = metrics

    def _count(self, outcome: str) -> None:
        if self._metrics is not None:
            self._metrics.inc_counter(
                PROVIDER_CALLS_TOTAL,
                labels={"provider": self.endpoint.provider, "outcome": outcome},
            )

    def headers_for(self, record: CredentialRecord) -> dict[str, str]:
        return {KEY_HEADER: record.secret, HOST_HEADER: self.endpoint.host}

    async def get_json(
        self,
        record: CredentialRecord,
        path: str,
        params: dict[str, Any] | None = None,
    ) -> Any:
        """
        GET ``path`` with ``record``'s credential and return the decoded body.

        Raises:
            ProviderCallError: On transport errors, non-2xx status codes or
                an undecodable body
        """
        provider = self.endpoint.provider
        try:
            response = await self.client.get(
                self.endpoint.url(path),
                params=params,
                headers=self.headers_for(record),
            )
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPStatusError as e:
            self._count("failure")
            status = e.response.status_code
            logger.error(f"{provider} returned {status} for {path} (record {record.id})")
            raise ProviderCallError(
                f"{provider} request failed with status {status}",
                provider,
                status_code=status,
                record_id=record.id,
            ) from e
        except httpx.HTTPError as e:
            self._count("failure")
            logger.error(f"{provider} request to {path} failed: {e} (record {record.id})")
            raise ProviderCallError(
                f"{provider} request failed: {e}", provider, record_id=record.id
            ) from e
        except ValueError as e:
            self._count("failure")
            raise ProviderCallError(
                f"{provider} returned a non-JSON body",
                provider,
                status_code=response.status_code,
                record_id=record.id,
            ) from e

        self._count("success")
        return data

    async def get_model(
        self,
        record: CredentialRecord,
        path: str,
        model: type[ModelT],
        params: dict[str, Any] | None = None,
    ) -> ModelT:
        """GET ``path`` and validate the body against ``model``."""
        data = await self.get_json(record, path, params=params)
        return parse_response(model, data, provider=self.endpoint.provider)

    async def close(self) -> None:
        if self._owns_client:
            await self.client.aclose()

    async def __aenter__(self) -> Self:
        return self

    async def __aexit__(self, exc_type: Any, _exc_val: Any, _exc_tb: Any) -> None:
        await self.close()


__all__ = [
    "HOST_HEADER",
    "KEY_HEADER",
    "ProviderClient",
    "ProviderEndpoint",
    "parse_response",
]
