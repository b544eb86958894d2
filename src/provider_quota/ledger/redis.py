# Copyright 2026 Seth Bang
# SPDX-License-Identifier: Apache-2.0
"""
RedisLedger for the provider quota subsystem

This module provides a durable ledger shared by every worker process.

Key Layout (all under ``{namespace}:``):
- ``cred:{credential_id}``: hash holding the opaque secret
- ``usage:{record_id}``: hash with credential_id, provider_name, used,
  limit, reset_at (integer microseconds since the epoch) and seq
- ``provider:{name}``: sorted set of record ids scored by provisioning seq
- ``providers``: set of provider names
- ``seq``: provisioning counter

Single-record writes use native atomic commands (HINCRBY, HSET). The two
multi-step operations, conditional reset and select-and-charge, run as Lua
scripts so concurrent workers cannot interleave inside them.
"""

import contextlib
import logging
import os
from collections.abc import Iterator
from datetime import datetime, timedelta, timezone
from typing import Any, ClassVar
from zoneinfo import ZoneInfo

from redis.asyncio import Redis
from redis.exceptions import (
    ConnectionError,
    NoScriptError,
    RedisError,
    TimeoutError,
)

from ..clock import DEFAULT_TIMEZONE
from ..exceptions import LedgerUnavailableError, UsageRecordNotFoundError
from ..models import CredentialRecord, HealthCheckResult
from .base import BaseLedger, validate_units

logger = logging.getLogger(__name__)

_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)
_MICROSECOND = timedelta(microseconds=1)


def to_micros(value: datetime) -> int:
    """Exact integer microseconds since the epoch for an aware datetime."""
    return (value - _EPOCH) // _MICROSECOND


def from_micros(value: int | str, tz: ZoneInfo) -> datetime:
    return (_EPOCH + timedelta(microseconds=int(value))).astimezone(tz)


@contextlib.contextmanager
def _ledger_errors(operation: str) -> Iterator[None]:
    """Translate redis failures into LedgerUnavailableError."""
    try:
        yield
    except (ConnectionError, TimeoutError, RedisError) as e:
        logger.error(f"Redis error during {operation}: {e}")
        raise LedgerUnavailableError(f"ledger {operation} failed: {e}") from e


class RedisLedger(BaseLedger):
    """
    A distributed Redis ledger for credential usage.

    The client must be created with ``decode_responses=True``; the ledger
    builds one itself from ``redis_url`` when no client is injected.
    """

    _lua_scripts: ClassVar[dict[str, str]] = {
        # KEYS[1]=usage key; ARGV[1]=expected reset_at, ARGV[2]=next reset_at
        "apply_reset": """
if redis.call('EXISTS', KEYS[1]) == 0 then
  return -1
end
local reset_at = redis.call('HGET', KEYS[1], 'reset_at')
local used = tonumber(redis.call('HGET', KEYS[1], 'used'))
if reset_at ~= ARGV[1] or used <= 0 then
  return 0
end
redis.call('HSET', KEYS[1], 'used', 0, 'reset_at', ARGV[2])
return 1
""",
        # KEYS[1]=provider zset; ARGV[1]=usage key prefix, ARGV[2]=units, ARGV[3]=now
        "try_charge": """
local ids = redis.call('ZRANGE', KEYS[1], 0, -1)
local units = tonumber(ARGV[2])
local now = tonumber(ARGV[3])
local rows = {}
for i, id in ipairs(ids) do
  local key = ARGV[1] .. id
  local vals = redis.call('HMGET', key, 'used', 'limit', 'reset_at')
  if vals[1] then
    table.insert(rows, {id = id, key = key, pos = i, used = tonumber(vals[1]),
                        limit = tonumber(vals[2]), reset = tonumber(vals[3])})
  end
end
table.sort(rows, function(a, b)
  if a.used == b.used then
    return a.pos < b.pos
  end
  return a.used < b.used
end)
for _, row in ipairs(rows) do
  local used = row.used
  if used + units > row.limit and row.reset <= now then
    used = 0
  end
  if used + units <= row.limit then
    redis.call('HSET', row.key, 'used', used + units)
    return row.id
  end
end
return false
""",
    }

    def __init__(
        self,
        redis_url: str | None = None,
        redis_client: Any | None = None,
        namespace: str = "quota",
        timezone: str = DEFAULT_TIMEZONE,
        max_connections: int = 10,
    ) -> None:
        """
        Initialize the Redis ledger.

        Args:
            redis_url: Redis connection URL. If not provided, falls back to
                REDIS_URL environment variable, then to "redis://localhost:6379".
            redis_client: Optional pre-configured client (decode_responses=True)
            namespace: Namespace prefix for keys
            timezone: Zone that stored deadlines are returned in
            max_connections: Maximum connections in the owned pool
        """
        super().__init__(namespace)

        self.redis_url = (
            redis_url or os.environ.get("REDIS_URL") or "redis://localhost:6379"
        )
        self.tz = ZoneInfo(timezone)
        self.max_connections = max_connections

        self._redis: Any | None = redis_client
        self._owned_redis = redis_client is None

        # Lua script SHAs
        self._script_shas: dict[str, str] = {}

    # === Keys ===

    def _cred_key(self, credential_id: str) -> str:
        return f"{self.namespace}:cred:{credential_id}"

    def _usage_prefix(self) -> str:
        return f"{self.namespace}:usage:"

    def _usage_key(self, record_id: str) -> str:
        return f"{self._usage_prefix()}{record_id}"

    def _provider_key(self, provider: str) -> str:
        return f"{self.namespace}:provider:{provider}"

    def _providers_key(self) -> str:
        return f"{self.namespace}:providers"

    def _seq_key(self) -> str:
        return f"{self.namespace}:seq"

    # === Connection and Scripts ===

    def _client(self) -> Any:
        if self._redis is None:
            self._redis = Redis.from_url(
                self.redis_url,
                decode_responses=True,
                max_connections=self.max_connections,
            )
        return self._redis

    async def _load_scripts(self) -> None:
        """Load Lua scripts into Redis."""
        client = self._client()
        for script_name, script_source in self._lua_scripts.items():
            self._script_shas[script_name] = await client.script_load(script_source)

    async def _evalsha_with_reload(
        self, script_name: str, num_keys: int, *args: Any
    ) -> Any:
        """
        Execute EVALSHA, reloading scripts once on NoScriptError.

        Redis drops cached scripts on restart or failover.
        """
        client = self._client()
        script_sha = self._script_shas.get(script_name)
        if not script_sha:
            await self._load_scripts()
            script_sha = self._script_shas[script_name]

        try:
            return await client.evalsha(script_sha, num_keys, *args)
        except NoScriptError:
            logger.warning(
                f"Script '{script_name}' not found in Redis (SHA: {script_sha}). "
                f"Reloading all Lua scripts..."
            )
            self._script_shas.clear()
            await self._load_scripts()
            return await client.evalsha(
                self._script_shas[script_name], num_keys, *args
            )

    # === Row Conversion ===

    def _to_record(
        self, record_id: str, row: dict[str, str], secret: str | None
    ) -> CredentialRecord:
        return CredentialRecord(
            id=record_id,
            credential_id=row["credential_id"],
            provider=row["provider_name"],
            secret=secret or "",
            used=int(row["used"]),
            limit=int(row["limit"]),
            reset_at=from_micros(row["reset_at"], self.tz),
        )

    async def _load_records(self, record_ids: list[str]) -> list[CredentialRecord]:
        """Fetch usage rows and their secrets, preserving ``record_ids`` order."""
        if not record_ids:
            return []
        client = self._client()
        async with client.pipeline(transaction=False) as pipe:
            for record_id in record_ids:
                pipe.hgetall(self._usage_key(record_id))
            rows = await pipe.execute()

        present = [(rid, row) for rid, row in zip(record_ids, rows) if row]
        async with client.pipeline(transaction=False) as pipe:
            for _, row in present:
                pipe.hget(self._cred_key(row["credential_id"]), "secret")
            secrets = await pipe.execute()

        return [
            self._to_record(rid, row, secret)
            for (rid, row), secret in zip(present, secrets)
        ]

    # === Provisioning ===

    async def add_credential(self, credential_id: str, secret: str) -> None:
        with _ledger_errors("add_credential"):
            await self._client().hset(
                self._cred_key(credential_id), mapping={"secret": secret}
            )

    async def add_usage(
        self,
        record_id: str,
        credential_id: str,
        provider: str,
        limit: int,
        reset_at: datetime,
        used: int = 0,
    ) -> CredentialRecord:
        with _ledger_errors("add_usage"):
            client = self._client()
            secret = await client.hget(self._cred_key(credential_id), "secret")
            if secret is None:
                raise ValueError(f"unknown credential: {credential_id}")

            row = {
                "credential_id": credential_id,
                "provider_name": provider,
                "used": str(used),
                "limit": str(limit),
                "reset_at": str(to_micros(reset_at)),
            }
            # Validate before storing
            record = self._to_record(record_id, row, secret)

            seq = await client.incr(self._seq_key())
            async with client.pipeline(transaction=True) as pipe:
                pipe.hset(self._usage_key(record_id), mapping={**row, "seq": seq})
                pipe.zadd(self._provider_key(provider), {record_id: seq})
                pipe.sadd(self._providers_key(), provider)
                await pipe.execute()
            return record

    # === Reads ===

    async def list_usage(self, provider: str) -> list[CredentialRecord]:
        with _ledger_errors("list_usage"):
            record_ids = await self._client().zrange(
                self._provider_key(provider), 0, -1
            )
            records = await self._load_records(list(record_ids))
        # sorted() is stable, so provisioning order breaks ties
        return sorted(records, key=lambda r: r.used)

    async def get_usage(self, record_id: str) -> CredentialRecord:
        with _ledger_errors("get_usage"):
            records = await self._load_records([record_id])
        if not records:
            raise UsageRecordNotFoundError(record_id)
        return records[0]

    async def due_for_reset(self, now: datetime) -> list[CredentialRecord]:
        with _ledger_errors("due_for_reset"):
            providers = await self._client().smembers(self._providers_key())
        due: list[CredentialRecord] = []
        for provider in sorted(providers):
            for record in await self.list_usage(provider):
                if record.reset_at <= now and record.used > 0:
                    due.append(record)
        return due

    # === Writes ===

    async def zero_usage(self, record_id: str) -> None:
        with _ledger_errors("zero_usage"):
            client = self._client()
            key = self._usage_key(record_id)
            if not await client.exists(key):
                raise UsageRecordNotFoundError(record_id)
            await client.hset(key, "used", 0)

    async def increment_usage(self, record_id: str, units: int = 1) -> int:
        validate_units(units)
        with _ledger_errors("increment_usage"):
            client = self._client()
            key = self._usage_key(record_id)
            # Rows are never deleted, so exists-then-increment cannot resurrect one
            if not await client.exists(key):
                raise UsageRecordNotFoundError(record_id)
            return int(await client.hincrby(key, "used", units))

    async def apply_reset(
        self,
        record_id: str,
        expected_reset_at: datetime,
        next_reset_at: datetime,
    ) -> bool:
        with _ledger_errors("apply_reset"):
            result = await self._evalsha_with_reload(
                "apply_reset",
                1,
                self._usage_key(record_id),
                str(to_micros(expected_reset_at)),
                str(to_micros(next_reset_at)),
            )
        if int(result) == -1:
            raise UsageRecordNotFoundError(record_id)
        return int(result) == 1

    async def try_charge(
        self, provider: str, units: int, now: datetime
    ) -> CredentialRecord | None:
        validate_units(units)
        with _ledger_errors("try_charge"):
            record_id = await self._evalsha_with_reload(
                "try_charge",
                1,
                self._provider_key(provider),
                self._usage_prefix(),
                units,
                str(to_micros(now)),
            )
        if not record_id:
            return None
        return await self.get_usage(record_id)

    # === Health and Lifecycle ===

    async def health_check(self) -> HealthCheckResult:
        try:
            client = self._client()
            await client.ping()
            providers = await client.scard(self._providers_key())
            return HealthCheckResult(
                healthy=True,
                backend_type="redis",
                namespace=self.namespace,
                metadata={"redis_url": self.redis_url, "providers": providers},
            )
        except Exception as e:
            return HealthCheckResult(
                healthy=False,
                backend_type="redis",
                namespace=self.namespace,
                error=str(e),
            )

    async def close(self) -> None:
        """Close the client if this ledger created it."""
        if self._redis is not None and self._owned_redis:
            try:
                await self._redis.aclose()
            except Exception as e:
                logger.error(f"Error closing Redis ledger connection: {e}")
            finally:
                self._redis = None

    async def __aenter__(self) -> "RedisLedger":
        return self

    async def __aexit__(self, exc_type: Any, _exc_val: Any, _exc_tb: Any) -> None:
        await self.close()
