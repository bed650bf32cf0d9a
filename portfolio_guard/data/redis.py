# Portfolio Guard - AI Access-Control & Context-Assembly Engine
# Copyright (c) 2026 George Scott Foley
# ORCID: 0009-0006-4957-0540
# Email: Georgescottfoley@proton.me
# Licensed under the MIT License - see LICENSE file for details

"""
Redis-backed usage store and store construction.

Production: connects to Redis via REDIS_URL.
Development: if the connection fails, falls back to the in-memory
store so the service still boots on a laptop. Outside development a
failed connection is a startup error.

Conditional increments and compare-and-set run as Lua scripts, so each
one executes atomically on the Redis server regardless of how many
service instances share it.
"""

import logging
from datetime import datetime, timedelta

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from ..core.async_base import Clock, utcnow
from ..core.exceptions import StoreUnavailable
from ..core.settings import Settings
from .store import Append, CounterState, InMemoryUsageStore, UsageStore

logger = logging.getLogger(__name__)


# KEYS[1] counter; ARGV[1] limit, ARGV[2] ttl ms, ARGV[3] amount
_INCREMENT_IF_BELOW = """
local current = tonumber(redis.call('GET', KEYS[1]) or '0')
if current >= tonumber(ARGV[1]) then
    return {0, current, redis.call('PTTL', KEYS[1])}
end
local value = redis.call('INCRBY', KEYS[1], ARGV[3])
if value == tonumber(ARGV[3]) then
    redis.call('PEXPIRE', KEYS[1], ARGV[2])
end
return {1, value, redis.call('PTTL', KEYS[1])}
"""

# KEYS[1] counter; ARGV[1] amount, ARGV[2] ttl ms (0 = none)
_INCREMENT = """
local value = redis.call('INCRBY', KEYS[1], ARGV[1])
if value == tonumber(ARGV[1]) and tonumber(ARGV[2]) > 0 then
    redis.call('PEXPIRE', KEYS[1], ARGV[2])
end
return {value, redis.call('PTTL', KEYS[1])}
"""

# KEYS[1] record, KEYS[2] list
# ARGV[1] '1' when a current value is expected, ARGV[2] expected,
# ARGV[3] new value, ARGV[4] ttl ms (0 = none), ARGV[5] '1' to append,
# ARGV[6] list entry
_COMPARE_AND_SET = """
local current = redis.call('GET', KEYS[1])
if ARGV[1] == '1' then
    if current ~= ARGV[2] then return 0 end
else
    if current then return 0 end
end
if tonumber(ARGV[4]) > 0 then
    redis.call('SET', KEYS[1], ARGV[3], 'PX', ARGV[4])
else
    redis.call('SET', KEYS[1], ARGV[3])
end
if ARGV[5] == '1' then
    redis.call('RPUSH', KEYS[2], ARGV[6])
end
return 1
"""


class RedisUsageStore(UsageStore):
    """Redis-backed usage store for distributed deployments."""

    def __init__(self, client: aioredis.Redis, key_prefix: str = "", clock: Clock = utcnow):
        self._redis = client
        self._prefix = key_prefix
        self._clock = clock
        self._increment_if_below = client.register_script(_INCREMENT_IF_BELOW)
        self._increment = client.register_script(_INCREMENT)
        self._compare_and_set = client.register_script(_COMPARE_AND_SET)

    def _k(self, key: str) -> str:
        return f"{self._prefix}{key}"

    def _expires_at(self, pttl: int) -> datetime | None:
        # PTTL: -2 missing key, -1 no expiry
        if pttl is None or int(pttl) < 0:
            return None
        return self._clock() + timedelta(milliseconds=int(pttl))

    async def get(self, key: str) -> str | None:
        try:
            return await self._redis.get(self._k(key))
        except RedisError as e:
            raise StoreUnavailable(f"Redis GET failed: {e}", operation="get") from e

    async def set(self, key: str, value: str, ttl_seconds: int | None = None) -> None:
        try:
            await self._redis.set(self._k(key), value, ex=ttl_seconds)
        except RedisError as e:
            raise StoreUnavailable(f"Redis SET failed: {e}", operation="set") from e

    async def delete(self, *keys: str) -> int:
        if not keys:
            return 0
        try:
            return await self._redis.delete(*(self._k(k) for k in keys))
        except RedisError as e:
            raise StoreUnavailable(f"Redis DEL failed: {e}", operation="delete") from e

    async def increment(
        self, key: str, amount: int = 1, ttl_seconds: int | None = None
    ) -> CounterState:
        ttl_ms = (ttl_seconds or 0) * 1000
        try:
            value, pttl = await self._increment(keys=[self._k(key)], args=[amount, ttl_ms])
        except RedisError as e:
            raise StoreUnavailable(f"Redis increment failed: {e}", operation="increment") from e
        return CounterState(int(value), self._expires_at(pttl))

    async def increment_if_below(
        self, key: str, limit: int, ttl_seconds: int, amount: int = 1
    ) -> CounterState:
        try:
            applied, value, pttl = await self._increment_if_below(
                keys=[self._k(key)], args=[limit, ttl_seconds * 1000, amount]
            )
        except RedisError as e:
            raise StoreUnavailable(
                f"Redis conditional increment failed: {e}", operation="increment_if_below"
            ) from e
        return CounterState(int(value), self._expires_at(pttl), applied=bool(int(applied)))

    async def get_counter(self, key: str) -> CounterState:
        try:
            pipe = self._redis.pipeline()
            pipe.get(self._k(key))
            pipe.pttl(self._k(key))
            value, pttl = await pipe.execute()
        except RedisError as e:
            raise StoreUnavailable(
                f"Redis counter read failed: {e}", operation="get_counter"
            ) from e
        return CounterState(int(value or 0), self._expires_at(pttl), applied=False)

    async def compare_and_set(
        self,
        key: str,
        expected: str | None,
        value: str,
        ttl_seconds: int | None = None,
        append: Append | None = None,
    ) -> bool:
        list_key, entry = append if append is not None else (key, "")
        args = [
            "0" if expected is None else "1",
            expected or "",
            value,
            (ttl_seconds or 0) * 1000,
            "1" if append is not None else "0",
            entry,
        ]
        try:
            result = await self._compare_and_set(
                keys=[self._k(key), self._k(list_key)], args=args
            )
        except RedisError as e:
            raise StoreUnavailable(
                f"Redis compare-and-set failed: {e}", operation="compare_and_set"
            ) from e
        return bool(int(result))

    async def append(self, key: str, value: str) -> int:
        try:
            return await self._redis.rpush(self._k(key), value)
        except RedisError as e:
            raise StoreUnavailable(f"Redis RPUSH failed: {e}", operation="append") from e

    async def get_list(self, key: str) -> list[str]:
        try:
            return await self._redis.lrange(self._k(key), 0, -1)
        except RedisError as e:
            raise StoreUnavailable(f"Redis LRANGE failed: {e}", operation="get_list") from e

    async def trim_list(self, key: str, drop: int) -> None:
        if drop <= 0:
            return
        try:
            await self._redis.ltrim(self._k(key), drop, -1)
        except RedisError as e:
            raise StoreUnavailable(f"Redis LTRIM failed: {e}", operation="trim_list") from e

    async def scan_keys(self, prefix: str) -> list[str]:
        keys: list[str] = []
        try:
            async for key in self._redis.scan_iter(match=f"{self._k(prefix)}*"):
                keys.append(key[len(self._prefix) :])
        except RedisError as e:
            raise StoreUnavailable(f"Redis SCAN failed: {e}", operation="scan_keys") from e
        return sorted(keys)

    async def ping(self) -> bool:
        try:
            return bool(await self._redis.ping())
        except RedisError:
            return False

    async def close(self) -> None:
        await self._redis.aclose()
        logger.info("Redis connection closed")


# ============================================================
# CONSTRUCTION
# ============================================================


async def build_store(settings: Settings, clock: Clock = utcnow) -> UsageStore:
    """Create the usage store selected by STORE_BACKEND.

    Raises:
        StoreUnavailable: Redis is unreachable outside development
    """
    if settings.store.backend == "memory":
        logger.info("Using in-memory usage store")
        return InMemoryUsageStore(clock=clock)

    url = settings.redis.url
    client = aioredis.from_url(
        url, max_connections=settings.redis.max_connections, decode_responses=True
    )
    store = RedisUsageStore(client, key_prefix=settings.store.key_prefix, clock=clock)
    if await store.ping():
        logger.info("Connected to Redis at %s", url.split("@")[-1] if "@" in url else url)
        return store

    await client.aclose()
    if settings.is_development:
        logger.warning("Redis unreachable at %s - using in-memory store", url)
        return InMemoryUsageStore(clock=clock)
    raise StoreUnavailable("Redis is unreachable", operation="connect")


__all__ = ["RedisUsageStore", "build_store"]
