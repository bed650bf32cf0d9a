# Portfolio Guard - AI Access-Control & Context-Assembly Engine
# Copyright (c) 2026 George Scott Foley
# ORCID: 0009-0006-4957-0540
# Email: Georgescottfoley@proton.me
# Licensed under the MIT License - see LICENSE file for details

"""
Usage Store

Durable counters, records and append-only logs shared by every
request-handling instance. All cross-request mutations go through the
atomic primitives defined here:

- increment / increment_if_below: counters with expiry set on creation
- compare_and_set: record replacement, optionally committing a log
  append in the same atomic step (both-or-neither)
- append / trim_list: append-only logs

Backends:
- InMemoryUsageStore: single-process deployments and tests
- RedisUsageStore (data.redis): distributed deployments

Architecture:
    Manager → read_modify_write() → compare_and_set() → retry on conflict
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

from ..core.async_base import Clock, utcnow
from ..core.exceptions import StoreConflict

logger = logging.getLogger(__name__)

DEFAULT_CAS_RETRIES = 16

# (list_key, entry) committed together with a compare_and_set
Append = tuple[str, str]


@dataclass
class CounterState:
    """Snapshot of a counter after a store operation."""

    value: int
    expires_at: datetime | None = None
    applied: bool = True


class UsageStore(ABC):
    """Abstract usage store."""

    # ----------------------------------------------------------
    # Plain values
    # ----------------------------------------------------------

    @abstractmethod
    async def get(self, key: str) -> str | None:
        """Return the value at `key`, or None when missing or expired."""
        pass

    @abstractmethod
    async def set(self, key: str, value: str, ttl_seconds: int | None = None) -> None:
        """Unconditionally store `value`, replacing any previous value and expiry."""
        pass

    @abstractmethod
    async def delete(self, *keys: str) -> int:
        """Delete keys, returning how many existed."""
        pass

    # ----------------------------------------------------------
    # Counters
    # ----------------------------------------------------------

    @abstractmethod
    async def increment(
        self, key: str, amount: int = 1, ttl_seconds: int | None = None
    ) -> CounterState:
        """Increment a counter. The TTL is applied only when the counter is created."""
        pass

    @abstractmethod
    async def increment_if_below(
        self, key: str, limit: int, ttl_seconds: int, amount: int = 1
    ) -> CounterState:
        """
        Atomically increment `key` only while its value is below `limit`.

        A missing counter is created with `ttl_seconds`. When the counter
        is already at or above the limit nothing changes and the returned
        state has applied=False.
        """
        pass

    @abstractmethod
    async def get_counter(self, key: str) -> CounterState:
        """Read a counter without changing it (value 0 when missing)."""
        pass

    # ----------------------------------------------------------
    # Records
    # ----------------------------------------------------------

    @abstractmethod
    async def compare_and_set(
        self,
        key: str,
        expected: str | None,
        value: str,
        ttl_seconds: int | None = None,
        append: Append | None = None,
    ) -> bool:
        """
        Replace `key` with `value` only if it currently equals `expected`.

        `expected=None` means "key must not exist" (insert-if-absent).
        When `append` is given, the list entry is committed in the same
        atomic step: either both writes happen or neither does.
        """
        pass

    # ----------------------------------------------------------
    # Logs
    # ----------------------------------------------------------

    @abstractmethod
    async def append(self, key: str, value: str) -> int:
        """Append to a list, returning its new length."""
        pass

    @abstractmethod
    async def get_list(self, key: str) -> list[str]:
        """Return all entries of a list, oldest first."""
        pass

    @abstractmethod
    async def trim_list(self, key: str, drop: int) -> None:
        """Drop the `drop` oldest entries of a list."""
        pass

    # ----------------------------------------------------------
    # Introspection
    # ----------------------------------------------------------

    @abstractmethod
    async def scan_keys(self, prefix: str) -> list[str]:
        """Return live keys starting with `prefix`."""
        pass

    @abstractmethod
    async def ping(self) -> bool:
        pass

    async def close(self) -> None:
        """Release backend resources."""
        pass


# ============================================================
# IN-MEMORY BACKEND
# ============================================================


@dataclass
class _Entry:
    value: Any
    expires_at: datetime | None = None


class InMemoryUsageStore(UsageStore):
    """
    In-memory usage store for single-node deployments and tests.

    WARNING: Does not persist across restarts and doesn't work
    with horizontal scaling. Use Redis for production.
    """

    def __init__(self, clock: Clock = utcnow):
        self._clock = clock
        self._data: dict[str, _Entry] = {}
        self._lock = asyncio.Lock()

    def _live(self, key: str) -> _Entry | None:
        entry = self._data.get(key)
        if entry is None:
            return None
        if entry.expires_at is not None and entry.expires_at <= self._clock():
            del self._data[key]
            return None
        return entry

    def _expiry(self, ttl_seconds: int | None) -> datetime | None:
        return self._clock() + timedelta(seconds=ttl_seconds) if ttl_seconds else None

    async def get(self, key: str) -> str | None:
        async with self._lock:
            entry = self._live(key)
            if entry is None or isinstance(entry.value, list):
                return None
            return str(entry.value)

    async def set(self, key: str, value: str, ttl_seconds: int | None = None) -> None:
        async with self._lock:
            self._data[key] = _Entry(value, self._expiry(ttl_seconds))

    async def delete(self, *keys: str) -> int:
        async with self._lock:
            removed = 0
            for key in keys:
                if self._live(key) is not None:
                    del self._data[key]
                    removed += 1
            return removed

    async def increment(
        self, key: str, amount: int = 1, ttl_seconds: int | None = None
    ) -> CounterState:
        async with self._lock:
            entry = self._live(key)
            if entry is None:
                entry = _Entry(0, self._expiry(ttl_seconds))
                self._data[key] = entry
            entry.value = int(entry.value) + amount
            return CounterState(entry.value, entry.expires_at)

    async def increment_if_below(
        self, key: str, limit: int, ttl_seconds: int, amount: int = 1
    ) -> CounterState:
        async with self._lock:
            entry = self._live(key)
            current = int(entry.value) if entry else 0
            if current >= limit:
                expires_at = entry.expires_at if entry else None
                return CounterState(current, expires_at, applied=False)
            if entry is None:
                entry = _Entry(0, self._expiry(ttl_seconds))
                self._data[key] = entry
            entry.value = current + amount
            return CounterState(entry.value, entry.expires_at)

    async def get_counter(self, key: str) -> CounterState:
        async with self._lock:
            entry = self._live(key)
            if entry is None:
                return CounterState(0, None, applied=False)
            return CounterState(int(entry.value), entry.expires_at, applied=False)

    async def compare_and_set(
        self,
        key: str,
        expected: str | None,
        value: str,
        ttl_seconds: int | None = None,
        append: Append | None = None,
    ) -> bool:
        async with self._lock:
            entry = self._live(key)
            current = None if entry is None else str(entry.value)
            if current != expected:
                return False
            self._data[key] = _Entry(value, self._expiry(ttl_seconds))
            if append is not None:
                list_key, item = append
                self._list(list_key).append(item)
            return True

    def _list(self, key: str) -> list[str]:
        entry = self._live(key)
        if entry is None:
            entry = _Entry([])
            self._data[key] = entry
        return entry.value

    async def append(self, key: str, value: str) -> int:
        async with self._lock:
            items = self._list(key)
            items.append(value)
            return len(items)

    async def get_list(self, key: str) -> list[str]:
        async with self._lock:
            entry = self._live(key)
            return list(entry.value) if entry else []

    async def trim_list(self, key: str, drop: int) -> None:
        if drop <= 0:
            return
        async with self._lock:
            entry = self._live(key)
            if entry is not None:
                del entry.value[:drop]

    async def scan_keys(self, prefix: str) -> list[str]:
        async with self._lock:
            return sorted(k for k in list(self._data) if k.startswith(prefix) and self._live(k))

    async def ping(self) -> bool:
        return True

    async def flush(self) -> None:
        """Remove everything (tests and local resets)."""
        async with self._lock:
            self._data.clear()


# ============================================================
# READ-MODIFY-WRITE
# ============================================================


async def read_modify_write(
    store: UsageStore,
    key: str,
    mutate: Callable[[str | None], tuple[str, Append | None] | None],
    ttl_seconds: int | None = None,
    retries: int = DEFAULT_CAS_RETRIES,
) -> str | None:
    """
    Optimistic transactional update of a single record.

    `mutate` receives the current raw value (None when missing) and
    returns `(new_value, append)` or None to leave the record untouched.
    The write is retried from a fresh read whenever another writer got
    there first. Returns the value that was written, or None when
    `mutate` declined.

    Raises:
        StoreConflict: retries exhausted under contention
    """
    for attempt in range(retries):
        current = await store.get(key)
        outcome = mutate(current)
        if outcome is None:
            return None
        new_value, append = outcome
        if await store.compare_and_set(key, current, new_value, ttl_seconds, append):
            return new_value
        logger.debug(f"compare_and_set conflict on {key} (attempt {attempt + 1})")
        await asyncio.sleep(0)

    raise StoreConflict(
        f"Could not update {key} after {retries} attempts", operation="compare_and_set"
    )


__all__ = [
    "Append",
    "CounterState",
    "UsageStore",
    "InMemoryUsageStore",
    "read_modify_write",
    "DEFAULT_CAS_RETRIES",
]
