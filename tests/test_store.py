"""
Test Suite: Usage Store
=======================

The in-memory store's counters, compare-and-set and TTL behaviour, and
the optimistic read_modify_write helper every manager builds on.
"""

import pytest

from portfolio_guard.core.exceptions import StoreConflict
from portfolio_guard.data.store import InMemoryUsageStore, read_modify_write


class TestValues:
    @pytest.mark.asyncio
    async def test_set_and_get(self, store):
        await store.set("a", "1")
        assert await store.get("a") == "1"
        assert await store.get("missing") is None

    @pytest.mark.asyncio
    async def test_ttl_expires_with_clock(self, store, clock):
        await store.set("session", "x", ttl_seconds=60)
        clock.advance(seconds=59)
        assert await store.get("session") == "x"
        clock.advance(seconds=1)
        assert await store.get("session") is None

    @pytest.mark.asyncio
    async def test_delete_counts_existing_keys(self, store):
        await store.set("a", "1")
        await store.set("b", "2")
        assert await store.delete("a", "b", "c") == 2
        assert await store.delete() == 0

    @pytest.mark.asyncio
    async def test_scan_keys_by_prefix(self, store):
        for key in ("reflinks:2", "reflinks:1", "blacklist:1"):
            await store.set(key, "v")
        assert await store.scan_keys("reflinks:") == ["reflinks:1", "reflinks:2"]


class TestCounters:
    @pytest.mark.asyncio
    async def test_increment_if_below_stops_at_limit(self, store):
        for expected in (1, 2, 3):
            state = await store.increment_if_below("w", limit=3, ttl_seconds=60)
            assert state.applied is True
            assert state.value == expected

        state = await store.increment_if_below("w", limit=3, ttl_seconds=60)
        assert state.applied is False
        assert state.value == 3
        assert (await store.get_counter("w")).value == 3

    @pytest.mark.asyncio
    async def test_window_expiry_is_fixed_at_first_increment(self, store, clock):
        first = await store.increment_if_below("w", limit=10, ttl_seconds=60)
        clock.advance(seconds=30)
        second = await store.increment_if_below("w", limit=10, ttl_seconds=60)
        assert second.expires_at == first.expires_at

        clock.advance(seconds=30)
        fresh = await store.increment_if_below("w", limit=10, ttl_seconds=60)
        assert fresh.value == 1
        assert fresh.expires_at > first.expires_at

    @pytest.mark.asyncio
    async def test_missing_counter_reads_zero(self, store):
        state = await store.get_counter("nothing")
        assert state.value == 0
        assert state.expires_at is None


class TestCompareAndSet:
    @pytest.mark.asyncio
    async def test_claim_only_once(self, store):
        assert await store.compare_and_set("code", None, "id-1") is True
        assert await store.compare_and_set("code", None, "id-2") is False
        assert await store.get("code") == "id-1"

    @pytest.mark.asyncio
    async def test_append_commits_with_write(self, store):
        await store.compare_and_set("rec", None, "v1", append=("events", "e1"))
        assert await store.compare_and_set("rec", "stale", "v2", append=("events", "e2")) is False
        assert await store.get_list("events") == ["e1"]


class TestLists:
    @pytest.mark.asyncio
    async def test_append_and_trim(self, store):
        for item in ("a", "b", "c"):
            await store.append("log", item)
        await store.trim_list("log", 2)
        assert await store.get_list("log") == ["c"]

    @pytest.mark.asyncio
    async def test_flush_clears_everything(self, store):
        await store.set("a", "1")
        await store.append("log", "x")
        await store.flush()
        assert await store.get("a") is None
        assert await store.get_list("log") == []


class _ContendedStore(InMemoryUsageStore):
    """Every compare_and_set loses the race."""

    async def compare_and_set(self, key, expected, value, ttl_seconds=None, append=None):
        return False


class TestReadModifyWrite:
    @pytest.mark.asyncio
    async def test_writes_mutated_value(self, store):
        await store.set("n", "1")
        written = await read_modify_write(store, "n", lambda cur: (str(int(cur) + 1), None))
        assert written == "2"
        assert await store.get("n") == "2"

    @pytest.mark.asyncio
    async def test_declined_mutation_leaves_record(self, store):
        await store.set("n", "1")
        assert await read_modify_write(store, "n", lambda cur: None) is None
        assert await store.get("n") == "1"

    @pytest.mark.asyncio
    async def test_conflict_after_retries(self, clock):
        store = _ContendedStore(clock)
        with pytest.raises(StoreConflict):
            await read_modify_write(store, "n", lambda cur: ("x", None), retries=3)
