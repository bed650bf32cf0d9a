"""
Test Suite: Fixed-Window Rate Limiting
======================================

Window consumption, reflink overrides, identifier fallbacks and the
admission log analytics.
"""

import asyncio

import pytest

from portfolio_guard.access.keys import window_key
from portfolio_guard.access.models import CreateReflinkParams, IdentifierType, RateLimitTier
from portfolio_guard.access.rate_limit import resolve_identifier

ENDPOINT = "/api/ai/chat"


class TestCheckAndConsume:
    @pytest.mark.asyncio
    async def test_reflink_daily_limit_of_five(self, services, store):
        reflink = await services.reflinks.create(
            CreateReflinkParams(code="acme-2026", tier=RateLimitTier.BASIC, daily_limit=5)
        )
        limiter = services.rate_limiter

        remaining = []
        for _ in range(5):
            status = await limiter.check_and_consume(
                "acme-2026", IdentifierType.REFLINK, ENDPOINT, reflink_code="acme-2026"
            )
            assert status.allowed is True
            assert status.limit == 5
            remaining.append(status.remaining)
        assert remaining == [4, 3, 2, 1, 0]

        denied = await limiter.check_and_consume(
            "acme-2026", IdentifierType.REFLINK, ENDPOINT, reflink_code="acme-2026"
        )
        assert denied.allowed is False
        assert denied.remaining == 0
        assert denied.tier == RateLimitTier.BASIC

        # A denied check does not consume
        counter = await store.get_counter(
            window_key(IdentifierType.REFLINK, "acme-2026", reflink.id)
        )
        assert counter.value == 5

    @pytest.mark.asyncio
    async def test_default_limit_without_reflink(self, services, settings):
        status = await services.rate_limiter.check_and_consume(
            "1.2.3.4", IdentifierType.IP, ENDPOINT
        )
        assert status.allowed is True
        assert status.limit == settings.rate_limit.default_daily_limit
        assert status.tier == RateLimitTier.STANDARD
        assert status.remaining == settings.rate_limit.default_daily_limit - 1

    @pytest.mark.asyncio
    async def test_window_resets_after_expiry(self, services, clock):
        await services.reflinks.create(CreateReflinkParams(code="tiny-1", daily_limit=1))
        limiter = services.rate_limiter

        first = await limiter.check_and_consume(
            "tiny-1", IdentifierType.REFLINK, ENDPOINT, reflink_code="tiny-1"
        )
        assert first.allowed
        assert not (
            await limiter.check_and_consume(
                "tiny-1", IdentifierType.REFLINK, ENDPOINT, reflink_code="tiny-1"
            )
        ).allowed

        clock.now = first.reset_time
        again = await limiter.check_and_consume(
            "tiny-1", IdentifierType.REFLINK, ENDPOINT, reflink_code="tiny-1"
        )
        assert again.allowed is True

    @pytest.mark.asyncio
    async def test_reset_time_is_window_end(self, services, clock, settings):
        status = await services.rate_limiter.check_and_consume(
            "5.6.7.8", IdentifierType.IP, ENDPOINT
        )
        assert (status.reset_time - clock()).total_seconds() == settings.rate_limit.window_seconds
        assert status.retry_after_seconds(clock()) == settings.rate_limit.window_seconds

    @pytest.mark.asyncio
    async def test_inactive_reflink_falls_back_to_default(self, services, settings):
        await services.reflinks.create(
            CreateReflinkParams(code="old-link", tier=RateLimitTier.PREMIUM)
        )
        reflink = await services.reflinks.get_by_code("old-link")
        await services.reflinks.bulk_update([reflink.id], is_active=False)

        status = await services.rate_limiter.check_and_consume(
            "old-link", IdentifierType.REFLINK, ENDPOINT, reflink_code="old-link"
        )
        assert status.limit == settings.rate_limit.default_daily_limit
        assert status.reflink_id is None


class TestConcurrency:
    @pytest.mark.asyncio
    async def test_concurrent_checks_never_overrun_window(self, services, store, settings):
        limit = settings.rate_limit.default_daily_limit
        statuses = await asyncio.gather(
            *(
                services.rate_limiter.check_and_consume("5.5.5.5", IdentifierType.IP, ENDPOINT)
                for _ in range(limit + 70)
            )
        )
        assert sum(s.allowed for s in statuses) == limit
        assert all(s.remaining == 0 for s in statuses if not s.allowed)

        counter = await store.get_counter(window_key(IdentifierType.IP, "5.5.5.5", None))
        assert counter.value == limit


class TestStatusAndReset:
    @pytest.mark.asyncio
    async def test_get_status_does_not_consume(self, services):
        limiter = services.rate_limiter
        await limiter.check_and_consume("9.9.9.9", IdentifierType.IP, ENDPOINT)
        first = await limiter.get_status("9.9.9.9", IdentifierType.IP)
        second = await limiter.get_status("9.9.9.9", IdentifierType.IP)
        assert first.remaining == second.remaining == first.limit - 1

    @pytest.mark.asyncio
    async def test_reset_drops_all_windows(self, services):
        limiter = services.rate_limiter
        await limiter.check_and_consume("9.9.9.9", IdentifierType.IP, ENDPOINT)
        assert await limiter.reset("9.9.9.9", IdentifierType.IP) == 1
        status = await limiter.get_status("9.9.9.9", IdentifierType.IP)
        assert status.remaining == status.limit


class TestIdentifiers:
    def test_explicit_identifier_wins(self):
        assert resolve_identifier("abc", IdentifierType.SESSION) == "abc"

    def test_fallbacks(self):
        assert resolve_identifier(None, IdentifierType.IP) == "unknown-ip"
        assert resolve_identifier(None, IdentifierType.SESSION, "1.2.3.4") == "ip-1.2.3.4"
        assert resolve_identifier("", IdentifierType.REFLINK) == "no-reflink"


class TestAnalytics:
    @pytest.mark.asyncio
    async def test_counts_allowed_and_blocked(self, services):
        await services.reflinks.create(CreateReflinkParams(code="two-max", daily_limit=2))
        limiter = services.rate_limiter
        for _ in range(3):
            await limiter.check_and_consume(
                "two-max", IdentifierType.REFLINK, ENDPOINT, reflink_code="two-max"
            )
        await limiter.check_and_consume("1.1.1.1", IdentifierType.IP, "/api/other")

        analytics = await limiter.get_analytics()
        assert analytics.total_requests == 4
        assert analytics.blocked_requests == 1
        assert analytics.unique_users == 2
        assert analytics.top_endpoints[0] == {"endpoint": ENDPOINT, "requests": 3}
        assert analytics.requests_by_tier["STANDARD"] == 4

    @pytest.mark.asyncio
    async def test_cleanup_trims_old_log_entries(self, services, clock, settings):
        limiter = services.rate_limiter
        await limiter.check_and_consume("1.1.1.1", IdentifierType.IP, ENDPOINT)
        clock.advance(days=settings.rate_limit.log_retention_days + 1)
        await limiter.check_and_consume("1.1.1.1", IdentifierType.IP, ENDPOINT)

        assert await limiter.cleanup_expired_records() == 1
        assert (await limiter.get_analytics()).total_requests == 1
