"""
Test Suite: IP Blacklist
========================

Escalation from watched to blacklisted, reinstatement (manual and
automatic), re-offending, and administration.
"""

import pytest

from portfolio_guard.core.exceptions import BlacklistError
from portfolio_guard.core.settings import SecuritySettings
from portfolio_guard.security.blacklist import MAX_REASONS, BlacklistManager

IP = "203.0.113.7"


@pytest.fixture
def blacklist(store, clock):
    return BlacklistManager(store, SecuritySettings(), clock=clock)


class TestEscalation:
    @pytest.mark.asyncio
    async def test_first_violation_only_watches(self, blacklist):
        result = await blacklist.record_violation(IP, "spam")
        assert result.violation_count == 1
        assert result.blacklisted is False
        assert result.entry.status == "watched"
        assert (await blacklist.is_blacklisted(IP)).blacklisted is False

    @pytest.mark.asyncio
    async def test_threshold_blacklists(self, blacklist, clock):
        await blacklist.record_violation(IP, "spam")
        result = await blacklist.record_violation(IP, "abuse")
        assert result.blacklisted is True
        assert result.entry.blocked_at == clock()
        assert result.entry.reason == "spam; abuse"

        status = await blacklist.is_blacklisted(IP)
        assert status.blacklisted is True
        assert status.reason == "spam; abuse"

    @pytest.mark.asyncio
    async def test_unknown_ip_is_clean(self, blacklist):
        status = await blacklist.is_blacklisted("198.51.100.1")
        assert status.blacklisted is False
        assert status.entry is None

    @pytest.mark.asyncio
    async def test_repeated_reason_recorded_once(self, blacklist):
        for _ in range(5):
            result = await blacklist.record_violation(IP, "spam")
        assert result.violation_count == 5
        assert result.entry.reason == "spam"

    @pytest.mark.asyncio
    async def test_reason_history_is_capped(self, blacklist):
        for i in range(MAX_REASONS + 5):
            result = await blacklist.record_violation(IP, f"offence {i}")
        reasons = result.entry.reason.split("; ")
        assert len(reasons) == MAX_REASONS
        assert reasons[0] == "offence 0"
        assert reasons[-1] == f"offence {MAX_REASONS + 4}"


class TestReinstatement:
    @pytest.mark.asyncio
    async def test_reinstate_keeps_history(self, blacklist):
        await blacklist.blacklist_ip(IP, "manual ban")
        entry = await blacklist.reinstate(IP, "admin", "appealed")
        assert entry.status == "reinstated"
        assert entry.violation_count == 2
        assert entry.reason.endswith("Reinstated: appealed")
        assert (await blacklist.is_blacklisted(IP)).blacklisted is False

    @pytest.mark.asyncio
    async def test_reinstate_errors(self, blacklist):
        with pytest.raises(BlacklistError) as exc_info:
            await blacklist.reinstate("198.51.100.1", "admin")
        assert exc_info.value.reason == "not_found"

        await blacklist.blacklist_ip(IP, "manual ban")
        await blacklist.reinstate(IP, "admin")
        with pytest.raises(BlacklistError) as exc_info:
            await blacklist.reinstate(IP, "admin")
        assert exc_info.value.reason == "already_reinstated"

    @pytest.mark.asyncio
    async def test_reoffending_after_reinstatement_rebans(self, blacklist):
        await blacklist.record_violation(IP, "spam")
        await blacklist.record_violation(IP, "spam")
        await blacklist.reinstate(IP, "admin")

        result = await blacklist.record_violation(IP, "spam again")
        assert result.violation_count == 3
        assert result.blacklisted is True
        assert result.entry.reinstated_at is None

    @pytest.mark.asyncio
    async def test_auto_reinstate_after_timeout(self, blacklist, clock):
        await blacklist.blacklist_ip(IP, "manual ban")
        clock.advance(days=29)
        assert (await blacklist.is_blacklisted(IP)).blacklisted is True

        clock.advance(days=1)
        status = await blacklist.is_blacklisted(IP)
        assert status.blacklisted is False
        assert status.entry.reinstated_by == "system"

    @pytest.mark.asyncio
    async def test_bulk_reinstate_skips_unknown(self, blacklist):
        await blacklist.blacklist_ip("10.0.0.1", "ban")
        await blacklist.blacklist_ip("10.0.0.2", "ban")
        count = await blacklist.bulk_reinstate(["10.0.0.1", "10.0.0.9", "10.0.0.2"], "admin")
        assert count == 2


class TestAdministration:
    @pytest.mark.asyncio
    async def test_list_hides_reinstated_by_default(self, blacklist):
        await blacklist.blacklist_ip("10.0.0.1", "ban")
        await blacklist.blacklist_ip("10.0.0.2", "ban")
        await blacklist.reinstate("10.0.0.2", "admin")

        entries, total = await blacklist.list_entries()
        assert total == 1
        assert entries[0].ip_address == "10.0.0.1"

        _, total = await blacklist.list_entries(include_reinstated=True)
        assert total == 2

    @pytest.mark.asyncio
    async def test_remove(self, blacklist):
        await blacklist.record_violation(IP, "spam")
        await blacklist.remove(IP)
        assert await blacklist.get_entry(IP) is None
        with pytest.raises(BlacklistError):
            await blacklist.remove(IP)

    @pytest.mark.asyncio
    async def test_analytics(self, blacklist):
        await blacklist.record_violation("10.0.0.1", "Content violation: spam")
        await blacklist.record_violation("10.0.0.1", "Content violation: spam")
        await blacklist.record_violation("10.0.0.2", "suspicious_activity: Bot user agent")

        analytics = await blacklist.get_analytics()
        assert analytics.total_blacklisted == 1
        assert analytics.recent_violations == 2
        assert analytics.violations_by_reason["Content violation: spam"] == 2
        assert analytics.top_violating_ips[0]["ip_address"] == "10.0.0.1"

    @pytest.mark.asyncio
    async def test_cleanup_drops_old_reinstated_entries(self, blacklist, clock):
        await blacklist.blacklist_ip("10.0.0.1", "ban")
        await blacklist.reinstate("10.0.0.1", "admin")
        await blacklist.blacklist_ip("10.0.0.2", "ban")

        clock.advance(days=366)
        assert await blacklist.cleanup_old_entries() == 1
        assert await blacklist.get_entry("10.0.0.1") is None
        assert await blacklist.get_entry("10.0.0.2") is not None
