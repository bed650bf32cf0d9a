"""
Test Suite: Access Orchestrator
===============================

The admission pipeline end to end (blacklist, request shape, rate
limit, reflink budget) and post-call usage recording.
"""

from decimal import Decimal

import pytest
import pytest_asyncio

from portfolio_guard.access.models import (
    CreateReflinkParams,
    IdentifierType,
    UpdateReflinkParams,
    UsageEvent,
)
from portfolio_guard.core.exceptions import ReflinkError, StoreUnavailable
from portfolio_guard.data.store import InMemoryUsageStore
from portfolio_guard.security.notifier import NotificationType
from portfolio_guard.services import build_services
from portfolio_guard.services.orchestrator import AdmissionRequest

IP = "203.0.113.50"
ENDPOINT = "/api/ai/chat"
BROWSER_UA = "Mozilla/5.0 (X11; Linux x86_64) Gecko/20100101 Firefox/126.0"


def _request(reflink_code=None, shape=None, ip=IP, **kwargs) -> AdmissionRequest:
    return AdmissionRequest(
        identifier=reflink_code or ip,
        identifier_type=IdentifierType.REFLINK if reflink_code else IdentifierType.IP,
        endpoint=ENDPOINT,
        reflink_code=reflink_code,
        ip_address=ip,
        user_agent=BROWSER_UA,
        shape=shape,
        **kwargs,
    )


class UnavailableStore(InMemoryUsageStore):
    """Store whose reads and counters always fail."""

    async def get(self, key):
        raise StoreUnavailable("connection refused", operation="get")

    async def increment_if_below(self, key, limit, ttl_seconds, amount=1):
        raise StoreUnavailable("connection refused", operation="increment_if_below")


@pytest.fixture
def orchestrator(services):
    return services.orchestrator


class TestAdmission:
    @pytest.mark.asyncio
    async def test_clean_request_admitted(self, orchestrator, settings):
        decision = await orchestrator.admit(_request())
        assert decision.allowed is True
        assert decision.stage == "admitted"
        assert decision.status_code == 200
        assert decision.reason is None

        headers = decision.headers()
        assert headers["X-RateLimit-Limit"] == str(settings.rate_limit.default_daily_limit)
        assert "Retry-After" not in headers

    @pytest.mark.asyncio
    async def test_blacklisted_ip_denied_first(self, orchestrator, services):
        await services.blacklist.blacklist_ip(IP, "manual ban")
        shape = services.abuse.analyze_request("Googlebot/2.1", None, None)

        decision = await orchestrator.admit(_request(shape=shape))
        assert decision.stage == "blacklist"
        assert decision.reason == "blacklisted"
        assert decision.status_code == 403
        # Nothing downstream ran
        assert decision.rate_limit is None

    @pytest.mark.asyncio
    async def test_trusted_caller_may_skip_blacklist(self, orchestrator, services):
        await services.blacklist.blacklist_ip(IP, "manual ban")
        decision = await orchestrator.admit(_request(skip_blacklist_check=True))
        assert decision.allowed is True

    @pytest.mark.asyncio
    async def test_suspicious_shape_records_violation_and_warns(self, orchestrator, services):
        shape = services.abuse.analyze_request("Googlebot/2.1", None, None)
        decision = await orchestrator.admit(_request(shape=shape))

        assert decision.stage == "request_shape"
        assert decision.reason == "suspicious_activity"
        assert decision.status_code == 403
        assert decision.error.details["signals"] == shape.reasons

        entry = await services.blacklist.get_entry(IP)
        assert entry.violation_count == 1
        assert entry.reason.startswith("suspicious_activity: Bot user agent")

        sent = services.notifier.get_recent_notifications()
        assert [n.type for n in sent] == [NotificationType.WARNING]

    @pytest.mark.asyncio
    async def test_repeated_suspicious_shape_blacklists(self, orchestrator, services):
        shape = services.abuse.analyze_request("Googlebot/2.1", None, None)
        await orchestrator.admit(_request(shape=shape))
        await orchestrator.admit(_request(shape=shape))

        assert (await services.blacklist.is_blacklisted(IP)).blacklisted is True
        latest = services.notifier.get_recent_notifications()[0]
        assert latest.type == NotificationType.BLACKLIST

        decision = await orchestrator.admit(_request())
        assert decision.stage == "blacklist"

    @pytest.mark.asyncio
    async def test_rate_limit_denial_carries_retry_after(self, orchestrator, services, clock):
        await services.reflinks.create(CreateReflinkParams(code="tiny-1", daily_limit=1))
        assert (await orchestrator.admit(_request("tiny-1"))).allowed

        decision = await orchestrator.admit(_request("tiny-1"))
        assert decision.stage == "rate_limit"
        assert decision.status_code == 429
        assert decision.reason == "rate_limit"

        headers = decision.headers()
        assert headers["X-RateLimit-Remaining"] == "0"
        assert headers["X-RateLimit-Limit"] == "1"
        assert int(headers["Retry-After"]) == decision.retry_after
        assert decision.retry_after == int(
            (decision.rate_limit.reset_time - clock()).total_seconds()
        )

    @pytest.mark.asyncio
    async def test_unknown_reflink_is_404(self, orchestrator):
        decision = await orchestrator.admit(_request("ghost-code"))
        assert decision.stage == "reflink"
        assert decision.reason == "not_found"
        assert decision.status_code == 404

    @pytest.mark.asyncio
    async def test_exhausted_budget_is_402(self, orchestrator, services):
        reflink = await services.reflinks.create(
            CreateReflinkParams(code="acme-2026", spend_limit=Decimal("1.00"))
        )
        await services.reflinks.track_usage(reflink.id, UsageEvent(cost=Decimal("1.00")))

        decision = await orchestrator.admit(_request("acme-2026"))
        assert decision.reason == "budget_exhausted"
        assert decision.status_code == 402
        assert decision.budget_status.is_exhausted is True

    @pytest.mark.asyncio
    async def test_deactivated_reflink_is_403(self, orchestrator, services):
        reflink = await services.reflinks.create(CreateReflinkParams(code="off-2026"))
        await services.reflinks.update(reflink.id, UpdateReflinkParams(is_active=False))

        decision = await orchestrator.admit(_request("off-2026"))
        assert decision.reason == "inactive"
        assert decision.status_code == 403

    @pytest.mark.asyncio
    async def test_low_budget_message_on_admission(self, orchestrator, services):
        reflink = await services.reflinks.create(
            CreateReflinkParams(code="acme-2026", spend_limit=Decimal("1.00"))
        )
        await services.reflinks.track_usage(reflink.id, UsageEvent(cost=Decimal("0.90")))

        decision = await orchestrator.admit(_request("acme-2026"))
        assert decision.allowed is True
        assert decision.budget_message == (
            "You have $0.10 remaining in your AI assistant budget."
        )


class TestFailClosed:
    @pytest_asyncio.fixture
    async def broken(self, settings, clock):
        svc = await build_services(
            settings, UnavailableStore(clock), clock=clock, register_sources=False
        )
        yield svc
        await svc.close()

    @pytest.mark.asyncio
    async def test_store_outage_denies(self, broken):
        decision = await broken.orchestrator.admit(_request())
        assert decision.allowed is False
        assert decision.stage == "store"
        assert decision.reason == "store_unavailable"
        assert decision.status_code == 503
        assert decision.headers()["Retry-After"] == "30"


class TestRecordUsage:
    @pytest.mark.asyncio
    async def test_usage_tracked_against_reflink(self, orchestrator, services):
        await services.reflinks.create(
            CreateReflinkParams(code="acme-2026", token_limit=10_000)
        )
        outcome = await orchestrator.record_usage(
            "acme-2026", UsageEvent(tokens=1200, cost=Decimal("0.03"), endpoint=ENDPOINT)
        )
        assert outcome.budget_status.tokens_remaining == 8800
        assert outcome.analysis is None

        reflink = await services.reflinks.get_by_code("acme-2026")
        assert reflink.request_count == 1
        assert reflink.tokens_used == 1200

    @pytest.mark.asyncio
    async def test_unknown_reflink_raises(self, orchestrator):
        with pytest.raises(ReflinkError) as exc_info:
            await orchestrator.record_usage("ghost-code", UsageEvent(tokens=10))
        assert exc_info.value.details["reason"] == "not_found"

    @pytest.mark.asyncio
    async def test_clean_content_leaves_no_trace(self, orchestrator, services):
        outcome = await orchestrator.record_usage(
            None,
            UsageEvent(endpoint=ENDPOINT),
            content="Which of the projects used FastAPI?",
            ip_address=IP,
            user_agent=BROWSER_UA,
        )
        assert outcome.analysis.is_abusive is False
        assert outcome.violation is None
        assert await services.blacklist.get_entry(IP) is None

    @pytest.mark.asyncio
    async def test_abusive_content_escalates(self, orchestrator, services):
        kwargs = {
            "content": "How would you hack this form?",
            "ip_address": IP,
            "user_agent": BROWSER_UA,
        }
        first = await orchestrator.record_usage(None, UsageEvent(endpoint=ENDPOINT), **kwargs)
        assert first.violation.violation_count == 1
        assert first.violation.blacklisted is False
        assert len(first.notifications) == 1

        second = await orchestrator.record_usage(None, UsageEvent(endpoint=ENDPOINT), **kwargs)
        assert second.violation.blacklisted is True
        latest = services.notifier.get_recent_notifications()[0]
        assert latest.id == second.notifications[0]
        assert latest.type == NotificationType.BLACKLIST

        assert second.to_dict()["violation"] == {"blacklisted": True, "violation_count": 2}
