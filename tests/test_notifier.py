"""
Test Suite: Security Notifier
=============================

Severity threshold, per-IP cap, batching and delivery handlers.
"""

import json

import httpx
import pytest

from portfolio_guard.core.settings import NotificationSettings
from portfolio_guard.security.models import (
    BlacklistEntry,
    ContentAnalysis,
    Severity,
    SuggestedAction,
)
from portfolio_guard.security.notifier import (
    CallbackNotificationHandler,
    LogNotificationHandler,
    NotificationHandler,
    NotificationType,
    SecurityNotifier,
    WebhookNotificationHandler,
    build_notifier,
)

IP = "203.0.113.9"


def _analysis(severity: Severity = Severity.MEDIUM) -> ContentAnalysis:
    return ContentAnalysis(
        is_abusive=True,
        severity=severity,
        confidence=0.42,
        reasons=["Inappropriate content: hack"],
        suggested_action=SuggestedAction.WARN,
    )


def _entry(clock) -> BlacklistEntry:
    now = clock()
    return BlacklistEntry(
        ip_address=IP,
        reason="spam; spam",
        violation_count=2,
        first_violation_at=now,
        last_violation_at=now,
        blocked_at=now,
        created_at=now,
        updated_at=now,
    )


@pytest.fixture
def sent():
    return []


def _notifier(clock, sent, **overrides) -> SecurityNotifier:
    settings = NotificationSettings(**{"batch_notifications": False, **overrides})
    return SecurityNotifier(settings, handlers=[CallbackNotificationHandler(sent.append)], clock=clock)


class TestFiltering:
    @pytest.mark.asyncio
    async def test_below_threshold_dropped(self, clock, sent):
        notifier = _notifier(clock, sent, threshold="medium")
        assert await notifier.notify_violation(IP, _analysis(Severity.LOW)) is None
        assert sent == []

    @pytest.mark.asyncio
    async def test_all_threshold_accepts_low(self, clock, sent):
        notifier = _notifier(clock, sent, threshold="all")
        notification = await notifier.notify_violation(IP, _analysis(Severity.LOW))
        assert notification is not None
        assert notification.id.startswith("notif_")
        assert sent == [notification]

    @pytest.mark.asyncio
    async def test_per_ip_cap_rolls_over_after_an_hour(self, clock, sent):
        notifier = _notifier(clock, sent, max_notifications_per_hour=2)
        assert await notifier.notify_violation(IP, _analysis())
        assert await notifier.notify_warning(IP, "odd requests")
        assert await notifier.notify_violation(IP, _analysis()) is None
        assert await notifier.notify_violation("198.51.100.2", _analysis()) is not None

        clock.advance(hours=1)
        assert await notifier.notify_violation(IP, _analysis()) is not None

    @pytest.mark.asyncio
    async def test_blacklist_bypasses_cap_and_threshold(self, clock, sent):
        notifier = _notifier(clock, sent, threshold="high", max_notifications_per_hour=1)
        await notifier.notify_violation(IP, _analysis(Severity.HIGH))
        notification = await notifier.notify_blacklist(IP, _entry(clock))
        assert notification.type == NotificationType.BLACKLIST
        assert notification.severity == Severity.HIGH
        assert "Violation Count: 2" in notification.message
        assert len(sent) == 2


class TestBatching:
    @pytest.mark.asyncio
    async def test_medium_notifications_are_queued_and_coalesced(self, clock, sent):
        notifier = _notifier(clock, sent, batch_notifications=True)
        await notifier.notify_violation(IP, _analysis(), endpoint="/api/ai/chat")
        await notifier.notify_violation("198.51.100.2", _analysis(), endpoint="/api/ai/chat")
        await notifier.notify_warning(IP, "odd requests")
        assert sent == []
        assert notifier.pending_count == 3

        assert await notifier.flush() == 2
        assert notifier.pending_count == 0
        titles = sorted(n.title for n in sent)
        assert titles == ["1 Security Events Detected", "2 Security Violations Detected"]

        violations = next(n for n in sent if n.type == NotificationType.VIOLATION)
        assert violations.metadata["batch_count"] == 2
        assert "/api/ai/chat: 2 events" in violations.message

    @pytest.mark.asyncio
    async def test_high_severity_skips_the_queue(self, clock, sent):
        notifier = _notifier(clock, sent, batch_notifications=True)
        await notifier.notify_violation(IP, _analysis(Severity.HIGH))
        assert notifier.pending_count == 0
        assert len(sent) == 1

    @pytest.mark.asyncio
    async def test_stop_flushes_pending(self, clock, sent):
        notifier = _notifier(clock, sent, batch_notifications=True)
        notifier.start()
        await notifier.notify_warning(IP, "odd requests")
        await notifier.stop()
        assert len(sent) == 1
        assert notifier.pending_count == 0

    @pytest.mark.asyncio
    async def test_recent_notifications_newest_first(self, clock, sent):
        notifier = _notifier(clock, sent)
        first = await notifier.notify_warning(IP, "one")
        second = await notifier.notify_warning("198.51.100.2", "two")
        assert notifier.get_recent_notifications() == [second, first]


class TestHandlers:
    @pytest.mark.asyncio
    async def test_webhook_posts_json(self, clock):
        received = []

        def handle(request: httpx.Request) -> httpx.Response:
            received.append((request.headers, json.loads(request.content)))
            return httpx.Response(204)

        handler = WebhookNotificationHandler(
            "https://hooks.example.com/security",
            headers={"X-Hook-Secret": "s3cret"},
            transport=httpx.MockTransport(handle),
        )
        notifier = SecurityNotifier(
            NotificationSettings(batch_notifications=False), handlers=[handler], clock=clock
        )
        notification = await notifier.notify_blacklist(IP, _entry(clock))

        headers, body = received[0]
        assert headers["X-Hook-Secret"] == "s3cret"
        assert body["id"] == notification.id
        assert body["type"] == "blacklist"
        assert body["ip_address"] == IP

    @pytest.mark.asyncio
    async def test_webhook_failure_reported(self, clock):
        handler = WebhookNotificationHandler(
            "https://hooks.example.com/security",
            transport=httpx.MockTransport(lambda request: httpx.Response(500, text="boom")),
        )
        notification = await SecurityNotifier(
            NotificationSettings(batch_notifications=False), handlers=[], clock=clock
        ).notify_blacklist(IP, _entry(clock))
        assert await handler.send(notification) is False

    @pytest.mark.asyncio
    async def test_failing_handler_does_not_block_others(self, clock, sent):
        def explode(notification):
            raise RuntimeError("down")

        notifier = SecurityNotifier(
            NotificationSettings(batch_notifications=False),
            handlers=[CallbackNotificationHandler(explode), CallbackNotificationHandler(sent.append)],
            clock=clock,
        )
        await notifier.notify_warning(IP, "odd requests")
        assert len(sent) == 1

    def test_build_notifier_adds_webhook(self):
        notifier = build_notifier(
            NotificationSettings(webhook_url="https://hooks.example.com/security")
        )
        assert [type(h) for h in notifier.handlers] == [
            LogNotificationHandler,
            WebhookNotificationHandler,
        ]

    def test_handler_base_requires_send(self):
        with pytest.raises(TypeError):
            NotificationHandler()

        class Incomplete(NotificationHandler):
            pass

        with pytest.raises(TypeError):
            Incomplete()
