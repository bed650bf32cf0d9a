# Portfolio Guard - AI Access-Control & Context-Assembly Engine
# Copyright (c) 2026 George Scott Foley
# ORCID: 0009-0006-4957-0540
# Email: Georgescottfoley@proton.me
# Licensed under the MIT License - see LICENSE file for details

"""
Security Notifier

Tells the portfolio owner about violations, bans, warnings and
reinstatements:
- High severity (blacklist) notifications go out immediately
- Everything else is batched and coalesced per (type, severity)
- A per-IP cap over a rolling hour keeps one noisy client from flooding
  the channels; it is independent of the request rate limiter
- Notifications below the configured severity threshold are dropped

Delivery goes through pluggable handlers (log, webhook, callback).

Usage:
    notifier = SecurityNotifier(settings.notifications)
    notifier.add_handler(WebhookNotificationHandler("https://..."))
    notifier.start()
    await notifier.notify_blacklist(ip, entry)
"""

import asyncio
import logging
import uuid
from abc import ABC, abstractmethod
from collections import Counter, defaultdict, deque
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import StrEnum
from typing import Any

import httpx

from ..core.async_base import Clock, utcnow
from ..core.settings import NotificationSettings
from .models import BlacklistEntry, ContentAnalysis, Severity

logger = logging.getLogger(__name__)

USER_AGENT_PREVIEW = 100
BATCH_TOP_N = 5


class NotificationType(StrEnum):
    VIOLATION = "violation"
    BLACKLIST = "blacklist"
    WARNING = "warning"
    REINSTATEMENT = "reinstatement"


_THRESHOLD_RANK = {"all": 0, "medium": 1, "high": 2}


@dataclass
class SecurityNotification:
    """A notification for the portfolio owner."""

    type: NotificationType
    severity: Severity
    title: str
    message: str
    timestamp: datetime
    ip_address: str | None = None
    endpoint: str | None = None
    user_agent: str | None = None
    violation_count: int | None = None
    metadata: dict[str, Any] = field(default_factory=dict)
    id: str = field(default_factory=lambda: f"notif_{uuid.uuid4().hex[:12]}")

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type.value,
            "severity": self.severity.value,
            "title": self.title,
            "message": self.message,
            "ip_address": self.ip_address,
            "endpoint": self.endpoint,
            "user_agent": self.user_agent,
            "violation_count": self.violation_count,
            "timestamp": self.timestamp.isoformat(),
            "metadata": self.metadata,
        }


# ============================================================
# NOTIFICATION HANDLERS
# ============================================================


class NotificationHandler(ABC):
    """Base class for notification handlers."""

    @abstractmethod
    async def send(self, notification: SecurityNotification) -> bool:
        """Deliver a notification. Returns True if successful."""
        pass


class LogNotificationHandler(NotificationHandler):
    """Log notifications (default channel)."""

    def __init__(self, log_level: int = logging.WARNING):
        self.log_level = log_level

    async def send(self, notification: SecurityNotification) -> bool:
        logger.log(
            self.log_level,
            f"[SECURITY NOTIFICATION] {notification.title}: {notification.message}",
            extra={"notification_id": notification.id, "notification_type": notification.type},
        )
        return True


class WebhookNotificationHandler(NotificationHandler):
    """POST notifications as JSON to a webhook."""

    def __init__(
        self,
        webhook_url: str,
        timeout: float = 10.0,
        headers: dict[str, str] | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.webhook_url = webhook_url
        self.timeout = timeout
        self.headers = headers or {}
        self._transport = transport

    async def send(self, notification: SecurityNotification) -> bool:
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                response = await client.post(
                    self.webhook_url,
                    json=notification.to_dict(),
                    headers={"Content-Type": "application/json", **self.headers},
                )
        except httpx.HTTPError as e:
            logger.error(f"Failed to send webhook notification: {e}")
            return False

        if response.status_code < 300:
            logger.info(
                f"Notification sent to webhook: {notification.type} {notification.severity}"
            )
            return True
        logger.warning(f"Webhook returned {response.status_code}: {response.text[:200]}")
        return False


class CallbackNotificationHandler(NotificationHandler):
    """Call a custom (sync or async) callback for each notification."""

    def __init__(self, callback: Callable[[SecurityNotification], Any]):
        self.callback = callback

    async def send(self, notification: SecurityNotification) -> bool:
        try:
            result = self.callback(notification)
            if asyncio.iscoroutine(result):
                await result
            return True
        except Exception as e:
            logger.error(f"Notification callback failed: {e}")
            return False


# ============================================================
# SECURITY NOTIFIER
# ============================================================


class SecurityNotifier:
    """Severity filtering, per-IP capping, batching and dispatch."""

    def __init__(
        self,
        settings: NotificationSettings | None = None,
        handlers: list[NotificationHandler] | None = None,
        clock: Clock = utcnow,
    ):
        self.settings = settings or NotificationSettings()
        self.handlers: list[NotificationHandler] = handlers or [LogNotificationHandler()]
        self._clock = clock
        self._pending: list[SecurityNotification] = []
        self._sent_per_ip: dict[str, deque[datetime]] = defaultdict(deque)
        self._history: deque[SecurityNotification] = deque(maxlen=self.settings.history_size)
        self._batch_task: asyncio.Task | None = None

    def add_handler(self, handler: NotificationHandler) -> None:
        self.handlers.append(handler)

    # ----------------------------------------------------------
    # Public API
    # ----------------------------------------------------------

    async def notify_violation(
        self,
        ip_address: str,
        analysis: ContentAnalysis,
        endpoint: str | None = None,
        user_agent: str | None = None,
        violation_count: int | None = None,
        content_length: int = 0,
    ) -> SecurityNotification | None:
        if not self._meets_threshold(analysis.severity):
            return None
        if not self._allow_for_ip(ip_address):
            logger.info(f"Rate limiting notifications for IP: {ip_address}")
            return None

        notification = SecurityNotification(
            type=NotificationType.VIOLATION,
            severity=analysis.severity,
            title="Security Violation Detected",
            message=self._format_violation(
                ip_address, analysis, endpoint, user_agent, violation_count
            ),
            timestamp=self._clock(),
            ip_address=ip_address,
            endpoint=endpoint,
            user_agent=user_agent,
            violation_count=violation_count,
            metadata={
                "confidence": analysis.confidence,
                "reasons": analysis.reasons,
                "suggested_action": str(analysis.suggested_action),
                "content_length": content_length,
            },
        )
        await self._submit(notification)
        return notification

    async def notify_blacklist(
        self,
        ip_address: str,
        entry: BlacklistEntry,
        endpoint: str | None = None,
        user_agent: str | None = None,
    ) -> SecurityNotification:
        """Bans always notify immediately, bypassing threshold and per-IP cap."""
        notification = SecurityNotification(
            type=NotificationType.BLACKLIST,
            severity=Severity.HIGH,
            title="IP Address Blacklisted",
            message=self._format_blacklist(ip_address, entry),
            timestamp=self._clock(),
            ip_address=ip_address,
            endpoint=endpoint,
            user_agent=user_agent,
            violation_count=entry.violation_count,
            metadata={
                "reason": entry.reason,
                "first_violation_at": entry.first_violation_at.isoformat(),
                "last_violation_at": entry.last_violation_at.isoformat(),
            },
        )
        self._history.append(notification)
        await self._dispatch(notification)
        return notification

    async def notify_warning(
        self,
        ip_address: str,
        reason: str,
        endpoint: str | None = None,
        user_agent: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> SecurityNotification | None:
        if not self._meets_threshold(Severity.MEDIUM):
            return None
        if not self._allow_for_ip(ip_address):
            logger.info(f"Rate limiting notifications for IP: {ip_address}")
            return None

        notification = SecurityNotification(
            type=NotificationType.WARNING,
            severity=Severity.MEDIUM,
            title="Security Warning",
            message=f"Suspicious activity detected from IP {ip_address}: {reason}",
            timestamp=self._clock(),
            ip_address=ip_address,
            endpoint=endpoint,
            user_agent=user_agent,
            metadata=metadata or {},
        )
        await self._submit(notification)
        return notification

    async def notify_reinstatement(
        self,
        ip_address: str,
        entry: BlacklistEntry,
        reinstated_by: str,
        reason: str | None = None,
    ) -> SecurityNotification:
        message = f"IP address {ip_address} has been reinstated by {reinstated_by}."
        if reason:
            message += f" Reason: {reason}"
        notification = SecurityNotification(
            type=NotificationType.REINSTATEMENT,
            severity=Severity.LOW,
            title="IP Address Reinstated",
            message=message,
            timestamp=self._clock(),
            ip_address=ip_address,
            metadata={
                "reinstated_by": reinstated_by,
                "reason": reason,
                "original_reason": entry.reason,
                "violation_count": entry.violation_count,
            },
        )
        await self._submit(notification)
        return notification

    def get_recent_notifications(self, limit: int = 50) -> list[SecurityNotification]:
        """Most recent notifications first."""
        return list(reversed(self._history))[:limit]

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    # ----------------------------------------------------------
    # Batching
    # ----------------------------------------------------------

    async def flush(self) -> int:
        """Send queued notifications as one summary per (type, severity). Returns groups sent."""
        if not self._pending:
            return 0

        pending, self._pending = self._pending, []
        groups: dict[tuple[NotificationType, Severity], list[SecurityNotification]] = {}
        for notification in pending:
            groups.setdefault((notification.type, notification.severity), []).append(notification)

        for group in groups.values():
            await self._dispatch(self._summarize(group))
        return len(groups)

    def start(self) -> None:
        """Start the background batch loop (no-op when batching is off)."""
        if not self.settings.batch_notifications or self._batch_task is not None:
            return
        self._batch_task = asyncio.create_task(self._batch_loop(), name="security-notifier-batch")
        logger.info(
            f"Security notifier batching every {self.settings.batch_interval_minutes} minutes"
        )

    async def stop(self) -> None:
        """Stop the batch loop and send whatever is still queued."""
        if self._batch_task is not None:
            self._batch_task.cancel()
            try:
                await self._batch_task
            except asyncio.CancelledError:
                pass
            self._batch_task = None
        await self.flush()

    async def _batch_loop(self) -> None:
        interval = self.settings.batch_interval_minutes * 60
        while True:
            await asyncio.sleep(interval)
            try:
                await self.flush()
            except Exception:
                logger.exception("Failed to process batch notifications")

    # ----------------------------------------------------------
    # Internals
    # ----------------------------------------------------------

    def _meets_threshold(self, severity: Severity) -> bool:
        return severity.rank >= _THRESHOLD_RANK[self.settings.threshold]

    def _allow_for_ip(self, ip_address: str) -> bool:
        """Rolling-hour cap on notifications per IP."""
        now = self._clock()
        sent = self._sent_per_ip[ip_address]
        while sent and now - sent[0] >= timedelta(hours=1):
            sent.popleft()
        if len(sent) >= self.settings.max_notifications_per_hour:
            return False
        sent.append(now)

        # Forget IPs with nothing in the window
        for ip in [ip for ip, times in self._sent_per_ip.items() if not times]:
            del self._sent_per_ip[ip]
        return True

    async def _submit(self, notification: SecurityNotification) -> None:
        self._history.append(notification)
        if self.settings.batch_notifications and notification.severity != Severity.HIGH:
            self._pending.append(notification)
        else:
            await self._dispatch(notification)

    async def _dispatch(self, notification: SecurityNotification) -> bool:
        """Send through all handlers. True when at least one succeeded."""
        delivered = False
        for handler in self.handlers:
            try:
                if await handler.send(notification):
                    delivered = True
            except Exception as e:
                logger.error(f"Handler {handler.__class__.__name__} failed: {e}")
        return delivered

    def _summarize(self, group: list[SecurityNotification]) -> SecurityNotification:
        first = group[0]
        count = len(group)
        noun = "Violations" if first.type == NotificationType.VIOLATION else "Events"
        return SecurityNotification(
            type=first.type,
            severity=first.severity,
            title=f"{count} Security {noun} Detected",
            message=self._format_batch(group),
            timestamp=self._clock(),
            metadata={
                "batch_count": count,
                "time_range": {
                    "start": min(n.timestamp for n in group).isoformat(),
                    "end": max(n.timestamp for n in group).isoformat(),
                },
                "notifications": [
                    {
                        "id": n.id,
                        "ip_address": n.ip_address,
                        "endpoint": n.endpoint,
                        "timestamp": n.timestamp.isoformat(),
                    }
                    for n in group
                ],
            },
        )

    # ----------------------------------------------------------
    # Message formatting
    # ----------------------------------------------------------

    @staticmethod
    def _format_violation(
        ip_address: str,
        analysis: ContentAnalysis,
        endpoint: str | None,
        user_agent: str | None,
        violation_count: int | None,
    ) -> str:
        parts = [
            f"IP Address: {ip_address}",
            f"Severity: {analysis.severity.value.upper()}",
            f"Confidence: {round(analysis.confidence * 100)}%",
        ]
        if endpoint:
            parts.append(f"Endpoint: {endpoint}")
        if violation_count:
            parts.append(f"Total Violations: {violation_count}")
        if analysis.reasons:
            parts.append(f"Reasons: {', '.join(analysis.reasons)}")
        if user_agent:
            suffix = "..." if len(user_agent) > USER_AGENT_PREVIEW else ""
            parts.append(f"User Agent: {user_agent[:USER_AGENT_PREVIEW]}{suffix}")
        return "\n".join(parts)

    @staticmethod
    def _format_blacklist(ip_address: str, entry: BlacklistEntry) -> str:
        return "\n".join(
            [
                f"IP Address {ip_address} has been automatically blacklisted due to repeated violations.",
                "",
                f"Violation Count: {entry.violation_count}",
                f"Reason: {entry.reason}",
                f"First Violation: {entry.first_violation_at.isoformat()}",
                f"Last Violation: {entry.last_violation_at.isoformat()}",
                "",
                "The IP address is now blocked from accessing AI features.",
                "You can review and manage blacklisted IPs in the admin security dashboard.",
            ]
        )

    def _format_batch(self, group: list[SecurityNotification]) -> str:
        parts = [
            f"{len(group)} security events detected in the last "
            f"{self.settings.batch_interval_minutes} minutes.",
            "",
        ]

        ips = Counter(n.ip_address for n in group if n.ip_address)
        if ips:
            parts.append("Top IP Addresses:")
            parts.extend(f"  {ip}: {count} events" for ip, count in ips.most_common(BATCH_TOP_N))
            parts.append("")

        endpoints = Counter(n.endpoint for n in group if n.endpoint)
        if endpoints:
            parts.append("Top Endpoints:")
            parts.extend(
                f"  {endpoint}: {count} events"
                for endpoint, count in endpoints.most_common(BATCH_TOP_N)
            )

        return "\n".join(parts)


def build_notifier(settings: NotificationSettings, clock: Clock = utcnow) -> SecurityNotifier:
    """Notifier with the log handler plus a webhook when NOTIFY_WEBHOOK_URL is set."""
    handlers: list[NotificationHandler] = [LogNotificationHandler()]
    if settings.webhook_url:
        handlers.append(
            WebhookNotificationHandler(
                settings.webhook_url,
                timeout=settings.webhook_timeout,
                headers=settings.webhook_headers,
            )
        )
    logger.info(
        f"Security notifier initialized with {len(handlers)} handlers, "
        f"threshold={settings.threshold}"
    )
    return SecurityNotifier(settings, handlers=handlers, clock=clock)


__all__ = [
    "NotificationType",
    "SecurityNotification",
    "NotificationHandler",
    "LogNotificationHandler",
    "WebhookNotificationHandler",
    "CallbackNotificationHandler",
    "SecurityNotifier",
    "build_notifier",
]
