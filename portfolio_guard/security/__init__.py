# Portfolio Guard - AI Access-Control & Context-Assembly Engine
# Copyright (c) 2026 George Scott Foley
# ORCID: 0009-0006-4957-0540
# Email: Georgescottfoley@proton.me
# Licensed under the MIT License - see LICENSE file for details

"""Abuse detection, IP blacklist and security notifications."""

from .abuse import AbuseDetector, Classifier
from .blacklist import BlacklistAnalytics, BlacklistManager
from .models import (
    AnalysisContext,
    BlacklistEntry,
    BlacklistStatus,
    ContentAnalysis,
    ContentViolationResult,
    RequestShapeAnalysis,
    Severity,
    SuggestedAction,
    ViolationResult,
)
from .notifier import (
    CallbackNotificationHandler,
    LogNotificationHandler,
    NotificationHandler,
    NotificationType,
    SecurityNotification,
    SecurityNotifier,
    WebhookNotificationHandler,
    build_notifier,
)

__all__ = [
    "AbuseDetector",
    "Classifier",
    "BlacklistAnalytics",
    "BlacklistManager",
    "AnalysisContext",
    "BlacklistEntry",
    "BlacklistStatus",
    "ContentAnalysis",
    "ContentViolationResult",
    "RequestShapeAnalysis",
    "Severity",
    "SuggestedAction",
    "ViolationResult",
    "CallbackNotificationHandler",
    "LogNotificationHandler",
    "NotificationHandler",
    "NotificationType",
    "SecurityNotification",
    "SecurityNotifier",
    "WebhookNotificationHandler",
    "build_notifier",
]
