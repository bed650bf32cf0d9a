# Portfolio Guard - AI Access-Control & Context-Assembly Engine
# Copyright (c) 2026 George Scott Foley
# ORCID: 0009-0006-4957-0540
# Email: Georgescottfoley@proton.me
# Licensed under the MIT License - see LICENSE file for details

"""Core primitives: settings, errors, clock and token estimation."""

from .async_base import BackgroundTasks, Clock, Lifecycle, utcnow
from .exceptions import (
    AdmissionError,
    BlacklistError,
    ConfigurationError,
    ContentSourceError,
    ContextBuildFailure,
    GuardError,
    RateLimitExceeded,
    ReflinkError,
    ReflinkInvalid,
    SecurityViolation,
    StoreConflict,
    StoreUnavailable,
)
from .settings import UNLIMITED_DAILY_LIMIT, Settings, get_settings
from .tokens import estimate_tokens

__all__ = [
    "BackgroundTasks",
    "Clock",
    "Lifecycle",
    "utcnow",
    "AdmissionError",
    "BlacklistError",
    "ConfigurationError",
    "ContentSourceError",
    "ContextBuildFailure",
    "GuardError",
    "RateLimitExceeded",
    "ReflinkError",
    "ReflinkInvalid",
    "SecurityViolation",
    "StoreConflict",
    "StoreUnavailable",
    "UNLIMITED_DAILY_LIMIT",
    "Settings",
    "get_settings",
    "estimate_tokens",
]
