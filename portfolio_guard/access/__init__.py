# Portfolio Guard - AI Access-Control & Context-Assembly Engine
# Copyright (c) 2026 George Scott Foley
# ORCID: 0009-0006-4957-0540
# Email: Georgescottfoley@proton.me
# Licensed under the MIT License - see LICENSE file for details

"""Rate limiting and reflink budget accounting."""

from .models import (
    TIER_DAILY_LIMITS,
    BudgetStatus,
    CreateReflinkParams,
    IdentifierType,
    RateLimitTier,
    Reflink,
    UpdateReflinkParams,
    UsageEvent,
    UsageType,
)
from .rate_limit import RateLimitAnalytics, RateLimiter, RateLimitStatus, resolve_identifier
from .reflinks import (
    ReflinkManager,
    ReflinkSession,
    ReflinkValidation,
    budget_status_message,
    compute_budget_status,
)

__all__ = [
    "TIER_DAILY_LIMITS",
    "BudgetStatus",
    "CreateReflinkParams",
    "IdentifierType",
    "RateLimitTier",
    "Reflink",
    "UpdateReflinkParams",
    "UsageEvent",
    "UsageType",
    "RateLimitAnalytics",
    "RateLimiter",
    "RateLimitStatus",
    "resolve_identifier",
    "ReflinkManager",
    "ReflinkSession",
    "ReflinkValidation",
    "budget_status_message",
    "compute_budget_status",
]
