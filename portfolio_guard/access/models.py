# Portfolio Guard - AI Access-Control & Context-Assembly Engine
# Copyright (c) 2026 George Scott Foley
# ORCID: 0009-0006-4957-0540
# Email: Georgescottfoley@proton.me
# Licensed under the MIT License - see LICENSE file for details

"""
Access-control records and request models.

Reflinks, usage events and rate-limit log lines are persisted as JSON
in the usage store; pydantic handles (de)serialization and validation
of admin input.
"""

import re
from dataclasses import dataclass
from datetime import UTC, datetime
from decimal import Decimal
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field, field_validator

from ..core.settings import UNLIMITED_DAILY_LIMIT

_DATE_ONLY = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_EMAIL = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")


# ============================================================
# ENUMS AND CONSTANTS
# ============================================================


class RateLimitTier(StrEnum):
    """Named bundles of default daily limits."""

    BASIC = "BASIC"
    STANDARD = "STANDARD"
    PREMIUM = "PREMIUM"
    UNLIMITED = "UNLIMITED"


class IdentifierType(StrEnum):
    """What a rate-limit identifier refers to."""

    IP = "ip"
    SESSION = "session"
    REFLINK = "reflink"


class UsageType(StrEnum):
    LLM_REQUEST = "llm_request"
    VOICE_GENERATION = "voice_generation"
    VOICE_PROCESSING = "voice_processing"


TIER_DAILY_LIMITS: dict[RateLimitTier, int] = {
    RateLimitTier.BASIC: 10,
    RateLimitTier.STANDARD: 50,
    RateLimitTier.PREMIUM: 200,
    RateLimitTier.UNLIMITED: UNLIMITED_DAILY_LIMIT,
}


def tier_daily_limit(tier: RateLimitTier) -> int:
    """Default daily limit for a tier."""
    return TIER_DAILY_LIMITS[tier]


def _as_utc(value: Any) -> Any:
    """Accept YYYY-MM-DD strings and naive datetimes, normalising to UTC."""
    if isinstance(value, str) and _DATE_ONLY.match(value):
        return f"{value}T00:00:00+00:00"
    if isinstance(value, datetime) and value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


# ============================================================
# REFLINK
# ============================================================


class Reflink(BaseModel):
    """An invitation code granting elevated, budget-capped AI access."""

    id: str
    code: str
    name: str | None = None
    description: str | None = None
    tier: RateLimitTier = RateLimitTier.STANDARD
    daily_limit: int

    # Budget
    token_limit: int | None = None
    spend_limit: Decimal | None = None
    tokens_used: int = 0
    spend_used: Decimal = Decimal("0")
    request_count: int = 0

    # Feature flags
    enable_voice_ai: bool = True
    enable_job_analysis: bool = True
    enable_advanced_navigation: bool = True

    # Personalization
    recipient_name: str | None = None
    recipient_email: str | None = None
    custom_context: str | None = None

    # Lifecycle
    expires_at: datetime | None = None
    is_active: bool = True
    created_by: str | None = None
    created_at: datetime
    updated_at: datetime
    last_used_at: datetime | None = None

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at is not None and self.expires_at < now

    def is_budget_exhausted(self) -> bool:
        if self.token_limit is not None and self.tokens_used >= self.token_limit:
            return True
        if self.spend_limit is not None and self.spend_used >= self.spend_limit:
            return True
        return False

    @property
    def capabilities(self) -> dict[str, bool]:
        return {
            "voiceAI": self.enable_voice_ai,
            "jobAnalysis": self.enable_job_analysis,
            "advancedNavigation": self.enable_advanced_navigation,
        }


class _ReflinkFields(BaseModel):
    """Validation shared by create and update payloads."""

    name: str | None = Field(default=None, min_length=1, max_length=100)
    description: str | None = Field(default=None, max_length=500)
    daily_limit: int | None = Field(default=None, ge=1, le=10_000)
    expires_at: datetime | None = None
    recipient_name: str | None = Field(default=None, min_length=1, max_length=255)
    recipient_email: str | None = None
    custom_context: str | None = Field(default=None, max_length=2000)
    token_limit: int | None = Field(default=None, ge=1)
    spend_limit: Decimal | None = Field(default=None, gt=0)

    @field_validator("expires_at", mode="before")
    @classmethod
    def normalise_expiry(cls, v):
        return _as_utc(v)

    @field_validator("recipient_email")
    @classmethod
    def validate_email(cls, v: str | None) -> str | None:
        if v is not None and not _EMAIL.match(v):
            raise ValueError("recipient_email must be a valid email address")
        return v


class CreateReflinkParams(_ReflinkFields):
    """Admin payload for creating a reflink."""

    code: str = Field(min_length=3, max_length=50, pattern=r"^[a-zA-Z0-9_-]+$")
    tier: RateLimitTier = RateLimitTier.STANDARD
    enable_voice_ai: bool = True
    enable_job_analysis: bool = True
    enable_advanced_navigation: bool = True


class UpdateReflinkParams(_ReflinkFields):
    """Admin payload for editing a reflink; unset fields are left alone."""

    tier: RateLimitTier | None = None
    is_active: bool | None = None
    enable_voice_ai: bool | None = None
    enable_job_analysis: bool | None = None
    enable_advanced_navigation: bool | None = None


# ============================================================
# USAGE EVENTS AND LOGS
# ============================================================


class UsageEvent(BaseModel):
    """Immutable record of consumed budget."""

    type: UsageType = UsageType.LLM_REQUEST
    tokens: int = Field(default=0, ge=0)
    cost: Decimal = Field(default=Decimal("0"), ge=0)
    model_used: str | None = None
    endpoint: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    reflink_id: str | None = None
    timestamp: datetime | None = None


class RateLimitLogEntry(BaseModel):
    """One admission check, allowed or denied."""

    identifier: str
    identifier_type: IdentifierType
    endpoint: str
    reflink_id: str | None = None
    tier: RateLimitTier
    ip_address: str | None = None
    user_agent: str | None = None
    was_blocked: bool
    requests_remaining: int
    timestamp: datetime


# ============================================================
# RESULTS
# ============================================================


@dataclass
class BudgetStatus:
    """Remaining budget of a reflink. None means the dimension is uncapped."""

    tokens_remaining: int | None
    spend_remaining: Decimal | None
    is_exhausted: bool
    estimated_requests_remaining: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "tokens_remaining": self.tokens_remaining,
            "spend_remaining": (
                float(self.spend_remaining) if self.spend_remaining is not None else None
            ),
            "is_exhausted": self.is_exhausted,
            "estimated_requests_remaining": self.estimated_requests_remaining,
        }


__all__ = [
    "RateLimitTier",
    "IdentifierType",
    "UsageType",
    "TIER_DAILY_LIMITS",
    "tier_daily_limit",
    "Reflink",
    "CreateReflinkParams",
    "UpdateReflinkParams",
    "UsageEvent",
    "RateLimitLogEntry",
    "BudgetStatus",
]
