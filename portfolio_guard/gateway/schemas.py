# Portfolio Guard - AI Access-Control & Context-Assembly Engine
# Copyright (c) 2026 George Scott Foley
# ORCID: 0009-0006-4957-0540
# Email: Georgescottfoley@proton.me
# Licensed under the MIT License - see LICENSE file for details

"""Request bodies for the public and admin APIs."""

from decimal import Decimal
from typing import Any

from pydantic import BaseModel, Field

from ..access.models import IdentifierType, RateLimitTier, UsageType
from ..context.provider import AccessLevel

# ============================================================
# PUBLIC API
# ============================================================


class AccessCheckRequest(BaseModel):
    """
    Admission check.

    For identifier_type "ip" the identifier is always the resolved
    client address; a client cannot choose it.
    """

    identifier_type: IdentifierType = IdentifierType.IP
    identifier: str | None = Field(default=None, max_length=255)
    endpoint: str = Field(default="/api/ai/chat", max_length=255)
    reflink_code: str | None = Field(default=None, max_length=50)


class ContextRequest(BaseModel):
    session_id: str = Field(min_length=1, max_length=128)
    query: str | None = Field(default=None, max_length=10_000)
    reflink_code: str | None = Field(default=None, max_length=50)
    # May only lower the level the server grants
    access_level: AccessLevel | None = None
    max_tokens: int | None = Field(default=None, ge=0, le=100_000)


class UsageRequest(BaseModel):
    reflink_code: str | None = Field(default=None, max_length=50)
    type: UsageType = UsageType.LLM_REQUEST
    tokens: int = Field(default=0, ge=0)
    cost: Decimal = Field(default=Decimal("0"), ge=0)
    model_used: str | None = None
    endpoint: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    content: str | None = Field(default=None, description="Visitor message to inspect")
    session_id: str | None = None


# ============================================================
# ADMIN API
# ============================================================


class BulkReflinkUpdate(BaseModel):
    reflink_ids: list[str] = Field(min_length=1)
    is_active: bool | None = None
    tier: RateLimitTier | None = None


class BlacklistRequest(BaseModel):
    ip_address: str = Field(min_length=1, max_length=64)
    reason: str = Field(min_length=1, max_length=500)


class ReinstateRequest(BaseModel):
    reason: str | None = Field(default=None, max_length=500)


class BulkReinstateRequest(BaseModel):
    ip_addresses: list[str] = Field(min_length=1)
    reason: str | None = Field(default=None, max_length=500)


class SourceUpdate(BaseModel):
    enabled: bool | None = None
    priority: int | None = None
    config: dict[str, Any] | None = None


class RateLimitResetRequest(BaseModel):
    identifier: str = Field(min_length=1)
    identifier_type: IdentifierType
    reflink_id: str | None = None


__all__ = [
    "AccessCheckRequest",
    "ContextRequest",
    "UsageRequest",
    "BulkReflinkUpdate",
    "BlacklistRequest",
    "ReinstateRequest",
    "BulkReinstateRequest",
    "SourceUpdate",
    "RateLimitResetRequest",
]
