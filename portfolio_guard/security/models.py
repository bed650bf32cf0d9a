# Portfolio Guard - AI Access-Control & Context-Assembly Engine
# Copyright (c) 2026 George Scott Foley
# ORCID: 0009-0006-4957-0540
# Email: Georgescottfoley@proton.me
# Licensed under the MIT License - see LICENSE file for details

"""Security records and analysis results."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel


class Severity(StrEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]


class SuggestedAction(StrEnum):
    ALLOW = "allow"
    WARN = "warn"
    BLOCK = "block"

    @property
    def rank(self) -> int:
        return _ACTION_RANK[self]


_SEVERITY_RANK = {Severity.LOW: 0, Severity.MEDIUM: 1, Severity.HIGH: 2}
_ACTION_RANK = {SuggestedAction.ALLOW: 0, SuggestedAction.WARN: 1, SuggestedAction.BLOCK: 2}


# ============================================================
# BLACKLIST
# ============================================================


class BlacklistEntry(BaseModel):
    """
    Violation history of one IP address.

    blocked_at is None while the IP is only watched. An entry with
    reinstated_at set is not enforced; its violation history is kept.
    """

    ip_address: str
    reason: str
    violation_count: int = 0
    first_violation_at: datetime
    last_violation_at: datetime
    blocked_at: datetime | None = None
    can_reinstate: bool = True
    reinstated_at: datetime | None = None
    reinstated_by: str | None = None
    created_at: datetime
    updated_at: datetime

    @property
    def is_enforced(self) -> bool:
        return self.blocked_at is not None and self.reinstated_at is None

    @property
    def status(self) -> str:
        if self.reinstated_at is not None:
            return "reinstated"
        if self.blocked_at is not None:
            return "blacklisted"
        return "watched"


@dataclass
class BlacklistStatus:
    blacklisted: bool
    reason: str | None = None
    entry: BlacklistEntry | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "blacklisted": self.blacklisted,
            "reason": self.reason,
            "entry": self.entry.model_dump(mode="json") if self.entry else None,
        }


@dataclass
class ViolationResult:
    violation_count: int
    blacklisted: bool
    entry: BlacklistEntry

    def to_dict(self) -> dict[str, Any]:
        return {
            "violation_count": self.violation_count,
            "blacklisted": self.blacklisted,
            "entry": self.entry.model_dump(mode="json"),
        }


# ============================================================
# CONTENT ANALYSIS
# ============================================================


@dataclass
class AnalysisContext:
    """Where a piece of content came from."""

    ip_address: str | None = None
    user_agent: str | None = None
    endpoint: str | None = None
    session_id: str | None = None


@dataclass
class ContentAnalysis:
    is_abusive: bool
    severity: Severity = Severity.LOW
    confidence: float = 0.0
    reasons: list[str] = field(default_factory=list)
    suggested_action: SuggestedAction = SuggestedAction.ALLOW

    def __post_init__(self):
        self.confidence = max(0.0, min(1.0, self.confidence))

    def to_dict(self) -> dict[str, Any]:
        return {
            "is_abusive": self.is_abusive,
            "severity": str(self.severity),
            "confidence": self.confidence,
            "reasons": self.reasons,
            "suggested_action": str(self.suggested_action),
        }


@dataclass
class ContentViolationResult:
    blacklisted: bool
    violation_count: int
    should_notify: bool
    entry: BlacklistEntry | None = None


@dataclass
class RequestShapeAnalysis:
    """Weighted count of suspicious request signals."""

    score: int
    threshold: int
    reasons: list[str] = field(default_factory=list)

    @property
    def blocked(self) -> bool:
        return self.score >= self.threshold

    def to_dict(self) -> dict[str, Any]:
        return {
            "score": self.score,
            "threshold": self.threshold,
            "blocked": self.blocked,
            "reasons": self.reasons,
        }


__all__ = [
    "Severity",
    "SuggestedAction",
    "BlacklistEntry",
    "BlacklistStatus",
    "ViolationResult",
    "AnalysisContext",
    "ContentAnalysis",
    "ContentViolationResult",
    "RequestShapeAnalysis",
]
