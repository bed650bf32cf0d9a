# Portfolio Guard - AI Access-Control & Context-Assembly Engine
# Copyright (c) 2026 George Scott Foley
# ORCID: 0009-0006-4957-0540
# Email: Georgescottfoley@proton.me
# Licensed under the MIT License - see LICENSE file for details

"""
Exception Hierarchy

Structured exceptions for the access-control engine.
All exceptions include context via `details` dict so that a deny
response can explain itself without the client guessing.
"""

from datetime import datetime
from typing import Any


class GuardError(Exception):
    """
    Base exception for all Portfolio Guard errors.

    Attributes:
        message: Human-readable error message
        details: Additional context as key-value pairs
    """

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "error": self.__class__.__name__,
            "message": self.message,
            "details": self.details,
        }


# ============================================================
# ADMISSION ERRORS
# ============================================================


class AdmissionError(GuardError):
    """Base class for errors that terminate a request at admission."""

    pass


class RateLimitExceeded(AdmissionError):
    """Fixed-window request limit reached for an identifier."""

    def __init__(
        self,
        message: str,
        limit: int,
        reset_time: datetime,
        tier: str,
        retry_after: int | None = None,
        **kwargs,
    ):
        details = kwargs.get("details", {})
        details.update(
            {
                "remaining": 0,
                "limit": limit,
                "reset_time": reset_time.isoformat(),
                "tier": tier,
            }
        )
        if retry_after is not None:
            details["retry_after_seconds"] = retry_after
        self.limit = limit
        self.reset_time = reset_time
        self.tier = tier
        self.retry_after = retry_after
        super().__init__(message, details)


class SecurityViolation(AdmissionError):
    """Request refused for security reasons (blacklisted IP or blocked content)."""

    def __init__(
        self,
        message: str,
        reason: str,
        ip_address: str | None = None,
        violation_count: int | None = None,
        **kwargs,
    ):
        details = kwargs.get("details", {})
        details["reason"] = reason
        if ip_address:
            details["ip_address"] = ip_address
        if violation_count is not None:
            details["violation_count"] = violation_count
        self.reason = reason
        super().__init__(message, details)


class ReflinkInvalid(AdmissionError):
    """Reflink failed validation."""

    REASONS = ("not_found", "inactive", "expired", "budget_exhausted")

    def __init__(self, message: str, reason: str, code: str | None = None, **kwargs):
        details = kwargs.get("details", {})
        details["reason"] = reason
        if code:
            details["code"] = code
        self.reason = reason
        super().__init__(message, details)


# ============================================================
# MANAGEMENT ERRORS
# ============================================================


class ReflinkError(GuardError):
    """Reflink lifecycle failure (duplicate code, missing record, code generation)."""

    def __init__(self, message: str, code: str | None = None, reason: str | None = None, **kwargs):
        details = kwargs.get("details", {})
        if code:
            details["code"] = code
        if reason:
            details["reason"] = reason
        self.reason = reason
        super().__init__(message, details)


class BlacklistError(GuardError):
    """Blacklist administration failure."""

    def __init__(self, message: str, reason: str, ip_address: str | None = None, **kwargs):
        details = kwargs.get("details", {})
        details["reason"] = reason
        if ip_address:
            details["ip_address"] = ip_address
        self.reason = reason
        super().__init__(message, details)


class ContentSourceError(GuardError):
    """Unknown content source or invalid source configuration."""

    pass


# ============================================================
# CONTEXT ERRORS
# ============================================================


class ContextBuildFailure(GuardError):
    """A content source (or the whole context build) failed."""

    def __init__(self, message: str, source_id: str | None = None, **kwargs):
        details = kwargs.get("details", {})
        if source_id:
            details["source_id"] = source_id
        self.source_id = source_id
        super().__init__(message, details)


# ============================================================
# INFRASTRUCTURE ERRORS
# ============================================================


class StoreUnavailable(GuardError):
    """The usage store could not complete an operation."""

    def __init__(self, message: str, operation: str | None = None, **kwargs):
        details = kwargs.get("details", {})
        if operation:
            details["operation"] = operation
        super().__init__(message, details)


class StoreConflict(StoreUnavailable):
    """Compare-and-set retries exhausted under contention."""

    pass


class ConfigurationError(GuardError):
    """Invalid configuration."""

    pass


__all__ = [
    "GuardError",
    "AdmissionError",
    "RateLimitExceeded",
    "SecurityViolation",
    "ReflinkInvalid",
    "ReflinkError",
    "BlacklistError",
    "ContentSourceError",
    "ContextBuildFailure",
    "StoreUnavailable",
    "StoreConflict",
    "ConfigurationError",
]
