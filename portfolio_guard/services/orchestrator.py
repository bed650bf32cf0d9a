# Portfolio Guard - AI Access-Control & Context-Assembly Engine
# Copyright (c) 2026 George Scott Foley
# ORCID: 0009-0006-4957-0540
# Email: Georgescottfoley@proton.me
# Licensed under the MIT License - see LICENSE file for details

"""
Access Orchestrator

Composes the admission pipeline for one AI request:

    blacklist -> request shape -> rate limit -> reflink budget

then hands out bounded context and, after the model call, records
usage and inspects the visitor's content:

    track usage -> analyze content -> record violation -> notify

Every admission check fails closed: when the usage store cannot answer,
the request is denied with reason store_unavailable.
"""

import logging
from dataclasses import dataclass, field
from typing import Any

from ..access.models import BudgetStatus, IdentifierType, UsageEvent
from ..access.rate_limit import RateLimiter, RateLimitStatus
from ..access.reflinks import ReflinkManager, budget_status_message, compute_budget_status
from ..context.provider import AccessLevel, ContextProvider, FilteredContext
from ..core.async_base import Clock, utcnow
from ..core.exceptions import (
    AdmissionError,
    RateLimitExceeded,
    ReflinkError,
    ReflinkInvalid,
    SecurityViolation,
    StoreUnavailable,
)
from ..security.abuse import AbuseDetector
from ..security.blacklist import BlacklistManager
from ..security.models import (
    AnalysisContext,
    ContentAnalysis,
    ContentViolationResult,
    RequestShapeAnalysis,
    SuggestedAction,
)
from ..security.notifier import SecurityNotifier

logger = logging.getLogger(__name__)

SUSPICIOUS_ACTIVITY = "suspicious_activity"

_REFLINK_MESSAGES = {
    "not_found": "Invalid reflink code",
    "inactive": "This reflink has been deactivated",
    "expired": "This reflink has expired",
    "budget_exhausted": (
        "Your AI assistant budget has been exhausted. Please contact me for renewal."
    ),
}

_REFLINK_STATUS = {"not_found": 404, "budget_exhausted": 402}


# ============================================================
# REQUESTS AND DECISIONS
# ============================================================


@dataclass
class AdmissionRequest:
    """
    One inbound AI request.

    skip_blacklist_check is for trusted internal callers only; it is
    never derived from client input.
    """

    identifier: str | None
    identifier_type: IdentifierType
    endpoint: str
    reflink_code: str | None = None
    ip_address: str | None = None
    user_agent: str | None = None
    shape: RequestShapeAnalysis | None = None
    skip_blacklist_check: bool = False


@dataclass
class AdmissionDecision:
    """
    Allow or deny, with everything a client needs to explain it.

    `stage` names the check that decided: blacklist, request_shape,
    rate_limit, reflink, store or admitted.
    """

    allowed: bool
    stage: str
    error: AdmissionError | StoreUnavailable | None = None
    rate_limit: RateLimitStatus | None = None
    budget_status: BudgetStatus | None = None
    budget_message: str | None = None
    retry_after: int | None = None

    @property
    def reason(self) -> str | None:
        if self.error is None:
            return None
        return self.error.details.get("reason", self.stage)

    @property
    def status_code(self) -> int:
        if self.allowed:
            return 200
        if self.stage == "rate_limit":
            return 429
        if self.stage == "store":
            return 503
        if self.stage == "reflink":
            return _REFLINK_STATUS.get(self.reason, 403)
        return 403

    def headers(self) -> dict[str, str]:
        headers: dict[str, str] = {}
        if self.rate_limit is not None:
            headers["X-RateLimit-Limit"] = str(self.rate_limit.limit)
            headers["X-RateLimit-Remaining"] = str(self.rate_limit.remaining)
            headers["X-RateLimit-Reset"] = self.rate_limit.reset_time.isoformat()
        if not self.allowed and self.retry_after is not None:
            headers["Retry-After"] = str(self.retry_after)
        return headers

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "allowed": self.allowed,
            "stage": self.stage,
            "reason": self.reason,
        }
        if self.error is not None:
            data["error"] = self.error.to_dict()
        if self.rate_limit is not None:
            data["rate_limit"] = self.rate_limit.to_dict()
        if self.budget_status is not None:
            data["budget_status"] = self.budget_status.to_dict()
        if self.budget_message:
            data["budget_message"] = self.budget_message
        return data


@dataclass
class UsageOutcome:
    """Result of recording one completed model call."""

    budget_status: BudgetStatus | None = None
    budget_message: str | None = None
    analysis: ContentAnalysis | None = None
    violation: ContentViolationResult | None = None
    notifications: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "budget_status": self.budget_status.to_dict() if self.budget_status else None,
            "budget_message": self.budget_message,
            "analysis": self.analysis.to_dict() if self.analysis else None,
            "violation": (
                {
                    "blacklisted": self.violation.blacklisted,
                    "violation_count": self.violation.violation_count,
                }
                if self.violation
                else None
            ),
            "notifications": self.notifications,
        }


# ============================================================
# ORCHESTRATOR
# ============================================================


class AccessOrchestrator:
    """
    Single entry point for admission, context and usage recording.

    Usage:
        orchestrator = services.orchestrator
        decision = await orchestrator.admit(AdmissionRequest(...))
        if decision.allowed:
            ctx = await orchestrator.load_context(session_id, query, reflink_code)
            ...call the model...
            await orchestrator.record_usage(reflink_code, event, content=message, ip_address=ip)
    """

    def __init__(
        self,
        blacklist: BlacklistManager,
        rate_limiter: RateLimiter,
        reflinks: ReflinkManager,
        abuse: AbuseDetector,
        notifier: SecurityNotifier,
        context: ContextProvider,
        clock: Clock = utcnow,
    ):
        self.blacklist = blacklist
        self.rate_limiter = rate_limiter
        self.reflinks = reflinks
        self.abuse = abuse
        self.notifier = notifier
        self.context = context
        self._clock = clock

    # ----------------------------------------------------------
    # Admission
    # ----------------------------------------------------------

    async def admit(self, request: AdmissionRequest) -> AdmissionDecision:
        """Run every admission check in order; the first denial wins."""
        try:
            return await self._admit(request)
        except StoreUnavailable as e:
            logger.error(
                f"Admission denied for {request.identifier_type}:{request.identifier}, "
                f"store unavailable: {e.message}"
            )
            return AdmissionDecision(
                allowed=False,
                stage="store",
                error=StoreUnavailable(
                    "Access checks are temporarily unavailable",
                    operation=e.details.get("operation"),
                    details={"reason": "store_unavailable"},
                ),
                retry_after=30,
            )

    async def _admit(self, request: AdmissionRequest) -> AdmissionDecision:
        ip = request.ip_address

        if ip and not request.skip_blacklist_check:
            status = await self.blacklist.is_blacklisted(ip)
            if status.blacklisted:
                logger.warning(f"Blocked request from blacklisted IP: {ip}")
                return AdmissionDecision(
                    allowed=False,
                    stage="blacklist",
                    error=SecurityViolation(
                        "Access denied",
                        reason="blacklisted",
                        ip_address=ip,
                        violation_count=status.entry.violation_count if status.entry else None,
                    ),
                )

        if request.shape is not None and request.shape.blocked:
            return await self._deny_request_shape(request)

        rate = await self.rate_limiter.check_and_consume(
            request.identifier,
            request.identifier_type,
            request.endpoint,
            reflink_code=request.reflink_code,
            ip_address=ip,
            user_agent=request.user_agent,
        )
        if not rate.allowed:
            retry_after = rate.retry_after_seconds(self._clock())
            return AdmissionDecision(
                allowed=False,
                stage="rate_limit",
                rate_limit=rate,
                retry_after=retry_after,
                error=RateLimitExceeded(
                    "Rate limit exceeded",
                    limit=rate.limit,
                    reset_time=rate.reset_time,
                    tier=str(rate.tier),
                    retry_after=retry_after,
                ),
            )

        budget = None
        if request.reflink_code:
            validation = await self.reflinks.validate_with_budget(request.reflink_code)
            if not validation.valid:
                return AdmissionDecision(
                    allowed=False,
                    stage="reflink",
                    rate_limit=rate,
                    budget_status=validation.budget_status,
                    error=ReflinkInvalid(
                        _REFLINK_MESSAGES.get(validation.reason, "Invalid reflink"),
                        reason=validation.reason,
                        code=request.reflink_code,
                    ),
                )
            budget = validation.budget_status

        return AdmissionDecision(
            allowed=True,
            stage="admitted",
            rate_limit=rate,
            budget_status=budget,
            budget_message=budget_status_message(budget) if budget else None,
        )

    async def _deny_request_shape(self, request: AdmissionRequest) -> AdmissionDecision:
        shape = request.shape
        ip = request.ip_address
        reasons = ", ".join(shape.reasons)
        violation_count = None

        if ip:
            result = await self.blacklist.record_violation(
                ip,
                f"{SUSPICIOUS_ACTIVITY}: {reasons}",
                {"endpoint": request.endpoint, "user_agent": request.user_agent},
            )
            violation_count = result.violation_count
            if result.blacklisted:
                await self.notifier.notify_blacklist(
                    ip, result.entry, request.endpoint, request.user_agent
                )
            else:
                await self.notifier.notify_warning(
                    ip,
                    reasons,
                    request.endpoint,
                    request.user_agent,
                    metadata={"score": shape.score, "threshold": shape.threshold},
                )

        logger.warning(f"Suspicious request from {ip or 'unknown'} blocked: {reasons}")
        return AdmissionDecision(
            allowed=False,
            stage="request_shape",
            error=SecurityViolation(
                "Request blocked",
                reason=SUSPICIOUS_ACTIVITY,
                ip_address=ip,
                violation_count=violation_count,
                details={"signals": shape.reasons, "score": shape.score},
            ),
        )

    # ----------------------------------------------------------
    # Context
    # ----------------------------------------------------------

    async def load_context(
        self,
        session_id: str,
        query: str | None = None,
        reflink_code: str | None = None,
        access_level: AccessLevel | None = None,
        max_tokens: int | None = None,
    ) -> FilteredContext:
        return await self.context.load_context(
            session_id, query, reflink_code, access_level, max_tokens
        )

    # ----------------------------------------------------------
    # Usage and content inspection
    # ----------------------------------------------------------

    async def record_usage(
        self,
        reflink_code: str | None,
        event: UsageEvent,
        content: str | None = None,
        ip_address: str | None = None,
        user_agent: str | None = None,
        session_id: str | None = None,
    ) -> UsageOutcome:
        """
        Account for a completed model call, then inspect the visitor's message.

        Raises:
            ReflinkError: unknown reflink code
        """
        outcome = UsageOutcome()

        if reflink_code:
            reflink = await self.reflinks.get_by_code(reflink_code)
            if reflink is None:
                raise ReflinkError("Reflink not found", code=reflink_code, reason="not_found")
            updated = await self.reflinks.track_usage(reflink.id, event)
            outcome.budget_status = compute_budget_status(updated)
            outcome.budget_message = budget_status_message(outcome.budget_status)

        if content:
            context = AnalysisContext(
                ip_address=ip_address,
                user_agent=user_agent,
                endpoint=event.endpoint,
                session_id=session_id,
            )
            outcome.analysis = await self.abuse.analyze_content(content, context)
            if ip_address and outcome.analysis.suggested_action != SuggestedAction.ALLOW:
                await self._handle_violation(ip_address, content, context, outcome)

        return outcome

    async def _handle_violation(
        self,
        ip_address: str,
        content: str,
        context: AnalysisContext,
        outcome: UsageOutcome,
    ) -> None:
        analysis = outcome.analysis
        violation = await self.abuse.record_content_violation(
            ip_address, analysis, context, content
        )
        outcome.violation = violation
        if not violation.should_notify:
            return

        if violation.blacklisted and violation.entry is not None:
            sent = await self.notifier.notify_blacklist(
                ip_address, violation.entry, context.endpoint, context.user_agent
            )
        else:
            sent = await self.notifier.notify_violation(
                ip_address,
                analysis,
                context.endpoint,
                context.user_agent,
                violation.violation_count,
                content_length=len(content),
            )
        if sent is not None:
            outcome.notifications.append(sent.id)


__all__ = [
    "AccessOrchestrator",
    "AdmissionRequest",
    "AdmissionDecision",
    "UsageOutcome",
    "SUSPICIOUS_ACTIVITY",
]
