# Portfolio Guard - AI Access-Control & Context-Assembly Engine
# Copyright (c) 2026 George Scott Foley
# ORCID: 0009-0006-4957-0540
# Email: Georgescottfoley@proton.me
# Licensed under the MIT License - see LICENSE file for details

"""
Reflink Manager

Lifecycle and budget accounting for invitation codes.

Records live in the usage store:
    reflinks:by_id:{id}      JSON record
    reflinks:by_code:{code}  id (claimed with insert-if-absent)
    usage_events:{id}        append-only usage events

Budget counters (tokens_used, spend_used) only ever grow, and only
through track_usage(), which commits the counter update and the usage
event append in one compare-and-set.
"""

import logging
import secrets
import string
import uuid
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import timedelta
from decimal import Decimal
from typing import Any

from ..core.async_base import Clock, utcnow
from ..core.exceptions import ReflinkError, StoreUnavailable
from ..data.store import UsageStore, read_modify_write
from ..observability.logging import AuditLogger, audit_logger
from .keys import REFLINK_BY_ID_PREFIX, reflink_code_key, reflink_key, usage_events_key
from .log import RateLimitLog
from .models import (
    BudgetStatus,
    CreateReflinkParams,
    RateLimitTier,
    Reflink,
    UpdateReflinkParams,
    UsageEvent,
    tier_daily_limit,
)

logger = logging.getLogger(__name__)

CODE_ALPHABET = string.ascii_lowercase + string.digits
CODE_SUFFIX_LENGTH = 6
MAX_CODE_ATTEMPTS = 10

# Per-request averages used before a reflink has any usage history
DEFAULT_TOKENS_PER_REQUEST = 1000
DEFAULT_COST_PER_REQUEST = Decimal("0.01")

LOW_SPEND_WARNING = Decimal("5")

_REQUIRED_FIELDS = frozenset(
    {
        "tier",
        "daily_limit",
        "is_active",
        "enable_voice_ai",
        "enable_job_analysis",
        "enable_advanced_navigation",
    }
)


# ============================================================
# RESULTS
# ============================================================


@dataclass
class ReflinkValidation:
    """Outcome of validating a reflink code including its budget."""

    valid: bool
    reflink: Reflink | None = None
    budget_status: BudgetStatus | None = None
    reason: str | None = None
    welcome_message: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "valid": self.valid,
            "reason": self.reason,
            "reflink": self.reflink.model_dump(mode="json") if self.reflink else None,
            "budget_status": self.budget_status.to_dict() if self.budget_status else None,
            "welcome_message": self.welcome_message,
        }


@dataclass
class ReflinkSession:
    """Everything a new visitor session needs to know about its reflink."""

    reflink: Reflink
    budget_status: BudgetStatus
    welcome_message: str
    capabilities: dict[str, bool] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "reflink": self.reflink.model_dump(mode="json"),
            "budget_status": self.budget_status.to_dict(),
            "welcome_message": self.welcome_message,
            "capabilities": self.capabilities,
        }


@dataclass
class ReflinkUsageStats:
    total_requests: int
    blocked_requests: int
    unique_users: int
    requests_by_day: list[dict[str, Any]]

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_requests": self.total_requests,
            "blocked_requests": self.blocked_requests,
            "unique_users": self.unique_users,
            "requests_by_day": self.requests_by_day,
        }


# ============================================================
# BUDGET HELPERS
# ============================================================


def compute_budget_status(reflink: Reflink) -> BudgetStatus:
    """
    Remaining budget of a reflink.

    The request estimate divides what is left by the average cost of
    past requests, taking the tighter of the token and spend dimensions.
    Uncapped reflinks are estimated at their daily limit.
    """
    tokens_remaining = None
    spend_remaining = None
    estimates: list[int] = []

    if reflink.token_limit is not None:
        tokens_remaining = max(0, reflink.token_limit - reflink.tokens_used)
        per_request = (
            reflink.tokens_used / reflink.request_count
            if reflink.request_count and reflink.tokens_used
            else DEFAULT_TOKENS_PER_REQUEST
        )
        estimates.append(int(tokens_remaining // per_request))

    if reflink.spend_limit is not None:
        spend_remaining = max(Decimal("0"), reflink.spend_limit - reflink.spend_used)
        per_request = (
            reflink.spend_used / reflink.request_count
            if reflink.request_count and reflink.spend_used
            else DEFAULT_COST_PER_REQUEST
        )
        estimates.append(int(spend_remaining // per_request))

    is_exhausted = reflink.is_budget_exhausted()
    if is_exhausted:
        estimated = 0
    elif estimates:
        estimated = min(estimates)
    else:
        estimated = reflink.daily_limit

    return BudgetStatus(
        tokens_remaining=tokens_remaining,
        spend_remaining=spend_remaining,
        is_exhausted=is_exhausted,
        estimated_requests_remaining=estimated,
    )


def budget_status_message(status: BudgetStatus) -> str | None:
    """User-facing note about a low or exhausted budget."""
    if status.is_exhausted:
        return "Your AI assistant budget has been exhausted. Please contact me for renewal."
    if status.spend_remaining is not None and status.spend_remaining < LOW_SPEND_WARNING:
        return f"You have ${status.spend_remaining:.2f} remaining in your AI assistant budget."
    return None


def welcome_message(reflink: Reflink) -> str:
    name = reflink.recipient_name or "there"
    return f"Hello {name}! You have special access to enhanced AI features."


# ============================================================
# MANAGER
# ============================================================


class ReflinkManager:
    """
    Create, validate and account for reflinks.

    Usage:
        manager = ReflinkManager(store)
        reflink = await manager.create(CreateReflinkParams(code="acme-2026"))
        result = await manager.validate_with_budget("acme-2026")
        await manager.track_usage(reflink.id, UsageEvent(tokens=800, cost=Decimal("0.02")))
    """

    def __init__(
        self,
        store: UsageStore,
        clock: Clock = utcnow,
        audit: AuditLogger = audit_logger,
    ):
        self._store = store
        self._clock = clock
        self._audit = audit
        self._log = RateLimitLog(store)

    # ----------------------------------------------------------
    # Lookup
    # ----------------------------------------------------------

    async def get_by_id(self, reflink_id: str) -> Reflink | None:
        raw = await self._store.get(reflink_key(reflink_id))
        return Reflink.model_validate_json(raw) if raw else None

    async def get_by_code(self, code: str) -> Reflink | None:
        reflink_id = await self._store.get(reflink_code_key(code))
        if reflink_id is None:
            return None
        return await self.get_by_id(reflink_id)

    async def list_reflinks(
        self,
        is_active: bool | None = None,
        include_expired: bool = False,
        limit: int | None = None,
        offset: int = 0,
    ) -> tuple[list[Reflink], int]:
        """Reflinks newest first, with the total count before paging."""
        now = self._clock()
        reflinks = []
        for key in await self._store.scan_keys(REFLINK_BY_ID_PREFIX):
            raw = await self._store.get(key)
            if raw is None:
                continue
            reflink = Reflink.model_validate_json(raw)
            if is_active is not None and reflink.is_active != is_active:
                continue
            if not include_expired and reflink.is_expired(now):
                continue
            reflinks.append(reflink)

        reflinks.sort(key=lambda r: r.created_at, reverse=True)
        total = len(reflinks)
        end = offset + limit if limit is not None else None
        return reflinks[offset:end], total

    # ----------------------------------------------------------
    # Admin mutations
    # ----------------------------------------------------------

    async def create(self, params: CreateReflinkParams, created_by: str | None = None) -> Reflink:
        """
        Create a reflink.

        Raises:
            ReflinkError: code already taken
        """
        now = self._clock()
        reflink = Reflink(
            id=str(uuid.uuid4()),
            code=params.code,
            name=params.name,
            description=params.description,
            tier=params.tier,
            daily_limit=params.daily_limit or tier_daily_limit(params.tier),
            token_limit=params.token_limit,
            spend_limit=params.spend_limit,
            enable_voice_ai=params.enable_voice_ai,
            enable_job_analysis=params.enable_job_analysis,
            enable_advanced_navigation=params.enable_advanced_navigation,
            recipient_name=params.recipient_name,
            recipient_email=params.recipient_email,
            custom_context=params.custom_context,
            expires_at=params.expires_at,
            created_by=created_by,
            created_at=now,
            updated_at=now,
        )

        claimed = await self._store.compare_and_set(
            reflink_code_key(reflink.code), None, reflink.id
        )
        if not claimed:
            raise ReflinkError(
                f"Reflink code '{params.code}' already exists",
                code=params.code,
                reason="duplicate_code",
            )
        try:
            await self._store.set(reflink_key(reflink.id), reflink.model_dump_json())
        except StoreUnavailable:
            await self._store.delete(reflink_code_key(reflink.code))
            raise

        logger.info(f"Created reflink {reflink.code} ({reflink.tier}, limit {reflink.daily_limit})")
        self._audit.create(
            "reflink", reflink.id, {"code": reflink.code, "tier": str(reflink.tier)}
        )
        return reflink

    async def update(self, reflink_id: str, params: UpdateReflinkParams) -> Reflink:
        """
        Apply an admin edit. A tier change without an explicit daily limit
        resets the limit to the tier default.

        Raises:
            ReflinkError: reflink not found
        """
        changes = params.model_dump(exclude_unset=True)
        if changes.get("tier") is not None and changes.get("daily_limit") is None:
            changes["daily_limit"] = tier_daily_limit(changes["tier"])
        # Explicit null clears optional fields; required ones cannot be cleared
        changes = {k: v for k, v in changes.items() if v is not None or k not in _REQUIRED_FIELDS}

        def mutate(current: str | None):
            if current is None:
                raise ReflinkError("Reflink not found", reason="not_found")
            reflink = Reflink.model_validate_json(current)
            updated = reflink.model_copy(update={**changes, "updated_at": self._clock()})
            return updated.model_dump_json(), None

        written = await read_modify_write(self._store, reflink_key(reflink_id), mutate)
        reflink = Reflink.model_validate_json(written)

        self._audit.update("reflink", reflink_id, {"fields": sorted(changes)})
        return reflink

    async def delete(self, reflink_id: str) -> None:
        """
        Hard-delete a reflink with its code claim and usage events.

        Raises:
            ReflinkError: reflink not found
        """
        reflink = await self.get_by_id(reflink_id)
        if reflink is None:
            raise ReflinkError("Reflink not found", reason="not_found")

        await self._store.delete(
            reflink_key(reflink_id), reflink_code_key(reflink.code), usage_events_key(reflink_id)
        )
        logger.info(f"Deleted reflink {reflink.code}")
        self._audit.delete("reflink", reflink_id, {"code": reflink.code})

    async def bulk_update(
        self,
        ids: list[str],
        is_active: bool | None = None,
        tier: RateLimitTier | None = None,
    ) -> int:
        """Apply activation and/or tier changes to many reflinks. Missing ids are skipped."""
        fields: dict[str, Any] = {}
        if is_active is not None:
            fields["is_active"] = is_active
        if tier is not None:
            fields["tier"] = tier
        if not fields:
            return 0

        updated = 0
        for reflink_id in ids:
            try:
                await self.update(reflink_id, UpdateReflinkParams(**fields))
            except ReflinkError as e:
                if e.reason != "not_found":
                    raise
                logger.warning(f"Bulk update skipped missing reflink {reflink_id}")
                continue
            updated += 1
        return updated

    async def cleanup_expired(self) -> int:
        """Soft-deactivate every active reflink past its expiry."""
        now = self._clock()
        reflinks, _ = await self.list_reflinks(is_active=True, include_expired=True)
        deactivated = 0

        for reflink in reflinks:
            if not reflink.is_expired(now):
                continue

            def mutate(current: str | None):
                if current is None:
                    return None
                record = Reflink.model_validate_json(current)
                if not record.is_active:
                    return None
                return record.model_copy(
                    update={"is_active": False, "updated_at": now}
                ).model_dump_json(), None

            if await read_modify_write(self._store, reflink_key(reflink.id), mutate):
                deactivated += 1

        if deactivated:
            logger.info(f"Deactivated {deactivated} expired reflinks")
        return deactivated

    async def generate_unique_code(self, prefix: str = "ref") -> str:
        """
        Generate an unused code of the form `{prefix}-xxxxxx`.

        Raises:
            ReflinkError: no free code found within the attempt budget
        """
        for _ in range(MAX_CODE_ATTEMPTS):
            suffix = "".join(secrets.choice(CODE_ALPHABET) for _ in range(CODE_SUFFIX_LENGTH))
            code = f"{prefix}-{suffix}"
            if await self._store.get(reflink_code_key(code)) is None:
                return code
        raise ReflinkError(
            "Failed to generate unique reflink code", reason="code_generation_exhausted"
        )

    # ----------------------------------------------------------
    # Validation and budget
    # ----------------------------------------------------------

    async def validate_with_budget(self, code: str) -> ReflinkValidation:
        """
        Validate a code. Checks run in a fixed order and the first
        failure wins: not_found, inactive, expired, budget_exhausted.
        """
        reflink = await self.get_by_code(code)
        if reflink is None:
            return ReflinkValidation(valid=False, reason="not_found")
        if not reflink.is_active:
            return ReflinkValidation(valid=False, reflink=reflink, reason="inactive")
        if reflink.is_expired(self._clock()):
            return ReflinkValidation(valid=False, reflink=reflink, reason="expired")

        status = compute_budget_status(reflink)
        if status.is_exhausted:
            return ReflinkValidation(
                valid=False, reflink=reflink, budget_status=status, reason="budget_exhausted"
            )

        return ReflinkValidation(
            valid=True,
            reflink=reflink,
            budget_status=status,
            welcome_message=welcome_message(reflink),
        )

    async def resolve_active(self, code: str | None) -> Reflink | None:
        """The reflink for `code` if it is active and unexpired; budget is not considered."""
        if not code:
            return None
        reflink = await self.get_by_code(code)
        if reflink is None or not reflink.is_active or reflink.is_expired(self._clock()):
            return None
        return reflink

    async def track_usage(self, reflink_id: str, event: UsageEvent) -> Reflink:
        """
        Record consumed budget. Counter update and event append commit together.

        Raises:
            ReflinkError: reflink not found
        """
        now = self._clock()
        stamped = event.model_copy(update={"reflink_id": reflink_id, "timestamp": now})
        entry = (usage_events_key(reflink_id), stamped.model_dump_json())

        def mutate(current: str | None):
            if current is None:
                raise ReflinkError("Reflink not found", reason="not_found")
            reflink = Reflink.model_validate_json(current)
            updated = reflink.model_copy(
                update={
                    "tokens_used": reflink.tokens_used + event.tokens,
                    "spend_used": reflink.spend_used + event.cost,
                    "request_count": reflink.request_count + 1,
                    "last_used_at": now,
                }
            )
            return updated.model_dump_json(), entry

        written = await read_modify_write(self._store, reflink_key(reflink_id), mutate)
        reflink = Reflink.model_validate_json(written)

        if reflink.is_budget_exhausted():
            logger.warning(f"Reflink {reflink.code} budget exhausted")
        else:
            logger.debug(
                f"Tracked {event.tokens} tokens / ${event.cost} for reflink {reflink.code}"
            )
        return reflink

    async def get_remaining_budget(self, reflink_id: str) -> BudgetStatus:
        """
        Raises:
            ReflinkError: reflink not found
        """
        reflink = await self.get_by_id(reflink_id)
        if reflink is None:
            raise ReflinkError("Reflink not found", reason="not_found")
        return compute_budget_status(reflink)

    async def get_usage_events(self, reflink_id: str) -> list[UsageEvent]:
        raw = await self._store.get_list(usage_events_key(reflink_id))
        return [UsageEvent.model_validate_json(item) for item in raw]

    async def initialize_session(self, code: str) -> ReflinkSession | None:
        """Welcome payload for a visitor arriving with a code, or None if it is not valid."""
        result = await self.validate_with_budget(code)
        if not result.valid:
            logger.info(f"Session not initialised for reflink {code}: {result.reason}")
            return None
        return ReflinkSession(
            reflink=result.reflink,
            budget_status=result.budget_status,
            welcome_message=result.welcome_message,
            capabilities=result.reflink.capabilities,
        )

    # ----------------------------------------------------------
    # Statistics
    # ----------------------------------------------------------

    async def get_usage_stats(self, reflink_id: str, days: int = 7) -> ReflinkUsageStats:
        """Request statistics for a reflink from the admission log."""
        since = self._clock() - timedelta(days=days)
        entries = await self._log.entries(since=since, reflink_id=reflink_id)

        by_day: dict[str, dict[str, int]] = defaultdict(lambda: {"requests": 0, "blocked": 0})
        for entry in entries:
            day = by_day[entry.timestamp.date().isoformat()]
            day["requests"] += 1
            if entry.was_blocked:
                day["blocked"] += 1

        return ReflinkUsageStats(
            total_requests=len(entries),
            blocked_requests=sum(1 for e in entries if e.was_blocked),
            unique_users=len({(e.identifier, e.identifier_type) for e in entries}),
            requests_by_day=[{"date": date, **counts} for date, counts in sorted(by_day.items())],
        )


__all__ = [
    "ReflinkManager",
    "ReflinkValidation",
    "ReflinkSession",
    "ReflinkUsageStats",
    "compute_budget_status",
    "budget_status_message",
    "welcome_message",
]
