# Portfolio Guard - AI Access-Control & Context-Assembly Engine
# Copyright (c) 2026 George Scott Foley
# ORCID: 0009-0006-4957-0540
# Email: Georgescottfoley@proton.me
# Licensed under the MIT License - see LICENSE file for details

"""
Fixed-Window Rate Limiting

Admission control per identifier (ip, session or reflink).

Tiers:
- BASIC: 10 requests per window
- STANDARD: 50 requests per window (anonymous default)
- PREMIUM: 200 requests per window
- UNLIMITED: sentinel 999999

A valid reflink overrides the default with its own daily limit and tier.
Each (identifier, type, reflink) key has one counter whose expiry is the
window end; the window starts lazily on the first check. Consumption is
a single increment_if_below call, so concurrent requests can never push
a window past its limit.
"""

import logging
from collections import Counter, defaultdict
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

from ..core.async_base import Clock, utcnow
from ..core.settings import RateLimitSettings
from ..data.store import CounterState, UsageStore
from .keys import window_key, window_prefix
from .log import RateLimitLog
from .models import IdentifierType, RateLimitLogEntry, RateLimitTier
from .reflinks import ReflinkManager

logger = logging.getLogger(__name__)


# ============================================================
# RESULTS
# ============================================================


@dataclass
class RateLimitStatus:
    """Outcome of a rate-limit check."""

    allowed: bool
    remaining: int
    limit: int
    reset_time: datetime
    tier: RateLimitTier
    reflink_code: str | None = None
    reflink_id: str | None = None

    def retry_after_seconds(self, now: datetime) -> int:
        return max(0, int((self.reset_time - now).total_seconds()))

    def to_dict(self) -> dict[str, Any]:
        return {
            "allowed": self.allowed,
            "remaining": self.remaining,
            "limit": self.limit,
            "reset_time": self.reset_time.isoformat(),
            "tier": str(self.tier),
            "reflink_code": self.reflink_code,
        }


@dataclass
class RateLimitAnalytics:
    total_requests: int
    blocked_requests: int
    unique_users: int
    top_endpoints: list[dict[str, Any]]
    requests_by_tier: dict[str, int]
    requests_by_hour: list[dict[str, Any]]

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_requests": self.total_requests,
            "blocked_requests": self.blocked_requests,
            "unique_users": self.unique_users,
            "top_endpoints": self.top_endpoints,
            "requests_by_tier": self.requests_by_tier,
            "requests_by_hour": self.requests_by_hour,
        }


@dataclass
class _ResolvedLimit:
    limit: int
    tier: RateLimitTier
    reflink_id: str | None = None


# ============================================================
# IDENTIFIERS
# ============================================================


def resolve_identifier(
    identifier: str | None,
    identifier_type: IdentifierType,
    ip_address: str | None = None,
) -> str:
    """Deterministic fallback for a missing identifier."""
    if identifier:
        return identifier
    if identifier_type == IdentifierType.IP:
        return "unknown-ip"
    if identifier_type == IdentifierType.SESSION:
        return f"ip-{ip_address or 'unknown'}"
    return "no-reflink"


# ============================================================
# RATE LIMITER
# ============================================================


class RateLimiter:
    """
    Fixed-window rate limiter backed by the usage store.

    Store failures propagate as StoreUnavailable; callers deny.
    """

    def __init__(
        self,
        store: UsageStore,
        reflinks: ReflinkManager,
        settings: RateLimitSettings | None = None,
        clock: Clock = utcnow,
    ):
        self._store = store
        self._reflinks = reflinks
        self._settings = settings or RateLimitSettings()
        self._clock = clock
        self._log = RateLimitLog(store)

    @property
    def window(self) -> timedelta:
        return timedelta(seconds=self._settings.window_seconds)

    async def _resolve_limit(self, reflink_code: str | None) -> _ResolvedLimit:
        reflink = await self._reflinks.resolve_active(reflink_code)
        if reflink is None:
            return _ResolvedLimit(self._settings.default_daily_limit, RateLimitTier.STANDARD)
        return _ResolvedLimit(reflink.daily_limit, reflink.tier, reflink.id)

    def _reset_time(self, state: CounterState) -> datetime:
        return state.expires_at or self._clock() + self.window

    async def check_and_consume(
        self,
        identifier: str | None,
        identifier_type: IdentifierType,
        endpoint: str,
        reflink_code: str | None = None,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> RateLimitStatus:
        """
        Consume one request from the identifier's window if any are left.

        A denied check does not increment the counter. Every check is
        appended to the admission log.

        Raises:
            StoreUnavailable: the store could not answer
        """
        identifier = resolve_identifier(identifier, identifier_type, ip_address)
        resolved = await self._resolve_limit(reflink_code)

        state = await self._store.increment_if_below(
            window_key(identifier_type, identifier, resolved.reflink_id),
            limit=resolved.limit,
            ttl_seconds=self._settings.window_seconds,
        )
        allowed = state.applied
        remaining = max(0, resolved.limit - state.value) if allowed else 0

        status = RateLimitStatus(
            allowed=allowed,
            remaining=remaining,
            limit=resolved.limit,
            reset_time=self._reset_time(state),
            tier=resolved.tier,
            reflink_code=reflink_code,
            reflink_id=resolved.reflink_id,
        )

        await self._log.append(
            RateLimitLogEntry(
                identifier=identifier,
                identifier_type=identifier_type,
                endpoint=endpoint,
                reflink_id=resolved.reflink_id,
                tier=resolved.tier,
                ip_address=ip_address,
                user_agent=user_agent,
                was_blocked=not allowed,
                requests_remaining=remaining,
                timestamp=self._clock(),
            )
        )

        if allowed:
            logger.debug(
                f"Rate limit ok: {identifier_type}:{identifier} {endpoint} "
                f"({remaining}/{resolved.limit} left, {resolved.tier})"
            )
        else:
            logger.warning(
                f"Rate limit exceeded: {identifier_type}:{identifier} {endpoint} "
                f"(limit {resolved.limit}, resets {status.reset_time.isoformat()})"
            )
        return status

    async def get_status(
        self,
        identifier: str | None,
        identifier_type: IdentifierType,
        reflink_code: str | None = None,
    ) -> RateLimitStatus:
        """Current window state without consuming a request."""
        identifier = resolve_identifier(identifier, identifier_type)
        resolved = await self._resolve_limit(reflink_code)
        state = await self._store.get_counter(
            window_key(identifier_type, identifier, resolved.reflink_id)
        )
        remaining = max(0, resolved.limit - state.value)
        return RateLimitStatus(
            allowed=remaining > 0,
            remaining=remaining,
            limit=resolved.limit,
            reset_time=self._reset_time(state),
            tier=resolved.tier,
            reflink_code=reflink_code,
            reflink_id=resolved.reflink_id,
        )

    async def reset(
        self,
        identifier: str,
        identifier_type: IdentifierType,
        reflink_id: str | None = None,
    ) -> int:
        """Drop window counters for an identifier; all of them when no reflink is given."""
        if reflink_id is not None:
            keys = [window_key(identifier_type, identifier, reflink_id)]
        else:
            keys = await self._store.scan_keys(window_prefix(identifier_type, identifier))
        removed = await self._store.delete(*keys)
        logger.info(f"Reset {removed} rate limit windows for {identifier_type}:{identifier}")
        return removed

    async def get_analytics(self, days: int = 7) -> RateLimitAnalytics:
        since = self._clock() - timedelta(days=days)
        entries = await self._log.entries(since=since)

        endpoints = Counter(e.endpoint for e in entries)
        tiers = {str(tier): 0 for tier in RateLimitTier}
        hours: dict[str, dict[str, int]] = defaultdict(lambda: {"requests": 0, "blocked": 0})
        for entry in entries:
            tiers[str(entry.tier)] += 1
            hour = entry.timestamp.replace(minute=0, second=0, microsecond=0).isoformat()
            hours[hour]["requests"] += 1
            if entry.was_blocked:
                hours[hour]["blocked"] += 1

        return RateLimitAnalytics(
            total_requests=len(entries),
            blocked_requests=sum(1 for e in entries if e.was_blocked),
            unique_users=len({(e.identifier, e.identifier_type) for e in entries}),
            top_endpoints=[
                {"endpoint": endpoint, "requests": count}
                for endpoint, count in endpoints.most_common(10)
            ],
            requests_by_tier=tiers,
            requests_by_hour=[{"hour": hour, **counts} for hour, counts in sorted(hours.items())],
        )

    async def cleanup_expired_records(self) -> int:
        """Trim the admission log beyond the retention period. Windows expire on their own."""
        cutoff = self._clock() - timedelta(days=self._settings.log_retention_days)
        return await self._log.trim_before(cutoff)


__all__ = [
    "RateLimiter",
    "RateLimitStatus",
    "RateLimitAnalytics",
    "resolve_identifier",
]
