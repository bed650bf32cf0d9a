# Portfolio Guard - AI Access-Control & Context-Assembly Engine
# Copyright (c) 2026 George Scott Foley
# ORCID: 0009-0006-4957-0540
# Email: Georgescottfoley@proton.me
# Licensed under the MIT License - see LICENSE file for details

"""
IP Blacklist

Violation accumulation, automatic ban and reinstatement.

Escalation:
    clean -> watched (1 violation) -> blacklisted (threshold reached)
    blacklisted -> reinstated (admin or timeout), history preserved

A violation recorded after reinstatement re-opens the entry: the
cumulative count keeps growing, so an IP already past the threshold is
banned again straight away.
"""

import logging
from collections import defaultdict
from dataclasses import dataclass
from datetime import timedelta
from typing import Any

from ..core.async_base import Clock, utcnow
from ..core.exceptions import BlacklistError
from ..core.settings import SecuritySettings
from ..data.store import UsageStore, read_modify_write
from ..observability.logging import AuditLogger, audit_logger
from .models import BlacklistEntry, BlacklistStatus, ViolationResult

logger = logging.getLogger(__name__)

BLACKLIST_PREFIX = "blacklist:"
AUTO_REINSTATE_BY = "system"
AUTO_REINSTATE_REASON = "Auto-reinstated after timeout"


def _key(ip_address: str) -> str:
    return f"{BLACKLIST_PREFIX}{ip_address}"


MAX_REASONS = 10


def merge_reasons(existing: str, reason: str) -> str:
    """
    Append reason to a "; "-joined history, skipping repeats.

    The first (primary) reason is always kept; beyond MAX_REASONS the
    oldest of the rest are dropped.
    """
    parts = [p for p in existing.split("; ") if p]
    if reason not in parts:
        parts.append(reason)
    if len(parts) > MAX_REASONS:
        parts = [parts[0], *parts[-(MAX_REASONS - 1) :]]
    return "; ".join(parts)


@dataclass
class BlacklistAnalytics:
    total_blacklisted: int
    recent_violations: int
    violations_by_reason: dict[str, int]
    top_violating_ips: list[dict[str, Any]]

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_blacklisted": self.total_blacklisted,
            "recent_violations": self.recent_violations,
            "violations_by_reason": self.violations_by_reason,
            "top_violating_ips": self.top_violating_ips,
        }


class BlacklistManager:
    """
    Tracks violations per IP and enforces bans.

    Every mutation is a read_modify_write on the IP's record, so
    concurrent violations from the same IP are all counted.
    """

    def __init__(
        self,
        store: UsageStore,
        settings: SecuritySettings | None = None,
        clock: Clock = utcnow,
        audit: AuditLogger = audit_logger,
    ):
        self._store = store
        self._settings = settings or SecuritySettings()
        self._clock = clock
        self._audit = audit

    @property
    def threshold(self) -> int:
        return self._settings.max_violations_before_block

    async def get_entry(self, ip_address: str) -> BlacklistEntry | None:
        raw = await self._store.get(_key(ip_address))
        return BlacklistEntry.model_validate_json(raw) if raw else None

    # ----------------------------------------------------------
    # Violations
    # ----------------------------------------------------------

    async def record_violation(
        self,
        ip_address: str,
        reason: str,
        metadata: dict[str, Any] | None = None,
    ) -> ViolationResult:
        """
        Count a violation. Reaching the threshold blacklists the IP in
        the same write.
        """
        now = self._clock()

        def mutate(current: str | None):
            if current is None:
                entry = BlacklistEntry(
                    ip_address=ip_address,
                    reason=reason,
                    violation_count=1,
                    first_violation_at=now,
                    last_violation_at=now,
                    created_at=now,
                    updated_at=now,
                )
            else:
                existing = BlacklistEntry.model_validate_json(current)
                entry = existing.model_copy(
                    update={
                        "reason": merge_reasons(existing.reason, reason),
                        "violation_count": existing.violation_count + 1,
                        "last_violation_at": now,
                        "updated_at": now,
                        "reinstated_at": None,
                        "reinstated_by": None,
                    }
                )
                if existing.reinstated_at is not None:
                    # Re-opened after reinstatement: the old ban no longer applies
                    entry.blocked_at = None

            if entry.violation_count >= self.threshold and entry.blocked_at is None:
                entry.blocked_at = now
            return entry.model_dump_json(), None

        written = await read_modify_write(self._store, _key(ip_address), mutate)
        entry = BlacklistEntry.model_validate_json(written)

        if entry.is_enforced:
            logger.warning(
                f"IP {ip_address} blacklisted after {entry.violation_count} violations: {reason}",
                extra={"violation_metadata": metadata or {}},
            )
        else:
            logger.info(
                f"IP {ip_address} received warning (violation {entry.violation_count}): {reason}"
            )

        return ViolationResult(
            violation_count=entry.violation_count,
            blacklisted=entry.is_enforced,
            entry=entry,
        )

    async def blacklist_ip(
        self,
        ip_address: str,
        reason: str,
        violation_count: int | None = None,
    ) -> BlacklistEntry:
        """Ban an IP outright (admin action)."""
        now = self._clock()

        def mutate(current: str | None):
            if current is None:
                entry = BlacklistEntry(
                    ip_address=ip_address,
                    reason=reason,
                    violation_count=violation_count or self.threshold,
                    first_violation_at=now,
                    last_violation_at=now,
                    blocked_at=now,
                    created_at=now,
                    updated_at=now,
                )
            else:
                existing = BlacklistEntry.model_validate_json(current)
                count = violation_count or max(existing.violation_count, self.threshold)
                entry = existing.model_copy(
                    update={
                        "reason": merge_reasons(existing.reason, reason),
                        "violation_count": count,
                        "last_violation_at": now,
                        "blocked_at": existing.blocked_at if existing.is_enforced else now,
                        "reinstated_at": None,
                        "reinstated_by": None,
                        "updated_at": now,
                    }
                )
            return entry.model_dump_json(), None

        written = await read_modify_write(self._store, _key(ip_address), mutate)
        logger.warning(f"IP {ip_address} blacklisted for: {reason}")
        self._audit.log("blacklist", "ip", ip_address, {"reason": reason})
        return BlacklistEntry.model_validate_json(written)

    # ----------------------------------------------------------
    # Enforcement
    # ----------------------------------------------------------

    def _should_auto_reinstate(self, entry: BlacklistEntry) -> bool:
        if not entry.can_reinstate or entry.blocked_at is None:
            return False
        elapsed = self._clock() - entry.blocked_at
        return elapsed >= timedelta(days=self._settings.auto_reinstate_after_days)

    async def is_blacklisted(self, ip_address: str) -> BlacklistStatus:
        """
        Whether requests from `ip_address` must be refused.

        Watched and reinstated entries are not enforced. A ban past the
        auto-reinstate period is lifted here.
        """
        entry = await self.get_entry(ip_address)
        if entry is None or not entry.is_enforced:
            return BlacklistStatus(blacklisted=False, entry=entry)

        if self._should_auto_reinstate(entry):
            try:
                entry = await self.reinstate(ip_address, AUTO_REINSTATE_BY, AUTO_REINSTATE_REASON)
            except BlacklistError as e:
                # Another instance lifted the ban first
                if e.reason != "already_reinstated":
                    raise
                entry = await self.get_entry(ip_address)
            return BlacklistStatus(blacklisted=False, entry=entry)

        return BlacklistStatus(blacklisted=True, reason=entry.reason, entry=entry)

    async def reinstate(
        self, ip_address: str, reinstated_by: str, reason: str | None = None
    ) -> BlacklistEntry:
        """
        Lift a ban. The violation count is left untouched.

        Raises:
            BlacklistError: not_found or already_reinstated
        """
        now = self._clock()

        def mutate(current: str | None):
            if current is None:
                raise BlacklistError(
                    "IP not found in blacklist", reason="not_found", ip_address=ip_address
                )
            entry = BlacklistEntry.model_validate_json(current)
            if entry.reinstated_at is not None:
                raise BlacklistError(
                    "IP already reinstated", reason="already_reinstated", ip_address=ip_address
                )
            updated = entry.model_copy(
                update={
                    "reinstated_at": now,
                    "reinstated_by": reinstated_by,
                    "reason": (
                        merge_reasons(entry.reason, f"Reinstated: {reason}")
                        if reason
                        else entry.reason
                    ),
                    "updated_at": now,
                }
            )
            return updated.model_dump_json(), None

        written = await read_modify_write(self._store, _key(ip_address), mutate)
        logger.info(f"IP {ip_address} reinstated by {reinstated_by}")
        self._audit.log(
            "reinstate", "ip", ip_address, {"reinstated_by": reinstated_by, "reason": reason}
        )
        return BlacklistEntry.model_validate_json(written)

    async def bulk_reinstate(
        self, ip_addresses: list[str], reinstated_by: str, reason: str | None = None
    ) -> int:
        """Reinstate many IPs, skipping unknown and already reinstated ones."""
        count = 0
        for ip_address in ip_addresses:
            try:
                await self.reinstate(ip_address, reinstated_by, reason)
            except BlacklistError:
                continue
            count += 1
        logger.info(f"Bulk reinstated {count} IPs by {reinstated_by}")
        return count

    # ----------------------------------------------------------
    # Administration
    # ----------------------------------------------------------

    async def _all_entries(self) -> list[BlacklistEntry]:
        entries = []
        for key in await self._store.scan_keys(BLACKLIST_PREFIX):
            raw = await self._store.get(key)
            if raw is not None:
                entries.append(BlacklistEntry.model_validate_json(raw))
        return entries

    async def list_entries(
        self,
        include_reinstated: bool = False,
        limit: int | None = None,
        offset: int = 0,
    ) -> tuple[list[BlacklistEntry], int]:
        """Entries with the most recent activity first, plus the total count."""
        entries = [
            e for e in await self._all_entries() if include_reinstated or e.reinstated_at is None
        ]
        entries.sort(key=lambda e: e.blocked_at or e.last_violation_at, reverse=True)
        end = offset + limit if limit is not None else None
        return entries[offset:end], len(entries)

    async def remove(self, ip_address: str) -> None:
        """
        Delete an IP's record entirely, history included.

        Raises:
            BlacklistError: not_found
        """
        if not await self._store.delete(_key(ip_address)):
            raise BlacklistError(
                "IP not found in blacklist", reason="not_found", ip_address=ip_address
            )
        logger.info(f"IP {ip_address} removed from blacklist")
        self._audit.delete("blacklist", ip_address)

    async def get_analytics(self, days: int = 7) -> BlacklistAnalytics:
        since = self._clock() - timedelta(days=days)
        entries = await self._all_entries()
        recent = [e for e in entries if e.last_violation_at >= since]

        by_reason: dict[str, int] = defaultdict(int)
        for entry in recent:
            primary = entry.reason.split(";")[0].strip()
            by_reason[primary] += entry.violation_count

        top = sorted(recent, key=lambda e: e.violation_count, reverse=True)[:10]
        return BlacklistAnalytics(
            total_blacklisted=sum(1 for e in entries if e.is_enforced),
            recent_violations=len(recent),
            violations_by_reason=dict(by_reason),
            top_violating_ips=[
                {
                    "ip_address": e.ip_address,
                    "violations": e.violation_count,
                    "last_violation": e.last_violation_at.isoformat(),
                }
                for e in top
            ],
        )

    async def cleanup_old_entries(self, retention_days: int | None = None) -> int:
        """Delete reinstated entries older than the retention period."""
        days = retention_days or self._settings.blacklist_retention_days
        cutoff = self._clock() - timedelta(days=days)
        stale = [
            _key(e.ip_address)
            for e in await self._all_entries()
            if e.reinstated_at is not None and e.reinstated_at < cutoff
        ]
        removed = await self._store.delete(*stale)
        if removed:
            logger.info(f"Cleaned up {removed} old blacklist entries")
        return removed


__all__ = ["BlacklistManager", "BlacklistAnalytics", "BLACKLIST_PREFIX"]
