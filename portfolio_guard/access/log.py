# Portfolio Guard - AI Access-Control & Context-Assembly Engine
# Copyright (c) 2026 George Scott Foley
# ORCID: 0009-0006-4957-0540
# Email: Georgescottfoley@proton.me
# Licensed under the MIT License - see LICENSE file for details

"""
Append-only log of admission checks.

Every rate-limit check, allowed or denied, lands here. Analytics for the
rate limiter and per-reflink usage statistics are computed from it.
Entries are appended in time order, so retention trimming only ever
drops a prefix of the list.
"""

import logging
from datetime import datetime

from ..data.store import UsageStore
from .keys import RATE_LIMIT_LOG_KEY
from .models import RateLimitLogEntry

logger = logging.getLogger(__name__)


class RateLimitLog:
    """Admission-check log stored as a single list in the usage store."""

    def __init__(self, store: UsageStore, key: str = RATE_LIMIT_LOG_KEY):
        self._store = store
        self._key = key

    async def append(self, entry: RateLimitLogEntry) -> None:
        await self._store.append(self._key, entry.model_dump_json())

    async def entries(
        self, since: datetime | None = None, reflink_id: str | None = None
    ) -> list[RateLimitLogEntry]:
        """Entries at or after `since`, optionally restricted to one reflink."""
        result = []
        for raw in await self._store.get_list(self._key):
            entry = RateLimitLogEntry.model_validate_json(raw)
            if since is not None and entry.timestamp < since:
                continue
            if reflink_id is not None and entry.reflink_id != reflink_id:
                continue
            result.append(entry)
        return result

    async def trim_before(self, cutoff: datetime) -> int:
        """Drop entries older than `cutoff`. Returns how many were dropped."""
        drop = 0
        for raw in await self._store.get_list(self._key):
            if RateLimitLogEntry.model_validate_json(raw).timestamp >= cutoff:
                break
            drop += 1
        await self._store.trim_list(self._key, drop)
        if drop:
            logger.info(f"Trimmed {drop} rate limit log entries older than {cutoff.isoformat()}")
        return drop


__all__ = ["RateLimitLog"]
