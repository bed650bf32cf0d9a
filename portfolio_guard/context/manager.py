# Portfolio Guard - AI Access-Control & Context-Assembly Engine
# Copyright (c) 2026 George Scott Foley
# ORCID: 0009-0006-4957-0540
# Email: Georgescottfoley@proton.me
# Licensed under the MIT License - see LICENSE file for details

"""
Context Manager

Builds the bounded context string handed to the language model:

1. Search every enabled content source (ContentSourceRegistry)
2. Prioritize: relevance, then content type, then shorter title
3. Assemble sections under a token budget (~4 chars per token)
4. Cache the result per session

Cache semantics:
    One entry per session, stored in the usage store under
    context_cache:{session_id}. A hit needs the exact same query (and
    budget) and an unexpired entry; anything else rebuilds and
    overwrites. Reads and writes for one session are serialised in
    process so a session never sees its own requests out of order.
"""

import asyncio
import logging
import re
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any

from ..core.async_base import Clock, utcnow
from ..core.exceptions import ContextBuildFailure
from ..core.settings import ContextSettings
from ..core.tokens import estimate_tokens
from ..data.store import UsageStore
from .models import ContextBuildOptions, ContextCacheEntry, RelevantContent, SearchOptions
from .scoring import prioritize
from .sources import ContentSourceRegistry

logger = logging.getLogger(__name__)

CONTEXT_CACHE_PREFIX = "context_cache:"
CONTEXT_HEADER = "=== PORTFOLIO CONTEXT ===\n"
TRUNCATION_MARKER = "[Content truncated due to length...]"

# A partial section is only worth including with at least this many tokens left
MIN_PARTIAL_TOKENS = 50
MIN_MARKER_TOKENS = 20

_SENTENCE_END = re.compile(r"[.!?]+")


def _cache_key(session_id: str) -> str:
    return f"{CONTEXT_CACHE_PREFIX}{session_id}"


# ============================================================
# ASSEMBLY
# ============================================================


def format_section(item: RelevantContent) -> str:
    parts = [
        f"## {item.title} ({str(item.type).upper()})",
        f"Relevance: {item.relevance_score * 100:.1f}%",
        "",
    ]
    if item.summary and item.summary != item.content:
        parts.append(f"Summary: {item.summary}")
        parts.append("")
    parts.append(f"Content: {item.content}")
    if item.keywords:
        parts.append(f"Keywords: {', '.join(item.keywords)}")
    parts.append("---")
    parts.append("")
    return "\n".join(parts)


def truncate_section(section: str, max_tokens: int) -> str | None:
    """
    Keep whole lines of `section` within `max_tokens`.

    Returns None when fewer than MIN_PARTIAL_TOKENS are available.
    """
    if max_tokens < MIN_PARTIAL_TOKENS:
        return None

    kept: list[str] = []
    used = 0
    for line in section.split("\n"):
        cost = estimate_tokens(line + "\n")
        if used + cost > max_tokens:
            if max_tokens - used > MIN_MARKER_TOKENS:
                kept.append(TRUNCATION_MARKER)
            break
        kept.append(line)
        used += cost

    return "\n".join(kept) if kept else None


def assemble_context(items: list[RelevantContent], max_tokens: int) -> str:
    """
    Join the header and sections in order until the budget runs out.

    The section that does not fit is truncated when enough budget
    remains, otherwise dropped in favour of the truncation marker.
    The result's estimate never exceeds `max_tokens`.
    """
    used = estimate_tokens(CONTEXT_HEADER)
    if used > max_tokens:
        return ""

    parts = [CONTEXT_HEADER]
    for item in items:
        section = format_section(item)
        # Each part after the first costs one joining newline
        cost = estimate_tokens("\n" + section)
        if used + cost <= max_tokens:
            parts.append(section)
            used += cost
            continue

        remaining = max_tokens - used
        truncated = truncate_section(section, remaining - 1)
        if truncated:
            parts.append(truncated)
        elif estimate_tokens("\n" + TRUNCATION_MARKER) <= remaining:
            parts.append(TRUNCATION_MARKER)
        break

    return "\n".join(parts)


def optimize_context_size(context: str, max_tokens: int) -> str:
    """Shrink `context` to roughly `max_tokens`, cutting at sentence ends where possible."""
    current = estimate_tokens(context)
    if current <= max_tokens:
        return context

    target = (len(context) * max_tokens) // current
    optimized = ""
    for sentence in _SENTENCE_END.split(context):
        candidate = sentence + "."
        if len(optimized) + len(candidate) > target:
            break
        optimized += candidate

    if not optimized:
        optimized = context[: max(target - 3, 0)] + "..."
    return optimized


# ============================================================
# RESULTS
# ============================================================


@dataclass
class ContextResult:
    context: str
    from_cache: bool
    token_count: int
    relevant_content: list[RelevantContent] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "context": self.context,
            "from_cache": self.from_cache,
            "token_count": self.token_count,
            "relevant_content": [c.model_dump(mode="json") for c in self.relevant_content],
            "warnings": self.warnings,
        }


@dataclass
class CacheStats:
    size: int
    sessions: list[str]
    total_tokens: int

    def to_dict(self) -> dict[str, Any]:
        return {"size": self.size, "sessions": self.sessions, "total_tokens": self.total_tokens}


# ============================================================
# CONTEXT MANAGER
# ============================================================


class ContextManager:
    """
    Relevance-ranked, token-budgeted context assembly with session caching.

    Usage:
        manager = ContextManager(registry, store, settings.context)
        result = await manager.build_context_with_caching(session_id, "python projects")
        prompt = result.context
    """

    def __init__(
        self,
        registry: ContentSourceRegistry,
        store: UsageStore,
        settings: ContextSettings | None = None,
        clock: Clock = utcnow,
    ):
        self.registry = registry
        self._store = store
        self._settings = settings or ContextSettings()
        self._clock = clock
        self._session_locks: dict[str, asyncio.Lock] = {}
        self._lock_users: dict[str, int] = {}

    # ----------------------------------------------------------
    # Search and assembly
    # ----------------------------------------------------------

    def _budget(self, options: ContextBuildOptions) -> int:
        if options.max_tokens is not None:
            return options.max_tokens
        return self._settings.max_tokens

    def _search_options(self, options: ContextBuildOptions) -> SearchOptions:
        return SearchOptions(
            max_results=options.max_results or self._settings.max_results,
            min_relevance_score=(
                options.min_relevance_score
                if options.min_relevance_score is not None
                else self._settings.min_relevance_score
            ),
        )

    async def search_relevant_content(
        self, query: str, options: ContextBuildOptions | None = None
    ) -> tuple[list[RelevantContent], list[str]]:
        """Prioritized matches across sources, plus warnings for failed sources."""
        options = options or ContextBuildOptions()
        search = await self.registry.search(query, self._search_options(options))

        excluded = options.excluded_types()
        content = [c for c in search.results if c.type not in excluded]
        warnings = [f"Content source unavailable: {s}" for s in search.failed_sources]
        return prioritize(content), warnings

    async def _build(self, query: str, options: ContextBuildOptions) -> ContextResult:
        budget = self._budget(options)
        if budget <= 0:
            return ContextResult(context="", from_cache=False, token_count=0)

        try:
            content, warnings = await self.search_relevant_content(query, options)
        except Exception as e:
            logger.exception(f"Context search failed: {e}")
            raise ContextBuildFailure(f"Context build failed: {e}") from e

        context = assemble_context(content, budget)
        return ContextResult(
            context=context,
            from_cache=False,
            token_count=estimate_tokens(context),
            relevant_content=content,
            warnings=warnings,
        )

    async def build_context(self, query: str, options: ContextBuildOptions | None = None) -> str:
        """
        Assemble context for `query` within the token budget.

        Raises:
            ContextBuildFailure: the search itself failed
        """
        result = await self._build(query, options or ContextBuildOptions())
        return result.context

    # ----------------------------------------------------------
    # Session cache
    # ----------------------------------------------------------

    @asynccontextmanager
    async def _session(self, session_id: str) -> AsyncIterator[None]:
        """Serialise cache access for one session."""
        lock = self._session_locks.setdefault(session_id, asyncio.Lock())
        self._lock_users[session_id] = self._lock_users.get(session_id, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._lock_users[session_id] -= 1
            if not self._lock_users[session_id]:
                del self._lock_users[session_id]
                del self._session_locks[session_id]

    async def get_cached_context(self, session_id: str) -> ContextCacheEntry | None:
        raw = await self._store.get(_cache_key(session_id))
        if raw is None:
            return None
        entry = ContextCacheEntry.model_validate_json(raw)
        if entry.expires_at <= self._clock():
            await self._store.delete(_cache_key(session_id))
            return None
        return entry

    async def set_cached_context(
        self, session_id: str, query: str, result: ContextResult, budget: int
    ) -> ContextCacheEntry:
        now = self._clock()
        ttl = self._settings.cache_ttl_seconds
        entry = ContextCacheEntry(
            session_id=session_id,
            query=query,
            context=result.context,
            token_count=result.token_count,
            budget=budget,
            relevant_content=result.relevant_content,
            created_at=now,
            expires_at=now + timedelta(seconds=ttl),
        )
        await self._store.set(_cache_key(session_id), entry.model_dump_json(), ttl_seconds=ttl)
        return entry

    async def build_context_with_caching(
        self,
        session_id: str,
        query: str,
        options: ContextBuildOptions | None = None,
    ) -> ContextResult:
        """
        Serve the session's cached context for an identical query,
        otherwise rebuild and overwrite the session's cache slot.

        A build with failed sources is returned but not cached.
        """
        options = options or ContextBuildOptions()
        budget = self._budget(options)

        async with self._session(session_id):
            cached = await self.get_cached_context(session_id)
            if cached is not None and cached.query == query and cached.budget == budget:
                logger.debug(f"Context cache hit for session {session_id}")
                return ContextResult(
                    context=cached.context,
                    from_cache=True,
                    token_count=cached.token_count,
                    relevant_content=cached.relevant_content,
                )

            result = await self._build(query, options)
            if not result.warnings:
                await self.set_cached_context(session_id, query, result, budget)
            return result

    async def clear_session_cache(self, session_id: str) -> bool:
        async with self._session(session_id):
            return bool(await self._store.delete(_cache_key(session_id)))

    async def _cached_entries(self) -> list[ContextCacheEntry]:
        entries = []
        for key in await self._store.scan_keys(CONTEXT_CACHE_PREFIX):
            raw = await self._store.get(key)
            if raw is not None:
                entries.append(ContextCacheEntry.model_validate_json(raw))
        return entries

    async def clear_all_cache(self) -> int:
        keys = await self._store.scan_keys(CONTEXT_CACHE_PREFIX)
        removed = await self._store.delete(*keys)
        logger.info(f"Cleared {removed} cached contexts")
        return removed

    async def sweep_expired(self) -> int:
        """Delete expired cache entries. Expired entries are never served regardless."""
        now = self._clock()
        stale = [
            _cache_key(e.session_id) for e in await self._cached_entries() if e.expires_at <= now
        ]
        removed = await self._store.delete(*stale)
        if removed:
            logger.info(f"Swept {removed} expired cached contexts")
        return removed

    async def get_cache_stats(self) -> CacheStats:
        now = self._clock()
        live = [e for e in await self._cached_entries() if e.expires_at > now]
        return CacheStats(
            size=len(live),
            sessions=[e.session_id for e in live],
            total_tokens=sum(e.token_count for e in live),
        )


__all__ = [
    "ContextManager",
    "ContextResult",
    "CacheStats",
    "CONTEXT_HEADER",
    "TRUNCATION_MARKER",
    "MIN_PARTIAL_TOKENS",
    "assemble_context",
    "format_section",
    "truncate_section",
    "optimize_context_size",
]
