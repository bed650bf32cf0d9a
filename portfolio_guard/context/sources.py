# Portfolio Guard - AI Access-Control & Context-Assembly Engine
# Copyright (c) 2026 George Scott Foley
# ORCID: 0009-0006-4957-0540
# Email: Georgescottfoley@proton.me
# Licensed under the MIT License - see LICENSE file for details

"""
Content Source Registry

Provides:
- Provider registration with persisted per-source configuration
- Enable/disable toggles and priority weights (0-100)
- Concurrent scatter/gather search with per-source timeouts

A source that fails or times out contributes nothing to that search;
the others are unaffected.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

from ..core.async_base import Clock, utcnow
from ..core.exceptions import ContentSourceError
from ..core.settings import ContextSettings
from ..data.store import UsageStore, read_modify_write
from ..observability.logging import AuditLogger, audit_logger
from .models import ContentSourceConfig, ContentType, RelevantContent, SearchOptions, SourceMetadata

logger = logging.getLogger(__name__)

SOURCE_CONFIG_PREFIX = "content_sources:"


def _key(source_id: str) -> str:
    return f"{SOURCE_CONFIG_PREFIX}{source_id}"


# ============================================================
# PROVIDER BASE CLASS
# ============================================================


class ContentProvider(ABC):
    """
    A pluggable source of searchable knowledge.

    Usage:
        class TalksProvider(ContentProvider):
            id = "talks"
            type = ContentType.CUSTOM
            name = "Talks"

            async def is_available(self) -> bool: ...
            async def get_metadata(self) -> SourceMetadata: ...
            async def search_content(self, query, options) -> list[RelevantContent]: ...
    """

    id: str = ""
    type: ContentType = ContentType.CUSTOM
    name: str = ""
    description: str = ""
    version: str = "1.0.0"

    @abstractmethod
    async def is_available(self) -> bool:
        pass

    @abstractmethod
    async def get_metadata(self) -> SourceMetadata:
        pass

    @abstractmethod
    async def search_content(self, query: str, options: SearchOptions) -> list[RelevantContent]:
        pass

    async def close(self) -> None:
        """Release resources. Override if needed."""
        pass


# ============================================================
# RESULTS
# ============================================================


@dataclass
class SourceInfo:
    """A registered source with its configuration."""

    id: str
    type: ContentType
    name: str
    description: str
    version: str
    config: ContentSourceConfig
    available: bool | None = None
    metadata: SourceMetadata | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": str(self.type),
            "name": self.name,
            "description": self.description,
            "version": self.version,
            "enabled": self.config.enabled,
            "priority": self.config.priority,
            "config": self.config.config,
            "available": self.available,
            "metadata": self.metadata.to_dict() if self.metadata else None,
            "updated_at": self.config.updated_at.isoformat(),
        }


@dataclass
class SourceSearch:
    """Merged results of one search plus the sources that failed."""

    results: list[RelevantContent] = field(default_factory=list)
    failed_sources: list[str] = field(default_factory=list)
    queried_sources: list[str] = field(default_factory=list)


# ============================================================
# REGISTRY
# ============================================================


class ContentSourceRegistry:
    """
    Registry of content providers and their configuration.

    Providers live in process; their configuration lives in the usage
    store so toggles and priorities are shared by every instance and
    survive restarts.

    Usage:
        registry = ContentSourceRegistry(store, settings.context)
        await registry.register(AboutProvider(document))
        results = await registry.search_content("python", SearchOptions())
    """

    def __init__(
        self,
        store: UsageStore,
        settings: ContextSettings | None = None,
        clock: Clock = utcnow,
        audit: AuditLogger = audit_logger,
    ):
        self._store = store
        self._settings = settings or ContextSettings()
        self._clock = clock
        self._audit = audit
        self._providers: dict[str, ContentProvider] = {}

    # ----------------------------------------------------------
    # Registration
    # ----------------------------------------------------------

    async def register(self, provider: ContentProvider) -> ContentSourceConfig:
        """
        Register a provider.

        A source seen for the first time gets a configuration with the
        default priority, enabled unless auto-enable is switched off.
        An existing configuration is kept as is.
        """
        if not provider.id:
            raise ContentSourceError("Content provider must define an id")

        self._providers[provider.id] = provider
        now = self._clock()

        def mutate(current: str | None):
            if current is not None:
                return None
            config = ContentSourceConfig(
                id=provider.id,
                provider_id=provider.id,
                enabled=self._settings.auto_enable_new_sources,
                priority=self._settings.default_source_priority,
                created_at=now,
                updated_at=now,
            )
            return config.model_dump_json(), None

        written = await read_modify_write(self._store, _key(provider.id), mutate)
        raw = written or await self._store.get(_key(provider.id))
        config = ContentSourceConfig.model_validate_json(raw)
        logger.debug(f"Registered content source: {provider.id} (enabled={config.enabled})")
        return config

    async def unregister(self, source_id: str) -> None:
        provider = self._providers.pop(source_id, None)
        if provider is None:
            raise ContentSourceError(
                f"Unknown content source: {source_id}",
                details={"reason": "not_found", "source_id": source_id},
            )
        await provider.close()

    def get_provider(self, source_id: str) -> ContentProvider | None:
        return self._providers.get(source_id)

    @property
    def provider_ids(self) -> list[str]:
        return list(self._providers)

    async def close(self) -> None:
        for provider in self._providers.values():
            await provider.close()

    # ----------------------------------------------------------
    # Configuration
    # ----------------------------------------------------------

    def _require(self, source_id: str) -> ContentProvider:
        provider = self._providers.get(source_id)
        if provider is None:
            raise ContentSourceError(
                f"Unknown content source: {source_id}",
                details={"reason": "not_found", "source_id": source_id},
            )
        return provider

    async def get_config(self, source_id: str) -> ContentSourceConfig:
        provider = self._require(source_id)
        raw = await self._store.get(_key(source_id))
        if raw is None:
            # Configuration expired or was flushed; re-create the default
            return await self.register(provider)
        return ContentSourceConfig.model_validate_json(raw)

    async def _update(self, source_id: str, changes: dict[str, Any]) -> ContentSourceConfig:
        self._require(source_id)
        await self.get_config(source_id)
        now = self._clock()

        def mutate(current: str | None):
            if current is None:
                raise ContentSourceError(
                    f"Unknown content source: {source_id}",
                    details={"reason": "not_found", "source_id": source_id},
                )
            config = ContentSourceConfig.model_validate_json(current)
            updated = config.model_copy(update={**changes, "updated_at": now})
            return updated.model_dump_json(), None

        written = await read_modify_write(self._store, _key(source_id), mutate)
        self._audit.update("content_source", source_id, changes)
        return ContentSourceConfig.model_validate_json(written)

    async def toggle(self, source_id: str, enabled: bool) -> ContentSourceConfig:
        config = await self._update(source_id, {"enabled": enabled})
        logger.info(f"Content source {source_id} {'enabled' if enabled else 'disabled'}")
        return config

    async def set_priority(self, source_id: str, priority: int) -> ContentSourceConfig:
        if not 0 <= priority <= 100:
            raise ContentSourceError(
                "Priority must be between 0 and 100",
                details={"reason": "invalid_priority", "priority": priority},
            )
        return await self._update(source_id, {"priority": priority})

    async def update_config(self, source_id: str, values: dict[str, Any]) -> ContentSourceConfig:
        """Merge provider-specific settings into the source's config blob."""
        current = await self.get_config(source_id)
        return await self._update(source_id, {"config": {**current.config, **values}})

    # ----------------------------------------------------------
    # Discovery
    # ----------------------------------------------------------

    async def _probe(self, provider: ContentProvider) -> tuple[bool, SourceMetadata | None]:
        timeout = self._settings.source_timeout_seconds
        try:
            available = await asyncio.wait_for(provider.is_available(), timeout=timeout)
            metadata = await asyncio.wait_for(provider.get_metadata(), timeout=timeout)
            return available, metadata
        except TimeoutError:
            logger.warning(f"Content source {provider.id} timed out during probe")
        except Exception as e:
            logger.warning(f"Content source {provider.id} probe failed: {e}")
        return False, None

    async def list_sources(self, probe: bool = False) -> list[SourceInfo]:
        """All registered sources, highest priority first."""
        infos = []
        for provider in self._providers.values():
            config = await self.get_config(provider.id)
            info = SourceInfo(
                id=provider.id,
                type=provider.type,
                name=provider.name,
                description=provider.description,
                version=provider.version,
                config=config,
            )
            if probe:
                info.available, info.metadata = await self._probe(provider)
            infos.append(info)
        infos.sort(key=lambda i: i.config.priority, reverse=True)
        return infos

    async def get_available_sources(self) -> list[SourceInfo]:
        """Enabled sources whose providers report themselves available."""
        sources = await self.list_sources(probe=True)
        return [s for s in sources if s.config.enabled and s.available]

    # ----------------------------------------------------------
    # Search
    # ----------------------------------------------------------

    async def _query_source(
        self,
        provider: ContentProvider,
        config: ContentSourceConfig,
        query: str,
        options: SearchOptions,
    ) -> list[RelevantContent] | None:
        """Search one source. None means the source failed for this request."""

        async def run() -> list[RelevantContent]:
            if not await provider.is_available():
                return []
            return await provider.search_content(query, options)

        try:
            results = await asyncio.wait_for(run(), timeout=self._settings.source_timeout_seconds)
        except TimeoutError:
            logger.warning(
                f"Content source {provider.id} timed out after "
                f"{self._settings.source_timeout_seconds}s"
            )
            return None
        except Exception as e:
            logger.warning(f"Content source {provider.id} failed: {e}")
            return None

        weight = config.priority / 100
        # The floor applies to the weighted score
        return [
            r.model_copy(
                update={"relevance_score": r.relevance_score * weight, "source_id": provider.id}
            )
            for r in results
            if r.relevance_score * weight >= options.min_relevance_score
        ]

    async def search(self, query: str, options: SearchOptions | None = None) -> SourceSearch:
        """
        Query every enabled source concurrently.

        Scores are weighted by priority / 100, merged, sorted
        descending and cut to max_results.
        """
        options = options or SearchOptions()
        enabled = []
        for provider in self._providers.values():
            config = await self.get_config(provider.id)
            if config.enabled:
                enabled.append((provider, config))

        outcomes = await asyncio.gather(
            *(self._query_source(p, c, query, options) for p, c in enabled)
        )

        search = SourceSearch(queried_sources=[p.id for p, _ in enabled])
        for (provider, _), results in zip(enabled, outcomes, strict=True):
            if results is None:
                search.failed_sources.append(provider.id)
            else:
                search.results.extend(results)

        search.results.sort(key=lambda r: r.relevance_score, reverse=True)
        search.results = search.results[: options.max_results]
        return search

    async def search_content(
        self, query: str, options: SearchOptions | None = None
    ) -> list[RelevantContent]:
        return (await self.search(query, options)).results


__all__ = [
    "ContentProvider",
    "ContentSourceRegistry",
    "SourceInfo",
    "SourceSearch",
    "SOURCE_CONFIG_PREFIX",
]
