# Portfolio Guard - AI Access-Control & Context-Assembly Engine
# Copyright (c) 2026 George Scott Foley
# ORCID: 0009-0006-4957-0540
# Email: Georgescottfoley@proton.me
# Licensed under the MIT License - see LICENSE file for details

"""
Service Container

Every component is built once here with its collaborators passed in
explicitly. The gateway and CLI both go through build_services so the
wiring lives in one place.
"""

import logging
from dataclasses import dataclass, field
from typing import Any

from ..access.rate_limit import RateLimiter
from ..access.reflinks import ReflinkManager
from ..context.manager import ContextManager
from ..context.provider import ContextProvider
from ..context.providers import HttpProjectsProvider, builtin_providers, load_portfolio
from ..context.sources import ContentSourceRegistry
from ..core.async_base import Clock, utcnow
from ..core.settings import Settings
from ..data.store import UsageStore
from ..security.abuse import AbuseDetector, Classifier
from ..security.blacklist import BlacklistManager
from ..security.notifier import SecurityNotifier, build_notifier
from .orchestrator import AccessOrchestrator

logger = logging.getLogger(__name__)


@dataclass
class CleanupReport:
    expired_rate_limit_records: int = 0
    expired_reflinks: int = 0
    old_blacklist_entries: int = 0
    expired_contexts: int = 0
    errors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "expired_rate_limit_records": self.expired_rate_limit_records,
            "expired_reflinks": self.expired_reflinks,
            "old_blacklist_entries": self.old_blacklist_entries,
            "expired_contexts": self.expired_contexts,
            "errors": self.errors,
        }


@dataclass
class Services:
    """All long-lived components sharing one store and clock."""

    settings: Settings
    store: UsageStore
    clock: Clock
    reflinks: ReflinkManager
    rate_limiter: RateLimiter
    blacklist: BlacklistManager
    abuse: AbuseDetector
    notifier: SecurityNotifier
    registry: ContentSourceRegistry
    context_manager: ContextManager
    context_provider: ContextProvider
    orchestrator: AccessOrchestrator

    async def run_cleanup(self) -> CleanupReport:
        """
        One maintenance sweep. Each job runs even if an earlier one failed;
        failures are logged and reported.
        """
        report = CleanupReport()
        jobs = (
            ("expired_rate_limit_records", self.rate_limiter.cleanup_expired_records),
            ("expired_reflinks", self.reflinks.cleanup_expired),
            ("old_blacklist_entries", self.blacklist.cleanup_old_entries),
            ("expired_contexts", self.context_manager.sweep_expired),
        )
        for name, job in jobs:
            try:
                setattr(report, name, await job())
            except Exception as e:
                logger.exception(f"Cleanup job {name} failed")
                report.errors.append(f"{name}: {e}")

        logger.info(f"Cleanup finished: {report.to_dict()}")
        return report

    async def close(self) -> None:
        await self.notifier.stop()
        await self.registry.close()
        await self.store.close()


async def register_configured_sources(
    registry: ContentSourceRegistry, settings: Settings, clock: Clock = utcnow
) -> list[str]:
    """Register the portfolio document providers and the projects API, when configured."""
    context = settings.context
    if context.portfolio_file:
        document = load_portfolio(context.portfolio_file)
        for provider in builtin_providers(document, clock):
            await registry.register(provider)

    if context.projects_api_url:
        await registry.register(
            HttpProjectsProvider(
                context.projects_api_url,
                timeout=context.source_timeout_seconds,
                clock=clock,
            )
        )

    return registry.provider_ids


async def build_services(
    settings: Settings,
    store: UsageStore,
    clock: Clock = utcnow,
    notifier: SecurityNotifier | None = None,
    classifier: Classifier | None = None,
    register_sources: bool = True,
) -> Services:
    """
    Wire every component around `store`.

    Raises:
        ConfigurationError: the portfolio document cannot be loaded
    """
    reflinks = ReflinkManager(store, clock=clock)
    rate_limiter = RateLimiter(store, reflinks, settings.rate_limit, clock=clock)
    blacklist = BlacklistManager(store, settings.security, clock=clock)
    abuse = AbuseDetector(blacklist, settings.security, classifier=classifier)
    notifier = notifier or build_notifier(settings.notifications, clock=clock)

    registry = ContentSourceRegistry(store, settings.context, clock=clock)
    if register_sources:
        sources = await register_configured_sources(registry, settings, clock)
        logger.info(f"Registered content sources: {sources}")

    context_manager = ContextManager(registry, store, settings.context, clock=clock)
    context_provider = ContextProvider(context_manager, reflinks, settings.context)
    orchestrator = AccessOrchestrator(
        blacklist,
        rate_limiter,
        reflinks,
        abuse,
        notifier,
        context_provider,
        clock=clock,
    )

    return Services(
        settings=settings,
        store=store,
        clock=clock,
        reflinks=reflinks,
        rate_limiter=rate_limiter,
        blacklist=blacklist,
        abuse=abuse,
        notifier=notifier,
        registry=registry,
        context_manager=context_manager,
        context_provider=context_provider,
        orchestrator=orchestrator,
    )


__all__ = ["Services", "CleanupReport", "build_services", "register_configured_sources"]
