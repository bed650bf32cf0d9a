# Portfolio Guard - AI Access-Control & Context-Assembly Engine
# Copyright (c) 2026 George Scott Foley
# ORCID: 0009-0006-4957-0540
# Email: Georgescottfoley@proton.me
# Licensed under the MIT License - see LICENSE file for details

"""Content sources, relevance scoring and token-budgeted context assembly."""

from .manager import (
    CONTEXT_HEADER,
    TRUNCATION_MARKER,
    CacheStats,
    ContextManager,
    ContextResult,
    assemble_context,
    optimize_context_size,
)
from .models import (
    ContentSourceConfig,
    ContentType,
    ContextBuildOptions,
    ContextCacheEntry,
    RelevantContent,
    SearchOptions,
    SourceMetadata,
)
from .provider import AccessLevel, ContextFilter, ContextProvider, FilteredContext, empty_context
from .providers import (
    AboutProvider,
    ExperienceProvider,
    HttpProjectsProvider,
    PortfolioDocument,
    ProjectsProvider,
    ResumeProvider,
    SkillsProvider,
    builtin_providers,
    load_portfolio,
)
from .scoring import prioritize, score_section, score_text
from .sources import ContentProvider, ContentSourceRegistry, SourceInfo, SourceSearch

__all__ = [
    "CONTEXT_HEADER",
    "TRUNCATION_MARKER",
    "CacheStats",
    "ContextManager",
    "ContextResult",
    "assemble_context",
    "optimize_context_size",
    "ContentSourceConfig",
    "ContentType",
    "ContextBuildOptions",
    "ContextCacheEntry",
    "RelevantContent",
    "SearchOptions",
    "SourceMetadata",
    "AccessLevel",
    "ContextFilter",
    "ContextProvider",
    "FilteredContext",
    "empty_context",
    "AboutProvider",
    "ExperienceProvider",
    "HttpProjectsProvider",
    "PortfolioDocument",
    "ProjectsProvider",
    "ResumeProvider",
    "SkillsProvider",
    "builtin_providers",
    "load_portfolio",
    "prioritize",
    "score_section",
    "score_text",
    "ContentProvider",
    "ContentSourceRegistry",
    "SourceInfo",
    "SourceSearch",
]
