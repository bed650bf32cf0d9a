"""
Test Suite: Context Assembly
============================

Token-bounded assembly, relevance ordering and the per-session cache.
"""

from datetime import UTC, datetime

import pytest

from portfolio_guard.context.manager import (
    CONTEXT_HEADER,
    TRUNCATION_MARKER,
    ContextManager,
    assemble_context,
    format_section,
    optimize_context_size,
    truncate_section,
)
from portfolio_guard.context.models import (
    ContentType,
    ContextBuildOptions,
    RelevantContent,
    SourceMetadata,
)
from portfolio_guard.context.providers import (
    AboutSection,
    PortfolioDocument,
    ProjectItem,
    ProjectSection,
    builtin_providers,
)
from portfolio_guard.context.scoring import prioritize
from portfolio_guard.context.sources import ContentProvider, ContentSourceRegistry
from portfolio_guard.core.exceptions import ContextBuildFailure
from portfolio_guard.core.settings import ContextSettings
from portfolio_guard.core.tokens import estimate_tokens


def _item(id: str, score: float, length: int = 400, type=ContentType.PROJECT) -> RelevantContent:
    return RelevantContent(
        id=id,
        type=type,
        title=f"Item {id}",
        content="word " * (length // 5),
        relevance_score=score,
        keywords=["python"],
    )


class BrokenSource(ContentProvider):
    id = "flaky"
    type = ContentType.CUSTOM
    name = "Flaky"

    async def is_available(self) -> bool:
        return True

    async def get_metadata(self) -> SourceMetadata:
        return SourceMetadata(last_updated=datetime(2026, 1, 1, tzinfo=UTC))

    async def search_content(self, query, options):
        raise RuntimeError("backend down")


@pytest.fixture
def context_settings():
    return ContextSettings()


@pytest.fixture
def registry(store, clock, context_settings):
    return ContentSourceRegistry(store, context_settings, clock=clock)


@pytest.fixture
def manager(registry, store, clock, context_settings):
    return ContextManager(registry, store, context_settings, clock=clock)


async def _register_portfolio(registry, portfolio, clock):
    for provider in builtin_providers(portfolio, clock):
        await registry.register(provider)


class TestAssembly:
    @pytest.mark.parametrize("budget", [10, 60, 150, 400, 1000])
    def test_never_exceeds_budget(self, budget):
        items = [_item(str(i), 1.0 - i / 10) for i in range(6)]
        context = assemble_context(items, budget)
        assert estimate_tokens(context) <= budget

    def test_header_and_order(self):
        context = assemble_context([_item("a", 0.9, 40), _item("b", 0.5, 40)], 4000)
        assert context.startswith(CONTEXT_HEADER)
        assert context.index("## Item a") < context.index("## Item b")
        assert TRUNCATION_MARKER not in context

    def test_overflow_is_marked(self):
        context = assemble_context([_item(str(i), 0.9, 2000) for i in range(3)], 700)
        assert TRUNCATION_MARKER in context

    def test_budget_below_header_gives_empty(self):
        assert assemble_context([_item("a", 0.9)], 2) == ""

    def test_format_section(self):
        item = RelevantContent(
            id="x",
            type=ContentType.ABOUT,
            title="About",
            content="Engineer.",
            summary="Short bio",
            relevance_score=0.5,
            keywords=["Python", "React"],
        )
        section = format_section(item)
        assert section.startswith("## About (ABOUT)\nRelevance: 50.0%")
        assert "Summary: Short bio" in section
        assert "Keywords: Python, React" in section

    def test_truncate_needs_minimum_budget(self):
        section = format_section(_item("a", 0.9, 2000))
        assert truncate_section(section, 49) is None
        truncated = truncate_section(section, 120)
        assert estimate_tokens(truncated) <= 120

    def test_optimize_cuts_at_sentences(self):
        text = "First sentence here. Second sentence here. Third sentence here."
        optimized = optimize_context_size(text, 8)
        assert optimized == "First sentence here."
        assert optimize_context_size(text, 1000) == text


class TestPrioritize:
    def test_relevance_then_type_then_title(self):
        items = [
            RelevantContent(id="1", type=ContentType.RESUME, title="R", relevance_score=0.5),
            RelevantContent(id="2", type=ContentType.ABOUT, title="About me", relevance_score=0.5),
            RelevantContent(id="3", type=ContentType.ABOUT, title="Bio", relevance_score=0.5),
            RelevantContent(id="4", type=ContentType.CUSTOM, title="C", relevance_score=0.9),
        ]
        assert [c.id for c in prioritize(items)] == ["4", "3", "2", "1"]


class TestBuild:
    @pytest.mark.asyncio
    async def test_react_typescript_query(self, manager, registry, portfolio, clock):
        await _register_portfolio(registry, portfolio, clock)
        result = await manager.build_context_with_caching("s1", "react typescript")

        assert result.from_cache is False
        ids = [c.id for c in result.relevant_content]
        assert ids[:2] == ["about-main", "dashboard-frontend"]
        assert "experience-0" in ids
        assert "experience-1" not in ids
        assert "## React Frontend (PROJECT)" in result.context
        assert result.token_count == estimate_tokens(result.context)
        assert result.token_count <= 4000

    @pytest.mark.asyncio
    async def test_only_matching_projects_returned(self, manager, registry, clock):
        document = PortfolioDocument(
            about=AboutSection(
                content="Backend engineer focused on Go services.",
                skills=["Go", "Kubernetes"],
            ),
            projects=[
                ProjectItem(
                    id="kit",
                    title="Component Kit",
                    sections=[
                        ProjectSection(
                            id="landing",
                            title="Landing Page",
                            content="React landing page in TypeScript.",
                            keywords=["react"],
                        ),
                        ProjectSection(
                            id="ui",
                            title="TypeScript UI Kit",
                            content="Reusable React components written in TypeScript.",
                            keywords=["react", "typescript"],
                        ),
                    ],
                )
            ],
        )
        await _register_portfolio(registry, document, clock)

        result = await manager.build_context_with_caching("s1", "react typescript")
        assert [c.id for c in result.relevant_content] == ["ui", "landing"]
        assert "(ABOUT)" not in result.context

    @pytest.mark.asyncio
    async def test_excluded_types(self, manager, registry, portfolio, clock):
        await _register_portfolio(registry, portfolio, clock)
        context = await manager.build_context(
            "react typescript", ContextBuildOptions(include_projects=False)
        )
        assert "(PROJECT)" not in context
        assert "(ABOUT)" in context

    @pytest.mark.asyncio
    async def test_zero_budget(self, manager, registry, portfolio, clock):
        await _register_portfolio(registry, portfolio, clock)
        assert await manager.build_context("react", ContextBuildOptions(max_tokens=0)) == ""

    @pytest.mark.asyncio
    async def test_search_failure_raises(self, manager, monkeypatch):
        async def broken_search(query, options=None):
            raise RuntimeError("index corrupted")

        monkeypatch.setattr(manager.registry, "search", broken_search)
        with pytest.raises(ContextBuildFailure):
            await manager.build_context("react")


class TestSessionCache:
    @pytest.mark.asyncio
    async def test_same_query_hits(self, manager, registry, portfolio, clock):
        await _register_portfolio(registry, portfolio, clock)
        first = await manager.build_context_with_caching("s1", "react typescript")
        second = await manager.build_context_with_caching("s1", "react typescript")
        assert second.from_cache is True
        assert second.context == first.context
        assert [c.id for c in second.relevant_content] == [c.id for c in first.relevant_content]

    @pytest.mark.asyncio
    async def test_different_query_rebuilds_and_overwrites(self, manager, registry, portfolio, clock):
        await _register_portfolio(registry, portfolio, clock)
        await manager.build_context_with_caching("s1", "react typescript")
        other = await manager.build_context_with_caching("s1", "python")
        assert other.from_cache is False
        assert (await manager.get_cached_context("s1")).query == "python"

    @pytest.mark.asyncio
    async def test_different_budget_misses(self, manager, registry, portfolio, clock):
        await _register_portfolio(registry, portfolio, clock)
        await manager.build_context_with_caching("s1", "react")
        result = await manager.build_context_with_caching(
            "s1", "react", ContextBuildOptions(max_tokens=500)
        )
        assert result.from_cache is False

    @pytest.mark.asyncio
    async def test_sessions_are_independent(self, manager, registry, portfolio, clock):
        await _register_portfolio(registry, portfolio, clock)
        await manager.build_context_with_caching("s1", "react")
        assert (await manager.build_context_with_caching("s2", "react")).from_cache is False

    @pytest.mark.asyncio
    async def test_entry_expires(self, manager, registry, portfolio, clock, context_settings):
        await _register_portfolio(registry, portfolio, clock)
        await manager.build_context_with_caching("s1", "react")
        clock.advance(seconds=context_settings.cache_ttl_seconds)
        result = await manager.build_context_with_caching("s1", "react")
        assert result.from_cache is False

    @pytest.mark.asyncio
    async def test_failed_source_build_not_cached(self, manager, registry, portfolio, clock):
        await _register_portfolio(registry, portfolio, clock)
        await registry.register(BrokenSource())
        result = await manager.build_context_with_caching("s1", "react")
        assert result.warnings == ["Content source unavailable: flaky"]
        assert await manager.get_cached_context("s1") is None

    @pytest.mark.asyncio
    async def test_stats_and_clear(self, manager, registry, portfolio, clock):
        await _register_portfolio(registry, portfolio, clock)
        await manager.build_context_with_caching("s1", "react")
        await manager.build_context_with_caching("s2", "python")

        stats = await manager.get_cache_stats()
        assert stats.size == 2
        assert sorted(stats.sessions) == ["s1", "s2"]

        assert await manager.clear_session_cache("s1") is True
        assert await manager.clear_session_cache("s1") is False
        assert await manager.clear_all_cache() == 1
        assert (await manager.get_cache_stats()).size == 0
