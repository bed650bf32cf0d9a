# Portfolio Guard - AI Access-Control & Context-Assembly Engine
# Copyright (c) 2026 George Scott Foley
# ORCID: 0009-0006-4957-0540
# Email: Georgescottfoley@proton.me
# Licensed under the MIT License - see LICENSE file for details

"""
Context Provider

Access-level aware context for a conversation. A valid reflink grants
premium access with its feature flags; everyone else gets the basic
level. A caller may ask for less than it was granted, never more.

Access levels:
    no_access  no portfolio context at all
    basic      up to 2000 tokens, no hidden context
    limited    up to 3000 tokens, no hidden context
    premium    the configured maximum, hidden context included
"""

import logging
from dataclasses import dataclass, field
from enum import StrEnum
from typing import Any

from ..access.reflinks import ReflinkManager
from ..core.exceptions import ContextBuildFailure, StoreUnavailable
from ..core.settings import ContextSettings
from ..core.tokens import estimate_tokens
from .manager import ContextManager, optimize_context_size
from .models import ContextBuildOptions, RelevantContent

logger = logging.getLogger(__name__)

DEFAULT_QUERY = "general information"


class AccessLevel(StrEnum):
    NO_ACCESS = "no_access"
    BASIC = "basic"
    LIMITED = "limited"
    PREMIUM = "premium"


# None means the configured maximum
ACCESS_LEVEL_TOKEN_CAPS: dict[AccessLevel, int | None] = {
    AccessLevel.NO_ACCESS: 0,
    AccessLevel.BASIC: 2000,
    AccessLevel.LIMITED: 3000,
    AccessLevel.PREMIUM: None,
}

_LEVEL_ORDER = [
    AccessLevel.NO_ACCESS,
    AccessLevel.BASIC,
    AccessLevel.LIMITED,
    AccessLevel.PREMIUM,
]

BASE_PROMPT = """You are an AI assistant for a portfolio website. You help visitors learn about the portfolio owner's background, projects, and expertise.

IMPORTANT GUIDELINES:
- You are the portfolio owner's assistant, not the owner themselves
- Speak about the portfolio owner in third person
- Only provide information based on the available portfolio content
- If you don't know something, clearly state that limitation
- Maintain a professional, helpful tone"""

ACCESS_PROMPTS: dict[AccessLevel, str] = {
    AccessLevel.BASIC: """
ACCESS LEVEL: Basic
- Provide general information about projects and background
- Keep responses concise and focused
- No advanced analysis or detailed technical discussions""",
    AccessLevel.LIMITED: """
ACCESS LEVEL: Limited
- Provide detailed information about projects and background
- Can discuss technical aspects in moderate detail
- Limited advanced features""",
    AccessLevel.PREMIUM: """
ACCESS LEVEL: Premium
- Full access to all portfolio information
- Can provide detailed technical analysis
- Advanced navigation and interaction capabilities enabled""",
}

FALLBACK_SYSTEM_PROMPT = "You are an AI assistant. Please provide helpful responses."
FALLBACK_INITIAL_CONTEXT = "No context available."
FALLBACK_PUBLIC_CONTEXT = "Welcome! I can help answer questions about the portfolio."


@dataclass
class ContextFilter:
    """Who is asking and what they may use."""

    access_level: AccessLevel = AccessLevel.BASIC
    reflink_id: str | None = None
    enable_voice_ai: bool = False
    enable_job_analysis: bool = False
    enable_advanced_navigation: bool = False
    custom_context: str | None = None
    recipient_name: str | None = None

    @property
    def capabilities(self) -> dict[str, bool]:
        return {
            "voiceAI": self.enable_voice_ai,
            "jobAnalysis": self.enable_job_analysis,
            "advancedNavigation": self.enable_advanced_navigation,
        }


@dataclass
class FilteredContext:
    """
    Context split by audience.

    system_prompt, initial_context and hidden_context go to the model;
    public_context is safe to show the visitor.
    """

    system_prompt: str
    initial_context: str
    hidden_context: str
    public_context: str
    access_level: AccessLevel
    capabilities: dict[str, bool] = field(default_factory=dict)
    relevant_content: list[RelevantContent] = field(default_factory=list)
    token_count: int = 0
    from_cache: bool = False
    warnings: list[str] = field(default_factory=list)

    def to_dict(self, include_hidden: bool = False) -> dict[str, Any]:
        data = {
            "system_prompt": self.system_prompt,
            "initial_context": self.initial_context,
            "public_context": self.public_context,
            "access_level": str(self.access_level),
            "capabilities": self.capabilities,
            "relevant_content": [c.model_dump(mode="json") for c in self.relevant_content],
            "token_count": self.token_count,
            "from_cache": self.from_cache,
            "warnings": self.warnings,
        }
        if include_hidden:
            data["hidden_context"] = self.hidden_context
        return data


def empty_context(warning: str | None = None) -> FilteredContext:
    """Degraded context used when assembly fails."""
    return FilteredContext(
        system_prompt=FALLBACK_SYSTEM_PROMPT,
        initial_context=FALLBACK_INITIAL_CONTEXT,
        hidden_context="",
        public_context=FALLBACK_PUBLIC_CONTEXT,
        access_level=AccessLevel.BASIC,
        capabilities=ContextFilter().capabilities,
        token_count=estimate_tokens(FALLBACK_SYSTEM_PROMPT + FALLBACK_INITIAL_CONTEXT),
        warnings=[warning] if warning else [],
    )


class ContextProvider:
    """
    Builds FilteredContext for a session.

    Usage:
        provider = ContextProvider(context_manager, reflinks, settings.context)
        ctx = await provider.load_context(session_id, "tell me about python work", code)
    """

    def __init__(
        self,
        manager: ContextManager,
        reflinks: ReflinkManager,
        settings: ContextSettings | None = None,
    ):
        self._manager = manager
        self._reflinks = reflinks
        self._settings = settings or ContextSettings()

    async def determine_filter(
        self, reflink_code: str | None, access_level: AccessLevel | None = None
    ) -> ContextFilter:
        """
        A valid reflink grants premium; anyone else is granted basic.

        A requested access_level above the granted one is ignored. One
        below it is honoured (a premium caller may ask for basic).
        """
        granted = AccessLevel.BASIC
        validation = None
        if reflink_code:
            validation = await self._reflinks.validate_with_budget(reflink_code)
            if validation.valid:
                granted = AccessLevel.PREMIUM
            else:
                logger.info(f"Reflink {reflink_code} not valid for context: {validation.reason}")

        if access_level is not None and access_level != granted:
            if _LEVEL_ORDER.index(access_level) > _LEVEL_ORDER.index(granted):
                logger.warning(f"Ignoring requested access level {access_level} above {granted}")
            else:
                return ContextFilter(access_level=access_level)

        if granted != AccessLevel.PREMIUM:
            return ContextFilter(access_level=granted)

        reflink = validation.reflink
        return ContextFilter(
            access_level=AccessLevel.PREMIUM,
            reflink_id=reflink.id,
            enable_voice_ai=reflink.enable_voice_ai,
            enable_job_analysis=reflink.enable_job_analysis,
            enable_advanced_navigation=reflink.enable_advanced_navigation,
            custom_context=reflink.custom_context,
            recipient_name=reflink.recipient_name,
        )

    def token_budget(self, access_level: AccessLevel, requested: int | None = None) -> int:
        """Requested budget clamped to the level's cap; the configured max for premium."""
        cap = ACCESS_LEVEL_TOKEN_CAPS[access_level]
        cap = self._settings.max_tokens if cap is None else min(cap, self._settings.max_tokens)
        return cap if requested is None else min(requested, cap)

    # ----------------------------------------------------------
    # Prompt sections
    # ----------------------------------------------------------

    @staticmethod
    def generate_system_prompt(context_filter: ContextFilter) -> str:
        access = ACCESS_PROMPTS.get(context_filter.access_level, "")
        if context_filter.access_level == AccessLevel.PREMIUM:
            if context_filter.recipient_name:
                access += f"\n- This session is personalized for {context_filter.recipient_name}"
            if context_filter.custom_context:
                access += f"\n- Additional context: {context_filter.custom_context}"

        capability = ""
        if context_filter.enable_voice_ai:
            capability += "\n- Voice interaction capabilities enabled"
        if context_filter.enable_job_analysis:
            capability += "\n- Job specification analysis capabilities enabled"
        if context_filter.enable_advanced_navigation:
            capability += "\n- Advanced portfolio navigation capabilities enabled"

        return "\n".join(part for part in (BASE_PROMPT, access, capability) if part)

    @staticmethod
    def generate_hidden_context(context_filter: ContextFilter) -> str:
        """Server-side notes; premium only."""
        if context_filter.access_level != AccessLevel.PREMIUM:
            return ""

        def flag(enabled: bool) -> str:
            return "enabled" if enabled else "disabled"

        lines = [
            "HIDDEN CONTEXT (not visible to user):",
            f"- Access Level: {context_filter.access_level}",
            f"- Voice AI: {flag(context_filter.enable_voice_ai)}",
            f"- Job Analysis: {flag(context_filter.enable_job_analysis)}",
            f"- Advanced Navigation: {flag(context_filter.enable_advanced_navigation)}",
        ]
        if context_filter.reflink_id:
            lines.append(f"- Reflink ID: {context_filter.reflink_id}")
        if context_filter.custom_context:
            lines.append(f"- Custom Context: {context_filter.custom_context}")
        return "\n".join(lines)

    # ----------------------------------------------------------
    # Entry point
    # ----------------------------------------------------------

    async def load_context(
        self,
        session_id: str,
        query: str | None = None,
        reflink_code: str | None = None,
        access_level: AccessLevel | None = None,
        max_tokens: int | None = None,
    ) -> FilteredContext:
        """
        Context for one conversation turn.

        Never raises for context failures: a failed build degrades to an
        empty context carrying a warning.
        """
        try:
            context_filter = await self.determine_filter(reflink_code, access_level)
            budget = self.token_budget(context_filter.access_level, max_tokens)
            result = await self._manager.build_context_with_caching(
                session_id,
                query or DEFAULT_QUERY,
                ContextBuildOptions(max_tokens=budget),
            )
        except (ContextBuildFailure, StoreUnavailable) as e:
            logger.warning(f"Context unavailable for session {session_id}: {e.message}")
            return empty_context(f"Context unavailable: {e.message}")

        base = result.context
        initial = base
        public = base
        if context_filter.access_level == AccessLevel.PREMIUM and context_filter.recipient_name:
            name = context_filter.recipient_name
            initial = optimize_context_size(
                f"This conversation is with {name}.\n\n{base}", max(budget, 0)
            )
            public = f"Welcome {name}! You have access to enhanced AI features.\n\n{base}"

        system_prompt = self.generate_system_prompt(context_filter)
        hidden = self.generate_hidden_context(context_filter)

        return FilteredContext(
            system_prompt=system_prompt,
            initial_context=initial,
            hidden_context=hidden,
            public_context=public,
            access_level=context_filter.access_level,
            capabilities=context_filter.capabilities,
            relevant_content=result.relevant_content,
            token_count=estimate_tokens(system_prompt + initial + hidden),
            from_cache=result.from_cache,
            warnings=result.warnings,
        )


__all__ = [
    "AccessLevel",
    "ACCESS_LEVEL_TOKEN_CAPS",
    "ContextFilter",
    "ContextProvider",
    "FilteredContext",
    "empty_context",
]
