# Portfolio Guard - AI Access-Control & Context-Assembly Engine
# Copyright (c) 2026 George Scott Foley
# ORCID: 0009-0006-4957-0540
# Email: Georgescottfoley@proton.me
# Licensed under the MIT License - see LICENSE file for details

"""
Context records.

Search results, content source configuration and the per-session
context cache entry. The last two are persisted in the usage store as
JSON.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class ContentType(StrEnum):
    PROJECT = "project"
    ABOUT = "about"
    RESUME = "resume"
    EXPERIENCE = "experience"
    SKILLS = "skills"
    CUSTOM = "custom"


# Tie-break order for equally relevant content
TYPE_PRIORITY: dict[ContentType, int] = {
    ContentType.ABOUT: 5,
    ContentType.PROJECT: 4,
    ContentType.EXPERIENCE: 3,
    ContentType.SKILLS: 2,
    ContentType.RESUME: 1,
    ContentType.CUSTOM: 0,
}


class RelevantContent(BaseModel):
    """
    One piece of knowledge matched against a query.

    Accepts camelCase keys so results served by the site's own search
    API validate directly.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: str
    type: ContentType = ContentType.CUSTOM
    title: str
    content: str = ""
    summary: str = ""
    relevance_score: float = Field(default=0.0, ge=0.0)
    keywords: list[str] = Field(default_factory=list)
    project_id: str | None = None
    section_id: str | None = None
    source_id: str | None = None


@dataclass
class SearchOptions:
    max_results: int = 50
    min_relevance_score: float = 0.1
    filters: dict[str, Any] = field(default_factory=dict)


@dataclass
class SourceMetadata:
    """What a content source currently holds."""

    last_updated: datetime
    item_count: int = 0
    size: int = 0
    tags: list[str] = field(default_factory=list)
    summary: str = ""

    def to_dict(self) -> dict[str, Any]:
        return {
            "last_updated": self.last_updated.isoformat(),
            "item_count": self.item_count,
            "size": self.size,
            "tags": self.tags,
            "summary": self.summary,
        }


class ContentSourceConfig(BaseModel):
    """Admin-controlled toggle and weight of one content source."""

    id: str
    provider_id: str
    enabled: bool = True
    priority: int = Field(default=50, ge=0, le=100)
    config: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime
    updated_at: datetime


class ContextCacheEntry(BaseModel):
    """
    The assembled context last built for a session.

    `budget` records the token budget the context was assembled under;
    an entry is only reused for the same query under the same budget.
    """

    session_id: str
    query: str
    context: str
    token_count: int
    budget: int
    relevant_content: list[RelevantContent] = Field(default_factory=list)
    created_at: datetime
    expires_at: datetime


@dataclass
class ContextBuildOptions:
    """Per-call overrides; None falls back to the configured defaults."""

    max_tokens: int | None = None
    min_relevance_score: float | None = None
    max_results: int | None = None
    include_projects: bool = True
    include_about: bool = True
    include_resume: bool = True

    def excluded_types(self) -> set[ContentType]:
        excluded = set()
        if not self.include_projects:
            excluded.add(ContentType.PROJECT)
        if not self.include_about:
            excluded.add(ContentType.ABOUT)
        if not self.include_resume:
            excluded.add(ContentType.RESUME)
        return excluded


__all__ = [
    "ContentType",
    "TYPE_PRIORITY",
    "RelevantContent",
    "SearchOptions",
    "SourceMetadata",
    "ContentSourceConfig",
    "ContextCacheEntry",
    "ContextBuildOptions",
]
