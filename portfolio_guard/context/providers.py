# Portfolio Guard - AI Access-Control & Context-Assembly Engine
# Copyright (c) 2026 George Scott Foley
# ORCID: 0009-0006-4957-0540
# Email: Georgescottfoley@proton.me
# Licensed under the MIT License - see LICENSE file for details

"""
Built-in Content Providers

Static providers read a portfolio document (JSON validated with
pydantic):

    {
      "about": {"content": "...", "skills": ["Python", ...]},
      "experience": [{"title": "...", "company": "...", "description": "...", "skills": [...]}],
      "projects": [{"id": "...", "title": "...", "description": "...", "keywords": [...],
                    "sections": [{"id": "...", "title": "...", "content": "...", "importance": 0.8}]}],
      "resume": {"content": "...", "keywords": [...]}
    }

HttpProjectsProvider queries the site's project search API instead.
"""

import json
import logging
from datetime import datetime
from pathlib import Path

import httpx
from pydantic import BaseModel, Field, ValidationError

from ..core.async_base import Clock, utcnow
from ..core.exceptions import ConfigurationError
from .models import ContentType, RelevantContent, SearchOptions, SourceMetadata
from .scoring import query_terms, score_section, score_text
from .sources import ContentProvider

logger = logging.getLogger(__name__)

SUMMARY_PREVIEW_CHARS = 200
SKILLS_SUMMARY_COUNT = 5
DEFAULT_PROJECT_RESULTS = 20


# ============================================================
# PORTFOLIO DOCUMENT
# ============================================================


class AboutSection(BaseModel):
    content: str = ""
    skills: list[str] = Field(default_factory=list)


class ExperienceItem(BaseModel):
    title: str
    company: str
    description: str = ""
    skills: list[str] = Field(default_factory=list)
    start_date: str | None = None
    end_date: str | None = None


class ProjectSection(BaseModel):
    id: str
    title: str
    content: str = ""
    summary: str = ""
    keywords: list[str] = Field(default_factory=list)
    importance: float = Field(default=1.0, ge=0.0)


class ProjectItem(BaseModel):
    id: str
    title: str
    description: str = ""
    keywords: list[str] = Field(default_factory=list)
    sections: list[ProjectSection] = Field(default_factory=list)

    def indexed_sections(self) -> list[ProjectSection]:
        """Sections to search; a project without sections is one section."""
        if self.sections:
            return self.sections
        return [
            ProjectSection(
                id=self.id,
                title=self.title,
                content=self.description,
                keywords=self.keywords,
            )
        ]


class ResumeSection(BaseModel):
    content: str = ""
    summary: str = ""
    keywords: list[str] = Field(default_factory=list)


class PortfolioDocument(BaseModel):
    about: AboutSection | None = None
    experience: list[ExperienceItem] = Field(default_factory=list)
    projects: list[ProjectItem] = Field(default_factory=list)
    resume: ResumeSection | None = None
    updated_at: datetime | None = None


def load_portfolio(path: str | Path) -> PortfolioDocument:
    """
    Load and validate a portfolio document.

    Raises:
        ConfigurationError: missing file or invalid document
    """
    path = Path(path)
    try:
        raw = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigurationError(
            f"Cannot read portfolio file {path}: {e}", details={"path": str(path)}
        ) from e
    try:
        document = PortfolioDocument.model_validate_json(raw)
    except ValidationError as e:
        raise ConfigurationError(
            f"Invalid portfolio file {path}",
            details={"path": str(path), "errors": e.error_count()},
        ) from e

    logger.info(
        f"Loaded portfolio from {path}: {len(document.projects)} projects, "
        f"{len(document.experience)} experiences"
    )
    return document


# ============================================================
# STATIC PROVIDERS
# ============================================================


class _DocumentProvider(ContentProvider):
    def __init__(self, document: PortfolioDocument, clock: Clock = utcnow):
        self.document = document
        self._clock = clock

    def _last_updated(self) -> datetime:
        return self.document.updated_at or self._clock()


class AboutProvider(_DocumentProvider):
    id = "about"
    type = ContentType.ABOUT
    name = "About"
    description = "Biography and professional summary"

    async def is_available(self) -> bool:
        about = self.document.about
        return about is not None and bool(about.content or about.skills)

    async def get_metadata(self) -> SourceMetadata:
        about = self.document.about or AboutSection()
        return SourceMetadata(
            last_updated=self._last_updated(),
            item_count=1 if about.content else 0,
            size=len(about.content),
            tags=about.skills,
            summary="About section with biography and skills",
        )

    async def search_content(self, query: str, options: SearchOptions) -> list[RelevantContent]:
        about = self.document.about
        if about is None:
            return []

        content = about.content.lower()
        skills = " ".join(about.skills).lower()
        score = 0.0
        for term in query_terms(query):
            if term in content:
                score += 0.3
            if term in skills:
                score += 0.5

        if score < options.min_relevance_score:
            return []

        summary = about.content[:SUMMARY_PREVIEW_CHARS]
        if len(about.content) > SUMMARY_PREVIEW_CHARS:
            summary += "..."
        return [
            RelevantContent(
                id="about-main",
                type=ContentType.ABOUT,
                title="About",
                content=about.content,
                summary=summary,
                relevance_score=min(score, 1.0),
                keywords=about.skills,
            )
        ]


class ExperienceProvider(_DocumentProvider):
    id = "experience"
    type = ContentType.EXPERIENCE
    name = "Experience"
    description = "Work history and roles"

    async def is_available(self) -> bool:
        return bool(self.document.experience)

    async def get_metadata(self) -> SourceMetadata:
        experience = self.document.experience
        tags = sorted({skill for item in experience for skill in item.skills})
        return SourceMetadata(
            last_updated=self._last_updated(),
            item_count=len(experience),
            size=len(json.dumps([e.model_dump() for e in experience])),
            tags=tags,
            summary=f"{len(experience)} work experiences available",
        )

    async def search_content(self, query: str, options: SearchOptions) -> list[RelevantContent]:
        terms = query_terms(query)
        results = []
        for index, item in enumerate(self.document.experience):
            text = " ".join([item.title, item.company, item.description, *item.skills]).lower()
            score = sum(0.2 for term in terms if term in text)
            if score < options.min_relevance_score:
                continue
            results.append(
                RelevantContent(
                    id=f"experience-{index}",
                    type=ContentType.EXPERIENCE,
                    title=f"{item.title} at {item.company}",
                    content=item.description,
                    summary=f"{item.title} role at {item.company}",
                    relevance_score=min(score, 1.0),
                    keywords=item.skills,
                )
            )
        results.sort(key=lambda r: r.relevance_score, reverse=True)
        return results


class SkillsProvider(_DocumentProvider):
    id = "skills"
    type = ContentType.SKILLS
    name = "Skills"
    description = "Technical and professional skills"

    def _skills(self) -> list[str]:
        return self.document.about.skills if self.document.about else []

    async def is_available(self) -> bool:
        return bool(self._skills())

    async def get_metadata(self) -> SourceMetadata:
        skills = self._skills()
        return SourceMetadata(
            last_updated=self._last_updated(),
            item_count=len(skills),
            size=len(", ".join(skills)),
            tags=skills,
            summary=f"{len(skills)} skills available",
        )

    async def search_content(self, query: str, options: SearchOptions) -> list[RelevantContent]:
        skills = self._skills()
        if not skills:
            return []

        query_lower = query.lower().strip()
        terms = query_lower.split()
        matching = [
            skill
            for skill in skills
            if (query_lower and query_lower in skill.lower())
            or any(term in skill.lower() for term in terms)
        ]
        if not matching:
            return []

        return [
            RelevantContent(
                id="skills-main",
                type=ContentType.SKILLS,
                title="Skills",
                content=", ".join(matching),
                summary=f"Relevant skills: {', '.join(matching[:SKILLS_SUMMARY_COUNT])}",
                relevance_score=min(len(matching) / len(skills) + 0.2, 1.0),
                keywords=matching,
            )
        ]


class ProjectsProvider(_DocumentProvider):
    id = "projects"
    type = ContentType.PROJECT
    name = "Projects"
    description = "Published portfolio projects"

    async def is_available(self) -> bool:
        return bool(self.document.projects)

    async def get_metadata(self) -> SourceMetadata:
        projects = self.document.projects
        return SourceMetadata(
            last_updated=self._last_updated(),
            item_count=len(projects),
            size=sum(len(s.content) for p in projects for s in p.indexed_sections()),
            tags=sorted({k for p in projects for k in p.keywords}),
            summary=f"{len(projects)} projects available",
        )

    async def search_content(self, query: str, options: SearchOptions) -> list[RelevantContent]:
        results = []
        for project in self.document.projects:
            for section in project.indexed_sections():
                score = score_section(
                    query, section.title, section.content, section.keywords, section.importance
                )
                if score < options.min_relevance_score:
                    continue
                results.append(
                    RelevantContent(
                        id=section.id,
                        type=ContentType.PROJECT,
                        title=section.title,
                        content=section.content,
                        summary=section.summary,
                        relevance_score=score,
                        keywords=section.keywords,
                        project_id=project.id,
                        section_id=section.id,
                    )
                )
        results.sort(key=lambda r: r.relevance_score, reverse=True)
        return results[: min(options.max_results, DEFAULT_PROJECT_RESULTS)]


class ResumeProvider(_DocumentProvider):
    id = "resume"
    type = ContentType.RESUME
    name = "Resume"
    description = "Resume and CV content"

    async def is_available(self) -> bool:
        return self.document.resume is not None and bool(self.document.resume.content)

    async def get_metadata(self) -> SourceMetadata:
        resume = self.document.resume or ResumeSection()
        return SourceMetadata(
            last_updated=self._last_updated(),
            item_count=1 if resume.content else 0,
            size=len(resume.content),
            tags=resume.keywords,
            summary="Resume content" if resume.content else "No resume data configured",
        )

    async def search_content(self, query: str, options: SearchOptions) -> list[RelevantContent]:
        resume = self.document.resume
        if resume is None or not resume.content:
            return []
        score = score_text(query, " ".join([resume.content, *resume.keywords]))
        if score < options.min_relevance_score:
            return []
        return [
            RelevantContent(
                id="resume-main",
                type=ContentType.RESUME,
                title="Resume",
                content=resume.content,
                summary=resume.summary,
                relevance_score=score,
                keywords=resume.keywords,
            )
        ]


def builtin_providers(document: PortfolioDocument, clock: Clock = utcnow) -> list[ContentProvider]:
    """All static providers backed by `document`."""
    return [
        AboutProvider(document, clock),
        ProjectsProvider(document, clock),
        ExperienceProvider(document, clock),
        SkillsProvider(document, clock),
        ResumeProvider(document, clock),
    ]


# ============================================================
# HTTP PROJECTS PROVIDER
# ============================================================


class HttpProjectsProvider(ContentProvider):
    """
    Projects served by the site's AI-context search endpoint.

    The endpoint answers `GET /api/projects/search/ai-context?q=&limit=`
    with `{"data": {"results": [RelevantContent, ...]}}`.
    """

    id = "projects-api"
    type = ContentType.PROJECT
    name = "Projects API"
    description = "Project search served over HTTP"

    SEARCH_PATH = "/api/projects/search/ai-context"

    def __init__(
        self,
        base_url: str,
        timeout: float = 5.0,
        transport: httpx.AsyncBaseTransport | None = None,
        clock: Clock = utcnow,
    ):
        self.base_url = base_url.rstrip("/")
        self._client = httpx.AsyncClient(
            base_url=self.base_url, timeout=timeout, transport=transport
        )
        self._clock = clock

    async def is_available(self) -> bool:
        return bool(self.base_url)

    async def get_metadata(self) -> SourceMetadata:
        return SourceMetadata(
            last_updated=self._clock(),
            summary=f"Projects searched via {self.base_url}{self.SEARCH_PATH}",
        )

    async def search_content(self, query: str, options: SearchOptions) -> list[RelevantContent]:
        response = await self._client.get(
            self.SEARCH_PATH,
            params={"q": query, "limit": min(options.max_results, DEFAULT_PROJECT_RESULTS)},
        )
        response.raise_for_status()
        payload = response.json()
        raw_results = (payload.get("data") or {}).get("results") or []

        results = []
        for raw in raw_results:
            if not isinstance(raw, dict):
                continue
            try:
                item = RelevantContent.model_validate({"type": "project", **raw})
            except ValidationError as e:
                logger.debug(f"Skipping malformed project result: {e.error_count()} errors")
                continue
            if item.relevance_score >= options.min_relevance_score:
                results.append(item)
        return results

    async def close(self) -> None:
        await self._client.aclose()


__all__ = [
    "PortfolioDocument",
    "AboutSection",
    "ExperienceItem",
    "ProjectItem",
    "ProjectSection",
    "ResumeSection",
    "load_portfolio",
    "AboutProvider",
    "ExperienceProvider",
    "SkillsProvider",
    "ProjectsProvider",
    "ResumeProvider",
    "HttpProjectsProvider",
    "builtin_providers",
]
