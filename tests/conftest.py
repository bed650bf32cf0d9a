"""
Portfolio Guard Test Suite - Shared Fixtures
"""

from datetime import UTC, datetime, timedelta

import pytest
import pytest_asyncio

from portfolio_guard.context.providers import (
    AboutSection,
    ExperienceItem,
    PortfolioDocument,
    ProjectItem,
    ProjectSection,
    ResumeSection,
)
from portfolio_guard.core.settings import NotificationSettings, SecuritySettings, Settings
from portfolio_guard.data.store import InMemoryUsageStore
from portfolio_guard.services import build_services

ADMIN_TOKEN = "test-admin-token-0123456789abcdef"
START = datetime(2026, 3, 1, 9, 0, tzinfo=UTC)


class FrozenClock:
    """Injectable clock that only moves when told to."""

    def __init__(self, now: datetime = START):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock():
    return FrozenClock()


@pytest.fixture
def store(clock):
    return InMemoryUsageStore(clock)


@pytest.fixture
def settings():
    return Settings(
        environment="testing",
        security=SecuritySettings(admin_token=ADMIN_TOKEN),
        notifications=NotificationSettings(batch_notifications=False),
    )


@pytest_asyncio.fixture
async def services(settings, store, clock):
    svc = await build_services(settings, store, clock=clock, register_sources=False)
    yield svc
    await svc.close()


@pytest.fixture
def portfolio():
    return PortfolioDocument(
        about=AboutSection(
            content="Full-stack engineer building developer tools and data products.",
            skills=["Python", "React", "TypeScript", "FastAPI", "PostgreSQL"],
        ),
        experience=[
            ExperienceItem(
                title="Senior Engineer",
                company="Acme",
                description="Led the React and TypeScript migration of the customer dashboard.",
                skills=["React", "TypeScript"],
            ),
            ExperienceItem(
                title="Data Engineer",
                company="Globex",
                description="Built batch pipelines in Python.",
                skills=["Python", "Airflow"],
            ),
        ],
        projects=[
            ProjectItem(
                id="dashboard",
                title="Analytics Dashboard",
                description="A React dashboard.",
                keywords=["react", "typescript"],
                sections=[
                    ProjectSection(
                        id="dashboard-frontend",
                        title="React Frontend",
                        content="Component library written in TypeScript with React hooks.",
                        summary="TypeScript React frontend",
                        keywords=["react", "typescript", "hooks"],
                    ),
                    ProjectSection(
                        id="dashboard-api",
                        title="Reporting API",
                        content="FastAPI service aggregating events from PostgreSQL.",
                        keywords=["python", "fastapi"],
                        importance=0.8,
                    ),
                ],
            ),
            ProjectItem(
                id="cli",
                title="Release CLI",
                description="Python command line tool that cuts releases.",
                keywords=["python", "cli"],
            ),
        ],
        resume=ResumeSection(
            content="Ten years of experience with Python, React and TypeScript.",
            summary="Engineer with broad web experience",
            keywords=["python", "react"],
        ),
    )
