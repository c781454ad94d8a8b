"""
Shared fixtures for NicheAI backend tests.

Uses a throwaway SQLite database (via aiosqlite) unless TEST_DATABASE_URL points
elsewhere.  Each test function gets its own session; tables are created before
and dropped after every test.  The generative service is replaced by a
scripted FakeGenerator, and pacing delays are zeroed so tests run fast.
"""
from __future__ import annotations

import json
import os
import re
from typing import AsyncGenerator, Callable, List, Optional, Union

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import (
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool

# Override settings *before* any app module is imported, so that
# settings.DATABASE_URL and the global engine point at the test DB.
TEST_DATABASE_URL = os.environ.get(
    "TEST_DATABASE_URL",
    "sqlite+aiosqlite:///./test_nicheai.db",
)
os.environ["DATABASE_URL"] = TEST_DATABASE_URL
os.environ["GOOGLE_API_KEY"] = ""

from app.database import Base, get_db  # noqa: E402
from app.dependencies.services import get_analysis_service, get_generator  # noqa: E402
from app.main import app  # noqa: E402
from app.models import database_models  # noqa: E402,F401
from app.services.analysis_service import NicheAnalysisService  # noqa: E402
from app.services.gemini_client import GeminiClient  # noqa: E402
from app.services.orchestrator import ThrottledBatchOrchestrator  # noqa: E402
from app.services.queue_scheduler import QueueScheduler, RetryPolicy  # noqa: E402


# ---------------------------------------------------------------------------
# Fake generative service
# ---------------------------------------------------------------------------

Reply = Union[str, BaseException]


def default_responder(prompt: str) -> Reply:
    """Canned model output keyed on which prompt template was used."""
    if "Continue the guide" in prompt:
        return "## Advanced Strategies\n<p>Partner with <b>niche</b> influencers.</p>"

    if '{"niches"' in prompt:
        match = re.search(r"in the (\w+) category", prompt)
        category = match.group(1) if match else "General"
        payload = {
            "niches": [
                {
                    "name": f"{category} Niche {suffix}",
                    "category": category,
                    "description": f"A {category.lower()} idea",
                    "potential": "High",
                    "competition": "Low",
                }
                for suffix in ("A", "B")
            ]
        }
        return "```json\n" + json.dumps(payload, indent=2) + "\n```"

    if '{"problems"' in prompt:
        payload = {
            "problems": [
                {
                    "title": title,
                    "description": "Hard to do",
                    "audience": "Freelancers",
                    "severity": "High",
                    "complexity": "Medium",
                    "example": "Example",
                }
                for title in ("Tracking Time", "Finding Clients", "Tracking Time")
            ]
        }
        return json.dumps(payload)

    if "Write a practical implementation guide" in prompt:
        return (
            "## Solution Overview\nBuild a tool.\n\n"
            "## Implementation Plan\n1. Build it\n2. Ship it"
        )

    return "Yes, I am working."


class FakeGenerator:
    """Stands in for GeminiClient; records every prompt it receives."""

    def __init__(self, responder: Optional[Callable[[str], Reply]] = None) -> None:
        self.responder = responder or default_responder
        self.prompts: List[str] = []

    async def generate(self, prompt: str) -> str:
        self.prompts.append(prompt)
        reply = self.responder(prompt)
        if isinstance(reply, BaseException):
            raise reply
        return reply


def make_orchestrator(generator, batch_size: int = 2) -> ThrottledBatchOrchestrator:
    """Orchestrator with all pacing delays set to zero."""
    scheduler = QueueScheduler(
        min_delay=0.0,
        retry_policy=RetryPolicy(max_retries=3, base_delay=0.0),
    )
    return ThrottledBatchOrchestrator(
        generator=generator,
        scheduler=scheduler,
        batch_size=batch_size,
        batch_pause=0.0,
    )


@pytest.fixture
def fake_generator() -> FakeGenerator:
    return FakeGenerator()


@pytest.fixture
def analysis_service(fake_generator: FakeGenerator) -> NicheAnalysisService:
    return NicheAnalysisService(make_orchestrator(fake_generator))


# ---------------------------------------------------------------------------
# Per-test database / client fixtures
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture
async def db_session() -> AsyncGenerator[AsyncSession, None]:
    """
    Provide a DB session for each test. After the test, all tables are dropped
    so each test starts with a clean slate.
    """
    engine = create_async_engine(TEST_DATABASE_URL, echo=False, poolclass=NullPool)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

    async with session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest_asyncio.fixture
async def client(
    db_session: AsyncSession,
    analysis_service: NicheAnalysisService,
) -> AsyncGenerator[AsyncClient, None]:
    """
    httpx AsyncClient wired to the FastAPI app with the DB and generation
    dependencies overridden.
    """

    async def _override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = _override_get_db
    app.dependency_overrides[get_analysis_service] = lambda: analysis_service
    app.dependency_overrides[get_generator] = lambda: GeminiClient(api_key="")

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
    await analysis_service.orchestrator.close()


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

AUTH_HEADERS = {
    "X-User-Id": "test-user-1",
    "X-User-Email": "test1@example.com",
    "X-User-Name": "Test User 1",
}

AUTH_HEADERS_USER2 = {
    "X-User-Id": "test-user-2",
    "X-User-Email": "test2@example.com",
    "X-User-Name": "Test User 2",
}
