"""
Service dependencies for FastAPI routes.

The orchestrator and analysis service are built once per application (in the
lifespan) and kept on ``app.state``; tests swap them via
``app.dependency_overrides``.
"""
from __future__ import annotations

import dataclasses
import logging

from fastapi import Request

from app.services.analysis_service import NicheAnalysisService
from app.services.gemini_client import GeminiClient
from app.services.orchestrator import ThrottledBatchOrchestrator, build_orchestrator

logger = logging.getLogger(__name__)


@dataclasses.dataclass
class ServiceContainer:
    generator: GeminiClient
    orchestrator: ThrottledBatchOrchestrator
    analysis: NicheAnalysisService

    async def close(self) -> None:
        await self.orchestrator.close()


def build_services() -> ServiceContainer:
    """Wire the generator, orchestrator and analysis service together."""
    generator = GeminiClient()
    orchestrator = build_orchestrator(generator=generator)
    return ServiceContainer(
        generator=generator,
        orchestrator=orchestrator,
        analysis=NicheAnalysisService(orchestrator),
    )


def _get_container(request: Request) -> ServiceContainer:
    container = getattr(request.app.state, "services", None)
    if container is None:
        # Lifespan did not run (e.g. mounted without startup events)
        logger.info("Building services lazily on first request")
        container = build_services()
        request.app.state.services = container
    return container


def get_analysis_service(request: Request) -> NicheAnalysisService:
    return _get_container(request).analysis


def get_generator(request: Request) -> GeminiClient:
    return _get_container(request).generator
