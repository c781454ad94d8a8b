"""
Health check endpoints.
"""
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from datetime import datetime
import logging

from app.config import settings
from app.database import get_db, ping
from app.dependencies.services import get_analysis_service, get_generator
from app.models.schemas import HealthCheckResponse, ModelProbeResponse
from app.services.analysis_service import NicheAnalysisService
from app.services.gemini_client import GeminiClient
from app.services.orchestrator import with_deadline

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/", response_model=HealthCheckResponse)
async def health_check(
    db: AsyncSession = Depends(get_db),
    generator: GeminiClient = Depends(get_generator),
):
    """
    Health check endpoint to verify system status.

    Returns:
        HealthCheckResponse with status of database and the generative service
    """
    # Check database connection
    db_status = "ok"
    try:
        await ping(db)
    except Exception as e:
        logger.error("Database health check failed: %s", e)
        db_status = "error"

    # Check generative service (no network call when no key is configured)
    if not generator.is_configured:
        ai_status = "unconfigured"
    else:
        ai_status = "ok" if await generator.check_health() else "error"

    # Overall status
    overall_status = "healthy" if db_status == "ok" and ai_status == "ok" else "degraded"

    return HealthCheckResponse(
        status=overall_status,
        database=db_status,
        generative_ai=ai_status,
        timestamp=datetime.utcnow()
    )


@router.get("/model", response_model=ModelProbeResponse)
async def model_probe(
    service: NicheAnalysisService = Depends(get_analysis_service),
):
    """
    Live generation round-trip through the throttled queue.

    Never fails with a 5xx: errors are reported in the body.
    """
    try:
        reply = await with_deadline(
            service.probe(), settings.REQUEST_TIMEOUT_MS / 1000.0
        )
        return ModelProbeResponse(status="ok", response=reply)
    except Exception as e:
        logger.error("Model probe failed: %s", e)
        return ModelProbeResponse(status="error", error=str(e))
