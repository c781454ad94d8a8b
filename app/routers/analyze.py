"""
Generation endpoint.

Route summary
-------------
POST /api/analyze: one endpoint, dispatched on ``action``:

    getNiches        {excludeNiches?, batch?}          -> {categories, niches}
    getProblems      {niche}                           -> {problems}
    getMoreProblems  {niche, currentProblems}          -> {problems}
    getSolution      {niche, problem}                  -> {solution}
    expandSolution   {niche, problem, currentSolution} -> {additionalContent}

Failures come back as ``{error, userMessage}`` with a status code that tells
the frontend whether a retry makes sense.
"""
from __future__ import annotations

import logging
from typing import Any, Dict

from fastapi import APIRouter, Depends, status
from fastapi.responses import JSONResponse

from app.config import settings
from app.dependencies.services import get_analysis_service
from app.models.schemas import (
    AnalyzeErrorResponse,
    AnalyzeRequest,
    ExpandSolutionResponse,
    SolutionResponse,
)
from app.services.analysis_service import NicheAnalysisService
from app.services.gemini_client import GenerationNotConfiguredError
from app.services.orchestrator import RequestTimeoutError, with_deadline
from app.services.queue_scheduler import is_rate_limited

logger = logging.getLogger(__name__)

router = APIRouter()


class MissingParameterError(ValueError):
    """An action was called without one of its required fields."""


def _error(status_code: int, error: str, user_message: str) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=AnalyzeErrorResponse(error=error, userMessage=user_message).model_dump(),
    )


def _require(body: AnalyzeRequest, *fields: str) -> None:
    missing = [f for f in fields if not (getattr(body, f) or "").strip()]
    if missing:
        raise MissingParameterError(
            f"{body.action} requires: {', '.join(missing)}"
        )


async def _dispatch(body: AnalyzeRequest, service: NicheAnalysisService) -> Dict[str, Any]:
    if body.action == "getNiches":
        return await service.get_niches(body.exclude_niches, body.batch)

    if body.action == "getProblems":
        _require(body, "niche")
        return {"problems": await service.get_problems(body.niche)}

    if body.action == "getMoreProblems":
        _require(body, "niche")
        titles = [str(p.get("title", "")) for p in body.current_problems if p.get("title")]
        return {"problems": await service.get_problems(body.niche, exclude_titles=titles)}

    if body.action == "getSolution":
        _require(body, "niche", "problem")
        solution = await service.get_solution(body.niche, body.problem)
        return SolutionResponse(solution=solution).model_dump()

    # expandSolution
    _require(body, "niche", "problem", "current_solution")
    extra = await service.expand_solution(body.niche, body.problem, body.current_solution)
    return ExpandSolutionResponse(additionalContent=extra).model_dump()


@router.post("", status_code=status.HTTP_200_OK)
async def analyze(
    body: AnalyzeRequest,
    service: NicheAnalysisService = Depends(get_analysis_service),
):
    """Run one generation action within the request deadline."""
    timeout_s = settings.REQUEST_TIMEOUT_MS / 1000.0
    try:
        return await with_deadline(_dispatch(body, service), timeout_s)

    except MissingParameterError as exc:
        return _error(
            status.HTTP_400_BAD_REQUEST,
            str(exc),
            "Some required information is missing. Please make a selection and try again.",
        )
    except RequestTimeoutError:
        return _error(
            status.HTTP_504_GATEWAY_TIMEOUT,
            "Request timeout",
            "Request took too long. Please try again.",
        )
    except GenerationNotConfiguredError as exc:
        logger.error("analyze %s: generator not configured", body.action)
        return _error(
            status.HTTP_503_SERVICE_UNAVAILABLE,
            str(exc),
            "The AI service is not available right now.",
        )
    except Exception as exc:
        if is_rate_limited(exc):
            logger.warning("analyze %s: rate limit retries exhausted", body.action)
            return _error(
                status.HTTP_429_TOO_MANY_REQUESTS,
                str(exc),
                "The AI service is busy. Please wait a moment and try again.",
            )
        logger.error("analyze %s failed: %s", body.action, exc, exc_info=True)
        return _error(
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            str(exc),
            "An unexpected error occurred. Please try again.",
        )
