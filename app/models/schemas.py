"""
Pydantic schemas for request/response validation.
"""
from pydantic import BaseModel, Field, ConfigDict
from typing import Any, Dict, Optional, List, Literal
from datetime import datetime


# Analyze Schemas
AnalyzeAction = Literal[
    "getNiches",
    "getProblems",
    "getMoreProblems",
    "getSolution",
    "expandSolution",
]


class AnalyzeRequest(BaseModel):
    """Body of POST /api/analyze; which fields matter depends on ``action``."""

    action: AnalyzeAction
    niche: Optional[str] = None
    problem: Optional[str] = None
    current_solution: Optional[str] = Field(None, alias="currentSolution")
    batch: int = Field(1, ge=1)
    exclude_niches: List[str] = Field(default_factory=list, alias="excludeNiches")
    current_problems: List[Dict[str, Any]] = Field(default_factory=list, alias="currentProblems")

    model_config = ConfigDict(populate_by_name=True)


class SolutionResponse(BaseModel):
    solution: str


class ExpandSolutionResponse(BaseModel):
    additionalContent: str


class AnalyzeErrorResponse(BaseModel):
    """Error body returned by /api/analyze."""

    error: str
    userMessage: str


# Guide Schemas
class GuideCreate(BaseModel):
    """Schema for saving a guide."""

    niche: str = Field(..., min_length=1)
    problem: str = Field(..., min_length=1)
    solution: str = Field(..., min_length=1)


class GuidePinRequest(BaseModel):
    """Schema for toggling a guide's pinned flag."""

    guide_id: int = Field(..., alias="guideId")

    model_config = ConfigDict(populate_by_name=True)


class GuideResponse(BaseModel):
    """Schema for guide responses."""

    id: int
    niche: str
    problem: str
    solution: str
    is_pinned: bool = False
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class GuideEnvelope(BaseModel):
    guide: GuideResponse


class GuideListResponse(BaseModel):
    guides: List[GuideResponse]


class MessageResponse(BaseModel):
    message: str


# Health Check Schema
class HealthCheckResponse(BaseModel):
    """Schema for health check response."""

    status: str
    database: str
    generative_ai: str
    timestamp: datetime


class ModelProbeResponse(BaseModel):
    """Schema for the live generation probe."""

    status: str
    response: Optional[str] = None
    error: Optional[str] = None
