"""Database and schema models for NicheAI."""
from app.models.database_models import (
    User,
    Guide,
)
from app.models.schemas import (
    AnalyzeRequest,
    GuideCreate,
    GuideResponse,
    HealthCheckResponse,
)

__all__ = [
    # Database models
    "User",
    "Guide",
    # Pydantic schemas
    "AnalyzeRequest",
    "GuideCreate",
    "GuideResponse",
    "HealthCheckResponse",
]
