"""
Health check endpoint.
"""
import time
from datetime import datetime

from fastapi import APIRouter
from pydantic import BaseModel

from receivables.core.config import get_settings

router = APIRouter()

_started = time.time()


class HealthResponse(BaseModel):
    """Health check response model."""

    status: str
    version: str
    uptime_seconds: float
    timestamp: datetime
    service_name: str


@router.get("/health", response_model=HealthResponse, tags=["health"])
async def health_check():
    settings = get_settings()
    return HealthResponse(
        status="healthy",
        version=settings.service_version,
        uptime_seconds=round(time.time() - _started, 2),
        timestamp=datetime.utcnow(),
        service_name=settings.service_name,
    )
