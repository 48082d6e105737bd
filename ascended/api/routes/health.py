"""Health check endpoint for the Ascended API."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from fastapi import APIRouter, Depends

from ascended.api.dependencies import get_settings
from ascended.api.models import HealthResponse
from ascended.config import APP_NAME, APP_VERSION, Settings

router = APIRouter(tags=["health"])


@router.get("/api/health", response_model=HealthResponse)
async def health_check(settings: Settings = Depends(get_settings)) -> dict[str, Any]:
    return {
        "status": "healthy",
        "service": APP_NAME,
        "version": APP_VERSION,
        "environment": settings.environment,
        "timestamp": datetime.now(UTC).isoformat(),
    }
