"""
API Router: Admin Endpoints.

System status and manual triggers for the scheduling jobs.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from fastapi import APIRouter, Depends, HTTPException

from src.config import get_settings
from src.logging_config import get_logger
from src.services.survey_service import SurveyService, get_survey_service

logger = get_logger(__name__)
router = APIRouter(prefix="/api/admin", tags=["Admin"])

API_VERSION = "0.1.0"


@router.get("/status")
async def system_status() -> dict[str, Any]:
    settings = get_settings()
    return {
        "status": "online",
        "version": API_VERSION,
        "environment": settings.environment.value,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@router.post("/schedule-surveys")
async def schedule_surveys(service: SurveyService = Depends(get_survey_service)) -> dict[str, Any]:
    """Run the survey scheduling job once, now."""
    try:
        return {"data": await service.schedule_surveys()}
    except Exception as e:
        logger.error("schedule_surveys_error", error=str(e))
        raise HTTPException(status_code=500, detail=str(e))


@router.post("/retry-failed")
async def retry_failed(
    max_retries: int | None = None,
    service: SurveyService = Depends(get_survey_service),
) -> dict[str, Any]:
    """Resend failed survey messages once, now."""
    try:
        return {"data": await service.retry_failed_messages(max_retries=max_retries)}
    except Exception as e:
        logger.error("retry_failed_error", error=str(e))
        raise HTTPException(status_code=500, detail=str(e))
