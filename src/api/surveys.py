"""
API Router: Survey Dashboard Endpoints.

Survey listing with filters, survey detail, callback tracking,
follow-up item management and summary statistics.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from fastapi import APIRouter, Depends, HTTPException

from src.db import DatabaseClient, get_db
from src.errors import StoreError
from src.logging_config import get_logger
from src.schemas.follow_up import CallbackUpdate, FollowUpItemUpdate, FollowUpStatus

logger = get_logger(__name__)
router = APIRouter(prefix="/api/surveys", tags=["Surveys"])


@router.get("/")
async def list_surveys(
    completed: bool | None = None,
    callback_needed: bool | None = None,
    from_date: str | None = None,
    to_date: str | None = None,
    min_rating: int | None = None,
    max_rating: int | None = None,
    db: DatabaseClient = Depends(get_db),
) -> dict[str, Any]:
    """List surveys with their visit, follow-up items and remarks."""
    try:
        surveys = await db.list_surveys(
            completed=completed,
            callback_needed=callback_needed,
            from_date=from_date,
            to_date=to_date,
            min_rating=min_rating,
            max_rating=max_rating,
        )
    except StoreError:
        raise HTTPException(status_code=500, detail="Failed to fetch surveys")
    return {"data": surveys, "total": len(surveys)}


@router.get("/stats/summary")
async def survey_stats(db: DatabaseClient = Depends(get_db)) -> dict[str, Any]:
    """Totals, average ratings, callback count and follow-up counts by type."""
    try:
        return {"data": await db.get_survey_stats()}
    except StoreError:
        raise HTTPException(status_code=500, detail="Failed to fetch survey statistics")


@router.patch("/follow-up-items/{item_id}")
async def update_follow_up_item(
    item_id: str,
    body: FollowUpItemUpdate,
    db: DatabaseClient = Depends(get_db),
) -> dict[str, Any]:
    """Change the status or assignee of a follow-up item."""
    resolved_at = body.resolved_at
    if resolved_at is None and body.status == FollowUpStatus.RESOLVED:
        resolved_at = datetime.now(timezone.utc)

    updates = {
        "status": body.status.value,
        "assigned_to": body.assigned_to,
        "resolved_at": resolved_at.isoformat() if resolved_at else None,
    }
    try:
        item = await db.update_follow_up_item(item_id, updates)
    except StoreError:
        raise HTTPException(status_code=500, detail="Failed to update follow-up item")
    if not item:
        raise HTTPException(status_code=404, detail="Follow-up item not found")
    return {"data": item}


@router.get("/{survey_id}")
async def get_survey(survey_id: str, db: DatabaseClient = Depends(get_db)) -> dict[str, Any]:
    try:
        survey = await db.get_survey(survey_id)
    except StoreError:
        raise HTTPException(status_code=500, detail="Failed to fetch survey")
    if not survey:
        raise HTTPException(status_code=404, detail="Survey not found")
    return {"data": survey}


@router.patch("/{survey_id}/callback")
async def update_callback(
    survey_id: str,
    body: CallbackUpdate,
    db: DatabaseClient = Depends(get_db),
) -> dict[str, Any]:
    """Record the outcome of a human callback."""
    try:
        survey = await db.update_callback_status(survey_id, body.callback_completed, body.callback_notes)
    except StoreError:
        raise HTTPException(status_code=500, detail="Failed to update callback status")
    if not survey:
        raise HTTPException(status_code=404, detail="Survey not found")
    return {"data": survey}


@router.get("/{survey_id}/follow-up-items")
async def get_follow_up_items(survey_id: str, db: DatabaseClient = Depends(get_db)) -> dict[str, Any]:
    try:
        return {"data": await db.get_follow_up_items(survey_id)}
    except StoreError:
        raise HTTPException(status_code=500, detail="Failed to fetch follow-up items")
