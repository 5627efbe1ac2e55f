"""
API endpoints for survey-wide deep analytics snapshots.

Provides endpoints for:
- Running the deep-analytics synthesizer for a survey
- Reading the latest snapshot
- Browsing snapshot history
"""

import logging
from datetime import datetime

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from feedback_python_backend.db_session import get_async_session
from feedback_python_backend.schemas import SnapshotHistoryResponse, SurveyRequest
from feedback_python_backend.services.deep_analytics import (
    DeepAnalyticsSynthesizer,
    get_latest_snapshot,
    list_snapshots,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/analytics", tags=["analytics"])


@router.get("/health")
async def health_check():
    return {
        "status": "healthy",
        "service": "deep_analytics_api",
        "timestamp": datetime.now().isoformat(),
    }


@router.post("/deep")
async def run_deep_analytics(
    request: SurveyRequest,
    db: AsyncSession = Depends(get_async_session),
):
    logger.info("[API] deep analytics survey=%s", request.survey_id)
    return await DeepAnalyticsSynthesizer(db).run_deep_analytics(request.survey_id)


@router.get("/{survey_id}/latest")
async def latest_snapshot(
    survey_id: str,
    db: AsyncSession = Depends(get_async_session),
):
    return await get_latest_snapshot(db, survey_id)


@router.get("/{survey_id}/history", response_model=SnapshotHistoryResponse)
async def snapshot_history(
    survey_id: str,
    limit: int = Query(10, ge=1, le=100),
    db: AsyncSession = Depends(get_async_session),
):
    """Snapshot history, newest first."""
    snapshots = await list_snapshots(db, survey_id, limit=limit)
    return SnapshotHistoryResponse(survey_id=survey_id, snapshots=snapshots, count=len(snapshots))
