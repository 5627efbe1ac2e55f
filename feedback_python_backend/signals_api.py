"""
API endpoints for cross-response signal aggregation.
"""

import logging
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from feedback_python_backend.db_session import get_async_session
from feedback_python_backend.schemas import AggregatesListResponse, SurveyRequest
from feedback_python_backend.services.signal_aggregator import SignalAggregator, list_aggregated_signals

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/signals", tags=["signals"])


@router.get("/health")
async def health_check():
    return {
        "status": "healthy",
        "service": "signals_api",
        "timestamp": datetime.now().isoformat(),
    }


@router.post("/aggregate")
async def aggregate_signals(
    request: SurveyRequest,
    db: AsyncSession = Depends(get_async_session),
):
    """Recompute the survey's aggregated signals, replacing the previous set."""
    logger.info("[API] aggregate signals survey=%s", request.survey_id)
    return await SignalAggregator(db).aggregate_signals(request.survey_id)


@router.get("/{survey_id}/aggregates", response_model=AggregatesListResponse)
async def list_aggregates(
    survey_id: str,
    dimension: Optional[str] = Query(None),
    db: AsyncSession = Depends(get_async_session),
):
    """Aggregates ordered by voice count, optionally filtered to one dimension."""
    aggregates = await list_aggregated_signals(db, survey_id, dimension=dimension)
    return AggregatesListResponse(survey_id=survey_id, aggregates=aggregates, count=len(aggregates))
