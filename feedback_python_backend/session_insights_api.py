"""
API endpoints for per-session analysis.

Provides endpoints for:
- Analyzing a completed conversation session (root cause, trajectory, actions)
- Retrieving stored session insights
"""

import logging
from datetime import datetime

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from feedback_python_backend.db_session import get_async_session
from feedback_python_backend.schemas import InsightsListResponse, SessionAnalyzeRequest
from feedback_python_backend.services.session_analyzer import SessionAnalyzer, get_session_insights

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/sessions", tags=["sessions"])


@router.get("/health")
async def health_check():
    """Health check endpoint for session analysis API."""
    return {
        "status": "healthy",
        "service": "session_insights_api",
        "timestamp": datetime.now().isoformat(),
    }


@router.post("/analyze")
async def analyze_session(
    request: SessionAnalyzeRequest,
    db: AsyncSession = Depends(get_async_session),
):
    """Run the session analyzer and append a new insight."""
    logger.info("[API] analyze session=%s", request.session_id)
    return await SessionAnalyzer(db).analyze_session(request.session_id)


@router.get("/{session_id}/insights", response_model=InsightsListResponse)
async def list_session_insights(
    session_id: str,
    latest_only: bool = Query(False),
    db: AsyncSession = Depends(get_async_session),
):
    insights = await get_session_insights(db, session_id, latest_only=latest_only)
    return InsightsListResponse(session_id=session_id, insights=insights, count=len(insights))
