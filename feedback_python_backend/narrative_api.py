"""
API endpoints for narrative reports.

Provides endpoints for:
- Generating an audience-tuned five-chapter report
- Reading the survey's latest report and report history
- Drilling down from insight evidence ids to the underlying responses
"""

import logging
from datetime import datetime
from typing import List

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from feedback_python_backend.db_session import get_async_session
from feedback_python_backend.schemas import EvidenceResponse, NarrativeGenerateRequest, ReportsListResponse
from feedback_python_backend.services.narrative_generator import (
    NarrativeGenerator,
    get_evidence,
    get_latest_report,
    list_reports,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/narrative", tags=["narrative"])


@router.get("/health")
async def health_check():
    return {
        "status": "healthy",
        "service": "narrative_api",
        "timestamp": datetime.now().isoformat(),
    }


@router.post("/generate")
async def generate_report(
    request: NarrativeGenerateRequest,
    db: AsyncSession = Depends(get_async_session),
):
    """Generate a report and make it the survey's latest (409 if a concurrent generation won)."""
    logger.info("[API] generate narrative survey=%s audience=%s", request.survey_id, request.audience)
    return await NarrativeGenerator(db).generate_narrative_report(
        request.survey_id,
        audience=request.audience,
        generated_by=request.generated_by,
    )


@router.get("/{survey_id}/latest")
async def latest_report(
    survey_id: str,
    db: AsyncSession = Depends(get_async_session),
):
    return await get_latest_report(db, survey_id)


@router.get("/{survey_id}/reports", response_model=ReportsListResponse)
async def report_history(
    survey_id: str,
    db: AsyncSession = Depends(get_async_session),
):
    reports = await list_reports(db, survey_id)
    return ReportsListResponse(survey_id=survey_id, reports=reports, count=len(reports))


@router.get("/{survey_id}/evidence", response_model=EvidenceResponse)
async def evidence(
    survey_id: str,
    ids: List[str] = Query(default=[]),
    db: AsyncSession = Depends(get_async_session),
):
    """Responses behind an insight's evidence ids; ids outside the survey are omitted."""
    responses = await get_evidence(db, survey_id, ids)
    return EvidenceResponse(survey_id=survey_id, responses=responses, count=len(responses))
