"""Survey/session read and serialization helpers shared by the pipeline stages."""

from typing import Any, Dict, Iterable, List, Optional, Sequence, Set

from sqlalchemy import func, select

from feedback_python_backend.models import (
    AggregatedSignal,
    ConversationSession,
    NarrativeReport,
    Response,
    ResponseSignal,
    SessionInsight,
    Survey,
    SurveyAnalytics,
    SurveyTheme,
)


def _iso(value) -> Optional[str]:
    return value.isoformat() if value is not None else None


# ============================================================================
# Reads
# ============================================================================

async def fetch_survey(db, survey_uuid) -> Optional[Survey]:
    result = await db.execute(select(Survey).where(Survey.id == survey_uuid))
    return result.scalar_one_or_none()


async def fetch_survey_themes(db, survey_uuid) -> List[SurveyTheme]:
    result = await db.execute(select(SurveyTheme).where(SurveyTheme.survey_id == survey_uuid))
    return list(result.scalars().all())


async def fetch_session(db, session_uuid) -> Optional[ConversationSession]:
    result = await db.execute(select(ConversationSession).where(ConversationSession.id == session_uuid))
    return result.scalar_one_or_none()


async def fetch_session_responses(db, session_uuid) -> List[Response]:
    """Responses of one session in conversation order."""
    result = await db.execute(
        select(Response)
        .where(Response.conversation_session_id == session_uuid)
        .order_by(Response.created_at.asc(), Response.id)
    )
    return list(result.scalars().all())


async def fetch_completed_sessions(db, survey_uuid) -> List[ConversationSession]:
    result = await db.execute(
        select(ConversationSession)
        .where(
            ConversationSession.survey_id == survey_uuid,
            ConversationSession.status == "completed",
        )
        .order_by(ConversationSession.started_at, ConversationSession.id)
    )
    return list(result.scalars().all())


async def fetch_survey_responses(db, survey_uuid) -> List[Response]:
    result = await db.execute(
        select(Response)
        .where(Response.survey_id == survey_uuid)
        .order_by(Response.created_at.asc(), Response.id)
    )
    return list(result.scalars().all())


async def fetch_recent_responses(db, survey_uuid, limit: int) -> List[Response]:
    """Most recent responses first, capped at limit."""
    result = await db.execute(
        select(Response)
        .where(Response.survey_id == survey_uuid)
        .order_by(Response.created_at.desc(), Response.id)
        .limit(limit)
    )
    return list(result.scalars().all())


async def count_survey_responses(db, survey_uuid) -> int:
    result = await db.execute(select(func.count(Response.id)).where(Response.survey_id == survey_uuid))
    return int(result.scalar() or 0)


async def fetch_survey_signals(db, survey_uuid) -> List[ResponseSignal]:
    """All signals of a survey in load order (created_at, id)."""
    result = await db.execute(
        select(ResponseSignal)
        .where(ResponseSignal.survey_id == survey_uuid)
        .order_by(ResponseSignal.created_at.asc(), ResponseSignal.id)
    )
    return list(result.scalars().all())


async def fetch_session_insights(db, session_uuid, latest_only: bool = False) -> List[SessionInsight]:
    query = (
        select(SessionInsight)
        .where(SessionInsight.session_id == session_uuid)
        .order_by(SessionInsight.analyzed_at.desc())
    )
    if latest_only:
        query = query.limit(1)
    result = await db.execute(query)
    return list(result.scalars().all())


async def fetch_latest_insights(db, session_uuids: Sequence) -> List[SessionInsight]:
    """Latest insight per session, in the order of session_uuids. Sessions never analyzed are skipped."""
    if not session_uuids:
        return []

    result = await db.execute(
        select(SessionInsight)
        .where(SessionInsight.session_id.in_(list(session_uuids)))
        .order_by(SessionInsight.analyzed_at.desc())
    )
    latest: Dict[Any, SessionInsight] = {}
    for insight in result.scalars().all():
        latest.setdefault(insight.session_id, insight)

    return [latest[session_uuid] for session_uuid in session_uuids if session_uuid in latest]


async def fetch_latest_snapshot(db, survey_uuid) -> Optional[SurveyAnalytics]:
    result = await db.execute(
        select(SurveyAnalytics)
        .where(SurveyAnalytics.survey_id == survey_uuid)
        .order_by(SurveyAnalytics.analyzed_at.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


async def fetch_snapshots(db, survey_uuid, limit: int) -> List[SurveyAnalytics]:
    result = await db.execute(
        select(SurveyAnalytics)
        .where(SurveyAnalytics.survey_id == survey_uuid)
        .order_by(SurveyAnalytics.analyzed_at.desc())
        .limit(limit)
    )
    return list(result.scalars().all())


async def fetch_aggregated_signals(db, survey_uuid, dimension: Optional[str] = None) -> List[AggregatedSignal]:
    query = select(AggregatedSignal).where(AggregatedSignal.survey_id == survey_uuid)
    if dimension:
        query = query.where(AggregatedSignal.dimension == dimension)
    result = await db.execute(query.order_by(AggregatedSignal.voice_count.desc(), AggregatedSignal.dimension))
    return list(result.scalars().all())


async def fetch_reports(db, survey_uuid) -> List[NarrativeReport]:
    result = await db.execute(
        select(NarrativeReport)
        .where(NarrativeReport.survey_id == survey_uuid)
        .order_by(NarrativeReport.generated_at.desc())
    )
    return list(result.scalars().all())


async def fetch_responses_by_ids(db, survey_uuid, response_uuids: Iterable) -> List[Response]:
    """Responses of this survey among the given ids; ids from other surveys are ignored."""
    ids = list(response_uuids)
    if not ids:
        return []
    result = await db.execute(
        select(Response)
        .where(Response.survey_id == survey_uuid, Response.id.in_(ids))
        .order_by(Response.created_at.asc(), Response.id)
    )
    return list(result.scalars().all())


async def fetch_survey_response_ids(db, survey_uuid) -> Set[str]:
    result = await db.execute(select(Response.id).where(Response.survey_id == survey_uuid))
    return {str(row[0]) for row in result.fetchall()}


# ============================================================================
# Serialization
# ============================================================================

def serialize_response(response: Response) -> Dict[str, Any]:
    return {
        "id": str(response.id),
        "survey_id": str(response.survey_id),
        "session_id": str(response.conversation_session_id) if response.conversation_session_id else None,
        "theme_id": str(response.theme_id) if response.theme_id else None,
        "content": response.content,
        "ai_response": response.ai_response,
        "sentiment": response.sentiment,
        "sentiment_score": response.sentiment_score,
        "urgency_score": response.urgency_score,
        "created_at": _iso(response.created_at),
    }


def serialize_insight(insight: SessionInsight) -> Dict[str, Any]:
    return {
        "id": str(insight.id),
        "session_id": str(insight.session_id),
        "root_cause": insight.root_cause,
        "sentiment_trajectory": insight.sentiment_trajectory,
        "key_quotes": insight.key_quotes or [],
        "recommended_actions": insight.recommended_actions or [],
        "confidence_score": insight.confidence_score,
        "model": insight.model,
        "analyzed_at": _iso(insight.analyzed_at),
    }


def serialize_aggregate(aggregate: AggregatedSignal) -> Dict[str, Any]:
    return {
        "id": str(aggregate.id),
        "survey_id": str(aggregate.survey_id),
        "signal_text": aggregate.signal_text,
        "dimension": aggregate.dimension,
        "facet": aggregate.facet,
        "sentiment": aggregate.sentiment,
        "voice_count": aggregate.voice_count,
        "agreement_pct": aggregate.agreement_pct,
        "avg_intensity": aggregate.avg_intensity,
        "evidence_ids": aggregate.evidence_ids or [],
        "signal_ids": aggregate.signal_ids or [],
        "aggregation_run_id": str(aggregate.aggregation_run_id),
        "analyzed_at": _iso(aggregate.analyzed_at),
    }


def serialize_snapshot(snapshot: SurveyAnalytics) -> Dict[str, Any]:
    return {
        "id": str(snapshot.id),
        "survey_id": str(snapshot.survey_id),
        "executive_summary": snapshot.executive_summary,
        "top_themes": snapshot.top_themes or [],
        "sentiment_trends": snapshot.sentiment_trends or {},
        "cultural_insights": snapshot.cultural_insights,
        "risk_factors": snapshot.risk_factors or [],
        "opportunities": snapshot.opportunities or [],
        "strategic_recommendations": snapshot.strategic_recommendations or [],
        "participation_analysis": snapshot.participation_analysis,
        "summary_statistics": snapshot.summary_statistics or {},
        "confidence_score": snapshot.confidence_score,
        "total_sessions_analyzed": snapshot.total_sessions_analyzed,
        "model": snapshot.model,
        "analyzed_at": _iso(snapshot.analyzed_at),
    }


def serialize_report(report: NarrativeReport) -> Dict[str, Any]:
    return {
        "id": str(report.id),
        "survey_id": str(report.survey_id),
        "generated_by": report.generated_by,
        "report_version": report.report_version,
        "chapters": report.chapters or [],
        "audience_config": report.audience_config or {},
        "data_snapshot": report.data_snapshot or {},
        "confidence_score": report.confidence_score,
        "is_latest": report.is_latest,
        "model": report.model,
        "generated_at": _iso(report.generated_at),
    }
