"""
Survey Deep-Analytics Synthesizer

Builds an executive snapshot for a whole survey from its completed sessions:
exact statistics are computed here, the oracle interprets them together with
the sessions' root causes and the most urgent responses. Every run inserts a
new immutable snapshot.
"""

import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from feedback_python_backend.config import (
    ROOT_CAUSE_SAMPLE_SIZE,
    URGENCY_THRESHOLD,
    URGENT_EXCERPT_CHARS,
    URGENT_EXCERPT_SAMPLE_SIZE,
)
from feedback_python_backend.errors import NotFoundError, PersistenceError, parse_uuid
from feedback_python_backend.models import SurveyAnalytics
from feedback_python_backend.services.feedback_reader import (
    fetch_completed_sessions,
    fetch_latest_insights,
    fetch_latest_snapshot,
    fetch_snapshots,
    fetch_survey,
    fetch_survey_responses,
    fetch_survey_themes,
    serialize_snapshot,
)
from feedback_python_backend.services.llm_config import load_oracle_config
from feedback_python_backend.services.oracle_client import build_request, call_tool, get_oracle
from feedback_python_backend.services.oracle_schemas import ANALYZE_SURVEY_TOOL, warn_if_outside
from feedback_python_backend.services.prompt_manager import get_prompt_manager
from feedback_python_backend.services.survey_statistics import compute_survey_statistics, is_urgent

logger = logging.getLogger(__name__)


def build_analysis_context(
    survey_title: str,
    session_count: int,
    statistics: Dict[str, Any],
    root_causes: List[str],
    urgent_excerpts: List[str],
) -> str:
    trajectories = statistics["trajectories"]
    lines = [
        f"Survey: {survey_title}",
        f"Total Completed Sessions: {session_count}",
        f"Total Responses: {statistics['total_responses']}",
        f"Average Sentiment: {statistics['avg_sentiment']:.1f}/100",
        f"Urgent Issues: {statistics['urgent_count']}",
        "",
        "Sentiment Trajectories:",
        f"- Improving: {trajectories['improving']}",
        f"- Declining: {trajectories['declining']}",
        f"- Stable: {trajectories['stable']}",
        f"- Mixed: {trajectories['mixed']}",
        "",
        "Top Themes by Volume:",
    ]
    lines.extend(
        f"- {theme['name']}: {theme['count']} responses "
        f"(avg sentiment: {theme['avg_sentiment']:.1f}, urgent: {theme['urgent_count']})"
        for theme in statistics["top_themes"]
    )
    lines.extend(["", "Root Causes Identified:"])
    lines.extend(f"{index}. {cause}" for index, cause in enumerate(root_causes, start=1))
    lines.extend(["", "Sample Responses (High Urgency):"])
    lines.extend(f'"{excerpt}..."' for excerpt in urgent_excerpts)
    return "\n".join(lines)


class DeepAnalyticsSynthesizer:
    """Survey-wide executive snapshot."""

    def __init__(self, db_session: AsyncSession, oracle: Optional[Any] = None):
        self.db = db_session
        self.oracle = oracle
        self.prompt_manager = get_prompt_manager()

    async def run_deep_analytics(self, survey_id) -> Dict[str, Any]:
        """
        Compute statistics, interpret them with the oracle and insert a snapshot.

        Returns:
            {"status": "completed", "survey_id", "snapshot_id", "sessions_analyzed",
             "confidence_score"} or {"status": "skipped", ...} without completed sessions.

        Raises:
            NotFoundError: survey does not exist
            UpstreamAnalysisError: oracle failed or returned an invalid payload
            PersistenceError: the snapshot could not be written
        """
        survey_uuid = parse_uuid(survey_id, "survey_id")
        survey = await fetch_survey(self.db, survey_uuid)
        if survey is None:
            raise NotFoundError("Survey not found", context={"survey_id": str(survey_uuid)})

        sessions = await fetch_completed_sessions(self.db, survey_uuid)
        if not sessions:
            logger.info("[deep-analytics] survey=%s no completed sessions, skipping", survey_uuid)
            return {
                "status": "skipped",
                "survey_id": str(survey_uuid),
                "message": "No completed sessions to analyze",
            }

        themes = await fetch_survey_themes(self.db, survey_uuid)
        responses = await fetch_survey_responses(self.db, survey_uuid)
        insights = await fetch_latest_insights(self.db, [session.id for session in sessions])
        logger.info(
            "[deep-analytics] survey=%s analyzing %s sessions with %s responses",
            survey_uuid,
            len(sessions),
            len(responses),
        )

        statistics = compute_survey_statistics(
            responses,
            [insight.sentiment_trajectory for insight in insights],
            theme_names={str(theme.id): theme.name for theme in themes},
        )
        root_causes = [insight.root_cause for insight in insights if insight.root_cause][:ROOT_CAUSE_SAMPLE_SIZE]
        urgent_excerpts = [
            response.content[:URGENT_EXCERPT_CHARS]
            for response in responses
            if is_urgent(response.urgency_score, URGENCY_THRESHOLD)
        ][:URGENT_EXCERPT_SAMPLE_SIZE]

        context = {"survey_id": str(survey_uuid)}
        prompt = self.prompt_manager.render("survey_analysis", {
            "analysis_context": build_analysis_context(
                survey.title, len(sessions), statistics, root_causes, urgent_excerpts
            ),
        })
        config = await load_oracle_config(self.db)
        request = build_request(
            config,
            "analytics",
            ANALYZE_SURVEY_TOOL,
            prompt.system,
            prompt.user,
            context=context,
        )
        analysis = await call_tool(self.oracle or get_oracle(config), request)
        warn_if_outside("top_themes", analysis.top_themes, 5, 7, context)
        warn_if_outside("risk_factors", analysis.risk_factors, 3, 5, context)
        warn_if_outside("opportunities", analysis.opportunities, 3, 5, context)
        warn_if_outside("strategic_recommendations", analysis.strategic_recommendations, 5, 7, context)

        snapshot = SurveyAnalytics(
            id=uuid.uuid4(),
            survey_id=survey_uuid,
            executive_summary=analysis.executive_summary,
            top_themes=[theme.model_dump() for theme in analysis.top_themes],
            sentiment_trends=analysis.sentiment_trends.model_dump(),
            cultural_insights=analysis.cultural_insights,
            risk_factors=[risk.model_dump() for risk in analysis.risk_factors],
            opportunities=[opportunity.model_dump() for opportunity in analysis.opportunities],
            strategic_recommendations=[rec.model_dump() for rec in analysis.strategic_recommendations],
            participation_analysis=analysis.participation_analysis,
            summary_statistics=statistics,
            confidence_score=analysis.confidence_score,
            total_sessions_analyzed=len(sessions),
            model=request.model,
            analyzed_at=datetime.now(timezone.utc),
        )
        self.db.add(snapshot)
        try:
            await self.db.commit()
        except SQLAlchemyError as exc:
            await self.db.rollback()
            logger.error("[deep-analytics] survey=%s failed to store snapshot: %s", survey_uuid, exc)
            raise PersistenceError("Failed to store survey analytics", context=context) from exc

        logger.info(
            "[deep-analytics] survey=%s snapshot=%s confidence=%s themes=%s risks=%s recommendations=%s",
            survey_uuid,
            snapshot.id,
            analysis.confidence_score,
            len(analysis.top_themes),
            len(analysis.risk_factors),
            len(analysis.strategic_recommendations),
        )

        return {
            "status": "completed",
            "survey_id": str(survey_uuid),
            "snapshot_id": str(snapshot.id),
            "sessions_analyzed": len(sessions),
            "confidence_score": analysis.confidence_score,
        }


async def get_latest_snapshot(db: AsyncSession, survey_id) -> Dict[str, Any]:
    survey_uuid = parse_uuid(survey_id, "survey_id")
    snapshot = await fetch_latest_snapshot(db, survey_uuid)
    if snapshot is None:
        raise NotFoundError("No analytics snapshot for survey", context={"survey_id": str(survey_uuid)})
    return serialize_snapshot(snapshot)


async def list_snapshots(db: AsyncSession, survey_id, limit: int = 10) -> List[Dict[str, Any]]:
    """Snapshot history, newest first."""
    survey_uuid = parse_uuid(survey_id, "survey_id")
    if await fetch_survey(db, survey_uuid) is None:
        raise NotFoundError("Survey not found", context={"survey_id": str(survey_uuid)})
    return [serialize_snapshot(snapshot) for snapshot in await fetch_snapshots(db, survey_uuid, limit)]
