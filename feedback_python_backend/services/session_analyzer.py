"""
SessionAnalyzer Service

Turns one completed feedback conversation into a session insight: the root
cause behind the participant's feedback, how their sentiment moved, the most
telling verbatim quotes and a short list of prioritized actions.

One oracle call per session. Insights are append-only; re-analyzing a session
adds a newer row and readers take the latest one.
"""

import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from feedback_python_backend.errors import NotFoundError, PersistenceError, parse_uuid
from feedback_python_backend.models import Response, SessionInsight
from feedback_python_backend.services.feedback_reader import (
    fetch_session,
    fetch_session_insights,
    fetch_session_responses,
    serialize_insight,
)
from feedback_python_backend.services.llm_config import load_oracle_config
from feedback_python_backend.services.oracle_client import build_request, call_tool, get_oracle
from feedback_python_backend.services.oracle_schemas import ANALYZE_SESSION_TOOL, warn_if_outside
from feedback_python_backend.services.prompt_manager import get_prompt_manager

logger = logging.getLogger(__name__)


def _fmt_score(value) -> str:
    if value is None:
        return "N/A"
    return f"{float(value):g}"


def build_transcript(responses: List[Response]) -> str:
    """One block per response, in conversation order."""
    blocks = []
    for index, response in enumerate(responses, start=1):
        blocks.append(
            f"[Response {index}]\n"
            f"User: {response.content}\n"
            f"AI: {response.ai_response or ''}\n"
            f"Sentiment: {response.sentiment or 'unknown'} ({_fmt_score(response.sentiment_score)}/100)\n"
            f"Urgency: {response.urgency_score if response.urgency_score is not None else 'N/A'}/5"
        )
    return "\n\n".join(blocks)


def sentiment_series(responses: List[Response]) -> List[float]:
    return [r.sentiment_score for r in responses if r.sentiment_score is not None]


class SessionAnalyzer:
    """Root cause and action extraction for a single conversation session."""

    def __init__(self, db_session: AsyncSession, oracle: Optional[Any] = None):
        self.db = db_session
        self.oracle = oracle
        self.prompt_manager = get_prompt_manager()

    async def analyze_session(self, session_id) -> Dict[str, Any]:
        """
        Analyze one session and append a SessionInsight.

        Returns:
            {"status": "completed", "session_id", "insight_id", "confidence_score",
             "sentiment_trajectory", "actions_count"}
            or {"status": "skipped", ...} when the session has no responses.

        Raises:
            NotFoundError: session does not exist
            UpstreamAnalysisError: oracle failed or returned an invalid payload
            PersistenceError: the insight could not be written
        """
        session_uuid = parse_uuid(session_id, "session_id")
        session = await fetch_session(self.db, session_uuid)
        if session is None:
            raise NotFoundError("Session not found", context={"session_id": str(session_uuid)})

        responses = await fetch_session_responses(self.db, session_uuid)
        if not responses:
            logger.info("[analyze-session] session=%s no responses, skipping analysis", session_uuid)
            return {
                "status": "skipped",
                "session_id": str(session_uuid),
                "message": "No responses to analyze",
            }

        logger.info("[analyze-session] session=%s analyzing %s responses", session_uuid, len(responses))
        context = {"session_id": str(session_uuid), "survey_id": str(session.survey_id)}

        series = sentiment_series(responses)
        prompt = self.prompt_manager.render("session_analysis", {
            "initial_mood": session.initial_mood if session.initial_mood is not None else "N/A",
            "final_mood": session.final_mood if session.final_mood is not None else "N/A",
            "response_count": len(responses),
            "sentiment_series": ", ".join(_fmt_score(s) for s in series) or "N/A",
            "transcript": build_transcript(responses),
        })

        config = await load_oracle_config(self.db)
        request = build_request(
            config,
            "session",
            ANALYZE_SESSION_TOOL,
            prompt.system,
            prompt.user,
            context=context,
        )
        analysis = await call_tool(self.oracle or get_oracle(config), request)
        warn_if_outside("key_quotes", analysis.key_quotes, 3, 5, context)
        warn_if_outside("recommended_actions", analysis.recommended_actions, 3, 5, context)

        insight = SessionInsight(
            id=uuid.uuid4(),
            session_id=session_uuid,
            root_cause=analysis.root_cause,
            sentiment_trajectory=analysis.sentiment_trajectory,
            key_quotes=list(analysis.key_quotes),
            recommended_actions=[action.model_dump() for action in analysis.recommended_actions],
            confidence_score=analysis.confidence_score,
            model=request.model,
            analyzed_at=datetime.now(timezone.utc),
        )
        self.db.add(insight)
        try:
            await self.db.commit()
        except SQLAlchemyError as exc:
            await self.db.rollback()
            logger.error("[analyze-session] session=%s failed to store insight: %s", session_uuid, exc)
            raise PersistenceError("Failed to store session insight", context=context) from exc

        logger.info(
            "[analyze-session] session=%s trajectory=%s confidence=%s actions=%s",
            session_uuid,
            analysis.sentiment_trajectory,
            analysis.confidence_score,
            len(analysis.recommended_actions),
        )

        return {
            "status": "completed",
            "session_id": str(session_uuid),
            "insight_id": str(insight.id),
            "confidence_score": analysis.confidence_score,
            "sentiment_trajectory": analysis.sentiment_trajectory,
            "actions_count": len(analysis.recommended_actions),
        }


async def get_session_insights(db: AsyncSession, session_id, latest_only: bool = False) -> List[Dict[str, Any]]:
    """Insights of a session, newest first."""
    session_uuid = parse_uuid(session_id, "session_id")
    if await fetch_session(db, session_uuid) is None:
        raise NotFoundError("Session not found", context={"session_id": str(session_uuid)})
    insights = await fetch_session_insights(db, session_uuid, latest_only=latest_only)
    return [serialize_insight(insight) for insight in insights]
