"""
Narrative Chapter Generator

Writes a five-chapter story of a survey (pulse, working, warnings, why,
forward) for an executive or manager audience. Insights cite response ids so
readers can drill down into the evidence.

Each survey has a pointer row naming its current report. A new report is
inserted, older ones demoted and the pointer swapped in one transaction; the
swap is a compare-and-swap on the pointer version read before the oracle call,
so two concurrent generations cannot both win.
"""

import json
import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from feedback_python_backend.config import NARRATIVE_SAMPLE_SIZE
from feedback_python_backend.errors import (
    ConcurrentGenerationError,
    MissingInputError,
    NotFoundError,
    PersistenceError,
    parse_uuid,
)
from feedback_python_backend.models import NarrativeReport, NarrativeReportPointer
from feedback_python_backend.services.feedback_reader import (
    count_survey_responses,
    fetch_completed_sessions,
    fetch_latest_insights,
    fetch_latest_snapshot,
    fetch_recent_responses,
    fetch_reports,
    fetch_responses_by_ids,
    fetch_survey,
    fetch_survey_response_ids,
    serialize_report,
    serialize_response,
    serialize_snapshot,
)
from feedback_python_backend.services.llm_config import load_oracle_config
from feedback_python_backend.services.oracle_client import build_request, call_tool, get_oracle
from feedback_python_backend.services.oracle_schemas import NARRATIVE_REPORT_TOOL, NarrativeReportPayload
from feedback_python_backend.services.prompt_manager import RenderedPrompt, get_prompt_manager

logger = logging.getLogger(__name__)

AUDIENCES = ("executive", "manager")


def _normalize_id(value: Any) -> Optional[str]:
    try:
        return str(uuid.UUID(str(value)))
    except (TypeError, ValueError):
        return None


def filter_evidence(payload: NarrativeReportPayload, valid_ids: Set[str]) -> Tuple[List[Dict[str, Any]], int]:
    """
    Keep only evidence ids that are response ids of the survey.

    Returns:
        (chapters as plain dicts in canonical order, number of ids dropped)
    """
    dropped = 0
    chapters = []
    for chapter in payload.chapters:
        chapter_data = chapter.model_dump()
        for insight in chapter_data["insights"]:
            kept = []
            for raw_id in insight["evidence_ids"]:
                normalized = _normalize_id(raw_id)
                if normalized is not None and normalized in valid_ids:
                    kept.append(normalized)
                else:
                    dropped += 1
            insight["evidence_ids"] = kept
        chapters.append(chapter_data)
    return chapters, dropped


class NarrativeGenerator:
    """Audience-tuned five-chapter narrative for one survey."""

    def __init__(self, db_session: AsyncSession, oracle: Optional[Any] = None):
        self.db = db_session
        self.oracle = oracle
        self.prompt_manager = get_prompt_manager()

    async def generate_narrative_report(
        self,
        survey_id,
        audience: str = "executive",
        generated_by: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Generate a report and make it the survey's latest.

        Returns:
            {"status": "completed", "survey_id", "report_id", "report_version",
             "confidence_score", "chapters"}

        Raises:
            NotFoundError: survey does not exist
            MissingInputError: unknown audience
            UpstreamAnalysisError: oracle failed, or chapters missing/duplicated
            ConcurrentGenerationError: another generation committed first
            PersistenceError: the report could not be written
        """
        survey_uuid = parse_uuid(survey_id, "survey_id")
        if audience not in AUDIENCES:
            raise MissingInputError(f"Unknown audience: {audience}", context={"audience": audience})

        survey = await fetch_survey(self.db, survey_uuid)
        if survey is None:
            raise NotFoundError("Survey not found", context={"survey_id": str(survey_uuid)})

        context = {"survey_id": str(survey_uuid), "audience": audience}
        base_version, pointer_exists = await self._current_version(survey_uuid)

        snapshot = await fetch_latest_snapshot(self.db, survey_uuid)
        recent_responses = await fetch_recent_responses(self.db, survey_uuid, NARRATIVE_SAMPLE_SIZE)
        sessions = await fetch_completed_sessions(self.db, survey_uuid)
        insights = await fetch_latest_insights(self.db, [session.id for session in sessions])
        total_responses = await count_survey_responses(self.db, survey_uuid)
        logger.info(
            "[narrative] survey=%s audience=%s sessions=%s responses=%s analytics=%s",
            survey_uuid,
            audience,
            len(sessions),
            total_responses,
            snapshot is not None,
        )

        prompt = self._render_prompt(survey, audience, snapshot, recent_responses, insights, len(sessions), total_responses)
        config = await load_oracle_config(self.db)
        request = build_request(
            config,
            "narrative",
            NARRATIVE_REPORT_TOOL,
            prompt.system,
            prompt.user,
            context=context,
        )
        payload = await call_tool(self.oracle or get_oracle(config), request)

        chapters, dropped = filter_evidence(payload, await fetch_survey_response_ids(self.db, survey_uuid))
        if dropped:
            logger.warning("[narrative] survey=%s dropped %s evidence ids outside the survey", survey_uuid, dropped)

        report = NarrativeReport(
            id=uuid.uuid4(),
            survey_id=survey_uuid,
            generated_by=generated_by,
            report_version=base_version + 1,
            chapters=chapters,
            audience_config={"audience": audience},
            data_snapshot={
                "total_sessions": len(sessions),
                "total_responses": total_responses,
                "generated_from_analytics": snapshot is not None,
            },
            confidence_score=payload.overall_confidence,
            is_latest=True,
            model=request.model,
            generated_at=datetime.now(timezone.utc),
        )
        await self._publish(report, base_version, pointer_exists)

        logger.info(
            "[narrative] survey=%s report=%s version=%s confidence=%s",
            survey_uuid,
            report.id,
            report.report_version,
            report.confidence_score,
        )

        return {
            "status": "completed",
            "survey_id": str(survey_uuid),
            "report_id": str(report.id),
            "report_version": report.report_version,
            "confidence_score": report.confidence_score,
            "chapters": chapters,
        }

    async def _current_version(self, survey_uuid: uuid.UUID) -> Tuple[int, bool]:
        """Pointer version, or the highest stored report_version when no pointer exists yet."""
        result = await self.db.execute(
            select(NarrativeReportPointer.version).where(NarrativeReportPointer.survey_id == survey_uuid)
        )
        version = result.scalar_one_or_none()
        if version is not None:
            return int(version), True

        result = await self.db.execute(
            select(func.max(NarrativeReport.report_version)).where(NarrativeReport.survey_id == survey_uuid)
        )
        return int(result.scalar() or 0), False

    def _render_prompt(self, survey, audience, snapshot, responses, insights, session_count, total_responses) -> RenderedPrompt:
        analytics = (
            json.dumps(serialize_snapshot(snapshot), indent=2)
            if snapshot is not None
            else "No deep analytics available yet"
        )
        sample_responses = [
            {
                "id": str(response.id),
                "content": response.content,
                "sentiment": response.sentiment,
                "sentiment_score": response.sentiment_score,
                "urgency_score": response.urgency_score,
                "theme_id": str(response.theme_id) if response.theme_id else None,
            }
            for response in responses
        ]
        session_insights = [
            {
                "root_cause": insight.root_cause,
                "sentiment_trajectory": insight.sentiment_trajectory,
                "key_quotes": insight.key_quotes or [],
                "recommended_actions": insight.recommended_actions or [],
            }
            for insight in insights
        ]
        return self.prompt_manager.render("narrative_report", {
            "survey_title": survey.title,
            "survey_type": survey.survey_type or "general",
            "total_sessions": session_count,
            "total_responses": total_responses,
            "analytics": analytics,
            "sample_responses": json.dumps(sample_responses, indent=2),
            "session_insights": json.dumps(session_insights, indent=2),
            "audience_guidance": self.prompt_manager.audience_guidance(audience),
        })

    async def _publish(self, report: NarrativeReport, base_version: int, pointer_exists: bool) -> None:
        """Insert, demote and swap the pointer as one transaction."""
        survey_uuid = report.survey_id
        context = {"survey_id": str(survey_uuid), "report_id": str(report.id)}
        try:
            self.db.add(report)
            await self.db.flush()

            await self.db.execute(
                update(NarrativeReport)
                .where(NarrativeReport.survey_id == survey_uuid, NarrativeReport.id != report.id)
                .values(is_latest=False)
                .execution_options(synchronize_session=False)
            )

            now = datetime.now(timezone.utc)
            if pointer_exists:
                result = await self.db.execute(
                    update(NarrativeReportPointer)
                    .where(
                        NarrativeReportPointer.survey_id == survey_uuid,
                        NarrativeReportPointer.version == base_version,
                    )
                    .values(report_id=report.id, version=report.report_version, updated_at=now)
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount != 1:
                    raise ConcurrentGenerationError(
                        "A newer narrative report was generated concurrently", context=context
                    )
            else:
                self.db.add(NarrativeReportPointer(
                    survey_id=survey_uuid,
                    report_id=report.id,
                    version=report.report_version,
                    updated_at=now,
                ))
                await self.db.flush()

            await self.db.commit()
        except ConcurrentGenerationError:
            await self.db.rollback()
            logger.warning("[narrative] survey=%s lost pointer swap at version %s", survey_uuid, base_version)
            raise
        except IntegrityError as exc:
            await self.db.rollback()
            logger.warning("[narrative] survey=%s version %s taken concurrently: %s", survey_uuid, base_version + 1, exc)
            raise ConcurrentGenerationError(
                "A newer narrative report was generated concurrently", context=context
            ) from exc
        except SQLAlchemyError as exc:
            await self.db.rollback()
            logger.error("[narrative] survey=%s failed to store report: %s", survey_uuid, exc)
            raise PersistenceError("Failed to store narrative report", context=context) from exc


async def get_latest_report(db: AsyncSession, survey_id) -> Dict[str, Any]:
    """The report the survey's pointer names."""
    survey_uuid = parse_uuid(survey_id, "survey_id")
    result = await db.execute(
        select(NarrativeReport)
        .join(NarrativeReportPointer, NarrativeReportPointer.report_id == NarrativeReport.id)
        .where(NarrativeReportPointer.survey_id == survey_uuid)
    )
    report = result.scalar_one_or_none()
    if report is None:
        raise NotFoundError("No narrative report for survey", context={"survey_id": str(survey_uuid)})
    return serialize_report(report)


async def list_reports(db: AsyncSession, survey_id) -> List[Dict[str, Any]]:
    """All reports of a survey, newest first."""
    survey_uuid = parse_uuid(survey_id, "survey_id")
    if await fetch_survey(db, survey_uuid) is None:
        raise NotFoundError("Survey not found", context={"survey_id": str(survey_uuid)})
    return [serialize_report(report) for report in await fetch_reports(db, survey_uuid)]


async def get_evidence(db: AsyncSession, survey_id, response_ids: Iterable) -> List[Dict[str, Any]]:
    """Drill-down: response records of this survey for the given evidence ids."""
    survey_uuid = parse_uuid(survey_id, "survey_id")
    response_uuids = [parse_uuid(response_id, "response_id") for response_id in response_ids]
    if not response_uuids:
        raise MissingInputError("At least one response id is required", context={"survey_id": str(survey_uuid)})
    responses = await fetch_responses_by_ids(db, survey_uuid, response_uuids)
    return [serialize_response(response) for response in responses]
