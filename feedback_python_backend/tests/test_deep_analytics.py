"""
Tests for the survey deep-analytics synthesizer.

Run with: pytest feedback_python_backend/tests/test_deep_analytics.py -v
"""

import uuid

import pytest
from sqlalchemy import func, select

from feedback_python_backend.errors import NotFoundError, UpstreamAnalysisError
from feedback_python_backend.models import SurveyAnalytics
from feedback_python_backend.services.deep_analytics import (
    DeepAnalyticsSynthesizer,
    get_latest_snapshot,
    list_snapshots,
)


async def _snapshot_count(db_session, survey_id):
    result = await db_session.execute(
        select(func.count(SurveyAnalytics.id)).where(SurveyAnalytics.survey_id == survey_id)
    )
    return result.scalar()


async def _seed_survey(seed):
    survey = await seed.survey(title="Platform Org Pulse")
    workload = await seed.theme(survey, "Workload")
    growth = await seed.theme(survey, "Growth")
    first = await seed.session(survey)
    second = await seed.session(survey)
    await seed.session(survey, status="active")

    await seed.response(survey, first, content="I am drowning in tickets every single week and nobody notices.",
                        sentiment_score=20, urgency_score=5, theme=workload)
    await seed.response(survey, first, content="Sprint scope changes daily.",
                        sentiment_score=30, urgency_score=4, theme=workload)
    await seed.response(survey, second, content="My manager supports my growth.",
                        sentiment_score=80, urgency_score=1, theme=growth)
    await seed.response(survey, second, content="No comment.")

    await seed.insight(first, sentiment_trajectory="declining", root_cause="Intake is not gated")
    await seed.insight(first, sentiment_trajectory="improving", root_cause="Intake got a gate")
    await seed.insight(second, sentiment_trajectory="stable", root_cause="Strong 1:1 culture")
    return survey


@pytest.mark.asyncio
async def test_snapshot_stores_exact_statistics(db_session, seed, fake_oracle, survey_analysis_payload):
    survey = await _seed_survey(seed)
    oracle = fake_oracle({"analyze_survey": survey_analysis_payload})

    result = await DeepAnalyticsSynthesizer(db_session, oracle=oracle).run_deep_analytics(str(survey.id))

    assert result["status"] == "completed"
    assert result["sessions_analyzed"] == 2
    assert result["confidence_score"] == 74

    snapshot = await get_latest_snapshot(db_session, survey.id)
    assert snapshot["id"] == result["snapshot_id"]
    assert snapshot["total_sessions_analyzed"] == 2
    assert snapshot["sentiment_trends"]["overall_direction"] == "declining"
    assert len(snapshot["risk_factors"]) == 3

    stats = snapshot["summary_statistics"]
    assert stats["total_responses"] == 4
    # the unscored response counts as 50
    assert stats["avg_sentiment"] == pytest.approx((20 + 30 + 80 + 50) / 4)
    assert stats["urgent_count"] == 2
    assert [(t["name"], t["count"], t["urgent_count"]) for t in stats["top_themes"]] == [
        ("Workload", 2, 2),
        ("Growth", 1, 0),
    ]
    assert stats["top_themes"][0]["avg_sentiment"] == pytest.approx(25.0)
    # latest insight per session only
    assert stats["trajectories"] == {"improving": 1, "declining": 0, "stable": 1, "mixed": 0}


@pytest.mark.asyncio
async def test_prompt_carries_root_causes_and_urgent_excerpts(db_session, seed, fake_oracle, survey_analysis_payload):
    survey = await _seed_survey(seed)
    oracle = fake_oracle({"analyze_survey": survey_analysis_payload})

    await DeepAnalyticsSynthesizer(db_session, oracle=oracle).run_deep_analytics(survey.id)

    prompt = oracle.requests[0].prompt
    assert oracle.requests[0].stage == "analytics"
    assert "Survey: Platform Org Pulse" in prompt
    assert "Total Completed Sessions: 2" in prompt
    assert "Average Sentiment: 45.0/100" in prompt
    assert "- Workload: 2 responses (avg sentiment: 25.0, urgent: 2)" in prompt
    assert "1. Intake got a gate" in prompt
    assert "Intake is not gated" not in prompt
    assert '"Sprint scope changes daily...."' in prompt
    assert "My manager supports my growth" not in prompt


@pytest.mark.asyncio
async def test_survey_without_completed_sessions_is_skipped(db_session, seed, fake_oracle, survey_analysis_payload):
    survey = await seed.survey()
    await seed.session(survey, status="active")
    oracle = fake_oracle({"analyze_survey": survey_analysis_payload})

    result = await DeepAnalyticsSynthesizer(db_session, oracle=oracle).run_deep_analytics(survey.id)

    assert result["status"] == "skipped"
    assert result["message"] == "No completed sessions to analyze"
    assert oracle.requests == []
    assert await _snapshot_count(db_session, survey.id) == 0


@pytest.mark.asyncio
async def test_invalid_payload_writes_no_snapshot(db_session, seed, fake_oracle, survey_analysis_payload):
    survey = await _seed_survey(seed)
    del survey_analysis_payload["executive_summary"]

    with pytest.raises(UpstreamAnalysisError) as exc_info:
        await DeepAnalyticsSynthesizer(
            db_session, oracle=fake_oracle({"analyze_survey": survey_analysis_payload})
        ).run_deep_analytics(survey.id)

    assert exc_info.value.context["survey_id"] == str(survey.id)
    assert await _snapshot_count(db_session, survey.id) == 0


@pytest.mark.asyncio
async def test_snapshots_are_immutable_history(db_session, seed, fake_oracle, survey_analysis_payload):
    survey = await _seed_survey(seed)
    first = await DeepAnalyticsSynthesizer(
        db_session, oracle=fake_oracle({"analyze_survey": survey_analysis_payload})
    ).run_deep_analytics(survey.id)
    second_payload = dict(survey_analysis_payload, confidence_score=90)
    second = await DeepAnalyticsSynthesizer(
        db_session, oracle=fake_oracle({"analyze_survey": second_payload})
    ).run_deep_analytics(survey.id)

    history = await list_snapshots(db_session, survey.id, limit=10)
    latest = await get_latest_snapshot(db_session, survey.id)

    assert [snapshot["id"] for snapshot in history] == [second["snapshot_id"], first["snapshot_id"]]
    assert latest["confidence_score"] == 90


@pytest.mark.asyncio
async def test_missing_survey_and_snapshot(db_session, seed, fake_oracle):
    with pytest.raises(NotFoundError):
        await DeepAnalyticsSynthesizer(db_session, oracle=fake_oracle()).run_deep_analytics(uuid.uuid4())

    survey = await seed.survey()
    with pytest.raises(NotFoundError):
        await get_latest_snapshot(db_session, survey.id)
