"""
Pytest configuration and shared fixtures for feedback pipeline tests.

This module provides:
- Database fixtures (in-memory SQLite through aiosqlite, one per test)
- A seeder for surveys, sessions, responses and signals
- Deterministic fake oracles and signal clusterers
- Canned oracle payloads for every tool
- Invariant checking hooks
"""

import copy
import inspect
import uuid
from collections import Counter
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional

import pytest
import pytest_asyncio
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from feedback_python_backend.models import (
    AggregatedSignal,
    Base,
    ConversationSession,
    NarrativeReport,
    NarrativeReportPointer,
    Response,
    ResponseSignal,
    SessionInsight,
    Survey,
    SurveyTheme,
)
from feedback_python_backend.services.oracle_client import OracleError
from feedback_python_backend.services.signal_clusterer import ClusterAssignment, SignalClusterer

import invariants


# ============================================================================
# Test Database Configuration
# ============================================================================

@pytest_asyncio.fixture
async def test_engine():
    """Fresh in-memory database per test; StaticPool keeps the single connection alive."""
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(test_engine):
    return async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(session_factory):
    async with session_factory() as session:
        yield session


# ============================================================================
# Test Data Factories
# ============================================================================

class FeedbackSeeder:
    """
    Inserts upstream rows and commits each one, so a rollback inside a
    service under test never removes seeded data.

    Timestamps come from a monotonic fake clock to keep load order stable.
    """

    def __init__(self, session: AsyncSession):
        self.db = session
        self._clock = datetime(2026, 1, 5, 9, 0, tzinfo=timezone.utc)

    def tick(self) -> datetime:
        self._clock += timedelta(seconds=1)
        return self._clock

    async def _save(self, obj):
        self.db.add(obj)
        await self.db.commit()
        return obj

    async def survey(self, title: str = "Q3 Team Pulse", survey_type: str = "engagement") -> Survey:
        return await self._save(Survey(id=uuid.uuid4(), title=title, survey_type=survey_type, created_at=self.tick()))

    async def theme(self, survey: Survey, name: str, description: Optional[str] = None) -> SurveyTheme:
        return await self._save(SurveyTheme(id=uuid.uuid4(), survey_id=survey.id, name=name, description=description))

    async def session(
        self,
        survey: Survey,
        status: str = "completed",
        initial_mood: Optional[int] = None,
        final_mood: Optional[int] = None,
    ) -> ConversationSession:
        return await self._save(ConversationSession(
            id=uuid.uuid4(),
            survey_id=survey.id,
            status=status,
            initial_mood=initial_mood,
            final_mood=final_mood,
            started_at=self.tick(),
        ))

    async def response(
        self,
        survey: Survey,
        session: Optional[ConversationSession] = None,
        content: str = "The workload has been heavy this quarter.",
        ai_response: Optional[str] = None,
        sentiment_score: Optional[float] = None,
        urgency_score: Optional[int] = None,
        theme: Optional[SurveyTheme] = None,
    ) -> Response:
        return await self._save(Response(
            id=uuid.uuid4(),
            survey_id=survey.id,
            conversation_session_id=session.id if session else None,
            theme_id=theme.id if theme else None,
            content=content,
            ai_response=ai_response,
            sentiment_score=sentiment_score,
            urgency_score=urgency_score,
            created_at=self.tick(),
        ))

    async def signal(
        self,
        response: Response,
        dimension: str,
        sentiment: str,
        intensity: float = 0.5,
        facet: Optional[str] = None,
        signal_text: Optional[str] = None,
    ) -> ResponseSignal:
        return await self._save(ResponseSignal(
            id=uuid.uuid4(),
            response_id=response.id,
            survey_id=response.survey_id,
            dimension=dimension,
            facet=facet,
            signal_text=signal_text or f"{dimension} feels {sentiment}",
            intensity=intensity,
            sentiment=sentiment,
            created_at=self.tick(),
        ))

    async def insight(
        self,
        session: ConversationSession,
        sentiment_trajectory: str = "stable",
        root_cause: str = "Unclear priorities between teams",
    ) -> SessionInsight:
        return await self._save(SessionInsight(
            id=uuid.uuid4(),
            session_id=session.id,
            root_cause=root_cause,
            sentiment_trajectory=sentiment_trajectory,
            key_quotes=["quote"],
            recommended_actions=[{"action": "Clarify priorities", "priority": "high", "timeframe": "1 month"}],
            confidence_score=70,
            analyzed_at=self.tick(),
        ))


@pytest.fixture
def seed(db_session):
    return FeedbackSeeder(db_session)


# ============================================================================
# Fake Oracle / Clusterers
# ============================================================================

class FakeOracle:
    """
    Deterministic oracle keyed by tool name.

    A payload may be a dict (returned as a deep copy), a callable taking the
    request (sync or async), or an exception instance to raise.
    """

    def __init__(self, payloads: Optional[Dict[str, Any]] = None):
        self.payloads = dict(payloads or {})
        self.requests: List[Any] = []

    async def invoke(self, request):
        self.requests.append(request)
        if request.tool.name not in self.payloads:
            raise OracleError(f"No tool call in oracle response for {request.tool.name}")
        payload = self.payloads[request.tool.name]
        if isinstance(payload, Exception):
            raise payload
        if callable(payload):
            result = payload(request)
            return await result if inspect.isawaitable(result) else result
        return copy.deepcopy(payload)


class MajorityClusterer(SignalClusterer):
    """Puts a whole dimension into one cluster labelled with its most common sentiment."""

    def __init__(self):
        self.calls: List[str] = []

    async def cluster(self, dimension, signals, context=None):
        self.calls.append(dimension)
        sentiment = Counter(signal.sentiment for signal in signals).most_common(1)[0][0]
        return [ClusterAssignment(
            aggregated_signal=f"Shared view on {dimension}",
            facet="general",
            sentiment=sentiment,
            signal_indices=list(range(1, len(signals) + 1)),
        )]


class FailingClusterer(MajorityClusterer):
    """MajorityClusterer that raises for the given dimensions."""

    def __init__(self, failing_dimensions, error: Optional[Exception] = None):
        super().__init__()
        self.failing_dimensions = set(failing_dimensions)
        self.error = error or OracleError("oracle returned 503")

    async def cluster(self, dimension, signals, context=None):
        if dimension in self.failing_dimensions:
            self.calls.append(dimension)
            raise self.error
        return await super().cluster(dimension, signals, context)


class ScriptedClusterer(SignalClusterer):
    """Returns fixed assignments per dimension."""

    def __init__(self, assignments: Dict[str, List[ClusterAssignment]]):
        self.assignments = assignments

    async def cluster(self, dimension, signals, context=None):
        return list(self.assignments.get(dimension, []))


@pytest.fixture
def fake_oracle() -> Callable[..., FakeOracle]:
    return FakeOracle


@pytest.fixture
def majority_clusterer():
    return MajorityClusterer()


@pytest.fixture
def failing_clusterer() -> Callable[..., FailingClusterer]:
    return FailingClusterer


@pytest.fixture
def scripted_clusterer() -> Callable[..., ScriptedClusterer]:
    return ScriptedClusterer


# ============================================================================
# Canned Oracle Payloads
# ============================================================================

@pytest.fixture
def session_analysis_payload() -> Dict[str, Any]:
    return {
        "root_cause": "Workload spikes are not matched by staffing decisions.",
        "sentiment_trajectory": "declining",
        "key_quotes": [
            "I keep getting pulled into fire drills.",
            "Nobody asks before adding scope.",
            "I used to enjoy this work.",
        ],
        "recommended_actions": [
            {"action": "Publish a quarterly staffing plan", "priority": "high", "timeframe": "1 month"},
            {"action": "Add a scope-change checkpoint", "priority": "medium", "timeframe": "2 weeks"},
            {"action": "Run a retro on fire drills", "priority": "low", "timeframe": "immediate"},
        ],
        "confidence_score": 82,
    }


@pytest.fixture
def survey_analysis_payload() -> Dict[str, Any]:
    return {
        "executive_summary": "Teams are engaged but stretched; workload is the dominant concern.",
        "top_themes": [
            {"theme": "Workload", "importance": "critical", "sentiment": "negative", "key_finding": "Sustained overload"},
            {"theme": "Leadership", "importance": "high", "sentiment": "positive", "key_finding": "Trusted managers"},
            {"theme": "Tools", "importance": "medium", "sentiment": "mixed", "key_finding": "Slow CI"},
            {"theme": "Growth", "importance": "medium", "sentiment": "mixed", "key_finding": "Unclear ladders"},
            {"theme": "Culture", "importance": "low", "sentiment": "positive", "key_finding": "Strong peer support"},
        ],
        "sentiment_trends": {
            "overall_direction": "declining",
            "momentum": "Decelerating after the reorg",
            "inflection_points": ["Q2 reorg"],
        },
        "cultural_insights": "People protect each other under pressure.",
        "risk_factors": [
            {"risk": "Burnout", "severity": "high", "likelihood": "high", "impact_area": "Retention"},
            {"risk": "Attrition of seniors", "severity": "critical", "likelihood": "medium", "impact_area": "Delivery"},
            {"risk": "Quality drift", "severity": "medium", "likelihood": "medium", "impact_area": "Customers"},
        ],
        "opportunities": [
            {"opportunity": "Invest in tooling", "potential_impact": "high", "effort_required": "medium"},
            {"opportunity": "Mentoring program", "potential_impact": "medium", "effort_required": "low"},
            {"opportunity": "Clear career ladders", "potential_impact": "high", "effort_required": "high"},
        ],
        "strategic_recommendations": [
            {
                "recommendation": f"Recommendation {index}",
                "priority": "short-term",
                "expected_outcome": "Lower overload",
                "key_stakeholders": ["Engineering leadership"],
            }
            for index in range(1, 6)
        ],
        "participation_analysis": "Participation was high across teams.",
        "confidence_score": 74,
    }


@pytest.fixture
def narrative_payload() -> Callable[..., Dict[str, Any]]:
    """Builds a create_narrative_report payload citing the given evidence ids."""

    def _build(evidence_ids=(), order=("pulse", "working", "warnings", "why", "forward"), overall_confidence=4):
        return {
            "chapters": [
                {
                    "key": key,
                    "title": f"{key.title()} chapter",
                    "narrative": f"What the {key} chapter says.",
                    "insights": [
                        {
                            "text": f"{key} insight",
                            "confidence": 4,
                            "evidence_ids": list(evidence_ids),
                            "category": "strength" if key == "working" else None,
                        }
                    ],
                }
                for key in order
            ],
            "overall_confidence": overall_confidence,
        }

    return _build


# ============================================================================
# Invariant Checking Hooks
# ============================================================================

@pytest.fixture
def check_aggregate_invariants(db_session):
    """
    Usage:
        await check_aggregate_invariants(survey.id)  # raises InvariantViolation
    """

    async def _check(survey_id):
        aggregates = list((await db_session.execute(
            select(AggregatedSignal).where(AggregatedSignal.survey_id == survey_id)
        )).scalars().all())
        signals = (await db_session.execute(
            select(ResponseSignal).where(ResponseSignal.survey_id == survey_id)
        )).scalars().all()
        invariants.check_aggregate_invariants(aggregates, Counter(signal.dimension for signal in signals))
        return aggregates

    return _check


@pytest.fixture
def check_narrative_invariants(db_session):
    async def _check(survey_id):
        reports = list((await db_session.execute(
            select(NarrativeReport)
            .where(NarrativeReport.survey_id == survey_id)
            .execution_options(populate_existing=True)
        )).scalars().all())
        pointer = (await db_session.execute(
            select(NarrativeReportPointer)
            .where(NarrativeReportPointer.survey_id == survey_id)
            .execution_options(populate_existing=True)
        )).scalar_one_or_none()
        invariants.check_narrative_invariants(reports, pointer)
        return reports, pointer

    return _check


# ============================================================================
# Pytest Markers
# ============================================================================

def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "slow: marks tests as slow (deselect with '-m \"not slow\"')"
    )
    config.addinivalue_line(
        "markers", "integration: marks tests as integration tests"
    )
