"""
SQLAlchemy models for the feedback signal pipeline.

Upstream tables (surveys, sessions, responses, response_signals) are written by
the capture and signal-extraction stages and only read here. The pipeline owns
aggregated_signals, session_insights, survey_analytics, narrative_reports and
their pointer table.
"""

from sqlalchemy import (
    JSON, Column, String, Integer, Float, Boolean, Text, DateTime, Uuid,
    ForeignKey, Index, CheckConstraint, UniqueConstraint, text
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import declarative_base
from sqlalchemy.sql import func
import uuid

Base = declarative_base()

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests)
JSONType = JSON().with_variant(JSONB(), "postgresql")


class Survey(Base):
    """Survey a set of conversations belongs to"""
    __tablename__ = "surveys"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    title = Column(Text, nullable=False)
    survey_type = Column(Text)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class SurveyTheme(Base):
    """Theme a survey asks about"""
    __tablename__ = "survey_themes"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    survey_id = Column(Uuid, ForeignKey('surveys.id', ondelete='CASCADE'), nullable=False)
    name = Column(Text, nullable=False)
    description = Column(Text)

    __table_args__ = (
        Index('idx_survey_themes_survey', 'survey_id'),
    )


class ConversationSession(Base):
    """One participant's feedback conversation"""
    __tablename__ = "conversation_sessions"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    survey_id = Column(Uuid, ForeignKey('surveys.id', ondelete='CASCADE'), nullable=False)
    status = Column(Text, nullable=False, default='active')  # 'active', 'completed', 'abandoned'

    # Self-reported mood (1-10)
    initial_mood = Column(Integer)
    final_mood = Column(Integer)

    started_at = Column(DateTime(timezone=True), server_default=func.now())
    ended_at = Column(DateTime(timezone=True))

    __table_args__ = (
        CheckConstraint(
            "status IN ('active', 'completed', 'abandoned')",
            name='valid_session_status'
        ),
        Index('idx_sessions_survey_status', 'survey_id', 'status'),
    )


class Response(Base):
    """A single participant answer inside a session"""
    __tablename__ = "responses"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    survey_id = Column(Uuid, ForeignKey('surveys.id', ondelete='CASCADE'), nullable=False)
    conversation_session_id = Column(Uuid, ForeignKey('conversation_sessions.id', ondelete='CASCADE'))
    theme_id = Column(Uuid, ForeignKey('survey_themes.id', ondelete='SET NULL'))

    content = Column(Text, nullable=False)
    ai_response = Column(Text)

    # Per-response scoring from the capture stage
    sentiment = Column(Text)
    sentiment_score = Column(Float)  # 0-100
    urgency_score = Column(Integer)  # 1-5
    ai_analysis = Column(JSONType)

    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        Index('idx_responses_survey_created', 'survey_id', 'created_at'),
        Index('idx_responses_session', 'conversation_session_id'),
    )


class ResponseSignal(Base):
    """Atomic tagged observation extracted upstream from one response"""
    __tablename__ = "response_signals"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    response_id = Column(Uuid, ForeignKey('responses.id', ondelete='CASCADE'), nullable=False)
    survey_id = Column(Uuid, ForeignKey('surveys.id', ondelete='CASCADE'), nullable=False)

    dimension = Column(Text, nullable=False)
    facet = Column(Text)
    signal_text = Column(Text, nullable=False)
    intensity = Column(Float, nullable=False, default=0.0)
    sentiment = Column(Text, nullable=False)  # 'positive', 'negative', 'neutral', 'mixed'
    confidence = Column(Float)

    created_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        Index('idx_response_signals_survey_dimension', 'survey_id', 'dimension'),
    )


class AggregatedSignal(Base):
    """Cluster of signals collapsed into one cross-response summary"""
    __tablename__ = "aggregated_signals"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    survey_id = Column(Uuid, ForeignKey('surveys.id', ondelete='CASCADE'), nullable=False)

    signal_text = Column(Text, nullable=False)
    dimension = Column(Text, nullable=False)
    facet = Column(Text, nullable=False, default='general')
    sentiment = Column(Text, nullable=False)

    voice_count = Column(Integer, nullable=False)
    agreement_pct = Column(Integer, nullable=False)
    avg_intensity = Column(Float, nullable=False)

    # Member response ids (one entry per member signal) and the signal ids themselves
    evidence_ids = Column(JSONType, nullable=False)
    signal_ids = Column(JSONType, nullable=False)

    aggregation_run_id = Column(Uuid, nullable=False)
    analyzed_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        CheckConstraint('agreement_pct >= 0 AND agreement_pct <= 100', name='check_agreement_pct'),
        CheckConstraint('voice_count >= 1', name='check_voice_count'),
        Index('idx_aggregated_signals_survey', 'survey_id', 'dimension'),
    )


class SessionInsight(Base):
    """Root cause / trajectory / actions for one conversation session (append-only)"""
    __tablename__ = "session_insights"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    session_id = Column(Uuid, ForeignKey('conversation_sessions.id', ondelete='CASCADE'), nullable=False)

    root_cause = Column(Text, nullable=False)
    sentiment_trajectory = Column(Text, nullable=False)
    key_quotes = Column(JSONType, nullable=False)
    recommended_actions = Column(JSONType, nullable=False)  # [{action, priority, timeframe}]
    confidence_score = Column(Integer, nullable=False)

    model = Column(Text)
    analyzed_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        CheckConstraint(
            "sentiment_trajectory IN ('improving', 'declining', 'stable', 'mixed')",
            name='valid_sentiment_trajectory'
        ),
        CheckConstraint('confidence_score >= 0 AND confidence_score <= 100', name='check_insight_confidence'),
        Index('idx_session_insights_session', 'session_id', 'analyzed_at'),
    )


class SurveyAnalytics(Base):
    """Immutable survey-wide snapshot; latest is chosen by analyzed_at"""
    __tablename__ = "survey_analytics"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    survey_id = Column(Uuid, ForeignKey('surveys.id', ondelete='CASCADE'), nullable=False)

    executive_summary = Column(Text, nullable=False)
    top_themes = Column(JSONType)
    sentiment_trends = Column(JSONType)
    cultural_insights = Column(Text)
    risk_factors = Column(JSONType)
    opportunities = Column(JSONType)
    strategic_recommendations = Column(JSONType)
    participation_analysis = Column(Text)

    # Exact arithmetic computed before the oracle call
    summary_statistics = Column(JSONType)

    confidence_score = Column(Integer, nullable=False)
    total_sessions_analyzed = Column(Integer, nullable=False)
    model = Column(Text)
    analyzed_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        CheckConstraint('confidence_score >= 0 AND confidence_score <= 100', name='check_analytics_confidence'),
        Index('idx_survey_analytics_survey', 'survey_id', 'analyzed_at'),
    )


class NarrativeReport(Base):
    """Five-chapter narrative report for a survey"""
    __tablename__ = "narrative_reports"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    survey_id = Column(Uuid, ForeignKey('surveys.id', ondelete='CASCADE'), nullable=False)
    generated_by = Column(Text)
    report_version = Column(Integer, nullable=False, default=1)

    chapters = Column(JSONType, nullable=False)
    audience_config = Column(JSONType, nullable=False)
    data_snapshot = Column(JSONType, nullable=False)
    confidence_score = Column(Integer, nullable=False)

    is_latest = Column(Boolean, nullable=False, default=False)
    model = Column(Text)
    generated_at = Column(DateTime(timezone=True), server_default=func.now())

    __table_args__ = (
        CheckConstraint('confidence_score >= 1 AND confidence_score <= 5', name='check_report_confidence'),
        UniqueConstraint('survey_id', 'report_version', name='uq_narrative_reports_survey_version'),
        Index('idx_narrative_reports_survey', 'survey_id', 'generated_at'),
        Index('idx_narrative_reports_latest', 'survey_id', postgresql_where=text("is_latest = true")),
    )


class NarrativeReportPointer(Base):
    """Current-generation pointer: which narrative report is latest for a survey"""
    __tablename__ = "narrative_report_pointers"

    survey_id = Column(Uuid, ForeignKey('surveys.id', ondelete='CASCADE'), primary_key=True)
    report_id = Column(Uuid, ForeignKey('narrative_reports.id', ondelete='CASCADE'), nullable=False)
    version = Column(Integer, nullable=False, default=1)
    updated_at = Column(DateTime(timezone=True), server_default=func.now())


class APICallsLog(Base):
    """Oracle call tracking and cost monitoring"""
    __tablename__ = "api_calls_log"

    # Identity
    id = Column(Uuid, primary_key=True, default=uuid.uuid4)

    # Context
    survey_id = Column(Uuid)
    session_id = Column(Uuid)
    endpoint = Column(Text, nullable=False)  # Which pipeline stage triggered this
    feature = Column(Text, nullable=False)

    # API Details
    provider = Column(Text, nullable=False)
    model = Column(Text, nullable=False)

    # Tokens
    prompt_tokens = Column(Integer, nullable=False)
    completion_tokens = Column(Integer, nullable=False)
    total_tokens = Column(Integer, nullable=False)

    # Cost (USD)
    prompt_cost = Column(Float, nullable=False)
    completion_cost = Column(Float, nullable=False)
    total_cost = Column(Float, nullable=False)

    # Performance
    latency_ms = Column(Integer)
    status = Column(Text, nullable=False)  # 'success', 'error'
    error_message = Column(Text)

    # Timestamps
    started_at = Column(DateTime(timezone=True), nullable=False)
    completed_at = Column(DateTime(timezone=True))

    __table_args__ = (
        Index('idx_api_calls_survey', 'survey_id'),
        Index('idx_api_calls_feature', 'feature'),
        Index('idx_api_calls_started', 'started_at'),
    )


class AppSetting(Base):
    """Key/value runtime settings (oracle overrides)"""
    __tablename__ = "app_settings"

    key = Column(String(128), primary_key=True)
    value = Column(JSONType, nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())
