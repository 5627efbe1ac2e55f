"""Feedback pipeline schema

Revision ID: feedback_pipeline_schema
Revises:
Create Date: 2026-10-19 09:00:00.000000
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = 'feedback_pipeline_schema'
down_revision = None
branch_labels = None
depends_on = None


def _uuid(name, *args, **kwargs):
    return sa.Column(name, postgresql.UUID(as_uuid=True), *args, **kwargs)


def _pk():
    return _uuid('id', primary_key=True, server_default=sa.text('gen_random_uuid()'))


def upgrade():
    bind = op.get_bind()
    inspector = sa.inspect(bind)
    existing_tables = set(inspector.get_table_names())

    # Upstream capture tables; only created when the capture stage has not done so
    if 'surveys' not in existing_tables:
        op.create_table(
            'surveys',
            _pk(),
            sa.Column('title', sa.Text, nullable=False),
            sa.Column('survey_type', sa.Text),
            sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        )

    if 'survey_themes' not in existing_tables:
        op.create_table(
            'survey_themes',
            _pk(),
            _uuid('survey_id', sa.ForeignKey('surveys.id', ondelete='CASCADE'), nullable=False),
            sa.Column('name', sa.Text, nullable=False),
            sa.Column('description', sa.Text),
        )
        op.create_index('idx_survey_themes_survey', 'survey_themes', ['survey_id'])

    if 'conversation_sessions' not in existing_tables:
        op.create_table(
            'conversation_sessions',
            _pk(),
            _uuid('survey_id', sa.ForeignKey('surveys.id', ondelete='CASCADE'), nullable=False),
            sa.Column('status', sa.Text, nullable=False, server_default='active'),
            sa.Column('initial_mood', sa.Integer),
            sa.Column('final_mood', sa.Integer),
            sa.Column('started_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
            sa.Column('ended_at', sa.DateTime(timezone=True)),
            sa.CheckConstraint("status IN ('active', 'completed', 'abandoned')", name='valid_session_status'),
        )
        op.create_index('idx_sessions_survey_status', 'conversation_sessions', ['survey_id', 'status'])

    if 'responses' not in existing_tables:
        op.create_table(
            'responses',
            _pk(),
            _uuid('survey_id', sa.ForeignKey('surveys.id', ondelete='CASCADE'), nullable=False),
            _uuid('conversation_session_id', sa.ForeignKey('conversation_sessions.id', ondelete='CASCADE')),
            _uuid('theme_id', sa.ForeignKey('survey_themes.id', ondelete='SET NULL')),
            sa.Column('content', sa.Text, nullable=False),
            sa.Column('ai_response', sa.Text),
            sa.Column('sentiment', sa.Text),
            sa.Column('sentiment_score', sa.Float),
            sa.Column('urgency_score', sa.Integer),
            sa.Column('ai_analysis', postgresql.JSONB),
            sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        )
        op.create_index('idx_responses_survey_created', 'responses', ['survey_id', 'created_at'])
        op.create_index('idx_responses_session', 'responses', ['conversation_session_id'])

    if 'response_signals' not in existing_tables:
        op.create_table(
            'response_signals',
            _pk(),
            _uuid('response_id', sa.ForeignKey('responses.id', ondelete='CASCADE'), nullable=False),
            _uuid('survey_id', sa.ForeignKey('surveys.id', ondelete='CASCADE'), nullable=False),
            sa.Column('dimension', sa.Text, nullable=False),
            sa.Column('facet', sa.Text),
            sa.Column('signal_text', sa.Text, nullable=False),
            sa.Column('intensity', sa.Float, nullable=False, server_default='0'),
            sa.Column('sentiment', sa.Text, nullable=False),
            sa.Column('confidence', sa.Float),
            sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        )
        op.create_index('idx_response_signals_survey_dimension', 'response_signals', ['survey_id', 'dimension'])

    # Pipeline-owned tables
    if 'aggregated_signals' not in existing_tables:
        op.create_table(
            'aggregated_signals',
            _pk(),
            _uuid('survey_id', sa.ForeignKey('surveys.id', ondelete='CASCADE'), nullable=False),
            sa.Column('signal_text', sa.Text, nullable=False),
            sa.Column('dimension', sa.Text, nullable=False),
            sa.Column('facet', sa.Text, nullable=False, server_default='general'),
            sa.Column('sentiment', sa.Text, nullable=False),
            sa.Column('voice_count', sa.Integer, nullable=False),
            sa.Column('agreement_pct', sa.Integer, nullable=False),
            sa.Column('avg_intensity', sa.Float, nullable=False),
            sa.Column('evidence_ids', postgresql.JSONB, nullable=False),
            sa.Column('signal_ids', postgresql.JSONB, nullable=False),
            _uuid('aggregation_run_id', nullable=False),
            sa.Column('analyzed_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
            sa.CheckConstraint('agreement_pct >= 0 AND agreement_pct <= 100', name='check_agreement_pct'),
            sa.CheckConstraint('voice_count >= 1', name='check_voice_count'),
        )
        op.create_index('idx_aggregated_signals_survey', 'aggregated_signals', ['survey_id', 'dimension'])

    if 'session_insights' not in existing_tables:
        op.create_table(
            'session_insights',
            _pk(),
            _uuid('session_id', sa.ForeignKey('conversation_sessions.id', ondelete='CASCADE'), nullable=False),
            sa.Column('root_cause', sa.Text, nullable=False),
            sa.Column('sentiment_trajectory', sa.Text, nullable=False),
            sa.Column('key_quotes', postgresql.JSONB, nullable=False),
            sa.Column('recommended_actions', postgresql.JSONB, nullable=False),
            sa.Column('confidence_score', sa.Integer, nullable=False),
            sa.Column('model', sa.Text),
            sa.Column('analyzed_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
            sa.CheckConstraint(
                "sentiment_trajectory IN ('improving', 'declining', 'stable', 'mixed')",
                name='valid_sentiment_trajectory',
            ),
            sa.CheckConstraint('confidence_score >= 0 AND confidence_score <= 100', name='check_insight_confidence'),
        )
        op.create_index('idx_session_insights_session', 'session_insights', ['session_id', 'analyzed_at'])

    if 'survey_analytics' not in existing_tables:
        op.create_table(
            'survey_analytics',
            _pk(),
            _uuid('survey_id', sa.ForeignKey('surveys.id', ondelete='CASCADE'), nullable=False),
            sa.Column('executive_summary', sa.Text, nullable=False),
            sa.Column('top_themes', postgresql.JSONB),
            sa.Column('sentiment_trends', postgresql.JSONB),
            sa.Column('cultural_insights', sa.Text),
            sa.Column('risk_factors', postgresql.JSONB),
            sa.Column('opportunities', postgresql.JSONB),
            sa.Column('strategic_recommendations', postgresql.JSONB),
            sa.Column('participation_analysis', sa.Text),
            sa.Column('summary_statistics', postgresql.JSONB),
            sa.Column('confidence_score', sa.Integer, nullable=False),
            sa.Column('total_sessions_analyzed', sa.Integer, nullable=False),
            sa.Column('model', sa.Text),
            sa.Column('analyzed_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
            sa.CheckConstraint('confidence_score >= 0 AND confidence_score <= 100', name='check_analytics_confidence'),
        )
        op.create_index('idx_survey_analytics_survey', 'survey_analytics', ['survey_id', 'analyzed_at'])

    if 'narrative_reports' not in existing_tables:
        op.create_table(
            'narrative_reports',
            _pk(),
            _uuid('survey_id', sa.ForeignKey('surveys.id', ondelete='CASCADE'), nullable=False),
            sa.Column('generated_by', sa.Text),
            sa.Column('report_version', sa.Integer, nullable=False, server_default='1'),
            sa.Column('chapters', postgresql.JSONB, nullable=False),
            sa.Column('audience_config', postgresql.JSONB, nullable=False),
            sa.Column('data_snapshot', postgresql.JSONB, nullable=False),
            sa.Column('confidence_score', sa.Integer, nullable=False),
            sa.Column('is_latest', sa.Boolean, nullable=False, server_default=sa.false()),
            sa.Column('model', sa.Text),
            sa.Column('generated_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
            sa.CheckConstraint('confidence_score >= 1 AND confidence_score <= 5', name='check_report_confidence'),
            sa.UniqueConstraint('survey_id', 'report_version', name='uq_narrative_reports_survey_version'),
        )
        op.create_index('idx_narrative_reports_survey', 'narrative_reports', ['survey_id', 'generated_at'])
        op.create_index(
            'idx_narrative_reports_latest',
            'narrative_reports',
            ['survey_id'],
            postgresql_where=sa.text('is_latest = true'),
        )

    if 'narrative_report_pointers' not in existing_tables:
        op.create_table(
            'narrative_report_pointers',
            _uuid('survey_id', sa.ForeignKey('surveys.id', ondelete='CASCADE'), primary_key=True),
            _uuid('report_id', sa.ForeignKey('narrative_reports.id', ondelete='CASCADE'), nullable=False),
            sa.Column('version', sa.Integer, nullable=False, server_default='1'),
            sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        )

    if 'api_calls_log' not in existing_tables:
        op.create_table(
            'api_calls_log',
            _pk(),
            _uuid('survey_id'),
            _uuid('session_id'),
            sa.Column('endpoint', sa.Text, nullable=False),
            sa.Column('feature', sa.Text, nullable=False),
            sa.Column('provider', sa.Text, nullable=False),
            sa.Column('model', sa.Text, nullable=False),
            sa.Column('prompt_tokens', sa.Integer, nullable=False),
            sa.Column('completion_tokens', sa.Integer, nullable=False),
            sa.Column('total_tokens', sa.Integer, nullable=False),
            sa.Column('prompt_cost', sa.Float, nullable=False),
            sa.Column('completion_cost', sa.Float, nullable=False),
            sa.Column('total_cost', sa.Float, nullable=False),
            sa.Column('latency_ms', sa.Integer),
            sa.Column('status', sa.Text, nullable=False),
            sa.Column('error_message', sa.Text),
            sa.Column('started_at', sa.DateTime(timezone=True), nullable=False),
            sa.Column('completed_at', sa.DateTime(timezone=True)),
        )
        op.create_index('idx_api_calls_survey', 'api_calls_log', ['survey_id'])
        op.create_index('idx_api_calls_feature', 'api_calls_log', ['feature'])
        op.create_index('idx_api_calls_started', 'api_calls_log', ['started_at'])

    if 'app_settings' not in existing_tables:
        op.create_table(
            'app_settings',
            sa.Column('key', sa.String(128), primary_key=True),
            sa.Column('value', postgresql.JSONB, nullable=False),
            sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        )


def downgrade():
    op.drop_table('app_settings')
    op.drop_table('api_calls_log')
    op.drop_table('narrative_report_pointers')
    op.drop_table('narrative_reports')
    op.drop_table('survey_analytics')
    op.drop_table('session_insights')
    op.drop_table('aggregated_signals')
