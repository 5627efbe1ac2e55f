"""
Tests for instrumentation decorators and tracking.

Run with: pytest feedback_python_backend/tests/test_instrumentation.py -v
"""

import uuid
from datetime import datetime, timezone
from types import SimpleNamespace

import pytest
from sqlalchemy import select

from feedback_python_backend.instrumentation import (
    APICallTracker,
    get_tracker,
    set_session_factory,
    track_api_call,
)
from feedback_python_backend.instrumentation.cost_tracking_mapper import (
    build_memory_log_entry,
    infer_provider_from_model,
)
from feedback_python_backend.instrumentation.response_parsing import parse_response_metrics
from feedback_python_backend.models import APICallsLog


def _entry(**overrides):
    values = dict(
        call_id=str(uuid.uuid4()),
        endpoint="analyze_session",
        context={"survey_id": str(uuid.uuid4()), "session_id": "not-a-uuid"},
        model="google/gemini-2.5-flash-lite",
        input_tokens=1000,
        output_tokens=500,
        cost_usd=0.0,
        latency_ms=1200,
        timestamp=datetime.now(timezone.utc),
        success=True,
    )
    values.update(overrides)
    return build_memory_log_entry(**values)


@pytest.fixture
def clean_tracker():
    tracker = get_tracker()
    previous_factory = tracker.session_factory
    tracker.session_factory = None
    tracker.call_logs.clear()
    yield tracker
    tracker.session_factory = previous_factory
    tracker.call_logs.clear()


class TestAPICallTracker:
    def test_tracker_initialization(self):
        tracker = APICallTracker()

        assert tracker.session_factory is None
        assert tracker.get_in_memory_logs() == []

    @pytest.mark.asyncio
    async def test_log_api_call_to_memory(self):
        tracker = APICallTracker()

        await tracker.log_api_call(_entry())

        (log,) = tracker.call_logs
        assert log["endpoint"] == "analyze_session"
        assert log["feature"] == "analyze_session"
        assert log["total_tokens"] == 1500

    @pytest.mark.asyncio
    async def test_log_api_call_to_database(self, session_factory, db_session):
        tracker = APICallTracker(session_factory=session_factory)
        entry = _entry()

        await tracker.log_api_call(entry)

        assert tracker.call_logs == []
        row = (await db_session.execute(select(APICallsLog))).scalar_one()
        assert str(row.survey_id) == entry["survey_id"]
        # malformed ids are stored as NULL
        assert row.session_id is None
        assert row.provider == "google"
        assert row.status == "success"
        assert row.prompt_cost == pytest.approx(0.0001)
        assert row.completion_cost == pytest.approx(0.0002)
        assert row.total_cost == pytest.approx(0.0003)

    @pytest.mark.asyncio
    async def test_database_failure_falls_back_to_memory(self):
        def broken_factory():
            raise RuntimeError("database unavailable")

        tracker = APICallTracker(session_factory=broken_factory)

        await tracker.log_api_call(_entry())

        (log,) = tracker.call_logs
        assert log["db_error"] == "database unavailable"


class TestTrackAPICallDecorator:
    @pytest.mark.asyncio
    async def test_decorator_logs_successful_call(self, clean_tracker):
        @track_api_call("create_narrative_report", extract_context=lambda survey_id: {"survey_id": survey_id})
        async def fake_call(survey_id):
            return {
                "model": "google/gemini-2.5-pro",
                "usage": {"prompt_tokens": 2000, "completion_tokens": 500},
                "choices": [{"finish_reason": "tool_calls"}],
            }

        await fake_call("survey-1")

        (log,) = clean_tracker.get_in_memory_logs()
        assert log["success"] is True
        assert log["survey_id"] == "survey-1"
        assert log["model"] == "google/gemini-2.5-pro"
        assert log["cost_usd"] == pytest.approx(0.0075)
        assert log["metadata"] == {"finish_reason": "tool_calls"}

    @pytest.mark.asyncio
    async def test_decorator_logs_failed_call(self, clean_tracker):
        @track_api_call("analyze_survey", extract_context=lambda: {"model": "claude-sonnet-4-5-20250929"})
        async def failing_call():
            raise RuntimeError("upstream timeout")

        with pytest.raises(RuntimeError):
            await failing_call()

        (log,) = clean_tracker.get_in_memory_logs()
        assert log["success"] is False
        assert log["error_message"] == "upstream timeout"
        assert log["model"] == "claude-sonnet-4-5-20250929"
        assert log["cost_usd"] == 0.0

    @pytest.mark.asyncio
    async def test_unpriced_model_costs_nothing(self, clean_tracker):
        @track_api_call("analyze_session")
        async def local_call():
            return {"model": "llama-3-70b", "usage": {"prompt_tokens": 10, "completion_tokens": 5}}

        await local_call()

        (log,) = clean_tracker.get_in_memory_logs()
        assert log["cost_usd"] == 0.0
        assert log["total_tokens"] == 15

    @pytest.mark.asyncio
    async def test_bound_session_factory_writes_rows(self, clean_tracker, session_factory, db_session):
        set_session_factory(session_factory)

        @track_api_call("create_signal_clusters")
        async def fake_call():
            return {"model": "google/gemini-2.5-flash", "usage": {"prompt_tokens": 100, "completion_tokens": 20}}

        await fake_call()

        rows = (await db_session.execute(select(APICallsLog))).scalars().all()
        assert [row.endpoint for row in rows] == ["create_signal_clusters"]
        assert clean_tracker.call_logs == []


class TestResponseParsing:
    def test_anthropic_message(self):
        message = SimpleNamespace(
            model="claude-sonnet-4-5-20250929",
            usage=SimpleNamespace(input_tokens=120, output_tokens=30),
            stop_reason="tool_use",
        )

        parsed = parse_response_metrics(message)

        assert (parsed.input_tokens, parsed.output_tokens) == (120, 30)
        assert parsed.metadata == {"finish_reason": "tool_use"}

    def test_missing_usage(self):
        parsed = parse_response_metrics({"model": None})

        assert parsed.model == "unknown"
        assert (parsed.input_tokens, parsed.output_tokens) == (0, 0)

    @pytest.mark.parametrize("model, provider", [
        ("google/gemini-2.5-flash", "google"),
        ("claude-3-5-haiku-20241022", "anthropic"),
        ("gpt-4o-mini", "openai"),
        ("", "unknown"),
    ])
    def test_infer_provider(self, model, provider):
        assert infer_provider_from_model(model) == provider
