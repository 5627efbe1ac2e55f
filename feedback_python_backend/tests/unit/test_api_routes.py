"""
Route-level tests for the pipeline API.

Requests go through the full app (middleware, error handlers, routers) over
httpx's ASGI transport, with the database dependency bound to the test engine.
"""

import uuid

import httpx
import pytest
import pytest_asyncio

from feedback_python_backend.backend import create_app
from feedback_python_backend.db_session import get_async_session
from feedback_python_backend.services import narrative_generator, session_analyzer


@pytest_asyncio.fixture
async def client(session_factory):
    app = create_app()

    async def _session_override():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_async_session] = _session_override
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as http_client:
        yield http_client


@pytest.mark.asyncio
@pytest.mark.parametrize("path, service", [
    ("/health", "feedback_pipeline"),
    ("/api/sessions/health", "session_insights_api"),
    ("/api/signals/health", "signals_api"),
    ("/api/analytics/health", "deep_analytics_api"),
    ("/api/narrative/health", "narrative_api"),
])
async def test_health_routes(client, path, service):
    resp = await client.get(path)

    assert resp.status_code == 200
    assert resp.json()["status"] == "healthy"
    assert resp.json()["service"] == service


@pytest.mark.asyncio
async def test_malformed_session_id_returns_400(client):
    resp = await client.post("/api/sessions/analyze", json={"session_id": "not-a-uuid"})

    assert resp.status_code == 400
    assert "not-a-uuid" in resp.json()["error"]


@pytest.mark.asyncio
async def test_unknown_session_returns_404(client):
    resp = await client.post("/api/sessions/analyze", json={"session_id": str(uuid.uuid4())})

    assert resp.status_code == 404
    assert "error" in resp.json()


@pytest.mark.asyncio
async def test_analyze_then_read_latest_insight(client, seed, fake_oracle, session_analysis_payload, monkeypatch):
    survey = await seed.survey()
    session = await seed.session(survey)
    await seed.response(survey, session, content="Too many meetings.", sentiment_score=35)
    oracle = fake_oracle({"analyze_session": session_analysis_payload})
    monkeypatch.setattr(session_analyzer, "get_oracle", lambda config: oracle)

    resp = await client.post("/api/sessions/analyze", json={"session_id": str(session.id)})
    assert resp.status_code == 200
    assert resp.json()["status"] == "completed"

    resp = await client.get(f"/api/sessions/{session.id}/insights", params={"latest_only": "true"})
    body = resp.json()
    assert body["count"] == 1
    assert body["insights"][0]["sentiment_trajectory"] == "declining"


@pytest.mark.asyncio
async def test_oracle_failure_returns_502(client, seed, fake_oracle, monkeypatch):
    survey = await seed.survey()
    session = await seed.session(survey)
    await seed.response(survey, session)
    monkeypatch.setattr(session_analyzer, "get_oracle", lambda config: fake_oracle())

    resp = await client.post("/api/sessions/analyze", json={"session_id": str(session.id)})

    assert resp.status_code == 502
    assert "error" in resp.json()


@pytest.mark.asyncio
async def test_aggregate_without_signals_returns_400(client, seed):
    survey = await seed.survey()

    resp = await client.post("/api/signals/aggregate", json={"survey_id": str(survey.id)})

    assert resp.status_code == 400


@pytest.mark.asyncio
async def test_aggregate_without_survey_id_returns_error_body(client):
    resp = await client.post("/api/signals/aggregate", json={})

    assert resp.status_code == 422
    assert resp.json() == {"error": "survey_id: Field required"}


@pytest.mark.asyncio
async def test_history_limit_is_validated(client, seed):
    survey = await seed.survey()

    rejected = await client.get(f"/api/analytics/{survey.id}/history", params={"limit": 0})
    assert rejected.status_code == 422
    assert rejected.json()["error"].startswith("limit:")
    resp = await client.get(f"/api/analytics/{survey.id}/history", params={"limit": 5})
    assert resp.status_code == 200
    assert resp.json()["count"] == 0


@pytest.mark.asyncio
async def test_unknown_audience_rejected_by_request_model(client, seed):
    survey = await seed.survey()

    resp = await client.post("/api/narrative/generate", json={"survey_id": str(survey.id), "audience": "board"})

    assert resp.status_code == 422
    assert "audience" in resp.json()["error"]


@pytest.mark.asyncio
async def test_generate_then_read_latest_report(client, seed, fake_oracle, narrative_payload, monkeypatch):
    survey = await seed.survey()
    response = await seed.response(survey, content="Deploys are scary.")
    oracle = fake_oracle({"create_narrative_report": narrative_payload([str(response.id)])})
    monkeypatch.setattr(narrative_generator, "get_oracle", lambda config: oracle)

    assert (await client.get(f"/api/narrative/{survey.id}/latest")).status_code == 404

    resp = await client.post("/api/narrative/generate", json={"survey_id": str(survey.id), "audience": "manager"})
    assert resp.status_code == 200
    report_id = resp.json()["report_id"]

    latest = (await client.get(f"/api/narrative/{survey.id}/latest")).json()
    assert latest["id"] == report_id
    reports = (await client.get(f"/api/narrative/{survey.id}/reports")).json()
    assert reports["count"] == 1


@pytest.mark.asyncio
async def test_evidence_accepts_repeated_ids(client, seed):
    survey = await seed.survey()
    first = await seed.response(survey, content="One")
    second = await seed.response(survey, content="Two")

    resp = await client.get(
        f"/api/narrative/{survey.id}/evidence",
        params=[("ids", str(first.id)), ("ids", str(second.id))],
    )

    assert resp.status_code == 200
    assert {item["content"] for item in resp.json()["responses"]} == {"One", "Two"}

    assert (await client.get(f"/api/narrative/{survey.id}/evidence")).status_code == 400
