"""Tests for the HTTP surface."""

from unittest.mock import MagicMock

from fastapi.testclient import TestClient

from tests.fakes.fake_backends import ScriptedBackend
from tests.fakes.fake_settings import make_settings
from tutor_guard.api.pipeline import get_orchestrator
from tutor_guard.core.generation import FallbackChain
from tutor_guard.core.pipeline_context import PipelineContext
from tutor_guard.db.memory_store import InMemoryMemoryStore, InMemoryProfileStore
from tutor_guard.main import app
from tutor_guard.services.pipeline_orchestrator import PipelineOrchestrator


def _orchestrator() -> PipelineOrchestrator:
    settings = make_settings()
    worker = MagicMock()
    worker.submit_interaction.return_value = True
    worker.submit_feedback.return_value = True
    ctx = PipelineContext(
        settings=settings,
        memory_store=InMemoryMemoryStore(),
        profile_store=InMemoryProfileStore(),
        generation_chain=FallbackChain(
            [ScriptedBackend("primary", "Plants need light to grow.")],
            settings.GENERATION_TIMEOUT_S,
        ),
        feedback_worker=worker,
    )
    return PipelineOrchestrator(ctx)


def test_health():
    client = TestClient(app)
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_process_and_feedback():
    orchestrator = _orchestrator()
    app.dependency_overrides[get_orchestrator] = lambda: orchestrator
    try:
        client = TestClient(app)
        response = client.post(
            "/v1/process",
            json={"owner_id": "student-1", "message": "Why do plants need sunlight?"},
        )
        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "ok"
        assert body["content"] == "Plants need light to grow."

        response = client.post(
            "/v1/feedback",
            json={
                "owner_id": "student-1",
                "interaction_id": body["request_id"],
                "type": "explicit",
                "rating": 5,
            },
        )
        assert response.status_code == 202
        assert response.json()["queued"] is True
        orchestrator.worker.submit_feedback.assert_called_once()
    finally:
        app.dependency_overrides.clear()


def test_invalid_request_rejected():
    orchestrator = _orchestrator()
    app.dependency_overrides[get_orchestrator] = lambda: orchestrator
    try:
        client = TestClient(app)
        response = client.post("/v1/process", json={"owner_id": "", "message": "hi"})
        assert response.status_code == 422
    finally:
        app.dependency_overrides.clear()


def test_lifespan_without_providers_returns_fallback():
    with TestClient(app) as client:
        response = client.post(
            "/v1/process", json={"owner_id": "student-1", "message": "What is osmosis?"}
        )
    assert response.status_code == 200
    assert response.json()["status"] == "fallback"


def test_process_unavailable_before_startup():
    client = TestClient(app)
    response = client.post("/v1/process", json={"owner_id": "student-1", "message": "hi"})
    assert response.status_code == 503
