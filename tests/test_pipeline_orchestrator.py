"""End-to-end tests for PipelineOrchestrator over in-process fakes."""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from tests.fakes.fake_backends import (
    FailingBackend,
    FailingSearchBackend,
    ScriptedBackend,
    SlowBackend,
)
from tests.fakes.fake_settings import make_settings
from tutor_guard.core.generation import FallbackChain
from tutor_guard.core.personalization import memory_id_for
from tutor_guard.core.pipeline_context import PipelineContext
from tutor_guard.core.schemas_memory import MemoryFilter, MemoryType
from tutor_guard.core.schemas_personalization import PersonalizationProfile
from tutor_guard.core.schemas_pipeline import ConversationTurn, FragmentSource, PipelineRequest
from tutor_guard.db.memory_store import InMemoryMemoryStore, InMemoryProfileStore
from tutor_guard.graphs.answer_pipeline_graph import FALLBACK_MESSAGE
from tutor_guard.services.pipeline_orchestrator import FAILED_MESSAGE, PipelineOrchestrator

PLUTO_HISTORY = (ConversationTurn(role="assistant", content="Pluto is a planet."),)


def make_orchestrator(*backends, settings=None, **ctx_overrides) -> PipelineOrchestrator:
    settings = settings or make_settings()
    ctx = PipelineContext(
        settings=settings,
        memory_store=ctx_overrides.pop("memory_store", InMemoryMemoryStore()),
        profile_store=ctx_overrides.pop("profile_store", InMemoryProfileStore()),
        generation_chain=FallbackChain(list(backends), settings.GENERATION_TIMEOUT_S),
        **ctx_overrides,
    )
    return PipelineOrchestrator(ctx)


def _request(message: str, **fields) -> PipelineRequest:
    return PipelineRequest(owner_id="student-1", message=message, **fields)


@pytest.mark.asyncio
async def test_valid_answer_returns_ok():
    backend = ScriptedBackend("primary", "Plants need light to grow.")
    orchestrator = make_orchestrator(backend)
    try:
        result = await orchestrator.process(_request("Why do plants need sunlight?"))
    finally:
        await orchestrator.close()

    assert result.status == "ok"
    assert result.content == "Plants need light to grow."
    assert result.provider == "primary"
    assert result.attempts == 1
    assert result.validation.is_valid
    assert result.degradations == []
    assert result.classification is not None
    assert {"classify", "retrieve", "generate", "validate"} <= set(result.timing.per_stage_ms)


@pytest.mark.asyncio
async def test_slow_primary_falls_back_to_secondary():
    slow = SlowBackend("primary")
    secondary = ScriptedBackend("secondary", "Plants need light to grow.")
    orchestrator = make_orchestrator(slow, secondary)
    try:
        result = await orchestrator.process(_request("Why do plants need sunlight?"))
    finally:
        await orchestrator.close()

    assert result.status == "ok"
    assert result.provider == "secondary"
    assert slow.calls == 1


@pytest.mark.asyncio
async def test_memory_outage_still_answers():
    orchestrator = make_orchestrator(
        ScriptedBackend("primary", "Plants need light to grow."),
        search_backend=FailingSearchBackend(),
    )
    try:
        result = await orchestrator.process(_request("Why do plants need sunlight?"))
    finally:
        await orchestrator.close()

    assert result.status == "ok"
    assert "MemoryUnavailable" in result.degradations
    assert result.memory_context.memories_found == 0


@pytest.mark.parametrize("backends", [[FailingBackend()], []], ids=["all-failing", "no-backends"])
@pytest.mark.asyncio
async def test_total_generation_failure_returns_fallback(backends):
    orchestrator = make_orchestrator(*backends)
    try:
        result = await orchestrator.process(_request("Why do plants need sunlight?"))
    finally:
        await orchestrator.close()

    assert result.status == "fallback"
    assert result.content == FALLBACK_MESSAGE
    assert not result.validation.is_valid
    assert "GenerationExhausted" in result.degradations
    assert result.metadata["fallback_reason"]


@pytest.mark.asyncio
async def test_contradicting_candidate_is_regenerated():
    backend = ScriptedBackend(
        "primary", "Pluto is not a planet.", "Pluto is classified as a dwarf planet."
    )
    orchestrator = make_orchestrator(backend)
    try:
        result = await orchestrator.process(
            _request("Is Pluto a planet?", conversation_history=PLUTO_HISTORY)
        )
    finally:
        await orchestrator.close()

    assert result.status == "ok"
    assert result.attempts == 2
    assert result.content == "Pluto is classified as a dwarf planet."
    assert backend.contexts[0].avoid_claims == []
    assert backend.contexts[1].avoid_claims == ["Pluto is not a planet."]
    assert result.metadata["avoided_claims"] == ["Pluto is not a planet."]


@pytest.mark.asyncio
async def test_gives_up_after_max_regenerations():
    backend = ScriptedBackend("primary", "Pluto is not a planet.")
    orchestrator = make_orchestrator(backend)
    try:
        result = await orchestrator.process(
            _request("Is Pluto a planet?", conversation_history=PLUTO_HISTORY)
        )
    finally:
        await orchestrator.close()

    assert result.status == "review"
    assert result.attempts == 3
    assert backend.calls == 3
    assert not result.validation.is_valid
    assert result.content == "Pluto is not a planet."


@pytest.mark.asyncio
async def test_correcting_a_misconception_is_accepted_first_time():
    backend = ScriptedBackend("primary", "The earth is not flat.")
    orchestrator = make_orchestrator(backend)
    history = (ConversationTurn(role="user", content="The earth is flat."),)
    try:
        result = await orchestrator.process(
            _request("Is that right?", conversation_history=history)
        )
    finally:
        await orchestrator.close()

    assert result.status == "ok"
    assert result.attempts == 1
    assert result.validation.is_valid
    assert backend.contexts[0].avoid_claims == []


@pytest.mark.asyncio
async def test_stored_profile_reaches_generation():
    profile_store = InMemoryProfileStore()
    await profile_store.save_profile(
        PersonalizationProfile(
            owner_id="student-1",
            learning_style_weights={"visual": 0.95, "auditory": 0.5},
            topic_proficiency={"algebra": 0.1},
        )
    )
    backend = ScriptedBackend("primary", "Plants need light to grow.")
    orchestrator = make_orchestrator(backend, profile_store=profile_store)
    try:
        await orchestrator.process(_request("Why do plants need sunlight?"))
    finally:
        await orchestrator.close()

    guidance = [
        f for f in backend.contexts[0].fragments if f.source == FragmentSource.PERSONALIZATION
    ]
    assert len(guidance) == 1
    assert "visual" in guidance[0].content
    assert "algebra (10%)" in guidance[0].content


@pytest.mark.asyncio
async def test_failed_regeneration_keeps_best_candidate():
    backend = ScriptedBackend("primary", "Pluto is not a planet.", RuntimeError("overloaded"))
    orchestrator = make_orchestrator(backend)
    try:
        result = await orchestrator.process(
            _request("Is Pluto a planet?", conversation_history=PLUTO_HISTORY)
        )
    finally:
        await orchestrator.close()

    assert result.status == "review"
    assert result.attempts == 2
    assert result.content == "Pluto is not a planet."
    assert "GenerationExhausted" in result.degradations


@pytest.mark.asyncio
async def test_remembered_fact_grounds_answer_and_is_learned():
    memory_store = InMemoryMemoryStore()
    profile_store = InMemoryProfileStore()
    orchestrator = make_orchestrator(
        ScriptedBackend("primary", "Your name is Asha."),
        memory_store=memory_store,
        profile_store=profile_store,
    )
    try:
        await orchestrator.store_memory("student-1", "My name is Asha")
        request = _request("What is my name?")
        result = await orchestrator.process(request)
        await orchestrator.drain(timeout=2.0)
    finally:
        await orchestrator.close()

    assert result.status == "ok"
    assert result.memory_context.memories_found == 1
    assert "Asha" in result.memory_context.summary
    assert result.validation.fact_check_summary.score == 1.0

    answers = await memory_store.query(
        "student-1", MemoryFilter(memory_types=[MemoryType.AI_RESPONSE])
    )
    assert [m.id for m in answers] == [memory_id_for("ai_response", request.request_id)]
    profile = await profile_store.get_profile("student-1")
    assert profile.interaction_count == 1


@pytest.mark.asyncio
async def test_personalization_outage_does_not_change_response():
    worker = MagicMock()
    worker.submit_interaction.return_value = False
    worker.stop = AsyncMock()
    orchestrator = make_orchestrator(
        ScriptedBackend("primary", "Plants need light to grow."), feedback_worker=worker
    )
    result = await orchestrator.process(_request("Why do plants need sunlight?"))

    assert result.status == "ok"
    assert result.content == "Plants need light to grow."
    assert "PersonalizationUpdateFailure" in result.degradations


@pytest.mark.asyncio
async def test_cancellation_propagates():
    orchestrator = make_orchestrator(
        SlowBackend("primary"), settings=make_settings(GENERATION_TIMEOUT_S=30.0)
    )
    try:
        task = asyncio.create_task(orchestrator.process(_request("Why do plants need sunlight?")))
        await asyncio.sleep(0.1)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
    finally:
        await orchestrator.close()


@pytest.mark.asyncio
async def test_unexpected_error_returns_failed_envelope():
    orchestrator = make_orchestrator(ScriptedBackend("primary"))
    orchestrator.nodes.classifier = MagicMock()
    orchestrator.nodes.classifier.classify = AsyncMock(side_effect=RuntimeError("boom"))
    try:
        result = await orchestrator.process(_request("Why do plants need sunlight?"))
    finally:
        await orchestrator.close()

    assert result.status == "failed"
    assert result.content == FAILED_MESSAGE
    assert result.metadata["error"] == "boom"
    assert not result.validation.is_valid
