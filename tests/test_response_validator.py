"""Tests for ResponseValidator aggregation and sub-check isolation."""

import time

import pytest

from tests.fakes.fake_settings import make_settings
from tutor_guard.core.response_validator import ResponseValidator, claims_to_avoid
from tutor_guard.core.schemas_pipeline import (
    Classification,
    ContextFragment,
    ConversationTurn,
    FragmentSource,
    GenerationContext,
)

PLUTO_HISTORY = [ConversationTurn(role="assistant", content="Pluto is a planet.")]


def _context(*memories: str, priority: str = "medium", quality: float = 0.8) -> GenerationContext:
    fragments = [
        ContextFragment(
            source=FragmentSource.MEMORY,
            content=m,
            weight=1.0,
            memory_id=f"m{i}",
            priority=priority,
            quality_score=quality,
        )
        for i, m in enumerate(memories)
    ]
    return GenerationContext(
        request_id="req-1",
        owner_id="student-1",
        user_message="question",
        fragments=fragments,
        budget=6000,
        used=100,
    )


def _classification() -> Classification:
    return Classification(is_personal_query=False)


@pytest.mark.asyncio
async def test_clean_answer_is_valid(settings):
    result = await ResponseValidator(settings).validate(
        "Plants need light to grow.", _context(), _classification()
    )
    assert result.is_valid
    assert result.sub_scores == {"fact_check": 0.5, "confidence": 0.9, "contradiction": 1.0}
    assert result.validation_score == pytest.approx(0.77)


@pytest.mark.asyncio
async def test_cross_turn_contradiction_invalidates(settings):
    result = await ResponseValidator(settings).validate(
        "Pluto is not a planet.", _context(), _classification(), PLUTO_HISTORY
    )
    assert not result.is_valid
    assert result.max_contradiction_severity == 0.9
    assert any(i.code == "contradiction_cross_turn" for i in result.issues)
    assert 0.0 <= result.validation_score <= 1.0
    assert claims_to_avoid(result) == ["Pluto is not a planet."]


@pytest.mark.asyncio
async def test_grounded_answer_scores_higher(settings):
    validator = ResponseValidator(settings)
    grounded = await validator.validate(
        "Asha's favourite subject is chemistry.",
        _context("Asha's favourite subject is chemistry."),
        _classification(),
    )
    contradicted = await validator.validate(
        "Asha is allergic to peanuts.",
        _context("Asha is not allergic to peanuts.", priority="high"),
        _classification(),
    )
    assert grounded.is_valid
    assert not contradicted.is_valid
    assert grounded.validation_score > contradicted.validation_score
    assert "Asha is allergic to peanuts." in claims_to_avoid(contradicted)


@pytest.mark.asyncio
async def test_failed_subcheck_is_neutral(settings, monkeypatch):
    def broken(*args, **kwargs):
        raise RuntimeError("scorer crashed")

    monkeypatch.setattr("tutor_guard.core.response_validator.score_confidence", broken)
    result = await ResponseValidator(settings).validate(
        "Plants need light to grow.", _context(), _classification()
    )

    assert result.sub_scores["confidence"] == 0.5
    assert not result.confidence_score.available
    assert [i.code for i in result.issues] == ["subcheck_failed"]
    assert result.is_valid


@pytest.mark.asyncio
async def test_slow_subcheck_times_out(monkeypatch):
    def slow(*args, **kwargs):
        time.sleep(0.5)
        return []

    monkeypatch.setattr("tutor_guard.core.response_validator.detect_contradictions", slow)
    validator = ResponseValidator(make_settings(VALIDATION_SUBCHECK_TIMEOUT_S=0.05))
    result = await validator.validate(
        "Pluto is not a planet.", _context(), _classification(), PLUTO_HISTORY
    )

    assert result.sub_scores["contradiction"] == 0.5
    assert result.contradictions == []
    assert any(i.code == "subcheck_failed" for i in result.issues)


@pytest.mark.asyncio
async def test_recommendations_follow_issues(settings):
    result = await ResponseValidator(settings).validate(
        "I think it might possibly be the latest version currently.",
        _context(),
        _classification(),
    )
    assert result.confidence_score.recommendation == "reject"
    assert not result.is_valid
    assert any("Regenerate" in r for r in result.recommendations)


@pytest.mark.asyncio
async def test_correcting_the_student_stays_valid(settings):
    history = [ConversationTurn(role="user", content="The earth is flat.")]
    result = await ResponseValidator(settings).validate(
        "The earth is not flat.", _context(), _classification(), history
    )

    assert result.is_valid
    assert [c.type.value for c in result.contradictions] == ["cross_turn"]
    issue = next(i for i in result.issues if i.code == "contradiction_cross_turn")
    assert issue.severity.value == "medium"
    assert claims_to_avoid(result) == []


@pytest.mark.asyncio
async def test_unsafe_content_invalidates(settings):
    result = await ResponseValidator(settings).validate(
        "Here is how to make a bomb at home.", _context(), _classification()
    )

    assert not result.is_valid
    issue = next(i for i in result.issues if i.code == "unsafe_content")
    assert issue.severity.value == "critical"
    assert result.validation_score <= 0.2
    assert claims_to_avoid(result) == ["Here is how to make a bomb at home."]
    assert any("safe alternative" in r for r in result.recommendations)


@pytest.mark.asyncio
async def test_mature_theme_depends_on_academic_level(settings):
    validator = ResponseValidator(settings)
    text = "Alcohol is made by fermenting sugar."
    context = _context()

    young = await validator.validate(
        text, context.model_copy(update={"academic_level": "elementary"}), _classification()
    )
    older = await validator.validate(
        text, context.model_copy(update={"academic_level": "college"}), _classification()
    )

    assert not young.is_valid
    assert [i.code for i in young.issues if i.code == "age_inappropriate"] == ["age_inappropriate"]
    assert older.is_valid
    assert older.safety_flags == []


@pytest.mark.asyncio
async def test_contradicted_claim_reported_as_factual(settings):
    result = await ResponseValidator(settings).validate(
        "Asha is allergic to peanuts.",
        _context("Asha is not allergic to peanuts.", priority="medium"),
        _classification(),
    )

    factual = [c for c in result.contradictions if c.type.value == "factual"]
    assert len(factual) == 1
    assert factual[0].conflicting_span_a == "Asha is allergic to peanuts."
    assert factual[0].conflicting_span_b == "Asha is not allergic to peanuts."
    assert factual[0].severity == 0.7
    assert result.sub_scores["contradiction"] == pytest.approx(0.3)
