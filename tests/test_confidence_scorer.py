"""Tests for confidence scoring."""

import pytest

from tutor_guard.core.confidence_scorer import score_confidence


def _factors(score) -> dict[str, float]:
    return {f.factor: f.weight for f in score.uncertainty_factors}


class TestConfidence:
    def test_grounded_definite_answer_is_high(self):
        score = score_confidence(
            "Asha's favourite subject is chemistry.", ["Asha's favourite subject is chemistry."]
        )
        assert score.overall == 1.0
        assert score.level == "high"
        assert score.recommendation == "accept"

    def test_hedged_time_sensitive_claim_is_downgraded(self):
        text = "I'm not entirely sure, but I think the latest version of Python is 3.12."
        score = score_confidence(text, [])

        assert score.level != "high"
        assert score.recommendation != "accept"
        factors = _factors(score)
        assert factors["hedging_language"] == pytest.approx(0.3)
        assert factors["temporal_sensitivity"] == pytest.approx(0.2)
        assert factors["no_corroborating_context"] == pytest.approx(0.1)

    def test_many_uncertainty_signals_reject(self):
        text = "I think it might possibly be the latest version currently. Maybe."
        score = score_confidence(text, [])
        assert score.level == "low"
        assert score.recommendation == "reject"

    def test_uncorroborated_and_unsupported(self):
        score = score_confidence(
            "Asha is studying biology at Oxford.", ["Asha lives in London."]
        )
        factors = _factors(score)
        assert factors["no_corroborating_context"] == pytest.approx(0.2)
        assert factors["unsupported_claims"] == pytest.approx(0.3)
        assert score.overall == pytest.approx(0.5)

    def test_low_source_reliability(self):
        score = score_confidence(
            "Asha's favourite subject is chemistry.",
            ["Asha's favourite subject is chemistry."],
            memory_quality=[0.1, 0.1],
        )
        assert _factors(score)["low_source_reliability"] == pytest.approx(0.16)
        assert score.overall == pytest.approx(0.84)

    def test_thresholds_configurable(self):
        score = score_confidence("Plants need light to grow.", [], accept_threshold=0.95)
        assert score.overall == pytest.approx(0.9)
        assert score.recommendation == "review"

    def test_overall_bounded(self):
        text = " ".join(["Maybe perhaps possibly probably it is currently the latest today."] * 5)
        score = score_confidence(text, [], memory_quality=[0.0])
        assert 0.0 <= score.overall <= 1.0
