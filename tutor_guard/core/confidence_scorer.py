"""Confidence scoring from uncertainty signals in a candidate response."""

from __future__ import annotations

from tutor_guard.core.claims import (
    coverage,
    extract_claims,
    find_hedges,
    find_temporal_markers,
    split_sentences,
    token_set,
)
from tutor_guard.core.schemas_validation import ConfidenceScore, UncertaintyFactor

HEDGE_BASE_WEIGHT = 0.2
HEDGE_EXTRA_WEIGHT = 0.1
HEDGE_MAX_WEIGHT = 0.45
TEMPORAL_WEIGHT = 0.15
TEMPORAL_MAX_WEIGHT = 0.25
# Hedged statements about time-sensitive facts are the riskiest combination
HEDGED_TEMPORAL_BONUS = 0.05
NO_CONTEXT_WEIGHT = 0.1
UNCORROBORATED_WEIGHT = 0.2
RELIABILITY_FLOOR = 0.5
UNSUPPORTED_WEIGHT = 0.3


def _level(overall: float, accept: float, review: float) -> str:
    if overall >= accept:
        return "high"
    if overall >= review:
        return "medium"
    return "low"


def _recommendation(overall: float, accept: float, review: float) -> str:
    if overall >= accept:
        return "accept"
    if overall >= review:
        return "review"
    return "reject"


def score_confidence(
    text: str,
    grounding: list[str],
    memory_quality: list[float] | None = None,
    accept_threshold: float = 0.75,
    review_threshold: float = 0.4,
) -> ConfidenceScore:
    """
    Aggregate uncertainty signals into a ConfidenceScore.

    Args:
        text: Candidate response
        grounding: Context texts available to corroborate the response
        memory_quality: Quality scores of the memories in the context
        accept_threshold: Overall score at or above which to accept
        review_threshold: Overall score below which to reject

    Returns:
        ConfidenceScore where overall = 1 - sum of factor weights
    """
    factors: list[UncertaintyFactor] = []

    hedges = find_hedges(text)
    temporal = find_temporal_markers(text)

    if hedges:
        weight = min(HEDGE_MAX_WEIGHT, HEDGE_BASE_WEIGHT + HEDGE_EXTRA_WEIGHT * (len(hedges) - 1))
        factors.append(
            UncertaintyFactor(
                factor="hedging_language", weight=weight, detail=", ".join(hedges)
            )
        )

    if temporal:
        weight = min(TEMPORAL_MAX_WEIGHT, TEMPORAL_WEIGHT * len(temporal))
        if hedges:
            weight += HEDGED_TEMPORAL_BONUS
        factors.append(
            UncertaintyFactor(
                factor="temporal_sensitivity", weight=round(weight, 4), detail=", ".join(temporal)
            )
        )

    claims = extract_claims(text)
    evidence = [token_set(s) for g in grounding for s in split_sentences(g)]
    if claims:
        corroborated = [
            c for c in claims if any(coverage(token_set(c), e) >= 0.5 for e in evidence)
        ]
        if not evidence:
            factors.append(
                UncertaintyFactor(
                    factor="no_corroborating_context",
                    weight=NO_CONTEXT_WEIGHT,
                    detail="no grounding context available",
                )
            )
        elif not corroborated:
            factors.append(
                UncertaintyFactor(
                    factor="no_corroborating_context",
                    weight=UNCORROBORATED_WEIGHT,
                    detail="context does not corroborate any claim",
                )
            )

        # Claims that share vocabulary with the context but are not covered by it
        related_uncovered = [
            c
            for c in claims
            if c not in corroborated
            and any(coverage(token_set(c), e) > 0 for e in evidence)
        ]
        if related_uncovered:
            ratio = len(related_uncovered) / len(claims)
            factors.append(
                UncertaintyFactor(
                    factor="unsupported_claims",
                    weight=round(UNSUPPORTED_WEIGHT * ratio, 4),
                    detail=f"{len(related_uncovered)} of {len(claims)} claims",
                )
            )

    if memory_quality:
        mean_quality = sum(memory_quality) / len(memory_quality)
        if mean_quality < RELIABILITY_FLOOR:
            factors.append(
                UncertaintyFactor(
                    factor="low_source_reliability",
                    weight=round((RELIABILITY_FLOOR - mean_quality) * 0.4, 4),
                    detail=f"mean memory quality {mean_quality:.2f}",
                )
            )

    overall = 1.0 - sum(f.weight for f in factors)
    overall = round(min(1.0, max(0.0, overall)), 4)
    return ConfidenceScore(
        overall=overall,
        level=_level(overall, accept_threshold, review_threshold),
        recommendation=_recommendation(overall, accept_threshold, review_threshold),
        uncertainty_factors=factors,
    )
