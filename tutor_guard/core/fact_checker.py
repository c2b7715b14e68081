"""Fact checking: corroborate each claim in a candidate against the grounding context.

Claims are sentence-level. Each one is labelled supported, unsupported,
contradicted or unverifiable:

- supported: a grounding sentence covers the claim with the same polarity
- contradicted: a grounding sentence about the same thing has the opposite polarity
- unsupported: the grounding speaks to the claim's subject but does not back it
- unverifiable: hedged/opinion claims, and claims the grounding says nothing about

An optional external verifier gets the first say on every claim.
"""

from __future__ import annotations

from collections.abc import Callable

from tutor_guard.core.claims import (
    Statement,
    coverage,
    extract_claims,
    find_hedges,
    jaccard,
    parse_statement,
    split_sentences,
)
from tutor_guard.core.schemas_pipeline import ValidationLevel
from tutor_guard.core.schemas_validation import ClaimCheck, FactCheckSummary, SupportLabel

# Returns a label for the claim, or None to defer to the context check
FactVerifier = Callable[[str], SupportLabel | None]

SUPPORT_COVERAGE = 0.5
CONTRADICTION_OVERLAP = 0.5


def _evidence_statements(grounding: list[str]) -> list[Statement]:
    statements = []
    for text in grounding:
        for sentence in split_sentences(text):
            statement = parse_statement(sentence)
            if statement.tokens:
                statements.append(statement)
    return statements


def _same_subject(claim: Statement, evidence: Statement) -> bool:
    return bool(claim.subject) and jaccard(claim.subject, evidence.subject) >= 0.5


def _about_same_thing(claim: Statement, evidence: Statement) -> bool:
    """Same subject and compatible predicate, or near-identical content."""
    if claim.subject and evidence.subject:
        if not _same_subject(claim, evidence):
            return False
        if not claim.predicate and not evidence.predicate:
            return True
        return jaccard(claim.predicate, evidence.predicate) >= 0.5
    return coverage(claim.tokens, evidence.tokens) >= CONTRADICTION_OVERLAP


def check_claim(claim: str, evidence: list[Statement]) -> ClaimCheck:
    """Label one claim against parsed grounding statements."""
    if find_hedges(claim):
        return ClaimCheck(claim=claim, label=SupportLabel.UNVERIFIABLE)

    statement = parse_statement(claim)
    best_overlap = 0.0
    best_evidence: str | None = None
    related: Statement | None = None

    for candidate in evidence:
        overlap = coverage(statement.tokens, candidate.tokens)

        if overlap > 0 and _about_same_thing(statement, candidate):
            if candidate.negative != statement.negative:
                return ClaimCheck(
                    claim=claim,
                    label=SupportLabel.CONTRADICTED,
                    evidence=candidate.text,
                    overlap=round(overlap, 4),
                )

        # A matching subject alone is not support; the predicate must be covered too
        supports = overlap >= SUPPORT_COVERAGE and candidate.negative == statement.negative
        if supports and statement.predicate:
            supports = coverage(statement.predicate, candidate.tokens) >= SUPPORT_COVERAGE
        if supports and overlap > best_overlap:
            best_overlap = overlap
            best_evidence = candidate.text

        if related is None and (_same_subject(statement, candidate) or overlap >= SUPPORT_COVERAGE):
            related = candidate

    if best_evidence is not None:
        return ClaimCheck(
            claim=claim,
            label=SupportLabel.SUPPORTED,
            evidence=best_evidence,
            overlap=round(best_overlap, 4),
        )
    if related is not None:
        return ClaimCheck(
            claim=claim,
            label=SupportLabel.UNSUPPORTED,
            evidence=related.text,
            overlap=round(coverage(statement.tokens, related.tokens), 4),
        )
    return ClaimCheck(claim=claim, label=SupportLabel.UNVERIFIABLE)


def check_facts(
    text: str,
    grounding: list[str],
    level: ValidationLevel = ValidationLevel.STANDARD,
    max_unsupported_ratio: float = 0.5,
    verifier: FactVerifier | None = None,
) -> FactCheckSummary:
    """
    Fact-check a candidate response.

    Args:
        text: Candidate response
        grounding: Context texts the response may be corroborated against
        level: Required validation level; basic only fails on contradicted claims
        max_unsupported_ratio: Max share of unsupported+contradicted claims
        verifier: Optional external verification source

    Returns:
        FactCheckSummary with per-claim labels and a sub-score in [0, 1]
    """
    claims = extract_claims(text)
    if not claims:
        return FactCheckSummary(passed=True, score=0.5, claims=[], unsupported_ratio=0.0)

    evidence = _evidence_statements(grounding)
    checks: list[ClaimCheck] = []
    for claim in claims:
        label = verifier(claim) if verifier else None
        if label is not None:
            checks.append(ClaimCheck(claim=claim, label=SupportLabel(label)))
        else:
            checks.append(check_claim(claim, evidence))

    total = len(checks)
    supported = sum(1 for c in checks if c.label == SupportLabel.SUPPORTED)
    unverifiable = sum(1 for c in checks if c.label == SupportLabel.UNVERIFIABLE)
    contradicted = sum(1 for c in checks if c.label == SupportLabel.CONTRADICTED)
    unsupported = sum(1 for c in checks if c.label == SupportLabel.UNSUPPORTED)

    ratio = (unsupported + contradicted) / total
    if level == ValidationLevel.BASIC:
        passed = contradicted == 0
    else:
        passed = ratio <= max_unsupported_ratio

    score = (supported + 0.5 * unverifiable) / total
    return FactCheckSummary(
        passed=passed,
        score=round(min(1.0, max(0.0, score)), 4),
        claims=checks,
        unsupported_ratio=round(ratio, 4),
    )
