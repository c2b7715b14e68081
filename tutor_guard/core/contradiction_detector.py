"""Contradiction detection for candidate responses.

Compares the candidate's statements against each other, against the
preceding turns of the same conversation and against high-priority memories.
Statements are compared structurally (subject / predicate / polarity) rather
than with a model call, so detection is deterministic.
"""

from __future__ import annotations

from itertools import combinations

from tutor_guard.core.claims import (
    Statement,
    extract_claims,
    has_absolute,
    jaccard,
    parse_statement,
    split_sentences,
    years,
)
from tutor_guard.core.schemas_pipeline import ConversationTurn
from tutor_guard.core.schemas_validation import ContradictionReport, ContradictionType

POLARITY_FLIP_SEVERITY = 0.9
TEMPORAL_SEVERITY = 0.7
ATTRIBUTE_SEVERITY = 0.6
# Ceiling for conflicts with the student's own earlier turns
USER_TURN_MAX_SEVERITY = 0.6

SUBJECT_MATCH = 0.5
PREDICATE_MATCH = 0.5
CONTENT_MATCH = 0.6
# Attribute conflicts are only meaningful for short, fact-like predicates
MAX_ATTRIBUTE_PREDICATE = 3


def _statements(text: str) -> list[Statement]:
    return [s for s in (parse_statement(c) for c in extract_claims(text)) if s.tokens]


def _same_subject(a: Statement, b: Statement) -> bool:
    return bool(a.subject) and bool(b.subject) and jaccard(a.subject, b.subject) >= SUBJECT_MATCH


def compare_statements(
    a: Statement, b: Statement, allow_attribute: bool = False
) -> tuple[float, str] | None:
    """
    Compare two statements for a conflict.

    Args:
        a: Statement from the candidate response
        b: Statement it is checked against
        allow_attribute: Also flag same-subject statements with different attributes

    Returns:
        (severity, kind) where kind is "polarity", "temporal" or "attribute";
        None when the statements do not conflict
    """
    if a.subject and b.subject:
        if not _same_subject(a, b):
            return None
        predicates_match = (not a.predicate and not b.predicate) or jaccard(
            a.predicate, b.predicate
        ) >= PREDICATE_MATCH
    else:
        predicates_match = jaccard(a.tokens, b.tokens) >= CONTENT_MATCH

    if predicates_match and a.negative != b.negative:
        return POLARITY_FLIP_SEVERITY, "polarity"

    years_a, years_b = years(a.text), years(b.text)
    if years_a and years_b and not years_a & years_b and (predicates_match or _same_subject(a, b)):
        return TEMPORAL_SEVERITY, "temporal"

    if (
        allow_attribute
        and a.negative == b.negative
        and a.subject == b.subject
        and a.predicate
        and b.predicate
        and not a.predicate & b.predicate
        and len(a.predicate) <= MAX_ATTRIBUTE_PREDICATE
        and len(b.predicate) <= MAX_ATTRIBUTE_PREDICATE
    ):
        return ATTRIBUTE_SEVERITY, "attribute"

    return None


def _report(
    kind: ContradictionType, severity: float, a: Statement, b: Statement, description: str
) -> ContradictionReport:
    return ContradictionReport(
        type=kind,
        description=description,
        conflicting_span_a=a.text,
        conflicting_span_b=b.text,
        severity=severity,
    )


def detect_self(statements: list[Statement]) -> list[ContradictionReport]:
    """Internal consistency of the candidate."""
    reports = []
    for a, b in combinations(statements, 2):
        found = compare_statements(a, b)
        if not found:
            continue
        severity, conflict = found
        if conflict == "temporal":
            kind = ContradictionType.TEMPORAL
            description = "Response gives different dates for the same fact"
        elif has_absolute(a.text) or has_absolute(b.text):
            kind = ContradictionType.LOGICAL
            description = "Response makes mutually exclusive absolute statements"
        else:
            kind = ContradictionType.SELF
            description = "Response asserts and denies the same statement"
        reports.append(_report(kind, severity, a, b, description))
    return reports


def detect_cross_turn(
    statements: list[Statement], history: list[ConversationTurn], window: int = 6
) -> list[ContradictionReport]:
    """Consistency with the immediately preceding turns of the conversation.

    Only earlier assistant turns can reach a blocking severity. A student's
    claim may be the misconception the answer corrects, so conflicts with
    user turns are capped at USER_TURN_MAX_SEVERITY.
    """
    reports = []
    for turn in history[-window:] if window > 0 else []:
        for prior in _statements(turn.content):
            for statement in statements:
                found = compare_statements(statement, prior, allow_attribute=True)
                if not found:
                    continue
                severity, conflict = found
                if turn.role != "assistant":
                    severity = min(severity, USER_TURN_MAX_SEVERITY)
                reports.append(
                    _report(
                        ContradictionType.CROSS_TURN,
                        severity,
                        statement,
                        prior,
                        f"Conflicts with an earlier {turn.role} turn ({conflict})",
                    )
                )
    return reports


def detect_contextual(
    statements: list[Statement], memories: list[str]
) -> list[ContradictionReport]:
    """Consistency with high-priority long-term memories."""
    reports = []
    for memory in memories:
        for sentence in split_sentences(memory):
            known = parse_statement(sentence)
            if not known.tokens:
                continue
            for statement in statements:
                found = compare_statements(statement, known, allow_attribute=True)
                if not found:
                    continue
                severity, conflict = found
                reports.append(
                    _report(
                        ContradictionType.CONTEXTUAL,
                        severity,
                        statement,
                        known,
                        f"Conflicts with what is remembered about the student ({conflict})",
                    )
                )
    return reports


def detect_contradictions(
    text: str,
    history: list[ConversationTurn] | None = None,
    memories: list[str] | None = None,
    window: int = 6,
) -> list[ContradictionReport]:
    """
    Find contradictions in a candidate response.

    Args:
        text: Candidate response
        history: Conversation turns preceding this request, oldest first
        memories: Contents of high/critical-priority memory fragments
        window: Number of preceding turns to check

    Returns:
        Contradiction reports, highest severity first, one per span pair
    """
    statements = _statements(text)
    if not statements:
        return []

    reports = (
        detect_self(statements)
        + detect_cross_turn(statements, list(history or []), window)
        + detect_contextual(statements, list(memories or []))
    )

    seen: set[tuple[str, str]] = set()
    unique = []
    for report in sorted(reports, key=lambda r: r.severity, reverse=True):
        key = (report.conflicting_span_a, report.conflicting_span_b)
        if key in seen:
            continue
        seen.add(key)
        unique.append(report)
    return unique
