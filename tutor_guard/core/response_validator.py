"""Response validation: three independent sub-checks run concurrently, then merged.

Sub-checks are CPU-bound and run in worker threads joined with a bounded
wait. A sub-check that raises or times out contributes a neutral score and
a "subcheck_failed" issue instead of failing the validation.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable
from typing import Any

from tutor_guard.core.config import Settings
from tutor_guard.core.confidence_scorer import score_confidence
from tutor_guard.core.contradiction_detector import detect_contradictions
from tutor_guard.core.errors import ValidationSubCheckFailure
from tutor_guard.core.fact_checker import FactVerifier, check_facts
from tutor_guard.core.logging import get_logger
from tutor_guard.core.safety_checker import check_safety
from tutor_guard.core.schemas_pipeline import (
    Classification,
    ConversationTurn,
    GenerationContext,
)
from tutor_guard.core.schemas_validation import (
    ConfidenceScore,
    ContradictionReport,
    ContradictionType,
    FactCheckSummary,
    IssueSeverity,
    SafetyFlag,
    SupportLabel,
    ValidationIssue,
    ValidationResult,
)

logger = get_logger(__name__)

NEUTRAL_SCORE = 0.5
FACTUAL_SEVERITY = 0.7
# Ceiling on the score of a candidate that fails safety screening
UNSAFE_SCORE_CAP = 0.2
HIGH_PRIORITY = ("high", "critical")

RECOMMENDATIONS: dict[str, str] = {
    "contradicted_claims": "Remove or correct statements that contradict known context.",
    "unsupported_claims": "Ground the answer in the provided context or mark uncertain claims.",
    "low_confidence": "Regenerate the answer with more definite, grounded statements.",
    "needs_review": "Flag the answer for review before relying on it.",
    "subcheck_failed": "Validation was partial; treat the answer with caution.",
    "unsafe_content": "Remove the unsafe content or redirect to a safe alternative.",
    "age_inappropriate": "Rephrase for the student's age and academic level.",
}


def _contradiction_recommendation(kind: str) -> str:
    return f"Resolve the {kind.replace('_', ' ')} contradiction before answering."


def factual_contradictions(
    fact: FactCheckSummary, known: list[ContradictionReport]
) -> list[ContradictionReport]:
    """Claims the fact checker found contradicted by the context, as contradiction reports."""
    if not fact.available:
        return []
    seen = {(r.conflicting_span_a, r.conflicting_span_b) for r in known}
    reports = []
    for check in fact.claims:
        if check.label != SupportLabel.CONTRADICTED or not check.evidence:
            continue
        if (check.claim, check.evidence) in seen:
            continue
        seen.add((check.claim, check.evidence))
        reports.append(
            ContradictionReport(
                type=ContradictionType.FACTUAL,
                description="Contradicts the grounding context",
                conflicting_span_a=check.claim,
                conflicting_span_b=check.evidence,
                severity=FACTUAL_SEVERITY,
            )
        )
    return reports


def claims_to_avoid(result: ValidationResult, severity_threshold: float = 0.8) -> list[str]:
    """Candidate statements a regeneration should not repeat."""
    claims = list(result.fact_check_summary.flagged_claims)
    for flag in result.safety_flags:
        if flag.span not in claims:
            claims.append(flag.span)
    for report in result.contradictions:
        if report.severity >= severity_threshold and report.conflicting_span_a not in claims:
            claims.append(report.conflicting_span_a)
    return claims


class ResponseValidator:
    """Runs fact checking, confidence scoring and contradiction detection.

    Args:
        settings: Thresholds, weights and the sub-check timeout
        fact_verifier: Optional external verification source for the fact checker
    """

    def __init__(self, settings: Settings, fact_verifier: FactVerifier | None = None):
        self.settings = settings
        self.fact_verifier = fact_verifier

    async def _run(self, name: str, fn: Callable[..., Any], *args: Any) -> Any:
        try:
            return await asyncio.wait_for(
                asyncio.to_thread(fn, *args),
                timeout=self.settings.VALIDATION_SUBCHECK_TIMEOUT_S,
            )
        except TimeoutError as e:
            raise ValidationSubCheckFailure(
                name, f"timed out after {self.settings.VALIDATION_SUBCHECK_TIMEOUT_S}s"
            ) from e
        except Exception as e:
            raise ValidationSubCheckFailure(name, str(e) or type(e).__name__) from e

    async def validate(
        self,
        text: str,
        context: GenerationContext,
        classification: Classification,
        history: list[ConversationTurn] | None = None,
    ) -> ValidationResult:
        """
        Validate one candidate response.

        Args:
            text: Candidate response text
            context: The context the candidate was generated from
            classification: Request classification (selects level and weights)
            history: Preceding conversation turns

        Returns:
            ValidationResult, produced exactly once per candidate
        """
        s = self.settings
        level = classification.required_validation_level
        grounding = context.grounding_texts()
        memory_fragments = context.memory_fragments
        memory_quality = [f.quality_score for f in memory_fragments if f.quality_score is not None]
        priority_memories = [f.content for f in memory_fragments if f.priority in HIGH_PRIORITY]

        fact, confidence, contradictions = await asyncio.gather(
            self._run(
                "fact_check",
                check_facts,
                text,
                grounding,
                level,
                s.FACT_UNSUPPORTED_RATIO_MAX,
                self.fact_verifier,
            ),
            self._run(
                "confidence",
                score_confidence,
                text,
                grounding,
                memory_quality,
                s.CONFIDENCE_ACCEPT_THRESHOLD,
                s.CONFIDENCE_REVIEW_THRESHOLD,
            ),
            self._run(
                "contradiction",
                detect_contradictions,
                text,
                list(history or []),
                priority_memories,
                s.CROSS_TURN_WINDOW,
            ),
            return_exceptions=True,
        )

        issues: list[ValidationIssue] = []
        for outcome in (fact, confidence, contradictions):
            if isinstance(outcome, ValidationSubCheckFailure):
                logger.warning(
                    f"ValidationSubCheckFailure: {outcome}",
                    extra={"request_id": context.request_id},
                )
                issues.append(
                    ValidationIssue(
                        severity=IssueSeverity.MEDIUM,
                        code="subcheck_failed",
                        message=f"{outcome.check} check unavailable: {outcome}",
                    )
                )
            elif isinstance(outcome, BaseException):
                # Cancellation and anything else unexpected propagate
                raise outcome

        if isinstance(fact, ValidationSubCheckFailure):
            fact = FactCheckSummary(passed=True, score=NEUTRAL_SCORE, available=False)
        if isinstance(confidence, ValidationSubCheckFailure):
            confidence = ConfidenceScore(
                overall=NEUTRAL_SCORE, level="medium", recommendation="review", available=False
            )
        contradiction_available = not isinstance(contradictions, ValidationSubCheckFailure)
        if not contradiction_available:
            contradictions = []
        safety_flags = check_safety(text, context.academic_level)

        return self._merge(
            fact,
            confidence,
            contradictions,
            contradiction_available,
            safety_flags,
            issues,
            level.value,
        )

    def _merge(
        self,
        fact: FactCheckSummary,
        confidence: ConfidenceScore,
        contradictions: list[ContradictionReport],
        contradiction_available: bool,
        safety_flags: list[SafetyFlag],
        issues: list[ValidationIssue],
        level: str,
    ) -> ValidationResult:
        threshold = self.settings.CONTRADICTION_SEVERITY_THRESHOLD
        contradictions = sorted(
            contradictions + factual_contradictions(fact, contradictions),
            key=lambda r: r.severity,
            reverse=True,
        )

        if fact.available:
            contradicted = [c.claim for c in fact.claims if c.label == SupportLabel.CONTRADICTED]
            if contradicted:
                issues.append(
                    ValidationIssue(
                        severity=IssueSeverity.HIGH,
                        code="contradicted_claims",
                        message=f"{len(contradicted)} claim(s) contradict the context",
                    )
                )
            if not fact.passed or fact.unsupported_ratio > 0:
                issues.append(
                    ValidationIssue(
                        severity=IssueSeverity.LOW if fact.passed else IssueSeverity.HIGH,
                        code="unsupported_claims",
                        message=f"{fact.unsupported_ratio:.0%} of claims are unsupported or contradicted",
                    )
                )

        if confidence.available and confidence.recommendation == "reject":
            issues.append(
                ValidationIssue(
                    severity=IssueSeverity.HIGH,
                    code="low_confidence",
                    message=f"Confidence {confidence.overall:.2f} is below the review threshold",
                )
            )
        elif confidence.available and confidence.recommendation == "review":
            issues.append(
                ValidationIssue(
                    severity=IssueSeverity.MEDIUM,
                    code="needs_review",
                    message=f"Confidence {confidence.overall:.2f} is below the accept threshold",
                )
            )

        for report in contradictions:
            issues.append(
                ValidationIssue(
                    severity=IssueSeverity.CRITICAL if report.severity >= threshold else IssueSeverity.MEDIUM,
                    code=f"contradiction_{report.type.value}",
                    message=report.description,
                )
            )

        for flag in safety_flags:
            critical = flag.severity == IssueSeverity.CRITICAL
            issues.append(
                ValidationIssue(
                    severity=flag.severity,
                    code="unsafe_content" if critical else "age_inappropriate",
                    message=f"Flagged by safety rule {flag.rule}: '{flag.matched}'",
                )
            )

        max_severity = max((c.severity for c in contradictions), default=0.0)
        sub_scores = {
            "fact_check": fact.score,
            "confidence": confidence.overall,
            "contradiction": (1.0 - max_severity) if contradiction_available else NEUTRAL_SCORE,
        }
        weights = self.settings.VALIDATION_WEIGHTS.get(level) or self.settings.VALIDATION_WEIGHTS[
            "standard"
        ]
        total_weight = sum(weights.get(k, 0.0) for k in sub_scores)
        if total_weight > 0:
            score = sum(sub_scores[k] * weights.get(k, 0.0) for k in sub_scores) / total_weight
        else:
            score = sum(sub_scores.values()) / len(sub_scores)
        if safety_flags:
            score = min(score, UNSAFE_SCORE_CAP)

        is_valid = (
            fact.passed
            and confidence.recommendation != "reject"
            and max_severity < threshold
            and not safety_flags
        )

        recommendations: list[str] = []
        for issue in issues:
            if issue.code.startswith("contradiction_"):
                text = _contradiction_recommendation(issue.code.removeprefix("contradiction_"))
            else:
                text = RECOMMENDATIONS.get(issue.code)
            if text and text not in recommendations:
                recommendations.append(text)

        return ValidationResult(
            is_valid=is_valid,
            validation_score=round(min(1.0, max(0.0, score)), 4),
            issues=issues,
            fact_check_summary=fact,
            confidence_score=confidence,
            contradictions=contradictions,
            safety_flags=safety_flags,
            recommendations=recommendations,
            sub_scores={k: round(v, 4) for k, v in sub_scores.items()},
        )
