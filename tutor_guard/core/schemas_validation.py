"""Schemas for response validation: fact checks, confidence, contradictions."""

from enum import Enum
from typing import Literal

from pydantic import BaseModel, Field


class IssueSeverity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class ValidationIssue(BaseModel):
    """A single problem found in a candidate response."""

    severity: IssueSeverity
    code: str
    message: str


# =========================
# Fact checking
# =========================


class SupportLabel(str, Enum):
    SUPPORTED = "supported"
    UNSUPPORTED = "unsupported"
    CONTRADICTED = "contradicted"
    UNVERIFIABLE = "unverifiable"


class ClaimCheck(BaseModel):
    claim: str
    label: SupportLabel
    evidence: str | None = None
    overlap: float = Field(default=0.0, ge=0.0, le=1.0)


class FactCheckSummary(BaseModel):
    passed: bool = True
    score: float = Field(default=0.5, ge=0.0, le=1.0)
    claims: list[ClaimCheck] = Field(default_factory=list)
    unsupported_ratio: float = Field(default=0.0, ge=0.0, le=1.0)
    available: bool = True

    def count(self, label: SupportLabel) -> int:
        return sum(1 for c in self.claims if c.label == label)

    @property
    def flagged_claims(self) -> list[str]:
        return [
            c.claim
            for c in self.claims
            if c.label in (SupportLabel.UNSUPPORTED, SupportLabel.CONTRADICTED)
        ]


# =========================
# Confidence
# =========================


class UncertaintyFactor(BaseModel):
    factor: str
    weight: float = Field(ge=0.0, le=1.0)
    detail: str | None = None


class ConfidenceScore(BaseModel):
    overall: float = Field(ge=0.0, le=1.0)
    level: Literal["low", "medium", "high"]
    recommendation: Literal["accept", "review", "reject"]
    uncertainty_factors: list[UncertaintyFactor] = Field(default_factory=list)
    available: bool = True


# =========================
# Contradictions
# =========================


class ContradictionType(str, Enum):
    SELF = "self"
    CROSS_TURN = "cross_turn"
    TEMPORAL = "temporal"
    LOGICAL = "logical"
    CONTEXTUAL = "contextual"
    FACTUAL = "factual"


class ContradictionReport(BaseModel):
    type: ContradictionType
    description: str
    conflicting_span_a: str
    conflicting_span_b: str
    severity: float = Field(ge=0.0, le=1.0)


# =========================
# Safety
# =========================


class SafetyFlag(BaseModel):
    rule: str
    severity: IssueSeverity
    span: str
    matched: str


# =========================
# Aggregate
# =========================


class ValidationResult(BaseModel):
    """Produced exactly once per candidate response."""

    is_valid: bool
    validation_score: float = Field(ge=0.0, le=1.0)
    issues: list[ValidationIssue] = Field(default_factory=list)
    fact_check_summary: FactCheckSummary = Field(default_factory=FactCheckSummary)
    confidence_score: ConfidenceScore
    contradictions: list[ContradictionReport] = Field(default_factory=list)
    safety_flags: list[SafetyFlag] = Field(default_factory=list)
    recommendations: list[str] = Field(default_factory=list)
    sub_scores: dict[str, float] = Field(default_factory=dict)

    @property
    def max_contradiction_severity(self) -> float:
        return max((c.severity for c in self.contradictions), default=0.0)

    @classmethod
    def unavailable(cls, message: str) -> "ValidationResult":
        """Envelope used when no candidate response exists to validate."""
        return cls(
            is_valid=False,
            validation_score=0.0,
            issues=[
                ValidationIssue(
                    severity=IssueSeverity.CRITICAL,
                    code="generation_unavailable",
                    message=message,
                )
            ],
            fact_check_summary=FactCheckSummary(passed=False, score=0.0, available=False),
            confidence_score=ConfidenceScore(
                overall=0.0, level="low", recommendation="reject", available=False
            ),
            recommendations=["Try again shortly; the answer service is unavailable."],
        )
