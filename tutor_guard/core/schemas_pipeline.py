"""Schemas for the answer pipeline: request, classification, context, result."""

from enum import Enum
from typing import Any, Literal
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field

from tutor_guard.core.schemas_validation import ValidationResult


# =========================
# Request
# =========================


class ConversationTurn(BaseModel):
    """A single prior message in the same conversation."""

    model_config = ConfigDict(frozen=True)

    role: Literal["user", "assistant"]
    content: str


class PipelineRequest(BaseModel):
    """Immutable input for one pipeline run."""

    model_config = ConfigDict(frozen=True)

    request_id: str = Field(default_factory=lambda: str(uuid4()))
    owner_id: str = Field(..., min_length=1)
    message: str
    conversation_id: str | None = None
    conversation_history: tuple[ConversationTurn, ...] = ()
    academic_level: str | None = None
    subject: str | None = None
    topic: str | None = None
    urgency: str | None = None


# =========================
# Classification
# =========================


class Complexity(str, Enum):
    BASIC = "basic"
    INTERMEDIATE = "intermediate"
    ADVANCED = "advanced"


class Urgency(str, Enum):
    LOW = "low"
    NORMAL = "normal"
    TIME_SENSITIVE = "time_sensitive"


class ValidationLevel(str, Enum):
    BASIC = "basic"
    STANDARD = "standard"
    ENHANCED = "enhanced"


class Classification(BaseModel):
    """Categorization of a request. Read-only downstream."""

    model_config = ConfigDict(frozen=True)

    is_personal_query: bool
    topic: str = "general"
    subject: str = "general"
    complexity: Complexity = Complexity.INTERMEDIATE
    urgency: Urgency = Urgency.NORMAL
    required_validation_level: ValidationLevel = ValidationLevel.STANDARD
    personal_score: float = Field(default=0.0, ge=0.0, le=1.0)
    degraded: bool = False

    def summary(self) -> str:
        kind = "personal" if self.is_personal_query else "general"
        return (
            f"Query type: {kind}; subject: {self.subject}; topic: {self.topic}; "
            f"complexity: {self.complexity.value}; urgency: {self.urgency.value}"
        )


# =========================
# Generation context
# =========================


class FragmentSource(str, Enum):
    REQUEST = "request"
    CLASSIFICATION = "classification"
    MEMORY = "memory"
    INSTRUCTION = "instruction"
    PERSONALIZATION = "personalization"


class ContextFragment(BaseModel):
    """One weighted piece of generation context."""

    source: FragmentSource
    content: str
    weight: float = Field(default=0.0, ge=0.0)
    memory_id: str | None = None
    priority: str | None = None
    quality_score: float | None = None
    truncated: bool = False


class GenerationContext(BaseModel):
    """Bounded, ordered context handed to the generation backends."""

    request_id: str
    owner_id: str
    user_message: str
    academic_level: str | None = None
    fragments: list[ContextFragment] = Field(default_factory=list)
    budget: int
    used: int
    unit: Literal["chars", "tokens"] = "chars"
    dropped: int = 0
    avoid_claims: list[str] = Field(default_factory=list)

    @property
    def memory_fragments(self) -> list[ContextFragment]:
        return [f for f in self.fragments if f.source == FragmentSource.MEMORY]

    def grounding_texts(self) -> list[str]:
        """Texts a candidate response may be corroborated against."""
        return [f.content for f in self.memory_fragments]


class GenerationResult(BaseModel):
    """Raw candidate text plus provider metadata."""

    text: str
    model_id: str
    provider: str
    token_counts: dict[str, int] = Field(default_factory=dict)
    latency_ms: float = 0.0


# =========================
# Result envelope
# =========================


class MemoryContextSummary(BaseModel):
    memories_found: int = 0
    summary: str = ""
    memory_ids: list[str] = Field(default_factory=list)


class PersonalizationSummary(BaseModel):
    suggestions: list[str] = Field(default_factory=list)
    profile_delta: dict[str, float] = Field(default_factory=dict)


class TimingInfo(BaseModel):
    per_stage_ms: dict[str, float] = Field(default_factory=dict)
    total_ms: float = 0.0


class PipelineResult(BaseModel):
    """The single decision envelope returned to callers."""

    request_id: str
    status: Literal["ok", "review", "fallback", "failed"]
    content: str
    validation: ValidationResult
    classification: Classification | None = None
    memory_context: MemoryContextSummary = Field(default_factory=MemoryContextSummary)
    personalization: PersonalizationSummary = Field(default_factory=PersonalizationSummary)
    timing: TimingInfo = Field(default_factory=TimingInfo)
    attempts: int = 0
    model_id: str | None = None
    provider: str | None = None
    degradations: list[str] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)
