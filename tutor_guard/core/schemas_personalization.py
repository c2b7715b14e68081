"""Schemas for feedback intake and per-user personalization profiles."""

from datetime import datetime
from enum import Enum
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, Field

from tutor_guard.core.schemas_memory import utcnow


class FeedbackType(str, Enum):
    EXPLICIT = "explicit"
    IMPLICIT = "implicit"
    CORRECTION = "correction"
    SATISFACTION = "satisfaction"
    BEHAVIORAL = "behavioral"


class LearningStyle(str, Enum):
    VISUAL = "visual"
    AUDITORY = "auditory"
    KINESTHETIC = "kinesthetic"
    READING_WRITING = "reading_writing"


class FeedbackRecord(BaseModel):
    """A user's reaction to a response, delivered asynchronously."""

    id: str = Field(default_factory=lambda: str(uuid4()))
    owner_id: str = Field(..., min_length=1)
    interaction_id: str
    type: FeedbackType
    rating: int | None = Field(default=None, ge=1, le=5)
    correction_text: str | None = None
    behavior_metrics: dict[str, float] | None = None
    topic: str | None = None
    created_at: datetime = Field(default_factory=utcnow)


class AdaptationEvent(BaseModel):
    """One incremental change applied to a profile."""

    source: str  # "interaction" | "feedback"
    source_id: str
    topic: str | None = None
    observed: float | None = Field(default=None, ge=0.0, le=1.0)
    engagement: float | None = Field(default=None, ge=0.0, le=1.0)
    style_signals: dict[str, float] = Field(default_factory=dict)
    is_correction: bool = False
    deltas: dict[str, float] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=utcnow)


class PersonalizationProfile(BaseModel):
    """One per user. Updated incrementally, never replaced wholesale."""

    owner_id: str
    learning_style_weights: dict[str, float] = Field(
        default_factory=lambda: {style.value: 0.5 for style in LearningStyle}
    )
    topic_proficiency: dict[str, float] = Field(default_factory=dict)
    adaptation_history: list[AdaptationEvent] = Field(default_factory=list)
    patterns: list[str] = Field(default_factory=list)
    interaction_count: int = 0
    processed_ids: list[str] = Field(default_factory=list)
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    def has_processed(self, source_id: str) -> bool:
        return source_id in self.processed_ids

    def dominant_style(self) -> str | None:
        """Highest-weighted style; None for a row stored without style weights."""
        weights = self.learning_style_weights
        return max(weights, key=weights.get, default=None)


class PersonalizationUpdate(BaseModel):
    """What one interaction or feedback event changed."""

    owner_id: str
    profile_delta: dict[str, float] = Field(default_factory=dict)
    patterns: list[str] = Field(default_factory=list)
    suggestions: list[str] = Field(default_factory=list)
    memories_created: list[str] = Field(default_factory=list)
    skipped: bool = False
    metadata: dict[str, Any] = Field(default_factory=dict)


class CompletedInteraction(BaseModel):
    """A finished pipeline run, handed to personalization after the response is returned."""

    interaction_id: str
    owner_id: str = Field(..., min_length=1)
    message: str
    response: str | None = None
    topic: str = "general"
    subject: str = "general"
    is_personal_query: bool = False
    conversation_id: str | None = None
    confidence: float | None = Field(default=None, ge=0.0, le=1.0)
    validation_score: float | None = Field(default=None, ge=0.0, le=1.0)
    is_valid: bool = False
    processing_ms: float | None = None
