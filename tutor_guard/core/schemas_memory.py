"""Schemas for long-term interaction memory."""

from datetime import datetime, timedelta, timezone
from enum import Enum
from uuid import uuid4

from pydantic import BaseModel, Field, model_validator


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class MemoryType(str, Enum):
    """What kind of interaction a memory came from."""

    USER_QUERY = "user_query"
    AI_RESPONSE = "ai_response"
    LEARNING_INTERACTION = "learning_interaction"
    FEEDBACK = "feedback"
    CORRECTION = "correction"
    INSIGHT = "insight"


class MemoryPriority(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        """Ordinal used for tie-breaking (higher wins)."""
        return {
            "low": 0,
            "medium": 1,
            "high": 2,
            "critical": 3,
        }[self.value]

    @property
    def multiplier(self) -> float:
        """Context weight multiplier."""
        return {
            "low": 0.75,
            "medium": 1.0,
            "high": 1.25,
            "critical": 1.5,
        }[self.value]


class MemoryRetention(str, Enum):
    SESSION = "session"
    SHORT_TERM = "short_term"
    LONG_TERM = "long_term"
    PERMANENT = "permanent"

    @property
    def lifetime(self) -> timedelta | None:
        """How long a memory with this retention lives. None = forever."""
        return {
            "session": timedelta(hours=24),
            "short_term": timedelta(days=7),
            "long_term": timedelta(days=30),
            "permanent": None,
        }[self.value]


class MemoryRecord(BaseModel):
    """A persisted unit of past interaction used to ground future responses.

    ``expires_at`` is None exactly when retention is permanent. When it is
    omitted for any other retention it is derived from ``created_at``.
    """

    id: str = Field(default_factory=lambda: str(uuid4()))
    owner_id: str = Field(..., min_length=1)
    content: str
    memory_type: MemoryType = MemoryType.USER_QUERY
    quality_score: float = Field(default=0.5, ge=0.0, le=1.0)
    relevance_score: float = Field(default=0.5, ge=0.0, le=1.0)
    priority: MemoryPriority = MemoryPriority.MEDIUM
    retention: MemoryRetention = MemoryRetention.LONG_TERM
    tags: set[str] = Field(default_factory=set)
    conversation_id: str | None = None
    created_at: datetime = Field(default_factory=utcnow)
    expires_at: datetime | None = None

    @model_validator(mode="after")
    def _check_expiry(self) -> "MemoryRecord":
        lifetime = self.retention.lifetime
        if lifetime is None:
            if self.expires_at is not None:
                raise ValueError("permanent memories cannot carry an expiry")
        elif self.expires_at is None:
            self.expires_at = self.created_at + lifetime
        return self

    def is_expired(self, now: datetime | None = None) -> bool:
        if self.expires_at is None:
            return False
        return self.expires_at <= (now or utcnow())


class MemoryFilter(BaseModel):
    """Owner-scoped query filter for the memory store."""

    memory_types: list[MemoryType] | None = None
    min_priority: MemoryPriority | None = None
    tags: list[str] | None = None
    conversation_id: str | None = None
    include_expired: bool = False
    limit: int | None = Field(default=None, ge=1)

    def matches(self, record: MemoryRecord, now: datetime | None = None) -> bool:
        if not self.include_expired and record.is_expired(now):
            return False
        if self.memory_types and record.memory_type not in self.memory_types:
            return False
        if self.min_priority and record.priority.rank < self.min_priority.rank:
            return False
        if self.tags and not record.tags.intersection(self.tags):
            return False
        if self.conversation_id and record.conversation_id != self.conversation_id:
            return False
        return True
