"""Explicit memory storage: scoring and retention-based expiry."""

from __future__ import annotations

from tutor_guard.core.logging import get_logger
from tutor_guard.core.schemas_memory import (
    MemoryPriority,
    MemoryRecord,
    MemoryRetention,
    MemoryType,
)
from tutor_guard.db.memory_store import MemoryStore

logger = get_logger(__name__)

PRIORITY_RELEVANCE: dict[MemoryPriority, float] = {
    MemoryPriority.LOW: 0.1,
    MemoryPriority.MEDIUM: 0.2,
    MemoryPriority.HIGH: 0.3,
    MemoryPriority.CRITICAL: 0.4,
}

TYPE_RELEVANCE: dict[MemoryType, float] = {
    MemoryType.USER_QUERY: 0.2,
    MemoryType.AI_RESPONSE: 0.15,
    MemoryType.LEARNING_INTERACTION: 0.25,
    MemoryType.FEEDBACK: 0.2,
    MemoryType.CORRECTION: 0.3,
    MemoryType.INSIGHT: 0.35,
}


def compute_quality_score(
    content: str,
    response: str | None = None,
    confidence: float | None = None,
    topic: str | None = None,
    processing_ms: float | None = None,
) -> float:
    """Heuristic quality of an interaction worth remembering."""
    score = 0.5
    if content and len(content) > 10:
        score += 0.1
    if response:
        score += 0.2
        if confidence is not None and confidence > 0.8:
            score += 0.1
    if topic and topic != "general":
        score += 0.05
    if processing_ms is not None and processing_ms < 5000:
        score += 0.05
    return min(1.0, max(0.0, score))


def compute_relevance_score(
    content: str,
    memory_type: MemoryType,
    priority: MemoryPriority,
    topic: str | None = None,
    tags: set[str] | None = None,
) -> float:
    """Heuristic prior relevance of a memory, independent of any query."""
    score = 0.3
    score += PRIORITY_RELEVANCE.get(priority, 0.2)
    if content:
        score += 0.2
    if topic and topic != "general":
        score += 0.1
    if tags:
        score += 0.1
    score += TYPE_RELEVANCE.get(memory_type, 0.1)
    return min(1.0, score)


def build_memory(
    owner_id: str,
    content: str,
    memory_type: MemoryType = MemoryType.USER_QUERY,
    priority: MemoryPriority = MemoryPriority.MEDIUM,
    retention: MemoryRetention = MemoryRetention.LONG_TERM,
    *,
    memory_id: str | None = None,
    response: str | None = None,
    confidence: float | None = None,
    topic: str | None = None,
    tags: set[str] | None = None,
    conversation_id: str | None = None,
    processing_ms: float | None = None,
) -> MemoryRecord:
    """Create a scored MemoryRecord with expiry derived from its retention."""
    tags = set(tags or ())
    if topic and topic != "general":
        tags.add(f"topic:{topic}")
    fields = dict(
        owner_id=owner_id,
        content=content,
        memory_type=memory_type,
        priority=priority,
        retention=retention,
        tags=tags,
        conversation_id=conversation_id,
        quality_score=compute_quality_score(content, response, confidence, topic, processing_ms),
        relevance_score=compute_relevance_score(content, memory_type, priority, topic, tags),
    )
    if memory_id:
        fields["id"] = memory_id
    return MemoryRecord(**fields)


async def store_memory(store: MemoryStore, owner_id: str, content: str, **kwargs) -> MemoryRecord:
    """Build a memory and upsert it. Returns the stored record."""
    record = build_memory(owner_id, content, **kwargs)
    await store.upsert(record)
    logger.info(
        f"Stored {record.memory_type.value} memory {record.id}",
        extra={
            "owner_id": owner_id,
            "priority": record.priority.value,
            "retention": record.retention.value,
        },
    )
    return record

