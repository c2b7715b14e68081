"""Builds the bounded generation context from request, classification and memories.

Packing is greedy by weight. The user message is reserved first and is never
dropped; every other fragment competes for what is left of the budget.
"""

from __future__ import annotations

from tutor_guard.context.token_budget import BudgetCounter, BudgetUnit
from tutor_guard.core.logging import get_logger
from tutor_guard.core.personalization import profile_guidance, weak_topics
from tutor_guard.core.schemas_memory import MemoryRecord
from tutor_guard.core.schemas_personalization import PersonalizationProfile
from tutor_guard.core.schemas_pipeline import (
    Classification,
    ContextFragment,
    FragmentSource,
    GenerationContext,
    PipelineRequest,
)

logger = get_logger(__name__)

# Fixed weights for non-memory fragments; memory weights are data-driven
REQUEST_WEIGHT = 3.0
INSTRUCTION_WEIGHT = 2.0
PERSONALIZATION_WEIGHT = 1.5
CLASSIFICATION_WEIGHT = 1.0
# Memories tagged with one of the student's weak topics
WEAK_TOPIC_BOOST = 1.25

# Don't bother keeping a truncated fragment smaller than this
MIN_TRUNCATED_SIZE = {"chars": 40, "tokens": 10}


def memory_weight(record: MemoryRecord) -> float:
    """relevance * quality * priority multiplier."""
    return record.relevance_score * record.quality_score * record.priority.multiplier


def memory_fragment(record: MemoryRecord, boost: float = 1.0) -> ContextFragment:
    return ContextFragment(
        source=FragmentSource.MEMORY,
        content=record.content,
        weight=round(memory_weight(record) * boost, 6),
        memory_id=record.id,
        priority=record.priority.value,
        quality_score=record.quality_score,
    )


def avoid_claims_instruction(claims: list[str]) -> str:
    lines = ["Do not repeat these statements; they failed verification:"]
    lines.extend(f"- {claim}" for claim in claims)
    return "\n".join(lines)


class ContextBuilder:
    """Packs weighted fragments into a fixed budget.

    Args:
        budget: Ceiling in ``unit``
        unit: "chars" or "tokens"
    """

    def __init__(self, budget: int, unit: BudgetUnit = "chars"):
        if budget <= 0:
            raise ValueError("Context budget must be positive")
        self.budget = budget
        self.counter = BudgetCounter(unit)

    def build(
        self,
        request: PipelineRequest,
        classification: Classification,
        memories: list[MemoryRecord],
        avoid_claims: list[str] | None = None,
        profile: PersonalizationProfile | None = None,
    ) -> GenerationContext:
        avoid_claims = list(avoid_claims or [])

        request_fragment = self._request_fragment(request)
        used = self.counter.count(request_fragment.content)
        packed: list[ContextFragment] = [request_fragment]

        candidates: list[ContextFragment] = []
        if avoid_claims:
            candidates.append(
                ContextFragment(
                    source=FragmentSource.INSTRUCTION,
                    content=avoid_claims_instruction(avoid_claims),
                    weight=INSTRUCTION_WEIGHT,
                )
            )
        candidates.append(
            ContextFragment(
                source=FragmentSource.CLASSIFICATION,
                content=classification.summary(),
                weight=CLASSIFICATION_WEIGHT,
            )
        )
        boosted: set[str] = set()
        if profile is not None:
            guidance = profile_guidance(profile, classification.topic)
            if guidance:
                candidates.append(
                    ContextFragment(
                        source=FragmentSource.PERSONALIZATION,
                        content=guidance,
                        weight=PERSONALIZATION_WEIGHT,
                    )
                )
            boosted = {f"topic:{topic}" for topic, _ in weak_topics(profile)}
        candidates.extend(
            memory_fragment(m, WEAK_TOPIC_BOOST if m.tags & boosted else 1.0) for m in memories
        )

        # Stable: equal weights keep retrieval order
        candidates.sort(key=lambda f: f.weight, reverse=True)

        dropped = 0
        min_size = MIN_TRUNCATED_SIZE[self.counter.unit]
        for fragment in candidates:
            remaining = self.budget - used
            size = self.counter.count(fragment.content)
            if size <= remaining:
                packed.append(fragment)
                used += size
            elif remaining >= min_size:
                content = self.counter.truncate(fragment.content, remaining)
                packed.append(fragment.model_copy(update={"content": content, "truncated": True}))
                used += self.counter.count(content)
            else:
                dropped += 1

        if dropped:
            logger.debug(
                f"Dropped {dropped} context fragments over budget",
                extra={"request_id": request.request_id, "budget": self.budget},
            )

        return GenerationContext(
            request_id=request.request_id,
            owner_id=request.owner_id,
            user_message=request.message,
            academic_level=request.academic_level,
            fragments=packed,
            budget=self.budget,
            used=used,
            unit=self.counter.unit,
            dropped=dropped,
            avoid_claims=avoid_claims,
        )

    def _request_fragment(self, request: PipelineRequest) -> ContextFragment:
        content = request.message
        truncated = False
        if self.counter.count(content) > self.budget:
            # Only a message larger than the whole budget is ever shortened
            content = self.counter.truncate(content, self.budget)
            truncated = True
            logger.warning(
                "User message exceeds the context budget; truncated",
                extra={"request_id": request.request_id, "budget": self.budget},
            )
        return ContextFragment(
            source=FragmentSource.REQUEST,
            content=content,
            weight=REQUEST_WEIGHT,
            truncated=truncated,
        )
