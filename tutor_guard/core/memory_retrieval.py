"""Memory retrieval: hybrid semantic + lexical ranking of an owner's memories.

Graceful degradation:
- no semantic backend configured -> lexical ranking only
- store or semantic backend errors/times out -> empty result (MemoryUnavailable)

Memory is an enhancement; retrieval never fails the request.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field

from tutor_guard.core.claims import content_tokens, normalize
from tutor_guard.core.config import Settings
from tutor_guard.core.errors import MemoryUnavailable
from tutor_guard.core.logging import get_logger
from tutor_guard.core.schemas_memory import MemoryFilter, MemoryRecord, utcnow
from tutor_guard.core.schemas_pipeline import Classification, PipelineRequest
from tutor_guard.core.semantic_search import SemanticSearchBackend
from tutor_guard.db.memory_store import MemoryStore

logger = get_logger(__name__)

# Lexical bonus for memories tagged with the query's topic
TOPIC_TAG_BONUS = 0.1


@dataclass
class RankedMemory:
    record: MemoryRecord
    score: float
    lexical_score: float
    semantic_score: float | None = None


@dataclass
class RetrievalResult:
    """Result from memory retrieval."""

    memories: list[RankedMemory] = field(default_factory=list)
    semantic_used: bool = False
    degradations: list[str] = field(default_factory=list)

    @property
    def records(self) -> list[MemoryRecord]:
        return [m.record for m in self.memories]

    def summary(self, max_items: int = 3, max_chars: int = 80) -> str:
        if not self.memories:
            return "No relevant memories found."
        snippets = []
        for m in self.memories[:max_items]:
            text = m.record.content.strip().replace("\n", " ")
            if len(text) > max_chars:
                text = text[: max_chars - 3] + "..."
            snippets.append(f'"{text}"')
        return f"Found {len(self.memories)} relevant memories: " + "; ".join(snippets)


def lexical_similarity(query: str, content: str) -> float:
    """Text-match score in [0, 0.9].

    Whole-query containment scores 0.9; otherwise the share of the query's
    content words found in the memory, plus a bonus when the first one is.
    """
    q = normalize(query).strip(" ?!.")
    c = normalize(content)
    if not q or not c:
        return 0.0
    if q in c:
        return 0.9

    query_tokens = list(dict.fromkeys(content_tokens(query)))
    if not query_tokens:
        return 0.0
    memory_tokens = set(content_tokens(content))
    matches = [t for t in query_tokens if t in memory_tokens]
    if not matches:
        return 0.0
    ratio = len(matches) / len(query_tokens)
    position_bonus = 0.1 if query_tokens[0] in memory_tokens else 0.0
    return min(0.8, ratio * 0.7 + position_bonus)


def rank_key(m: RankedMemory) -> tuple[float, int, float]:
    """Score, then priority, then recency; all descending."""
    return (-m.score, -m.record.priority.rank, -m.record.created_at.timestamp())


class MemoryRetriever:
    """Fetches and ranks an owner's memories for one request."""

    def __init__(
        self,
        settings: Settings,
        store: MemoryStore,
        search_backend: SemanticSearchBackend | None = None,
    ):
        self.settings = settings
        self.store = store
        self.search_backend = search_backend

    async def retrieve(
        self, request: PipelineRequest, classification: Classification
    ) -> RetrievalResult:
        try:
            return await asyncio.wait_for(
                self._retrieve(request, classification),
                timeout=self.settings.RETRIEVAL_TIMEOUT_S,
            )
        except TimeoutError:
            error = MemoryUnavailable(f"retrieval timed out after {self.settings.RETRIEVAL_TIMEOUT_S}s")
        except MemoryUnavailable as e:
            error = e
        except Exception as e:
            error = MemoryUnavailable(f"memory store failed: {e}")

        logger.warning(
            f"MemoryUnavailable: {error}; continuing without memories",
            extra={"request_id": request.request_id, "owner_id": request.owner_id},
        )
        return RetrievalResult(degradations=[type(error).__name__])

    async def _semantic_scores(self, request: PipelineRequest) -> dict[str, tuple[MemoryRecord, float]]:
        try:
            hits = await self.search_backend.search(
                request.owner_id,
                request.message,
                min_similarity=0.0,
                limit=self.settings.RETRIEVAL_CANDIDATE_LIMIT,
            )
        except Exception as e:
            raise MemoryUnavailable(f"semantic search failed: {e}") from e
        return {h.record.id: (h.record, h.similarity) for h in hits}

    async def _retrieve(
        self, request: PipelineRequest, classification: Classification
    ) -> RetrievalResult:
        candidates = await self.store.query(
            request.owner_id, MemoryFilter(limit=self.settings.RETRIEVAL_CANDIDATE_LIMIT)
        )

        semantic: dict[str, tuple[MemoryRecord, float]] = {}
        semantic_used = self.search_backend is not None
        if semantic_used:
            semantic = await self._semantic_scores(request)

        by_id: dict[str, MemoryRecord] = {r.id: r for r in candidates}
        for memory_id, (record, _) in semantic.items():
            by_id.setdefault(memory_id, record)

        now = utcnow()
        weight = self.settings.SEMANTIC_WEIGHT
        topic_tag = f"topic:{classification.topic}"
        ranked: list[RankedMemory] = []

        for record in by_id.values():
            if record.owner_id != request.owner_id or record.is_expired(now):
                continue

            lexical = lexical_similarity(request.message, record.content)
            if lexical > 0 and topic_tag in record.tags:
                lexical = min(1.0, lexical + TOPIC_TAG_BONUS)

            if semantic_used:
                semantic_score = semantic.get(record.id, (record, 0.0))[1]
                score = weight * semantic_score + (1 - weight) * lexical
            else:
                semantic_score = None
                score = lexical

            if score < self.settings.MEMORY_MIN_SIMILARITY:
                continue
            ranked.append(
                RankedMemory(
                    record=record,
                    score=round(score, 6),
                    lexical_score=lexical,
                    semantic_score=semantic_score,
                )
            )

        ranked.sort(key=rank_key)
        ranked = ranked[: self.settings.MEMORY_TOP_K]

        logger.info(
            f"Retrieved {len(ranked)} memories from {len(by_id)} candidates",
            extra={
                "request_id": request.request_id,
                "semantic": semantic_used,
                "personal": classification.is_personal_query,
            },
        )
        return RetrievalResult(memories=ranked, semantic_used=semantic_used)
