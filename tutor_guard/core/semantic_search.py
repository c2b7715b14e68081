"""Semantic search over an owner's memories.

The backend is optional: retrieval falls back to lexical ranking when it is
absent or failing.
"""

from __future__ import annotations

import asyncio
import threading
from collections import OrderedDict
from dataclasses import dataclass
from typing import Callable, Protocol

import numpy as np
from sklearn.metrics.pairwise import cosine_similarity

from tutor_guard.core.logging import get_logger
from tutor_guard.core.schemas_memory import MemoryFilter, MemoryRecord
from tutor_guard.db.memory_store import MemoryStore

logger = get_logger(__name__)

EmbedFn = Callable[[list[str]], list[list[float]]]


@dataclass
class SemanticHit:
    record: MemoryRecord
    similarity: float


class SemanticSearchBackend(Protocol):
    async def search(
        self, owner_id: str, text: str, min_similarity: float, limit: int
    ) -> list[SemanticHit]:
        ...


class EmbeddingSearchBackend:
    """Embeds the query and the owner's live memories, ranks by cosine similarity.

    Memory embeddings are cached per id in a bounded LRU. An entry is
    re-embedded when the memory's content changes.
    """

    def __init__(
        self,
        store: MemoryStore,
        embed_fn: EmbedFn,
        candidate_limit: int = 200,
        cache_size: int = 5_000,
    ):
        self._store = store
        self._embed_fn = embed_fn
        self._candidate_limit = candidate_limit
        self._cache_size = cache_size
        self._cache: OrderedDict[str, tuple[str, np.ndarray]] = OrderedDict()
        # Ranking runs in worker threads
        self._cache_lock = threading.Lock()

    def _cached(self, record: MemoryRecord) -> np.ndarray | None:
        with self._cache_lock:
            entry = self._cache.get(record.id)
            if entry is None or entry[0] != record.content:
                return None
            self._cache.move_to_end(record.id)
            return entry[1]

    def _remember(self, record: MemoryRecord, vector: np.ndarray) -> None:
        with self._cache_lock:
            self._cache[record.id] = (record.content, vector)
            self._cache.move_to_end(record.id)
            while len(self._cache) > self._cache_size:
                self._cache.popitem(last=False)

    def _rank_sync(
        self, text: str, records: list[MemoryRecord], min_similarity: float, limit: int
    ) -> list[SemanticHit]:
        vectors: dict[str, np.ndarray] = {}
        missing = []
        for record in records:
            cached = self._cached(record)
            if cached is None:
                missing.append(record)
            else:
                vectors[record.id] = cached
        if missing:
            embedded = self._embed_fn([r.content for r in missing])
            for record, vector in zip(missing, embedded, strict=True):
                vectors[record.id] = np.array(vector)
                self._remember(record, vectors[record.id])

        query_vector = np.array(self._embed_fn([text])[0]).reshape(1, -1)
        matrix = np.vstack([vectors[r.id] for r in records])
        similarities = cosine_similarity(query_vector, matrix)[0]

        hits = [
            SemanticHit(record=r, similarity=float(max(0.0, min(1.0, s))))
            for r, s in zip(records, similarities, strict=True)
            if s >= min_similarity
        ]
        hits.sort(key=lambda h: h.similarity, reverse=True)
        return hits[:limit]

    async def search(
        self, owner_id: str, text: str, min_similarity: float, limit: int
    ) -> list[SemanticHit]:
        records = await self._store.query(owner_id, MemoryFilter(limit=self._candidate_limit))
        if not records or not text.strip():
            return []
        hits = await asyncio.to_thread(self._rank_sync, text, records, min_similarity, limit)
        logger.debug(f"Semantic search returned {len(hits)} hits", extra={"owner_id": owner_id})
        return hits
