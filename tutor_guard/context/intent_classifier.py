"""Semantic personal-intent signal using embeddings.

Blended with the keyword rules by the query classifier. Exemplar
embeddings are computed once per scorer instance.
"""

from __future__ import annotations

import asyncio
from typing import Callable, Protocol

import numpy as np
from sklearn.metrics.pairwise import cosine_similarity

from tutor_guard.core.logging import get_logger

logger = get_logger(__name__)

EmbedFn = Callable[[list[str]], list[list[float]]]


# Intent categories with example phrases (exemplars)
INTENT_EXEMPLARS: dict[str, list[str]] = {
    "personal": [
        "What is my name?",
        "Do you remember what I told you about my exams?",
        "How am I doing in chemistry?",
        "What topics did I struggle with last week?",
        "Which learning style works best for me?",
        "Remind me what my goals are",
        "What did I score on my last quiz?",
    ],
    "general": [
        "Explain photosynthesis",
        "What is the quadratic formula?",
        "When did the Second World War end?",
        "How does gravity work?",
        "Define a metaphor with an example",
        "What causes inflation?",
        "Summarize the causes of the French Revolution",
    ],
}


class IntentScorer(Protocol):
    """External intent signal: probability that a message is personal."""

    async def personal_probability(self, message: str) -> float:
        ...


class EmbeddingIntentScorer:
    """Nearest-exemplar intent scorer.

    Args:
        embed_fn: Synchronous batch embedding function
        exemplars: Intent -> exemplar phrases; must contain "personal" and "general"
    """

    def __init__(
        self,
        embed_fn: EmbedFn,
        exemplars: dict[str, list[str]] | None = None,
    ):
        self._embed_fn = embed_fn
        self._exemplars = exemplars or INTENT_EXEMPLARS
        self._exemplar_embeddings: dict[str, np.ndarray] | None = None

    def _get_exemplar_embeddings(self) -> dict[str, np.ndarray]:
        """Get or compute cached embeddings for intent exemplars."""
        if self._exemplar_embeddings is not None:
            return self._exemplar_embeddings

        logger.info("Computing intent exemplar embeddings...")
        embeddings = {
            intent: np.array(self._embed_fn(phrases))
            for intent, phrases in self._exemplars.items()
        }
        self._exemplar_embeddings = embeddings
        logger.info(f"Cached embeddings for {len(embeddings)} intents")
        return embeddings

    def score_sync(self, message: str) -> dict[str, float]:
        """Max cosine similarity of the message to each intent's exemplars."""
        exemplar_embeddings = self._get_exemplar_embeddings()
        message_embedding = np.array(self._embed_fn([message])[0]).reshape(1, -1)

        intent_scores: dict[str, float] = {}
        for intent, exemplar_matrix in exemplar_embeddings.items():
            similarities = cosine_similarity(message_embedding, exemplar_matrix)[0]
            intent_scores[intent] = float(np.max(similarities))
        return intent_scores

    async def personal_probability(self, message: str) -> float:
        if not message or not message.strip():
            return 0.0
        scores = await asyncio.to_thread(self.score_sync, message)
        personal = max(scores.get("personal", 0.0), 0.0)
        general = max(scores.get("general", 0.0), 0.0)
        if personal + general == 0:
            return 0.5
        return personal / (personal + general)
