"""In-process fakes for generation, semantic search, intent and embeddings."""

import asyncio
import hashlib

from tutor_guard.core.errors import GenerationProviderError
from tutor_guard.core.schemas_pipeline import GenerationContext, GenerationResult
from tutor_guard.core.semantic_search import SemanticHit


# ============================================================================
# Generation backends
# ============================================================================


class ScriptedBackend:
    """Plays back a script of texts (or exceptions to raise), repeating the last entry."""

    def __init__(self, name: str, *script: str | Exception):
        self.name = name
        self.script = list(script) or [f"Answer from {name}."]
        self.contexts: list[GenerationContext] = []

    @property
    def calls(self) -> int:
        return len(self.contexts)

    async def generate(self, context: GenerationContext) -> GenerationResult:
        self.contexts.append(context)
        text = self.script[min(len(self.contexts), len(self.script)) - 1]
        if isinstance(text, Exception):
            raise text
        return GenerationResult(
            text=text,
            model_id=f"{self.name}-model",
            provider=self.name,
            token_counts={"input": 10, "output": 5},
        )


class SlowBackend:
    """Sleeps past any reasonable timeout."""

    def __init__(self, name: str = "slow", delay: float = 10.0):
        self.name = name
        self.delay = delay
        self.calls = 0

    async def generate(self, context: GenerationContext) -> GenerationResult:
        self.calls += 1
        await asyncio.sleep(self.delay)
        return GenerationResult(text="too late", model_id="slow-model", provider=self.name)


class FailingBackend:
    """Raises on every call."""

    def __init__(self, name: str = "broken", error: Exception | None = None):
        self.name = name
        self.error = error or RuntimeError("provider returned 500")
        self.calls = 0

    async def generate(self, context: GenerationContext) -> GenerationResult:
        self.calls += 1
        raise self.error


class EmptyBackend:
    """Reports an unusable (empty) response."""

    name = "empty"

    async def generate(self, context: GenerationContext) -> GenerationResult:
        raise GenerationProviderError(self.name, "empty response")


# ============================================================================
# Semantic search
# ============================================================================


class StaticSearchBackend:
    """Returns fixed similarities for the records it was given."""

    def __init__(self, hits: list[SemanticHit]):
        self.hits = hits
        self.calls = 0

    async def search(self, owner_id, text, min_similarity, limit):
        self.calls += 1
        return [
            h for h in self.hits
            if h.record.owner_id == owner_id and h.similarity >= min_similarity
        ][:limit]


class FailingSearchBackend:
    def __init__(self, error: Exception | None = None):
        self.error = error or ConnectionError("vector index unreachable")

    async def search(self, owner_id, text, min_similarity, limit):
        raise self.error


class SlowSearchBackend:
    async def search(self, owner_id, text, min_similarity, limit):
        await asyncio.sleep(10)
        return []


# ============================================================================
# Intent scoring
# ============================================================================


class FakeIntentScorer:
    """Fixed personal probability, or a configured failure."""

    def __init__(self, probability: float = 0.5, error: Exception | None = None, delay: float = 0.0):
        self.probability = probability
        self.error = error
        self.delay = delay

    async def personal_probability(self, message: str) -> float:
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error:
            raise self.error
        return self.probability


# ============================================================================
# Embeddings
# ============================================================================


def hash_embed(texts: list[str], dim: int = 64) -> list[list[float]]:
    """Deterministic bag-of-words embedding: shared words give similar vectors."""
    vectors = []
    for text in texts:
        vector = [0.0] * dim
        for word in text.lower().split():
            word = word.strip(".,?!")
            if not word:
                continue
            bucket = int(hashlib.md5(word.encode()).hexdigest(), 16) % dim
            vector[bucket] += 1.0
        if not any(vector):
            vector[0] = 1.0
        vectors.append(vector)
    return vectors
