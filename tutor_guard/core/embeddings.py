"""OpenAI embeddings for semantic memory search and the intent signal.

Both consumers take a plain synchronous ``texts -> vectors`` callable and
run it in a worker thread; OpenAIEmbedder is that callable.
"""

from openai import OpenAI

from tutor_guard.core.config import Settings
from tutor_guard.core.logging import get_logger

logger = get_logger(__name__)

# Inputs per embeddings request
MAX_BATCH = 512


class OpenAIEmbedder:
    """Batch embedding function bound to one settings object.

    Args:
        settings: Supplies the API key, model and expected dimension
        client: Pre-built OpenAI client (tests pass a mock)
    """

    def __init__(self, settings: Settings, client: OpenAI | None = None):
        self.model = settings.EMBEDDING_MODEL
        self.dimension = settings.EMBEDDING_DIM
        self._client = client or OpenAI(api_key=settings.OPENAI_API_KEY)

    def __call__(self, texts: list[str]) -> list[list[float]]:
        """
        Embed texts in request-sized batches.

        Args:
            texts: Texts to embed; blank strings are sent as a single space

        Returns:
            One vector per input, in input order

        Raises:
            ValueError: If a vector does not have the configured dimension
        """
        if not texts:
            return []

        vectors: list[list[float]] = []
        for start in range(0, len(texts), MAX_BATCH):
            batch = [t if t.strip() else " " for t in texts[start : start + MAX_BATCH]]
            response = self._client.embeddings.create(model=self.model, input=batch)
            for item in sorted(response.data, key=lambda d: d.index):
                if len(item.embedding) != self.dimension:
                    raise ValueError(
                        f"Embedding dimension mismatch: expected {self.dimension}, "
                        f"got {len(item.embedding)}"
                    )
                vectors.append(item.embedding)

        logger.debug(
            f"Embedded {len(vectors)} texts with {self.model}",
            extra={"model": self.model, "count": len(vectors)},
        )
        return vectors
