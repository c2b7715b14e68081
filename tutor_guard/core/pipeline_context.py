"""Explicit collaborator bundle passed through the answer pipeline.

Holds the stores, backends and settings one orchestrator works with. There
are no module-level singletons: two contexts never share mutable state.
"""

from __future__ import annotations

from dataclasses import dataclass

from tutor_guard.context.intent_classifier import EmbeddingIntentScorer, IntentScorer
from tutor_guard.core.config import Settings
from tutor_guard.core.embeddings import OpenAIEmbedder
from tutor_guard.core.fact_checker import FactVerifier
from tutor_guard.core.generation import FallbackChain, build_default_chain
from tutor_guard.core.logging import get_logger
from tutor_guard.core.semantic_search import EmbeddingSearchBackend, SemanticSearchBackend
from tutor_guard.db.memory_store import (
    InMemoryMemoryStore,
    InMemoryProfileStore,
    MemoryStore,
    ProfileStore,
)
from tutor_guard.db.supabase_client import create_supabase, supabase_configured
from tutor_guard.db.supabase_store import SupabaseMemoryStore, SupabaseProfileStore
from tutor_guard.services.feedback_worker import FeedbackWorker

logger = get_logger(__name__)


@dataclass
class PipelineContext:
    """Everything one pipeline instance needs, passed explicitly."""

    settings: Settings
    memory_store: MemoryStore
    profile_store: ProfileStore
    generation_chain: FallbackChain
    search_backend: SemanticSearchBackend | None = None
    intent_scorer: IntentScorer | None = None
    fact_verifier: FactVerifier | None = None
    # Created by the orchestrator when not supplied
    feedback_worker: FeedbackWorker | None = None

    @classmethod
    def from_settings(cls, settings: Settings) -> PipelineContext:
        """
        Wire a context from settings.

        Supabase stores are used when Supabase is configured, in-process
        stores otherwise. Embedding-based retrieval and intent scoring are
        enabled only when an OpenAI key is present.
        """
        if supabase_configured(settings):
            client = create_supabase(settings)
            memory_store: MemoryStore = SupabaseMemoryStore(client)
            profile_store: ProfileStore = SupabaseProfileStore(client)
            logger.info("Using Supabase memory and profile stores")
        else:
            memory_store = InMemoryMemoryStore()
            profile_store = InMemoryProfileStore()
            logger.info("Supabase not configured; using in-process stores")

        search_backend = None
        intent_scorer = None
        if settings.OPENAI_API_KEY:
            embed_fn = OpenAIEmbedder(settings)
            search_backend = EmbeddingSearchBackend(
                memory_store, embed_fn, candidate_limit=settings.RETRIEVAL_CANDIDATE_LIMIT
            )
            intent_scorer = EmbeddingIntentScorer(embed_fn)

        return cls(
            settings=settings,
            memory_store=memory_store,
            profile_store=profile_store,
            generation_chain=build_default_chain(settings),
            search_backend=search_backend,
            intent_scorer=intent_scorer,
        )
