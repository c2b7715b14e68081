"""Configuration management for Tutor Guard."""

from functools import lru_cache

from dotenv import load_dotenv
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# Merge .env into the process environment when readable
try:
    load_dotenv()
except (PermissionError, OSError):
    # Unreadable .env; use the process environment as is
    pass


DEFAULT_VALIDATION_WEIGHTS: dict[str, dict[str, float]] = {
    "basic": {"fact_check": 0.3, "confidence": 0.4, "contradiction": 0.3},
    "standard": {"fact_check": 0.4, "confidence": 0.3, "contradiction": 0.3},
    "enhanced": {"fact_check": 0.5, "confidence": 0.2, "contradiction": 0.3},
}


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=True,
        extra="ignore",
    )

    # Environment
    TUTOR_GUARD_ENV: str = Field(default="dev", description="Environment: dev, staging, prod, test")

    # Provider credentials (all optional; missing providers are skipped)
    ANTHROPIC_API_KEY: str | None = Field(default=None, description="Anthropic API key")
    OPENAI_API_KEY: str | None = Field(default=None, description="OpenAI API key")
    SUPABASE_URL: str | None = Field(default=None, description="Supabase project URL")
    SUPABASE_SERVICE_ROLE_KEY: str | None = Field(
        default=None, description="Supabase service role key"
    )

    # Generation
    GENERATION_PROVIDERS: list[str] = Field(
        default_factory=lambda: ["anthropic", "openai"],
        description="Ordered generation fallback chain",
    )
    ANTHROPIC_MODEL: str = Field(
        default="claude-sonnet-4-5-20250929", description="Anthropic generation model"
    )
    OPENAI_MODEL: str = Field(default="gpt-4o-mini", description="OpenAI generation model")
    GENERATION_TIMEOUT_S: float = Field(default=30.0, description="Per-backend generation timeout")
    GENERATION_MAX_TOKENS: int = Field(default=1024, description="Max output tokens per generation")
    GENERATION_TEMPERATURE: float = Field(default=0.3, description="Sampling temperature")
    MAX_REGENERATIONS: int = Field(
        default=2, description="Regeneration attempts after an invalid candidate"
    )

    # Embeddings
    EMBEDDING_MODEL: str = Field(
        default="text-embedding-3-small", description="OpenAI embedding model"
    )
    EMBEDDING_DIM: int = Field(default=1536, description="Embedding vector dimension")

    # Classification
    CLASSIFIER_TIMEOUT_S: float = Field(default=3.0, description="Intent signal timeout")
    PERSONAL_SCORE_THRESHOLD: float = Field(
        default=0.5, description="Blended personal score at which a query is personal"
    )

    # Retrieval
    MEMORY_TOP_K: int = Field(default=10, description="Max memories returned by retrieval")
    MEMORY_MIN_SIMILARITY: float = Field(
        default=0.3, description="Minimum hybrid similarity for a memory to be returned"
    )
    SEMANTIC_WEIGHT: float = Field(
        default=0.7, description="Weight of semantic similarity in hybrid ranking"
    )
    RETRIEVAL_TIMEOUT_S: float = Field(default=5.0, description="Memory retrieval timeout")
    RETRIEVAL_CANDIDATE_LIMIT: int = Field(
        default=50, description="Max candidate records pulled from the store per query"
    )

    # Context building
    CONTEXT_BUDGET: int = Field(default=6_000, description="Generation context ceiling")
    CONTEXT_BUDGET_UNIT: str = Field(default="chars", description="chars or tokens")

    # Validation
    FACT_UNSUPPORTED_RATIO_MAX: float = Field(
        default=0.5, description="Max share of unsupported/contradicted claims"
    )
    CONFIDENCE_ACCEPT_THRESHOLD: float = Field(default=0.75, description="Accept at or above")
    CONFIDENCE_REVIEW_THRESHOLD: float = Field(default=0.4, description="Reject below")
    CONTRADICTION_SEVERITY_THRESHOLD: float = Field(
        default=0.8, description="Contradiction severity that invalidates a response"
    )
    CROSS_TURN_WINDOW: int = Field(default=6, description="Preceding turns checked for contradictions")
    VALIDATION_SUBCHECK_TIMEOUT_S: float = Field(
        default=5.0, description="Bounded wait for the validator sub-checks"
    )
    VALIDATION_WEIGHTS: dict[str, dict[str, float]] = Field(
        default_factory=lambda: {k: dict(v) for k, v in DEFAULT_VALIDATION_WEIGHTS.items()},
        description="Sub-score weights per required validation level",
    )

    # Personalization
    LEARNING_RATE: float = Field(default=0.2, description="EMA step for profile updates")
    PATTERN_WINDOW: int = Field(default=10, description="Events considered for pattern detection")
    PATTERN_MIN_EVENTS: int = Field(
        default=3, description="Supporting events required before a pattern is reported"
    )
    FEEDBACK_QUEUE_SIZE: int = Field(default=1_000, description="Background feedback queue size")
    FEEDBACK_MAX_ATTEMPTS: int = Field(
        default=3, description="Delivery attempts per feedback message"
    )


@lru_cache
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Returns:
        Settings instance

    Raises:
        ValidationError: If environment variables fail validation
    """
    return Settings()
