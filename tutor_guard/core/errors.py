"""Error taxonomy for the answer pipeline.

Only GenerationExhausted is ever surfaced to callers (as a fallback
envelope). Every other error is absorbed where it is detected and replaced
with a degraded-but-valid value.
"""


class PipelineError(Exception):
    """Base class for all pipeline errors."""

    #: Whether the pipeline can continue with a degraded value.
    recoverable: bool = True


class ClassificationDegraded(PipelineError):
    """Intent signal unavailable; classification fell back to keyword rules."""


class MemoryUnavailable(PipelineError):
    """Memory store or semantic search failed; retrieval yields no memories."""


class GenerationError(PipelineError):
    """A single generation backend failed."""

    def __init__(self, backend: str, message: str):
        super().__init__(f"{backend}: {message}")
        self.backend = backend


class GenerationTimeout(GenerationError):
    """A generation backend exceeded its per-call timeout."""


class GenerationProviderError(GenerationError):
    """A generation backend raised or returned an unusable response."""


class GenerationExhausted(PipelineError):
    """Every backend in the fallback chain failed."""

    recoverable = False

    def __init__(self, errors: list[GenerationError]):
        names = ", ".join(str(e) for e in errors) or "no backends configured"
        super().__init__(f"Generation fallback chain exhausted ({names})")
        self.errors = errors


class ValidationSubCheckFailure(PipelineError):
    """One validator sub-check raised or timed out."""

    def __init__(self, check: str, message: str):
        super().__init__(f"{check}: {message}")
        self.check = check


class PersonalizationUpdateFailure(PipelineError):
    """Profile or memory update after an interaction failed."""
