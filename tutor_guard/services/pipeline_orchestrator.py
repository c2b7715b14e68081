"""Pipeline orchestrator: the single outbound entry point of the answer core.

process() runs the answer graph for one request and always returns a
PipelineResult envelope. Total generation failure yields a labelled fallback
message; an unexpected error yields a "failed" envelope of the same shape.
Cancellation is never absorbed.
"""

from __future__ import annotations

import logging
import time
from typing import Any

from tutor_guard.core.logging import get_logger, log_with_context
from tutor_guard.core.memory_storage import store_memory
from tutor_guard.core.personalization import PersonalizationEngine
from tutor_guard.core.pipeline_context import PipelineContext
from tutor_guard.core.schemas_memory import MemoryRecord
from tutor_guard.core.schemas_personalization import FeedbackRecord
from tutor_guard.core.schemas_pipeline import (
    MemoryContextSummary,
    PersonalizationSummary,
    PipelineRequest,
    PipelineResult,
    TimingInfo,
)
from tutor_guard.core.schemas_validation import ValidationResult
from tutor_guard.graphs.answer_pipeline_graph import (
    FALLBACK_MESSAGE,
    AnswerPipelineNodes,
    build_answer_pipeline_graph,
)
from tutor_guard.services.feedback_worker import FeedbackWorker

logger = get_logger(__name__)

FAILED_MESSAGE = (
    "I'm sorry, something went wrong while preparing your answer. Please try again."
)

# Graph steps outside the regeneration loop, and per loop iteration
BASE_STEPS = 8
STEPS_PER_ATTEMPT = 4


class PipelineOrchestrator:
    """Coordinates classification, retrieval, generation, validation and personalization.

    Args:
        ctx: Collaborators for this orchestrator; a feedback worker is created
            when the context does not supply one
    """

    def __init__(self, ctx: PipelineContext):
        self.ctx = ctx
        self.settings = ctx.settings
        self.engine = PersonalizationEngine(ctx.settings, ctx.memory_store, ctx.profile_store)
        if ctx.feedback_worker is None:
            ctx.feedback_worker = FeedbackWorker(
                self.engine,
                queue_size=ctx.settings.FEEDBACK_QUEUE_SIZE,
                max_attempts=ctx.settings.FEEDBACK_MAX_ATTEMPTS,
            )
        self.worker = ctx.feedback_worker
        self.nodes = AnswerPipelineNodes(ctx, self.worker, self.engine)
        self.graph = build_answer_pipeline_graph(self.nodes)

    @property
    def recursion_limit(self) -> int:
        return BASE_STEPS + STEPS_PER_ATTEMPT * (self.settings.MAX_REGENERATIONS + 1)

    async def process(self, request: PipelineRequest) -> PipelineResult:
        """
        Run the pipeline for one request.

        Args:
            request: Immutable pipeline input

        Returns:
            PipelineResult; callers never need a separate error path
        """
        start = time.perf_counter()
        log_with_context(
            logger,
            logging.INFO,
            "Processing request",
            request_id=request.request_id,
            owner_id=request.owner_id,
        )

        try:
            final_state = await self.graph.ainvoke(
                {"request": request},
                config={"recursion_limit": self.recursion_limit},
            )
        except Exception as e:
            logger.exception(
                f"Pipeline failed unexpectedly: {e}", extra={"request_id": request.request_id}
            )
            return self._failed_result(request, start, e)

        result = self._to_result(request, final_state, start)
        log_with_context(
            logger,
            logging.INFO,
            f"Request finished with status {result.status}",
            request_id=request.request_id,
            attempts=result.attempts,
            total_ms=result.timing.total_ms,
        )
        return result

    def _to_result(
        self, request: PipelineRequest, state: dict[str, Any], start: float
    ) -> PipelineResult:
        retrieval = state.get("retrieval")
        memory_context = MemoryContextSummary()
        if retrieval is not None:
            memory_context = MemoryContextSummary(
                memories_found=len(retrieval.memories),
                summary=retrieval.summary(),
                memory_ids=[m.record.id for m in retrieval.memories],
            )

        timing = TimingInfo(
            per_stage_ms=state.get("timings", {}),
            total_ms=round((time.perf_counter() - start) * 1000, 3),
        )
        common = dict(
            request_id=request.request_id,
            classification=state.get("classification"),
            memory_context=memory_context,
            timing=timing,
            attempts=state.get("attempts", 0),
            degradations=list(dict.fromkeys(state.get("degradations", []))),
        )

        if state.get("status") == "fallback":
            return PipelineResult(
                status="fallback",
                content=FALLBACK_MESSAGE,
                validation=ValidationResult.unavailable(
                    state.get("generation_error") or "generation unavailable"
                ),
                metadata={"fallback_reason": state.get("generation_error")},
                **common,
            )

        final = state["final"]
        return PipelineResult(
            status=state["status"],
            content=final.result.text,
            validation=final.validation,
            personalization=state.get("personalization") or PersonalizationSummary(),
            model_id=final.result.model_id,
            provider=final.result.provider,
            metadata={
                "token_counts": final.result.token_counts,
                "generation_latency_ms": final.result.latency_ms,
                "avoided_claims": state.get("avoid_claims", []),
            },
            **common,
        )

    def _failed_result(self, request: PipelineRequest, start: float, error: Exception) -> PipelineResult:
        return PipelineResult(
            request_id=request.request_id,
            status="failed",
            content=FAILED_MESSAGE,
            validation=ValidationResult.unavailable(f"pipeline error: {type(error).__name__}"),
            timing=TimingInfo(total_ms=round((time.perf_counter() - start) * 1000, 3)),
            metadata={"error": str(error)},
        )

    # =========================================================================
    # Feedback intake and explicit storage
    # =========================================================================

    def submit_feedback(self, feedback: FeedbackRecord) -> bool:
        """Hand a feedback record to the background worker. Never blocks."""
        accepted = self.worker.submit_feedback(feedback)
        logger.info(
            f"Feedback {feedback.id} {'queued' if accepted else 'dropped'}",
            extra={"owner_id": feedback.owner_id},
        )
        return accepted

    async def store_memory(self, owner_id: str, content: str, **kwargs: Any) -> MemoryRecord:
        """Explicitly store a memory for an owner."""
        return await store_memory(self.ctx.memory_store, owner_id, content, **kwargs)

    async def drain(self, timeout: float | None = None) -> None:
        """Wait for queued personalization work to settle."""
        await self.worker.drain(timeout)

    async def close(self) -> None:
        await self.worker.stop()
