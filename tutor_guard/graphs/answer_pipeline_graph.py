"""LangGraph state machine for one answer pipeline run.

Topology:
  classify → retrieve → build_context → generate
                                          ├── ok → validate → decide
                                          │                    ├── accept → finalize → END
                                          │                    ├── retry → build_context (loop, adjusted context)
                                          │                    └── give_up → finalize → END (best candidate)
                                          ├── exhausted, no candidate yet → fallback → END
                                          └── exhausted on a retry → finalize → END (best candidate)

Nodes are methods on AnswerPipelineNodes so they can reach the collaborators
of one PipelineContext without module-level state.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from typing import Any, Literal

from langgraph.graph import END, StateGraph

from tutor_guard.context.context_builder import ContextBuilder
from tutor_guard.context.query_classifier import QueryClassifier
from tutor_guard.core.errors import GenerationExhausted, PersonalizationUpdateFailure
from tutor_guard.core.logging import get_logger
from tutor_guard.core.memory_retrieval import MemoryRetriever, RetrievalResult
from tutor_guard.core.personalization import PersonalizationEngine
from tutor_guard.core.pipeline_context import PipelineContext
from tutor_guard.core.response_validator import ResponseValidator, claims_to_avoid
from tutor_guard.core.schemas_personalization import CompletedInteraction, PersonalizationProfile
from tutor_guard.core.schemas_pipeline import (
    Classification,
    GenerationContext,
    GenerationResult,
    PersonalizationSummary,
    PipelineRequest,
)
from tutor_guard.core.schemas_validation import ValidationResult
from tutor_guard.services.feedback_worker import FeedbackWorker

logger = get_logger(__name__)

FALLBACK_MESSAGE = (
    "I'm sorry, I can't generate an answer right now because the answer service "
    "is temporarily unavailable. Please try again in a moment."
)


@dataclass
class Attempt:
    """One generated candidate and its validation."""

    result: GenerationResult
    validation: ValidationResult


@dataclass
class AnswerPipelineState:
    """State for the answer pipeline graph."""

    # Input
    request: PipelineRequest = None  # type: ignore[assignment]

    # Stage outputs
    classification: Classification | None = None
    retrieval: RetrievalResult | None = None
    profile: PersonalizationProfile | None = None
    context: GenerationContext | None = None
    candidate: GenerationResult | None = None
    validation: ValidationResult | None = None

    # Loop control
    attempts: int = 0
    history: list[Attempt] = field(default_factory=list)
    avoid_claims: list[str] = field(default_factory=list)
    generation_error: str | None = None
    action: Literal["pending", "accept", "retry", "give_up"] = "pending"

    # Output
    status: Literal["pending", "ok", "review", "fallback"] = "pending"
    final: Attempt | None = None
    personalization: PersonalizationSummary | None = None

    # Tracking
    degradations: list[str] = field(default_factory=list)
    timings: dict[str, float] = field(default_factory=dict)


def _elapsed_ms(start: float) -> float:
    return round((time.perf_counter() - start) * 1000, 3)


def _timed(state: AnswerPipelineState, stage: str, start: float) -> dict[str, float]:
    """New timings dict with this stage's time added (stages can repeat)."""
    timings = dict(state.timings)
    timings[stage] = round(timings.get(stage, 0.0) + _elapsed_ms(start), 3)
    return timings


def best_attempt(history: list[Attempt]) -> Attempt:
    """Highest validation score; earliest wins ties."""
    return max(history, key=lambda a: a.validation.validation_score)


class AnswerPipelineNodes:
    """Graph nodes bound to one PipelineContext."""

    def __init__(self, ctx: PipelineContext, worker: FeedbackWorker, engine: PersonalizationEngine):
        s = ctx.settings
        self.ctx = ctx
        self.settings = s
        self.classifier = QueryClassifier(s, ctx.intent_scorer)
        self.retriever = MemoryRetriever(s, ctx.memory_store, ctx.search_backend)
        self.builder = ContextBuilder(s.CONTEXT_BUDGET, s.CONTEXT_BUDGET_UNIT)
        self.validator = ResponseValidator(s, ctx.fact_verifier)
        self.engine = engine
        self.worker = worker

    # =========================================================================
    # Stages
    # =========================================================================

    async def classify(self, state: AnswerPipelineState) -> dict[str, Any]:
        start = time.perf_counter()
        classification = await self.classifier.classify(state.request)
        degradations = list(state.degradations)
        if classification.degraded:
            degradations.append("ClassificationDegraded")

        logger.info(
            f"Classified request: {classification.summary()}",
            extra={"request_id": state.request.request_id},
        )
        return {
            "classification": classification,
            "degradations": degradations,
            "timings": _timed(state, "classify", start),
        }

    async def _load_profile(self, owner_id: str) -> PersonalizationProfile | None:
        try:
            return await asyncio.wait_for(
                self.engine.load_profile(owner_id), timeout=self.settings.RETRIEVAL_TIMEOUT_S
            )
        except Exception as e:
            logger.warning(f"PersonalizationUpdateFailure: profile load failed: {e}")
            return None

    async def retrieve(self, state: AnswerPipelineState) -> dict[str, Any]:
        start = time.perf_counter()
        retrieval, profile = await asyncio.gather(
            self.retriever.retrieve(state.request, state.classification),
            self._load_profile(state.request.owner_id),
        )
        degradations = list(state.degradations) + retrieval.degradations
        if profile is None:
            degradations.append("PersonalizationUpdateFailure")
        return {
            "retrieval": retrieval,
            "profile": profile,
            "degradations": degradations,
            "timings": _timed(state, "retrieve", start),
        }

    async def build_context(self, state: AnswerPipelineState) -> dict[str, Any]:
        start = time.perf_counter()
        context = self.builder.build(
            state.request,
            state.classification,
            state.retrieval.records if state.retrieval else [],
            avoid_claims=state.avoid_claims,
            profile=state.profile,
        )
        logger.debug(
            f"Built context: {len(context.fragments)} fragments, {context.used}/{context.budget} {context.unit}",
            extra={"request_id": state.request.request_id},
        )
        return {"context": context, "timings": _timed(state, "build_context", start)}

    async def generate(self, state: AnswerPipelineState) -> dict[str, Any]:
        start = time.perf_counter()
        attempts = state.attempts + 1
        try:
            candidate = await self.ctx.generation_chain.generate(state.context)
        except GenerationExhausted as e:
            return {
                "candidate": None,
                "attempts": attempts,
                "generation_error": str(e),
                "action": "give_up",
                "degradations": list(state.degradations) + ["GenerationExhausted"],
                "timings": _timed(state, "generate", start),
            }

        logger.info(
            f"Generated candidate {attempts} with {candidate.provider}/{candidate.model_id}",
            extra={"request_id": state.request.request_id},
        )
        return {
            "candidate": candidate,
            "attempts": attempts,
            "generation_error": None,
            "timings": _timed(state, "generate", start),
        }

    async def validate(self, state: AnswerPipelineState) -> dict[str, Any]:
        start = time.perf_counter()
        validation = await self.validator.validate(
            state.candidate.text,
            state.context,
            state.classification,
            list(state.request.conversation_history),
        )
        logger.info(
            f"Validated candidate {state.attempts}: valid={validation.is_valid} "
            f"score={validation.validation_score:.2f}",
            extra={"request_id": state.request.request_id},
        )
        return {
            "validation": validation,
            "history": state.history + [Attempt(result=state.candidate, validation=validation)],
            "timings": _timed(state, "validate", start),
        }

    async def decide(self, state: AnswerPipelineState) -> dict[str, Any]:
        start = time.perf_counter()
        validation = state.validation
        regenerations_used = state.attempts - 1

        if validation.is_valid:
            action = "accept"
            avoid = state.avoid_claims
        elif regenerations_used < self.settings.MAX_REGENERATIONS:
            action = "retry"
            avoid = list(
                dict.fromkeys(
                    state.avoid_claims
                    + claims_to_avoid(validation, self.settings.CONTRADICTION_SEVERITY_THRESHOLD)
                )
            )
        else:
            action = "give_up"
            avoid = state.avoid_claims

        logger.info(
            f"Decision after attempt {state.attempts}: {action}",
            extra={"request_id": state.request.request_id},
        )
        return {"action": action, "avoid_claims": avoid, "timings": _timed(state, "decide", start)}

    async def fallback(self, state: AnswerPipelineState) -> dict[str, Any]:
        logger.error(
            f"Returning fallback message: {state.generation_error}",
            extra={"request_id": state.request.request_id},
        )
        return {"status": "fallback"}

    async def finalize(self, state: AnswerPipelineState) -> dict[str, Any]:
        start = time.perf_counter()
        if state.action == "accept":
            final = state.history[-1]
        else:
            final = best_attempt(state.history)

        validation = final.validation
        accepted = validation.is_valid and validation.confidence_score.recommendation == "accept"
        status = "ok" if accepted else "review"

        degradations = list(state.degradations)
        personalization = PersonalizationSummary()
        try:
            if state.profile is not None:
                personalization = self.engine.preview(
                    state.profile, state.request.message, state.classification
                )
            self._hand_off(state, final)
        except Exception as e:
            # Personalization never affects the returned response
            error = PersonalizationUpdateFailure(str(e))
            logger.warning(
                f"PersonalizationUpdateFailure: {error}",
                extra={"request_id": state.request.request_id},
            )
            degradations.append("PersonalizationUpdateFailure")

        return {
            "final": final,
            "status": status,
            "personalization": personalization,
            "degradations": degradations,
            "timings": _timed(state, "finalize", start),
        }

    def _hand_off(self, state: AnswerPipelineState, final: Attempt) -> None:
        """Queue the interaction for the background worker; never awaits its processing."""
        request = state.request
        interaction = CompletedInteraction(
            interaction_id=request.request_id,
            owner_id=request.owner_id,
            message=request.message,
            response=final.result.text,
            topic=state.classification.topic,
            subject=state.classification.subject,
            is_personal_query=state.classification.is_personal_query,
            conversation_id=request.conversation_id,
            confidence=final.validation.confidence_score.overall,
            validation_score=final.validation.validation_score,
            is_valid=final.validation.is_valid,
            processing_ms=sum(state.timings.values()),
        )
        if not self.worker.submit_interaction(interaction):
            raise PersonalizationUpdateFailure("feedback queue is full")


# =============================================================================
# Routing
# =============================================================================


def route_after_generate(state: AnswerPipelineState) -> str:
    if state.candidate is not None:
        return "validate"
    if state.history:
        return "finalize"
    return "fallback"


def route_after_decide(state: AnswerPipelineState) -> str:
    """Route based on action decision."""
    if state.action == "retry":
        return "build_context"
    return "finalize"


def build_answer_pipeline_graph(nodes: AnswerPipelineNodes):
    """Construct and compile the answer pipeline graph for one set of nodes."""
    graph = StateGraph(AnswerPipelineState)

    graph.add_node("classify", nodes.classify)
    graph.add_node("retrieve", nodes.retrieve)
    graph.add_node("build_context", nodes.build_context)
    graph.add_node("generate", nodes.generate)
    graph.add_node("validate", nodes.validate)
    graph.add_node("decide", nodes.decide)
    graph.add_node("fallback", nodes.fallback)
    graph.add_node("finalize", nodes.finalize)

    graph.add_edge("classify", "retrieve")
    graph.add_edge("retrieve", "build_context")
    graph.add_edge("build_context", "generate")
    graph.add_conditional_edges("generate", route_after_generate)
    graph.add_edge("validate", "decide")
    graph.add_conditional_edges("decide", route_after_decide)
    graph.add_edge("fallback", END)
    graph.add_edge("finalize", END)

    graph.set_entry_point("classify")

    return graph.compile()
