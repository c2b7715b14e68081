"""Pipeline API endpoints: answer processing and feedback intake."""

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel

from tutor_guard.core.logging import get_logger
from tutor_guard.core.schemas_personalization import FeedbackRecord
from tutor_guard.core.schemas_pipeline import PipelineRequest, PipelineResult
from tutor_guard.services.pipeline_orchestrator import PipelineOrchestrator

logger = get_logger(__name__)

router = APIRouter()


class FeedbackAccepted(BaseModel):
    feedback_id: str
    queued: bool


def get_orchestrator(request: Request) -> PipelineOrchestrator:
    """Orchestrator owned by the running application."""
    orchestrator = getattr(request.app.state, "orchestrator", None)
    if orchestrator is None:
        raise HTTPException(status_code=503, detail="Pipeline not initialized")
    return orchestrator


@router.post("/process", response_model=PipelineResult)
async def process(
    payload: PipelineRequest,
    orchestrator: PipelineOrchestrator = Depends(get_orchestrator),
) -> PipelineResult:
    """
    Answer one learner message.

    The response is always a PipelineResult; generation outages and
    internal errors are reported through its status field.
    """
    return await orchestrator.process(payload)


@router.post("/feedback", response_model=FeedbackAccepted, status_code=202)
async def submit_feedback(
    payload: FeedbackRecord,
    orchestrator: PipelineOrchestrator = Depends(get_orchestrator),
) -> FeedbackAccepted:
    """Queue feedback for background personalization."""
    queued = orchestrator.submit_feedback(payload)
    if not queued:
        logger.warning(f"Feedback {payload.id} dropped: queue full")
    return FeedbackAccepted(feedback_id=payload.id, queued=queued)
