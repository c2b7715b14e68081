"""FastAPI application entry point."""

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.responses import JSONResponse

from tutor_guard.api import router as api_router
from tutor_guard.core.config import get_settings
from tutor_guard.core.logging import get_logger
from tutor_guard.core.pipeline_context import PipelineContext
from tutor_guard.services.pipeline_orchestrator import PipelineOrchestrator

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    settings = get_settings()
    orchestrator = PipelineOrchestrator(PipelineContext.from_settings(settings))
    app.state.orchestrator = orchestrator
    logger.info(f"Tutor Guard started ({settings.TUTOR_GUARD_ENV})")
    try:
        yield
    finally:
        await orchestrator.close()
        app.state.orchestrator = None


app = FastAPI(
    title="Tutor Guard",
    description="Validated, personalized answer pipeline for an AI tutoring assistant",
    version="0.1.0",
    lifespan=lifespan,
)


@app.get("/health")
async def health_check() -> JSONResponse:
    """Health check endpoint."""
    return JSONResponse(content={"status": "ok"}, status_code=200)


# Include v1 API router
app.include_router(api_router, prefix="/v1", tags=["v1"])
