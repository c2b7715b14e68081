"""API router for v1 endpoints."""

from fastapi import APIRouter

from tutor_guard.api import pipeline

router = APIRouter()

# Answer pipeline and feedback intake
router.include_router(pipeline.router, tags=["pipeline"])
