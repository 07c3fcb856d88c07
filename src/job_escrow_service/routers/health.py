"""Health check endpoint."""

from __future__ import annotations

from fastapi import APIRouter

from job_escrow_service.core.state import get_app_state
from job_escrow_service.schemas import HealthResponse

router = APIRouter()


@router.get("/health", response_model=HealthResponse)
async def health_check() -> HealthResponse:
    """Check service health and return job statistics."""
    state = get_app_state()
    jobs_by_status: dict[str, int] = {}
    if state.engine is not None:
        jobs_by_status = state.engine.count_jobs_by_status()
    return HealthResponse(
        status="ok",
        uptime_seconds=state.uptime_seconds,
        started_at=state.started_at,
        total_jobs=sum(jobs_by_status.values()),
        jobs_by_status=jobs_by_status,
    )
