"""Per-job event feed endpoints."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Query
from sse_starlette.sse import EventSourceResponse

from job_escrow_service.core.state import get_app_state
from job_escrow_service.routers.validation import parse_int_param

router = APIRouter()


@router.get("/jobs/{job_id}/events")
async def list_events(
    job_id: str,
    after: str | None = Query(None),
    limit: str | None = Query(None),
) -> dict[str, Any]:
    """Return a job's events with ``event_id > after``, oldest first."""
    after_int = parse_int_param(after, "after", minimum=0) or 0
    limit_int = parse_int_param(limit, "limit", minimum=1)

    state = get_app_state()
    if state.engine is None:
        msg = "FulfillmentEngine not initialized"
        raise RuntimeError(msg)
    return state.engine.list_events(job_id, after_int, limit_int)


@router.get("/jobs/{job_id}/events/stream")
async def stream_events(job_id: str, last_event_id: int = Query(0)) -> EventSourceResponse:
    """Server-Sent Events stream of a job's events."""
    state = get_app_state()
    if state.engine is None:
        msg = "FulfillmentEngine not initialized"
        raise RuntimeError(msg)
    state.engine.ensure_job(job_id)
    return EventSourceResponse(
        state.engine.events.stream(job_id, last_event_id),
        headers={"X-Accel-Buffering": "no"},
    )
