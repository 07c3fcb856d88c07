"""Job creation, lookup, matching, and status endpoints."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from job_escrow_service.core.state import get_app_state
from job_escrow_service.routers.validation import (
    extract_actor,
    parse_int_param,
    parse_json_body,
    require_field,
)

router = APIRouter()


# ---------------------------------------------------------------------------
# POST /jobs, GET /jobs (before GET /jobs/{job_id})
# ---------------------------------------------------------------------------


@router.post("/jobs", status_code=201)
async def create_job(request: Request) -> JSONResponse:
    """Post a new job; it starts out open."""
    data = parse_json_body(await request.body())
    requester_id = extract_actor(data, "requester_id")

    state = get_app_state()
    if state.engine is None:
        msg = "FulfillmentEngine not initialized"
        raise RuntimeError(msg)

    result = state.engine.create_job(
        requester_id,
        category=data.get("category"),
        priority=data.get("priority", "standard"),
        location=data.get("location"),
        description=data.get("description"),
    )
    return JSONResponse(status_code=201, content=result)


@router.get("/jobs")
async def list_jobs(request: Request) -> dict[str, Any]:
    """List jobs with optional filters."""
    params = request.query_params
    limit = parse_int_param(params.get("limit"), "limit", minimum=1)
    offset = parse_int_param(params.get("offset"), "offset", minimum=0)

    state = get_app_state()
    if state.engine is None:
        msg = "FulfillmentEngine not initialized"
        raise RuntimeError(msg)

    jobs = state.engine.list_jobs(
        status=params.get("status"),
        requester_id=params.get("requester_id"),
        contractor_id=params.get("contractor_id"),
        limit=limit,
        offset=offset,
    )
    return {"jobs": jobs}


# ---------------------------------------------------------------------------
# Single job
# ---------------------------------------------------------------------------


@router.get("/jobs/{job_id}")
async def get_job(job_id: str) -> dict[str, Any]:
    state = get_app_state()
    if state.engine is None:
        msg = "FulfillmentEngine not initialized"
        raise RuntimeError(msg)
    return state.engine.get_job(job_id)


@router.get("/jobs/{job_id}/eligible-contractors")
async def list_eligible_contractors(job_id: str) -> dict[str, Any]:
    """Contractors who may bid: category, service area, and availability match."""
    state = get_app_state()
    if state.engine is None:
        msg = "FulfillmentEngine not initialized"
        raise RuntimeError(msg)
    return state.engine.list_eligible_contractors(job_id)


@router.post("/jobs/{job_id}/transition")
async def transition_job(job_id: str, request: Request) -> JSONResponse:
    """Move a job along an actor-initiated status edge."""
    data = parse_json_body(await request.body())
    actor_id = extract_actor(data)
    status = require_field(data, "status")

    state = get_app_state()
    if state.engine is None:
        msg = "FulfillmentEngine not initialized"
        raise RuntimeError(msg)

    result = await state.engine.transition_job_status(
        job_id, status, actor_id, reason=data.get("reason")
    )
    return JSONResponse(status_code=200, content=result)
