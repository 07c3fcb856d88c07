"""Escrow capture, completion confirmation, and dispute endpoints."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from job_escrow_service.core.state import get_app_state
from job_escrow_service.routers.validation import extract_actor, parse_json_body, require_field

router = APIRouter()


@router.post("/jobs/{job_id}/capture")
async def capture_hold(job_id: str, request: Request) -> JSONResponse:
    """Charge the requester's authorized hold."""
    data = parse_json_body(await request.body())
    actor_id = extract_actor(data)

    state = get_app_state()
    if state.engine is None:
        msg = "FulfillmentEngine not initialized"
        raise RuntimeError(msg)

    result = await state.engine.capture_hold(job_id, actor_id)
    return JSONResponse(status_code=200, content=result)


@router.post("/jobs/{job_id}/confirm")
async def confirm_completion(job_id: str, request: Request) -> JSONResponse:
    """Record a party's completion confirmation; the second one settles the job."""
    data = parse_json_body(await request.body())
    actor_id = extract_actor(data)

    state = get_app_state()
    if state.engine is None:
        msg = "FulfillmentEngine not initialized"
        raise RuntimeError(msg)

    result = await state.engine.confirm_completion(job_id, actor_id, data.get("party"))
    return JSONResponse(status_code=200, content=result)


@router.post("/jobs/{job_id}/dispute")
async def raise_dispute(job_id: str, request: Request) -> JSONResponse:
    data = parse_json_body(await request.body())
    actor_id = extract_actor(data)
    reason = require_field(data, "reason")

    state = get_app_state()
    if state.engine is None:
        msg = "FulfillmentEngine not initialized"
        raise RuntimeError(msg)

    result = await state.engine.raise_dispute(job_id, actor_id, reason)
    return JSONResponse(status_code=200, content=result)


@router.post("/jobs/{job_id}/resolve")
async def resolve_dispute(job_id: str, request: Request) -> JSONResponse:
    """Apply the adjudicator's release, refund, or split decision."""
    data = parse_json_body(await request.body())
    actor_id = extract_actor(data)
    outcome = require_field(data, "outcome")

    state = get_app_state()
    if state.engine is None:
        msg = "FulfillmentEngine not initialized"
        raise RuntimeError(msg)

    result = await state.engine.resolve_dispute(
        job_id, actor_id, outcome, data.get("refund_amount")
    )
    return JSONResponse(status_code=200, content=result)


@router.get("/jobs/{job_id}/escrow")
async def get_escrow_state(job_id: str) -> dict[str, Any]:
    state = get_app_state()
    if state.engine is None:
        msg = "FulfillmentEngine not initialized"
        raise RuntimeError(msg)
    return state.engine.get_escrow_state(job_id)
