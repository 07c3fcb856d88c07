"""Bid, direct offer, and proposal decision endpoints."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from job_escrow_service.core.state import get_app_state
from job_escrow_service.routers.validation import extract_actor, parse_json_body, require_field

router = APIRouter()


# ---------------------------------------------------------------------------
# Proposals on a job
# ---------------------------------------------------------------------------


@router.post("/jobs/{job_id}/proposals", status_code=201)
async def submit_proposal(job_id: str, request: Request) -> JSONResponse:
    """Submit a contractor's bid."""
    data = parse_json_body(await request.body())
    contractor_id = extract_actor(data)
    amount = require_field(data, "amount")

    state = get_app_state()
    if state.engine is None:
        msg = "FulfillmentEngine not initialized"
        raise RuntimeError(msg)

    result = state.engine.submit_proposal(job_id, contractor_id, amount)
    return JSONResponse(status_code=201, content=result)


@router.post("/jobs/{job_id}/direct-offers", status_code=201)
async def create_direct_offer(job_id: str, request: Request) -> JSONResponse:
    """Offer the job to one contractor at a fixed price."""
    data = parse_json_body(await request.body())
    requester_id = extract_actor(data)
    contractor_id = extract_actor(data, "contractor_id")
    amount = require_field(data, "amount")

    state = get_app_state()
    if state.engine is None:
        msg = "FulfillmentEngine not initialized"
        raise RuntimeError(msg)

    result = state.engine.create_direct_offer(job_id, requester_id, contractor_id, amount)
    return JSONResponse(status_code=201, content=result)


@router.get("/jobs/{job_id}/proposals")
async def list_proposals(job_id: str) -> dict[str, Any]:
    state = get_app_state()
    if state.engine is None:
        msg = "FulfillmentEngine not initialized"
        raise RuntimeError(msg)
    return {"job_id": job_id, "proposals": state.engine.list_proposals(job_id)}


# ---------------------------------------------------------------------------
# Decisions
# ---------------------------------------------------------------------------


@router.post("/proposals/{proposal_id}/accept")
async def accept_proposal(proposal_id: str, request: Request) -> JSONResponse:
    """Accept a proposal: assigns the job and places the escrow hold."""
    data = parse_json_body(await request.body())
    actor_id = extract_actor(data)

    state = get_app_state()
    if state.engine is None:
        msg = "FulfillmentEngine not initialized"
        raise RuntimeError(msg)

    result = await state.engine.accept_proposal(proposal_id, actor_id)
    return JSONResponse(status_code=200, content=result)


@router.post("/proposals/{proposal_id}/reject")
async def reject_proposal(proposal_id: str, request: Request) -> JSONResponse:
    data = parse_json_body(await request.body())
    actor_id = extract_actor(data)

    state = get_app_state()
    if state.engine is None:
        msg = "FulfillmentEngine not initialized"
        raise RuntimeError(msg)

    result = state.engine.reject_proposal(proposal_id, actor_id)
    return JSONResponse(status_code=200, content=result)


@router.post("/proposals/{proposal_id}/withdraw")
async def withdraw_proposal(proposal_id: str, request: Request) -> JSONResponse:
    data = parse_json_body(await request.body())
    actor_id = extract_actor(data)

    state = get_app_state()
    if state.engine is None:
        msg = "FulfillmentEngine not initialized"
        raise RuntimeError(msg)

    result = state.engine.withdraw_proposal(proposal_id, actor_id)
    return JSONResponse(status_code=200, content=result)


@router.post("/proposals/{proposal_id}/counter", status_code=201)
async def counter_proposal(proposal_id: str, request: Request) -> JSONResponse:
    """Counter a direct offer with a new price."""
    data = parse_json_body(await request.body())
    actor_id = extract_actor(data)
    amount = require_field(data, "amount")

    state = get_app_state()
    if state.engine is None:
        msg = "FulfillmentEngine not initialized"
        raise RuntimeError(msg)

    result = state.engine.counter_proposal(proposal_id, actor_id, amount)
    return JSONResponse(status_code=201, content=result)
