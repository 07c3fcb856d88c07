"""Contractor profile endpoints for the matching index."""

from __future__ import annotations

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from job_escrow_service.core.state import get_app_state
from job_escrow_service.routers.validation import parse_json_body, require_field

router = APIRouter()


@router.put("/contractors/{contractor_id}")
async def register_contractor(contractor_id: str, request: Request) -> JSONResponse:
    """Create or replace a contractor's categories, service area, and availability."""
    data = parse_json_body(await request.body())

    state = get_app_state()
    if state.engine is None:
        msg = "FulfillmentEngine not initialized"
        raise RuntimeError(msg)

    result = state.engine.register_contractor(contractor_id, data)
    return JSONResponse(status_code=200, content=result)


@router.post("/contractors/{contractor_id}/availability")
async def set_availability(contractor_id: str, request: Request) -> JSONResponse:
    """Toggle whether a contractor is taking new jobs."""
    data = parse_json_body(await request.body())
    available = require_field(data, "available")

    state = get_app_state()
    if state.engine is None:
        msg = "FulfillmentEngine not initialized"
        raise RuntimeError(msg)

    result = state.engine.set_availability(contractor_id, available)
    return JSONResponse(status_code=200, content=result)
