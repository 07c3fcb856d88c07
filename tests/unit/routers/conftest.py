"""Router test fixtures with a mocked payment processor."""

from __future__ import annotations

import os
from typing import TYPE_CHECKING, Any, cast
from unittest.mock import AsyncMock

import pytest
from httpx import ASGITransport, AsyncClient

from job_escrow_service.app import create_app
from job_escrow_service.config import clear_settings_cache
from job_escrow_service.core.lifespan import lifespan
from job_escrow_service.core.state import get_app_state, reset_app_state
from tests.helpers import (
    CONTRACTOR_ID,
    OAKLAND,
    REQUESTER_ID,
    SF_LOCATION,
    make_processor,
    write_config,
)

if TYPE_CHECKING:
    from collections.abc import AsyncIterator
    from pathlib import Path


# ---------------------------------------------------------------------------
# App + client fixtures
# ---------------------------------------------------------------------------
@pytest.fixture
def max_body_size() -> int:
    """Request body limit written into the test config. Override per module."""
    return 1048576


@pytest.fixture
async def app(tmp_path: Path, max_body_size: int) -> AsyncIterator[Any]:
    """Create a test app with a temp database and a mocked payment processor."""
    config_path = write_config(tmp_path, max_body_size=max_body_size)

    old_config = os.environ.get("CONFIG_PATH")
    os.environ["CONFIG_PATH"] = str(config_path)

    clear_settings_cache()
    reset_app_state()

    test_app = create_app()
    async with lifespan(test_app):
        # AppState forwards the replacement processor to the engine
        state = get_app_state()
        state.payment_processor = make_processor()

        yield test_app

    reset_app_state()
    clear_settings_cache()
    if old_config is None:
        os.environ.pop("CONFIG_PATH", None)
    else:
        os.environ["CONFIG_PATH"] = old_config


@pytest.fixture
async def client(app: Any) -> AsyncIterator[AsyncClient]:
    """Create an async HTTP client for the test app."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c


@pytest.fixture
def processor(_app: Any) -> AsyncMock:
    """The mocked payment processor wired into the running app."""
    return cast("AsyncMock", get_app_state().payment_processor)


# ---------------------------------------------------------------------------
# Lifecycle helpers
# ---------------------------------------------------------------------------
async def register_contractor(
    client: AsyncClient,
    contractor_id: str = CONTRACTOR_ID,
    *,
    categories: list[str] | None = None,
    base: tuple[float, float] = OAKLAND,
) -> dict[str, Any]:
    """Register a contractor based at ``base`` with a 25 mile radius."""
    response = await client.put(
        f"/contractors/{contractor_id}",
        json={
            "categories": categories if categories is not None else ["Plumbing"],
            "latitude": base[0],
            "longitude": base[1],
            "service_radius_miles": 25.0,
        },
    )
    assert response.status_code == 200, response.text
    return response.json()


async def create_job(
    client: AsyncClient,
    requester_id: str = REQUESTER_ID,
    **overrides: Any,
) -> dict[str, Any]:
    """Post a Plumbing job in San Francisco and return its JSON."""
    payload: dict[str, Any] = {
        "requester_id": requester_id,
        "category": "Plumbing",
        "priority": "urgent",
        "location": dict(SF_LOCATION),
        "description": "Burst pipe under the kitchen sink",
    }
    payload.update(overrides)
    response = await client.post("/jobs", json=payload)
    assert response.status_code == 201, response.text
    return response.json()


async def submit_bid(
    client: AsyncClient,
    job_id: str,
    contractor_id: str = CONTRACTOR_ID,
    amount: int = 10000,
) -> dict[str, Any]:
    response = await client.post(
        f"/jobs/{job_id}/proposals",
        json={"actor_id": contractor_id, "amount": amount},
    )
    assert response.status_code == 201, response.text
    return response.json()


async def assign_job(
    client: AsyncClient,
    amount: int = 10000,
    contractor_id: str = CONTRACTOR_ID,
) -> dict[str, Any]:
    """Register, post, bid, and accept. Returns the accepted job's JSON."""
    await register_contractor(client, contractor_id)
    job = await create_job(client)
    proposal = await submit_bid(client, job["job_id"], contractor_id, amount)
    response = await client.post(
        f"/proposals/{proposal['proposal_id']}/accept",
        json={"actor_id": REQUESTER_ID},
    )
    assert response.status_code == 200, response.text
    return response.json()["job"]


async def transition(
    client: AsyncClient,
    job_id: str,
    status: str,
    actor_id: str,
    **extra: Any,
) -> Any:
    return await client.post(
        f"/jobs/{job_id}/transition",
        json={"status": status, "actor_id": actor_id, **extra},
    )


async def complete_job(
    client: AsyncClient,
    amount: int = 10000,
    contractor_id: str = CONTRACTOR_ID,
) -> dict[str, Any]:
    """Drive a job to work_complete over HTTP."""
    job = await assign_job(client, amount, contractor_id)
    for status in ("in_progress", "work_complete"):
        response = await transition(client, job["job_id"], status, contractor_id)
        assert response.status_code == 200, response.text
    return response.json()
