"""Bid, direct offer, counter, and decision endpoint tests."""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest

from job_escrow_service.core.exceptions import PaymentFailure
from tests.helpers import CONTRACTOR_ID, LOS_ANGELES, OTHER_CONTRACTOR_ID, REQUESTER_ID
from tests.unit.routers.conftest import create_job, register_contractor, submit_bid


async def _accept(client, proposal_id: str, actor_id: str = REQUESTER_ID):
    return await client.post(f"/proposals/{proposal_id}/accept", json={"actor_id": actor_id})


@pytest.mark.unit
async def test_submit_bid_returns_pending_proposal(client):
    await register_contractor(client)
    job = await create_job(client)

    proposal = await submit_bid(client, job["job_id"], amount=15000)

    assert proposal["proposal_id"].startswith("prop-")
    assert proposal["status"] == "pending"
    assert proposal["origin"] == "bid"
    assert proposal["amount"] == 15000

    listing = (await client.get(f"/jobs/{job['job_id']}/proposals")).json()
    assert listing["job_id"] == job["job_id"]
    assert [p["proposal_id"] for p in listing["proposals"]] == [proposal["proposal_id"]]


@pytest.mark.unit
async def test_bid_from_out_of_area_contractor_is_refused(client):
    await register_contractor(client, base=LOS_ANGELES)
    job = await create_job(client)

    response = await client.post(
        f"/jobs/{job['job_id']}/proposals", json={"actor_id": CONTRACTOR_ID, "amount": 100}
    )
    assert response.status_code == 403
    assert response.json()["error"] == "NOT_ELIGIBLE"


@pytest.mark.unit
@pytest.mark.parametrize("amount", [0, -5, 10.5, "100", True])
async def test_bid_amount_must_be_positive_integer_cents(client, amount):
    await register_contractor(client)
    job = await create_job(client)

    response = await client.post(
        f"/jobs/{job['job_id']}/proposals", json={"actor_id": CONTRACTOR_ID, "amount": amount}
    )
    assert response.status_code == 400
    assert response.json()["error"] == "INVALID_AMOUNT"


@pytest.mark.unit
async def test_duplicate_pending_bid_conflicts(client):
    await register_contractor(client)
    job = await create_job(client)
    await submit_bid(client, job["job_id"])

    response = await client.post(
        f"/jobs/{job['job_id']}/proposals", json={"actor_id": CONTRACTOR_ID, "amount": 9000}
    )
    assert response.status_code == 409
    assert response.json()["error"] == "DUPLICATE_PROPOSAL"


@pytest.mark.unit
async def test_accept_assigns_job_and_places_hold(client, processor):
    await register_contractor(client)
    await register_contractor(client, OTHER_CONTRACTOR_ID)
    job = await create_job(client)
    chosen = await submit_bid(client, job["job_id"], amount=18000)
    other = await submit_bid(client, job["job_id"], OTHER_CONTRACTOR_ID, 19000)

    response = await _accept(client, chosen["proposal_id"])

    assert response.status_code == 200
    data = response.json()
    assert data["job"]["status"] == "assigned"
    assert data["job"]["assigned_contractor_id"] == CONTRACTOR_ID
    assert data["job"]["accepted_amount"] == 18000
    assert data["hold"]["amount"] == 18000
    assert data["hold"]["status"] == "held"
    processor.authorize.assert_awaited_once()

    proposals = (await client.get(f"/jobs/{job['job_id']}/proposals")).json()["proposals"]
    statuses = {p["proposal_id"]: p["status"] for p in proposals}
    assert statuses == {chosen["proposal_id"]: "accepted", other["proposal_id"]: "rejected"}

    again = await _accept(client, other["proposal_id"])
    assert again.status_code == 409


@pytest.mark.unit
async def test_only_requester_may_accept_a_bid(client):
    await register_contractor(client)
    job = await create_job(client)
    proposal = await submit_bid(client, job["job_id"])

    response = await _accept(client, proposal["proposal_id"], CONTRACTOR_ID)
    assert response.status_code == 403


@pytest.mark.unit
async def test_declined_authorization_leaves_job_open(client, processor):
    processor.authorize = AsyncMock(
        side_effect=PaymentFailure("PAYMENT_DECLINED", "Card declined")
    )
    await register_contractor(client)
    job = await create_job(client)
    proposal = await submit_bid(client, job["job_id"])

    response = await _accept(client, proposal["proposal_id"])

    assert response.status_code == 502
    assert response.json()["error"] == "PAYMENT_DECLINED"
    current = (await client.get(f"/jobs/{job['job_id']}")).json()
    assert current["status"] == "open"
    escrow = (await client.get(f"/jobs/{job['job_id']}/escrow")).json()
    assert escrow["hold"] is None


@pytest.mark.unit
async def test_reject_and_withdraw(client):
    await register_contractor(client)
    await register_contractor(client, OTHER_CONTRACTOR_ID)
    job = await create_job(client)
    first = await submit_bid(client, job["job_id"])
    second = await submit_bid(client, job["job_id"], OTHER_CONTRACTOR_ID)

    rejected = await client.post(
        f"/proposals/{first['proposal_id']}/reject", json={"actor_id": REQUESTER_ID}
    )
    assert rejected.status_code == 200
    assert rejected.json()["status"] == "rejected"

    wrong_author = await client.post(
        f"/proposals/{second['proposal_id']}/withdraw", json={"actor_id": CONTRACTOR_ID}
    )
    assert wrong_author.status_code == 403

    withdrawn = await client.post(
        f"/proposals/{second['proposal_id']}/withdraw", json={"actor_id": OTHER_CONTRACTOR_ID}
    )
    assert withdrawn.status_code == 200
    assert withdrawn.json()["status"] == "withdrawn"


@pytest.mark.unit
async def test_direct_offer_countered_then_accepted(client):
    await register_contractor(client)
    job = await create_job(client)

    offer = await client.post(
        f"/jobs/{job['job_id']}/direct-offers",
        json={"actor_id": REQUESTER_ID, "contractor_id": CONTRACTOR_ID, "amount": 8000},
    )
    assert offer.status_code == 201
    assert offer.json()["origin"] == "direct_offer"

    counter = await client.post(
        f"/proposals/{offer.json()['proposal_id']}/counter",
        json={"actor_id": CONTRACTOR_ID, "amount": 9500},
    )
    assert counter.status_code == 201
    assert counter.json()["origin"] == "counter"
    assert counter.json()["counters_proposal_id"] == offer.json()["proposal_id"]

    accepted = await _accept(client, counter.json()["proposal_id"])
    assert accepted.status_code == 200
    assert accepted.json()["job"]["accepted_amount"] == 9500


@pytest.mark.unit
async def test_direct_offer_accepted_by_contractor(client):
    await register_contractor(client)
    job = await create_job(client)
    offer = await client.post(
        f"/jobs/{job['job_id']}/direct-offers",
        json={"actor_id": REQUESTER_ID, "contractor_id": CONTRACTOR_ID, "amount": 8000},
    )

    by_requester = await _accept(client, offer.json()["proposal_id"])
    assert by_requester.status_code == 403

    by_contractor = await _accept(client, offer.json()["proposal_id"], CONTRACTOR_ID)
    assert by_contractor.status_code == 200
    assert by_contractor.json()["job"]["assigned_contractor_id"] == CONTRACTOR_ID


@pytest.mark.unit
async def test_unknown_proposal_is_not_found(client):
    response = await _accept(client, "prop-missing")
    assert response.status_code == 404
