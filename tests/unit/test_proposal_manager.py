"""Unit tests for ProposalManager."""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest

from job_escrow_service.core.exceptions import (
    ConflictError,
    InvalidStateError,
    NotAuthorizedError,
    NotEligibleError,
    PaymentFailure,
    ValidationError,
)
from job_escrow_service.models import HoldStatus, JobStatus, ProposalOrigin, ProposalStatus
from tests.helpers import (
    CONTRACTOR_ID,
    LOS_ANGELES,
    OTHER_CONTRACTOR_ID,
    REQUESTER_ID,
    build_harness,
    create_job,
    event_types,
    register_contractor,
)


@pytest.mark.unit
def test_eligible_contractor_submits_bid(tmp_path) -> None:
    harness = build_harness(tmp_path)
    register_contractor(harness)
    job = create_job(harness)

    proposal = harness.proposals.submit(job.job_id, CONTRACTOR_ID, 12500)

    assert proposal.status is ProposalStatus.PENDING
    assert proposal.origin is ProposalOrigin.BID
    assert harness.proposals.list_for_job(job.job_id) == [proposal]
    assert event_types(harness, job.job_id) == ["job.created", "proposal.submitted"]


@pytest.mark.unit
def test_out_of_area_contractor_is_not_eligible(tmp_path) -> None:
    harness = build_harness(tmp_path)
    register_contractor(harness, OTHER_CONTRACTOR_ID, base=LOS_ANGELES)
    job = create_job(harness)

    with pytest.raises(NotEligibleError) as exc_info:
        harness.proposals.submit(job.job_id, OTHER_CONTRACTOR_ID, 12500)

    assert exc_info.value.status_code == 403
    assert harness.proposals.list_for_job(job.job_id) == []


@pytest.mark.unit
@pytest.mark.parametrize("amount", [0, -5, 10.5, "100", True, None])
def test_bid_amount_must_be_positive_integer(tmp_path, amount) -> None:
    harness = build_harness(tmp_path)
    register_contractor(harness)
    job = create_job(harness)

    with pytest.raises(ValidationError) as exc_info:
        harness.proposals.submit(job.job_id, CONTRACTOR_ID, amount)
    assert exc_info.value.error == "INVALID_AMOUNT"


@pytest.mark.unit
def test_requester_cannot_bid_on_own_job(tmp_path) -> None:
    harness = build_harness(tmp_path)
    register_contractor(harness, REQUESTER_ID)
    job = create_job(harness)

    with pytest.raises(ValidationError) as exc_info:
        harness.proposals.submit(job.job_id, REQUESTER_ID, 100)
    assert exc_info.value.error == "SELF_PROPOSAL"


@pytest.mark.unit
def test_second_pending_bid_from_same_contractor_conflicts(tmp_path) -> None:
    harness = build_harness(tmp_path)
    register_contractor(harness)
    job = create_job(harness)
    harness.proposals.submit(job.job_id, CONTRACTOR_ID, 100)

    with pytest.raises(ConflictError) as exc_info:
        harness.proposals.submit(job.job_id, CONTRACTOR_ID, 90)
    assert exc_info.value.error == "DUPLICATE_PROPOSAL"


@pytest.mark.unit
def test_withdrawn_bid_allows_a_new_one(tmp_path) -> None:
    harness = build_harness(tmp_path)
    register_contractor(harness)
    job = create_job(harness)
    first = harness.proposals.submit(job.job_id, CONTRACTOR_ID, 100)

    withdrawn = harness.proposals.withdraw(first.proposal_id, CONTRACTOR_ID)
    assert withdrawn.status is ProposalStatus.WITHDRAWN

    second = harness.proposals.submit(job.job_id, CONTRACTOR_ID, 90)
    assert second.is_pending


@pytest.mark.unit
def test_only_requester_rejects_bid_and_only_author_withdraws(tmp_path) -> None:
    harness = build_harness(tmp_path)
    register_contractor(harness)
    job = create_job(harness)
    proposal = harness.proposals.submit(job.job_id, CONTRACTOR_ID, 100)

    with pytest.raises(NotAuthorizedError):
        harness.proposals.reject(proposal.proposal_id, CONTRACTOR_ID)
    with pytest.raises(NotAuthorizedError):
        harness.proposals.withdraw(proposal.proposal_id, REQUESTER_ID)

    rejected = harness.proposals.reject(proposal.proposal_id, REQUESTER_ID)
    assert rejected.status is ProposalStatus.REJECTED

    with pytest.raises(InvalidStateError) as exc_info:
        harness.proposals.withdraw(proposal.proposal_id, CONTRACTOR_ID)
    assert exc_info.value.error == "PROPOSAL_NOT_PENDING"


@pytest.mark.unit
async def test_accept_assigns_job_holds_funds_and_rejects_others(tmp_path) -> None:
    """Accepting one bid assigns the job, creates one hold, and closes the rest."""
    harness = build_harness(tmp_path)
    register_contractor(harness, CONTRACTOR_ID)
    register_contractor(harness, OTHER_CONTRACTOR_ID)
    job = create_job(harness)
    winner = harness.proposals.submit(job.job_id, CONTRACTOR_ID, 15000)
    loser = harness.proposals.submit(job.job_id, OTHER_CONTRACTOR_ID, 12000)

    assigned = await harness.proposals.accept(winner.proposal_id, REQUESTER_ID)

    assert assigned.status is JobStatus.ASSIGNED
    assert assigned.assignment is not None
    assert assigned.assignment.contractor_id == CONTRACTOR_ID
    assert assigned.assignment.amount == 15000
    assert harness.proposals.get(winner.proposal_id).status is ProposalStatus.ACCEPTED
    assert harness.proposals.get(loser.proposal_id).status is ProposalStatus.REJECTED
    assert harness.store.count_accepted_proposals(job.job_id) == 1

    hold = harness.ledger.get_hold_for_job(job.job_id)
    assert hold is not None
    assert hold.amount == 15000
    assert hold.status is HoldStatus.HELD
    harness.processor.authorize.assert_awaited_once_with(
        f"{job.job_id}:{winner.proposal_id}", 15000
    )

    types = event_types(harness, job.job_id)
    assert "proposal.accepted" in types
    assert "escrow.held" in types
    assert types.count("proposal.rejected") == 1


@pytest.mark.unit
async def test_accept_by_non_requester_is_refused(tmp_path) -> None:
    harness = build_harness(tmp_path)
    register_contractor(harness)
    job = create_job(harness)
    proposal = harness.proposals.submit(job.job_id, CONTRACTOR_ID, 100)

    with pytest.raises(NotAuthorizedError):
        await harness.proposals.accept(proposal.proposal_id, CONTRACTOR_ID)
    harness.processor.authorize.assert_not_awaited()


@pytest.mark.unit
async def test_payment_failure_on_accept_leaves_everything_unchanged(tmp_path) -> None:
    harness = build_harness(tmp_path)
    harness.processor.authorize = AsyncMock(
        side_effect=PaymentFailure("PAYMENT_DECLINED", "Card declined")
    )
    register_contractor(harness)
    job = create_job(harness)
    proposal = harness.proposals.submit(job.job_id, CONTRACTOR_ID, 100)

    with pytest.raises(PaymentFailure):
        await harness.proposals.accept(proposal.proposal_id, REQUESTER_ID)

    assert harness.registry.get(job.job_id).status is JobStatus.OPEN
    assert harness.proposals.get(proposal.proposal_id).is_pending
    assert harness.ledger.get_hold_for_job(job.job_id) is None
    harness.processor.void.assert_not_awaited()


@pytest.mark.unit
async def test_processor_crash_on_accept_is_reported_as_payment_failure(tmp_path) -> None:
    harness = build_harness(tmp_path)
    harness.processor.authorize = AsyncMock(side_effect=ConnectionError("down"))
    register_contractor(harness)
    job = create_job(harness)
    proposal = harness.proposals.submit(job.job_id, CONTRACTOR_ID, 100)

    with pytest.raises(PaymentFailure) as exc_info:
        await harness.proposals.accept(proposal.proposal_id, REQUESTER_ID)
    assert exc_info.value.error == "PROCESSOR_UNAVAILABLE"
    assert harness.registry.get(job.job_id).status is JobStatus.OPEN


@pytest.mark.unit
async def test_failed_commit_voids_the_authorization(tmp_path, monkeypatch) -> None:
    harness = build_harness(tmp_path)
    register_contractor(harness)
    job = create_job(harness)
    proposal = harness.proposals.submit(job.job_id, CONTRACTOR_ID, 100)

    def _explode(*_args, **_kwargs):
        raise RuntimeError("disk full")

    monkeypatch.setattr(harness.ledger, "hold", _explode)

    with pytest.raises(RuntimeError, match="disk full"):
        await harness.proposals.accept(proposal.proposal_id, REQUESTER_ID)

    reference = f"{job.job_id}:{proposal.proposal_id}"
    harness.processor.void.assert_awaited_once_with(reference)
    assert harness.registry.get(job.job_id).status is JobStatus.OPEN
    assert harness.proposals.get(proposal.proposal_id).is_pending


@pytest.mark.unit
async def test_bid_on_assigned_job_is_refused(tmp_path) -> None:
    harness = build_harness(tmp_path)
    register_contractor(harness, CONTRACTOR_ID)
    register_contractor(harness, OTHER_CONTRACTOR_ID)
    job = create_job(harness)
    proposal = harness.proposals.submit(job.job_id, CONTRACTOR_ID, 100)
    await harness.proposals.accept(proposal.proposal_id, REQUESTER_ID)

    with pytest.raises(InvalidStateError) as exc_info:
        harness.proposals.submit(job.job_id, OTHER_CONTRACTOR_ID, 90)
    assert exc_info.value.error == "JOB_NOT_OPEN"


@pytest.mark.unit
async def test_direct_offer_is_decided_by_the_contractor(tmp_path) -> None:
    harness = build_harness(tmp_path)
    register_contractor(harness)
    job = create_job(harness)

    offer = harness.proposals.create_direct_offer(job.job_id, REQUESTER_ID, CONTRACTOR_ID, 8000)
    assert offer.origin is ProposalOrigin.DIRECT_OFFER

    with pytest.raises(NotAuthorizedError):
        await harness.proposals.accept(offer.proposal_id, REQUESTER_ID)

    assigned = await harness.proposals.accept(offer.proposal_id, CONTRACTOR_ID)
    assert assigned.status is JobStatus.ASSIGNED
    assert assigned.assignment is not None
    assert assigned.assignment.amount == 8000


@pytest.mark.unit
def test_direct_offer_requires_the_requester(tmp_path) -> None:
    harness = build_harness(tmp_path)
    register_contractor(harness)
    job = create_job(harness)

    with pytest.raises(NotAuthorizedError):
        harness.proposals.create_direct_offer(job.job_id, "a-impostor", CONTRACTOR_ID, 8000)


@pytest.mark.unit
async def test_counter_replaces_offer_with_requester_decided_bid(tmp_path) -> None:
    harness = build_harness(tmp_path)
    register_contractor(harness)
    job = create_job(harness)
    offer = harness.proposals.create_direct_offer(job.job_id, REQUESTER_ID, CONTRACTOR_ID, 8000)

    counter = harness.proposals.counter(offer.proposal_id, CONTRACTOR_ID, 9500)

    assert counter.origin is ProposalOrigin.COUNTER
    assert counter.counters_proposal_id == offer.proposal_id
    assert harness.proposals.get(offer.proposal_id).status is ProposalStatus.REJECTED

    with pytest.raises(NotAuthorizedError):
        await harness.proposals.accept(counter.proposal_id, CONTRACTOR_ID)
    assigned = await harness.proposals.accept(counter.proposal_id, REQUESTER_ID)
    assert assigned.assignment is not None
    assert assigned.assignment.amount == 9500


@pytest.mark.unit
def test_only_direct_offers_can_be_countered(tmp_path) -> None:
    harness = build_harness(tmp_path)
    register_contractor(harness)
    job = create_job(harness)
    bid = harness.proposals.submit(job.job_id, CONTRACTOR_ID, 100)

    with pytest.raises(InvalidStateError) as exc_info:
        harness.proposals.counter(bid.proposal_id, CONTRACTOR_ID, 120)
    assert exc_info.value.error == "NOT_A_DIRECT_OFFER"

    offer_job = create_job(harness)
    offer = harness.proposals.create_direct_offer(
        offer_job.job_id, REQUESTER_ID, CONTRACTOR_ID, 100
    )
    with pytest.raises(NotAuthorizedError):
        harness.proposals.counter(offer.proposal_id, OTHER_CONTRACTOR_ID, 120)
