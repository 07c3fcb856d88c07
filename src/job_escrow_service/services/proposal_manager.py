"""Bids, direct offers, counter-bids, and the acceptance path."""

from __future__ import annotations

import uuid
from dataclasses import replace
from datetime import UTC, datetime
from typing import TYPE_CHECKING, cast

from job_escrow_service.core.exceptions import (
    ConflictError,
    InvalidStateError,
    NotAuthorizedError,
    NotEligibleError,
    NotFoundError,
    ValidationError,
)
from job_escrow_service.logging import get_logger
from job_escrow_service.models import (
    Assignment,
    JobStatus,
    Proposal,
    ProposalOrigin,
    ProposalStatus,
    is_positive_int,
)
from job_escrow_service.services.store import DuplicateProposalError

if TYPE_CHECKING:
    from job_escrow_service.core.locks import JobLocks
    from job_escrow_service.models import Job
    from job_escrow_service.services.event_feed import EventFeed
    from job_escrow_service.services.job_registry import JobRegistry
    from job_escrow_service.services.matching_index import MatchingIndex
    from job_escrow_service.services.money_ledger import MoneyLedger
    from job_escrow_service.services.store import EngineStore


def _now_iso() -> str:
    return datetime.now(UTC).isoformat(timespec="microseconds").replace("+00:00", "Z")


class ProposalManager:
    """
    Manages proposals against open jobs.

    A bid (or counter-bid) is authored by a contractor and decided by the
    requester. A direct offer is authored by the requester, targets one
    contractor, and is decided by that contractor. Acceptance is the only
    way a job becomes assigned.
    """

    def __init__(
        self,
        store: EngineStore,
        registry: JobRegistry,
        matching: MatchingIndex,
        ledger: MoneyLedger,
        locks: JobLocks,
        events: EventFeed,
    ) -> None:
        self._store = store
        self._registry = registry
        self._matching = matching
        self._ledger = ledger
        self._locks = locks
        self._events = events
        self._logger = get_logger(__name__)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get(self, proposal_id: str) -> Proposal:
        proposal = self._store.get_proposal(proposal_id)
        if proposal is None:
            raise NotFoundError(
                "PROPOSAL_NOT_FOUND",
                "Proposal not found",
                details={"proposal_id": proposal_id},
            )
        return proposal

    def list_for_job(self, job_id: str) -> list[Proposal]:
        self._registry.get(job_id)
        return self._store.list_proposals(job_id)

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    def submit(self, job_id: str, contractor_id: str, amount: object) -> Proposal:
        """Submit a contractor's bid on an open job."""
        job = self._registry.get(job_id)
        self._check_new_proposal(job, contractor_id, amount)
        return self._insert(job, contractor_id, cast("int", amount), ProposalOrigin.BID)

    def create_direct_offer(
        self,
        job_id: str,
        requester_id: str,
        contractor_id: str,
        amount: object,
    ) -> Proposal:
        """Offer an open job to one contractor at a fixed price."""
        job = self._registry.get(job_id)
        if requester_id != job.requester_id:
            raise NotAuthorizedError(
                "NOT_AUTHORIZED",
                "Only the requester may make a direct offer on this job",
            )
        self._check_new_proposal(job, contractor_id, amount)
        return self._insert(
            job,
            contractor_id,
            cast("int", amount),
            ProposalOrigin.DIRECT_OFFER,
        )

    def counter(self, proposal_id: str, actor_id: str, amount: object) -> Proposal:
        """
        Answer a direct offer with a different price.

        The offer is rejected and a new pending counter-bid is created in the
        same transaction; the requester may then accept the counter.
        """
        offer = self.get(proposal_id)
        if offer.origin is not ProposalOrigin.DIRECT_OFFER:
            raise InvalidStateError(
                "NOT_A_DIRECT_OFFER",
                "Only direct offers can be countered",
            )
        if actor_id != offer.contractor_id:
            raise NotAuthorizedError(
                "NOT_AUTHORIZED",
                "Only the targeted contractor may counter a direct offer",
            )
        self._require_pending(offer)
        job = self._registry.get(offer.job_id)
        self._require_open(job)
        if not is_positive_int(amount):
            raise ValidationError("INVALID_AMOUNT", "amount must be a positive integer (cents)")

        now = _now_iso()
        with self._store.transaction():
            if self._store.decide_proposal(
                offer.proposal_id, new_status=ProposalStatus.REJECTED, decided_at=now
            ) == 0:
                raise ConflictError("PROPOSAL_CHANGED", "Proposal was decided concurrently")
            self._events.publish(
                job.job_id,
                "proposal.rejected",
                replace(offer, status=ProposalStatus.REJECTED, decided_at=now).to_dict(),
            )
            counter = self._insert(
                job,
                actor_id,
                cast("int", amount),
                ProposalOrigin.COUNTER,
                counters_proposal_id=offer.proposal_id,
            )
        return counter

    # ------------------------------------------------------------------
    # Decisions
    # ------------------------------------------------------------------

    async def accept(self, proposal_id: str, actor_id: str) -> Job:
        """
        Accept a pending proposal and assign the job.

        The processor authorization happens first. The job assignment, the
        accepted proposal, the rejection of every competing proposal, and the
        escrow hold then commit in one transaction. If that transaction fails
        the authorization is voided, so no step is left half done.
        """
        proposal = self.get(proposal_id)
        self._require_pending(proposal)
        job = self._registry.get(proposal.job_id)
        self._require_decider(job, proposal, actor_id)
        if job.status is not JobStatus.OPEN:
            raise ConflictError(
                "JOB_NOT_OPEN",
                "Job is no longer open for acceptance",
                details={"job_id": job.job_id, "status": job.status.value},
            )

        async with self._locks.for_job(job.job_id):
            job = self._registry.get(job.job_id)
            proposal = self.get(proposal_id)
            if job.status is not JobStatus.OPEN or not proposal.is_pending:
                raise ConflictError(
                    "JOB_NOT_OPEN",
                    "Job was assigned or closed by a concurrent request",
                    details={"job_id": job.job_id, "status": job.status.value},
                )

            reference = await self._ledger.authorize(
                job.job_id, proposal.proposal_id, proposal.amount
            )
            try:
                assigned = self._commit_acceptance(job, proposal, reference, actor_id)
            except Exception:
                await self._ledger.void_authorization(reference)
                raise

        self._logger.info(
            "Proposal accepted",
            extra={
                "job_id": job.job_id,
                "proposal_id": proposal_id,
                "contractor_id": proposal.contractor_id,
                "amount": proposal.amount,
            },
        )
        return assigned

    def reject(self, proposal_id: str, actor_id: str) -> Proposal:
        proposal = self.get(proposal_id)
        job = self._registry.get(proposal.job_id)
        self._require_decider(job, proposal, actor_id)
        return self._close(proposal, ProposalStatus.REJECTED, "proposal.rejected")

    def withdraw(self, proposal_id: str, actor_id: str) -> Proposal:
        proposal = self.get(proposal_id)
        job = self._registry.get(proposal.job_id)
        if actor_id != self._author_of(job, proposal):
            raise NotAuthorizedError(
                "NOT_AUTHORIZED",
                "Only the author may withdraw a proposal",
            )
        return self._close(proposal, ProposalStatus.WITHDRAWN, "proposal.withdrawn")

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _check_new_proposal(self, job: Job, contractor_id: str, amount: object) -> None:
        if not isinstance(contractor_id, str) or not contractor_id.strip():
            raise ValidationError("INVALID_ACTOR", "contractor_id must be a non-empty string")
        if not is_positive_int(amount):
            raise ValidationError("INVALID_AMOUNT", "amount must be a positive integer (cents)")
        if contractor_id == job.requester_id:
            raise ValidationError(
                "SELF_PROPOSAL",
                "A requester cannot propose on their own job",
            )
        self._require_open(job)
        if not self._matching.is_eligible(job, contractor_id):
            raise NotEligibleError(
                "NOT_ELIGIBLE",
                "Contractor is not eligible for this job",
                details={"job_id": job.job_id, "contractor_id": contractor_id},
            )

    def _insert(
        self,
        job: Job,
        contractor_id: str,
        amount: int,
        origin: ProposalOrigin,
        counters_proposal_id: str | None = None,
    ) -> Proposal:
        proposal = Proposal(
            proposal_id=f"prop-{uuid.uuid4()}",
            job_id=job.job_id,
            contractor_id=contractor_id,
            amount=amount,
            status=ProposalStatus.PENDING,
            origin=origin,
            submitted_at=_now_iso(),
            decided_at=None,
            counters_proposal_id=counters_proposal_id,
        )
        try:
            with self._store.transaction():
                current = self._store.get_job(job.job_id)
                if current is None or current.status is not JobStatus.OPEN:
                    raise InvalidStateError("JOB_NOT_OPEN", "Job is not open for proposals")
                self._store.insert_proposal(proposal)
                self._events.publish(job.job_id, "proposal.submitted", proposal.to_dict())
        except DuplicateProposalError as exc:
            raise ConflictError(
                "DUPLICATE_PROPOSAL",
                "Contractor already has a pending proposal on this job",
                details={"job_id": job.job_id, "contractor_id": contractor_id},
            ) from exc

        self._logger.info(
            "Proposal created",
            extra={
                "job_id": job.job_id,
                "proposal_id": proposal.proposal_id,
                "contractor_id": contractor_id,
                "amount": amount,
                "origin": origin.value,
            },
        )
        return proposal

    def _commit_acceptance(
        self,
        job: Job,
        proposal: Proposal,
        reference: str,
        actor_id: str,
    ) -> Job:
        now = _now_iso()
        with self._store.transaction():
            assigned = self._registry.apply_transition(
                job,
                JobStatus.ASSIGNED,
                actor_id=actor_id,
                assignment=Assignment(
                    contractor_id=proposal.contractor_id,
                    amount=proposal.amount,
                    proposal_id=proposal.proposal_id,
                ),
            )
            if self._store.decide_proposal(
                proposal.proposal_id, new_status=ProposalStatus.ACCEPTED, decided_at=now
            ) == 0:
                raise ConflictError("PROPOSAL_CHANGED", "Proposal was decided concurrently")
            self._events.publish(
                job.job_id,
                "proposal.accepted",
                replace(proposal, status=ProposalStatus.ACCEPTED, decided_at=now).to_dict(),
            )
            rejected = self._store.reject_pending_proposals(
                job.job_id, decided_at=now, except_proposal_id=proposal.proposal_id
            )
            for rejected_id in rejected:
                self._events.publish(
                    job.job_id,
                    "proposal.rejected",
                    {"proposal_id": rejected_id, "reason": "another proposal was accepted"},
                )
            self._ledger.hold(job.job_id, proposal.amount, reference)
        return assigned

    def _close(self, proposal: Proposal, status: ProposalStatus, event_type: str) -> Proposal:
        self._require_pending(proposal)
        now = _now_iso()
        with self._store.transaction():
            if self._store.decide_proposal(
                proposal.proposal_id, new_status=status, decided_at=now
            ) == 0:
                raise ConflictError("PROPOSAL_CHANGED", "Proposal was decided concurrently")
            closed = replace(proposal, status=status, decided_at=now)
            self._events.publish(proposal.job_id, event_type, closed.to_dict())

        self._logger.info(
            "Proposal closed",
            extra={"proposal_id": proposal.proposal_id, "status": status.value},
        )
        return closed

    @staticmethod
    def _require_pending(proposal: Proposal) -> None:
        if not proposal.is_pending:
            raise InvalidStateError(
                "PROPOSAL_NOT_PENDING",
                f"Proposal is already {proposal.status.value}",
                details={"proposal_id": proposal.proposal_id, "status": proposal.status.value},
            )

    @staticmethod
    def _require_open(job: Job) -> None:
        if job.status is not JobStatus.OPEN:
            raise InvalidStateError(
                "JOB_NOT_OPEN",
                "Job is not open for proposals",
                details={"job_id": job.job_id, "status": job.status.value},
            )

    @staticmethod
    def _author_of(job: Job, proposal: Proposal) -> str:
        if proposal.origin is ProposalOrigin.DIRECT_OFFER:
            return job.requester_id
        return proposal.contractor_id

    @staticmethod
    def _decider_of(job: Job, proposal: Proposal) -> str:
        if proposal.origin is ProposalOrigin.DIRECT_OFFER:
            return proposal.contractor_id
        return job.requester_id

    def _require_decider(self, job: Job, proposal: Proposal, actor_id: str) -> None:
        if actor_id != self._decider_of(job, proposal):
            raise NotAuthorizedError(
                "NOT_AUTHORIZED",
                "Actor may not decide this proposal",
                details={"proposal_id": proposal.proposal_id, "actor_id": actor_id},
            )
