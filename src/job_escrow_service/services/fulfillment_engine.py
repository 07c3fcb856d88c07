"""Entry point for every engine operation the HTTP layer exposes."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from job_escrow_service.models import JobStatus, parse_enum

if TYPE_CHECKING:
    from job_escrow_service.clients.payment_processor_client import PaymentProcessorClient
    from job_escrow_service.services.event_feed import EventFeed
    from job_escrow_service.services.job_registry import JobRegistry
    from job_escrow_service.services.matching_index import MatchingIndex
    from job_escrow_service.services.money_ledger import MoneyLedger
    from job_escrow_service.services.proposal_manager import ProposalManager
    from job_escrow_service.services.settlement_coordinator import SettlementCoordinator
    from job_escrow_service.services.store import EngineStore


class FulfillmentEngine:
    """
    Routes each public operation to the component that owns it and shapes
    the response dicts the routers return.
    """

    def __init__(
        self,
        store: EngineStore,
        registry: JobRegistry,
        matching: MatchingIndex,
        proposals: ProposalManager,
        ledger: MoneyLedger,
        settlement: SettlementCoordinator,
        events: EventFeed,
    ) -> None:
        self._store = store
        self._registry = registry
        self._matching = matching
        self._proposals = proposals
        self._ledger = ledger
        self._settlement = settlement
        self._events = events

    def set_payment_processor(self, processor: PaymentProcessorClient) -> None:
        self._ledger.set_processor(processor)

    @property
    def events(self) -> EventFeed:
        return self._events

    # ------------------------------------------------------------------
    # Contractors
    # ------------------------------------------------------------------

    def register_contractor(self, contractor_id: str, data: dict[str, Any]) -> dict[str, Any]:
        contractor = self._matching.register_contractor(
            contractor_id,
            categories=data.get("categories"),
            postal_code=data.get("postal_code"),
            latitude=data.get("latitude"),
            longitude=data.get("longitude"),
            service_radius_miles=data.get("service_radius_miles"),
            service_postal_codes=data.get("service_postal_codes"),
            available=data.get("available", True),
        )
        return contractor.to_dict()

    def set_availability(self, contractor_id: str, available: object) -> dict[str, Any]:
        return self._matching.set_availability(contractor_id, available).to_dict()

    # ------------------------------------------------------------------
    # Jobs
    # ------------------------------------------------------------------

    def create_job(
        self,
        requester_id: str,
        category: object,
        priority: object,
        location: object,
        description: object,
    ) -> dict[str, Any]:
        return self._registry.create_job(
            requester_id, category, priority, location, description
        ).to_dict()

    def get_job(self, job_id: str) -> dict[str, Any]:
        return self._registry.get(job_id).to_dict()

    def list_jobs(
        self,
        status: str | None = None,
        requester_id: str | None = None,
        contractor_id: str | None = None,
        limit: int | None = None,
        offset: int | None = None,
    ) -> list[dict[str, Any]]:
        jobs = self._registry.list_jobs(status, requester_id, contractor_id, limit, offset)
        return [job.to_dict() for job in jobs]

    def list_eligible_contractors(self, job_id: str) -> dict[str, Any]:
        job = self._registry.get(job_id)
        eligible = self._matching.find_eligible(job)
        return {"job_id": job_id, "contractor_ids": sorted(eligible)}

    async def transition_job_status(
        self,
        job_id: str,
        status: object,
        actor_id: str,
        reason: object = None,
    ) -> dict[str, Any]:
        """
        Move a job along an actor-initiated edge.

        Cancellation refunds any hold and a dispute freezes it, so both are
        applied by the settlement coordinator.
        """
        target: JobStatus = parse_enum(JobStatus, status, "status")
        if target is JobStatus.CANCELLED:
            job = await self._settlement.cancel_job(job_id, actor_id)
        elif target is JobStatus.DISPUTED:
            job = await self._settlement.raise_dispute(job_id, actor_id, reason)
        else:
            job = self._registry.transition(job_id, target, actor_id)
        return job.to_dict()

    # ------------------------------------------------------------------
    # Proposals
    # ------------------------------------------------------------------

    def submit_proposal(self, job_id: str, contractor_id: str, amount: object) -> dict[str, Any]:
        return self._proposals.submit(job_id, contractor_id, amount).to_dict()

    def create_direct_offer(
        self,
        job_id: str,
        requester_id: str,
        contractor_id: str,
        amount: object,
    ) -> dict[str, Any]:
        return self._proposals.create_direct_offer(
            job_id, requester_id, contractor_id, amount
        ).to_dict()

    def list_proposals(self, job_id: str) -> list[dict[str, Any]]:
        return [proposal.to_dict() for proposal in self._proposals.list_for_job(job_id)]

    async def accept_proposal(self, proposal_id: str, actor_id: str) -> dict[str, Any]:
        job = await self._proposals.accept(proposal_id, actor_id)
        hold = self._ledger.get_hold_for_job(job.job_id)
        return {"job": job.to_dict(), "hold": hold.to_dict() if hold is not None else None}

    def reject_proposal(self, proposal_id: str, actor_id: str) -> dict[str, Any]:
        return self._proposals.reject(proposal_id, actor_id).to_dict()

    def withdraw_proposal(self, proposal_id: str, actor_id: str) -> dict[str, Any]:
        return self._proposals.withdraw(proposal_id, actor_id).to_dict()

    def counter_proposal(self, proposal_id: str, actor_id: str, amount: object) -> dict[str, Any]:
        return self._proposals.counter(proposal_id, actor_id, amount).to_dict()

    # ------------------------------------------------------------------
    # Settlement
    # ------------------------------------------------------------------

    async def capture_hold(self, job_id: str, actor_id: str) -> dict[str, Any]:
        return await self._settlement.capture_hold(job_id, actor_id)

    async def confirm_completion(
        self,
        job_id: str,
        actor_id: str,
        party: object = None,
    ) -> dict[str, Any]:
        return await self._settlement.confirm_completion(job_id, actor_id, party)

    async def raise_dispute(self, job_id: str, actor_id: str, reason: object) -> dict[str, Any]:
        job = await self._settlement.raise_dispute(job_id, actor_id, reason)
        return job.to_dict()

    async def resolve_dispute(
        self,
        job_id: str,
        actor_id: str,
        outcome: object,
        refund_amount: object = None,
    ) -> dict[str, Any]:
        return await self._settlement.resolve_dispute(job_id, actor_id, outcome, refund_amount)

    def get_escrow_state(self, job_id: str) -> dict[str, Any]:
        return self._settlement.get_escrow_state(job_id)

    # ------------------------------------------------------------------
    # Events and health
    # ------------------------------------------------------------------

    def list_events(self, job_id: str, after: int = 0, limit: int | None = None) -> dict[str, Any]:
        self._registry.get(job_id)
        events = self._events.list_events(job_id, after, limit)
        return {
            "job_id": job_id,
            "events": events,
            "last_event_id": events[-1]["event_id"] if events else after,
        }

    def ensure_job(self, job_id: str) -> None:
        self._registry.get(job_id)

    def count_jobs_by_status(self) -> dict[str, int]:
        counts = self._store.count_jobs_by_status()
        return {status.value: counts.get(status.value, 0) for status in JobStatus}

    def close(self) -> None:
        """Close the underlying database connection."""
        self._store.close()

