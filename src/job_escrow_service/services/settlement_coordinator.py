"""Completion handshake, cancellation, disputes, and dispute resolution."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any, cast

from job_escrow_service.core.exceptions import (
    ConflictError,
    InvalidStateError,
    NotAuthorizedError,
    ValidationError,
)
from job_escrow_service.logging import get_logger
from job_escrow_service.models import (
    ConfirmationRecord,
    DisputeOutcome,
    JobStatus,
    PartyRole,
    is_positive_int,
    parse_enum,
)

if TYPE_CHECKING:
    from job_escrow_service.core.locks import JobLocks
    from job_escrow_service.models import EscrowHold, Job
    from job_escrow_service.services.event_feed import EventFeed
    from job_escrow_service.services.job_registry import JobRegistry
    from job_escrow_service.services.money_ledger import MoneyLedger
    from job_escrow_service.services.store import EngineStore

MAX_REASON_LENGTH = 2000

_CAPTURABLE_STATUSES = frozenset(
    {JobStatus.ASSIGNED, JobStatus.IN_PROGRESS, JobStatus.WORK_COMPLETE}
)


def _now_iso() -> str:
    return datetime.now(UTC).isoformat(timespec="microseconds").replace("+00:00", "Z")


class SettlementCoordinator:
    """
    Drives every job edge that moves or freezes money.

    Each operation runs under the job's lock: the processor call inside the
    ledger and the job status write that goes with it commit together, and
    concurrent confirmations of the same job settle it exactly once.
    """

    def __init__(
        self,
        store: EngineStore,
        registry: JobRegistry,
        ledger: MoneyLedger,
        locks: JobLocks,
        events: EventFeed,
        platform_agent_id: str,
    ) -> None:
        self._store = store
        self._registry = registry
        self._ledger = ledger
        self._locks = locks
        self._events = events
        self._platform_agent_id = platform_agent_id
        self._logger = get_logger(__name__)

    # ------------------------------------------------------------------
    # Completion handshake
    # ------------------------------------------------------------------

    async def confirm_completion(
        self,
        job_id: str,
        actor_id: str,
        party: object = None,
    ) -> dict[str, Any]:
        """
        Record one party's confirmation that the work is done.

        The confirmation that completes the pair is written in the same
        transaction as the release and the settled status, so a failed release
        leaves only the earlier record behind. Confirming twice is a no-op.
        """
        job = self._registry.get(job_id)
        role = self._resolve_role(job, actor_id, party)

        async with self._locks.for_job(job_id):
            job = self._registry.get(job_id)
            if job.status is JobStatus.SETTLED:
                return self.get_escrow_state(job_id)
            if job.status is not JobStatus.WORK_COMPLETE:
                raise InvalidStateError(
                    "JOB_NOT_COMPLETE",
                    f"Cannot confirm completion of a job in status '{job.status.value}'",
                    details={"job_id": job_id, "status": job.status.value},
                )

            record = ConfirmationRecord(
                job_id=job_id,
                role=role,
                actor_id=actor_id,
                confirmed_at=_now_iso(),
            )
            recorded = {entry.role for entry in self._store.list_confirmations(job_id)}

            def _record() -> None:
                if self._store.insert_confirmation(record):
                    self._events.publish(job_id, "confirmation.recorded", record.to_dict())

            if recorded | {role} != set(PartyRole):
                with self._store.transaction():
                    _record()
                self._logger.info(
                    "Completion confirmed",
                    extra={"job_id": job_id, "role": role.value, "actor_id": actor_id},
                )
                return self.get_escrow_state(job_id)

            # The confirmation that completes the pair commits with the release
            hold = self._require_hold(job)

            def _settle() -> None:
                _record()
                self._registry.apply_transition(job, JobStatus.SETTLED, actor_id=actor_id)

            await self._ledger.release(
                hold.hold_id,
                completing=role,
                alongside=_settle,
            )
            self._logger.info(
                "Job settled",
                extra={"job_id": job_id, "role": role.value, "actor_id": actor_id},
            )

        return self.get_escrow_state(job_id)

    # ------------------------------------------------------------------
    # Cancellation and disputes
    # ------------------------------------------------------------------

    async def cancel_job(self, job_id: str, actor_id: str) -> Job:
        """
        Cancel a job before work is complete, refunding any hold in full.

        Cancelling an open job also rejects its pending proposals.
        """
        observed = self._registry.get(job_id)
        self._registry.check_transition(observed, JobStatus.CANCELLED, actor_id)

        async with self._locks.for_job(job_id):
            job = self._registry.get(job_id)
            self._require_unchanged(observed, job)

            result: dict[str, Job] = {}

            def _finish() -> None:
                result["job"] = self._registry.apply_transition(
                    job, JobStatus.CANCELLED, actor_id=actor_id
                )
                rejected = self._store.reject_pending_proposals(job_id, decided_at=_now_iso())
                for proposal_id in rejected:
                    self._events.publish(
                        job_id,
                        "proposal.rejected",
                        {"proposal_id": proposal_id, "reason": "job cancelled"},
                    )

            hold = self._ledger.get_hold_for_job(job_id)
            if hold is None:
                with self._store.transaction():
                    _finish()
            else:
                await self._ledger.refund(
                    hold.hold_id,
                    reference="refund:cancellation",
                    alongside=_finish,
                )

        self._logger.info(
            "Job cancelled",
            extra={"job_id": job_id, "actor_id": actor_id, "refunded": hold is not None},
        )
        return result["job"]

    async def raise_dispute(self, job_id: str, actor_id: str, reason: object) -> Job:
        """Move a job to disputed, freezing its hold until resolved."""
        if not isinstance(reason, str) or not reason.strip():
            raise ValidationError("INVALID_REASON", "reason must be a non-empty string")
        if len(reason) > MAX_REASON_LENGTH:
            raise ValidationError(
                "INVALID_REASON",
                f"reason must be at most {MAX_REASON_LENGTH} characters",
            )

        observed = self._registry.get(job_id)
        self._registry.check_transition(observed, JobStatus.DISPUTED, actor_id)

        async with self._locks.for_job(job_id):
            job = self._registry.get(job_id)
            self._require_unchanged(observed, job)
            with self._store.transaction():
                disputed = self._registry.apply_transition(
                    job,
                    JobStatus.DISPUTED,
                    actor_id=actor_id,
                    dispute_reason=reason.strip(),
                )
                self._events.publish(
                    job_id,
                    "dispute.raised",
                    {"actor_id": actor_id, "reason": reason.strip()},
                )

        self._logger.warning(
            "Dispute raised",
            extra={"job_id": job_id, "actor_id": actor_id, "reason": reason.strip()},
        )
        return disputed

    async def resolve_dispute(
        self,
        job_id: str,
        actor_id: str,
        outcome: object,
        refund_amount: object = None,
    ) -> dict[str, Any]:
        """
        Apply an adjudicator's decision to a disputed job.

        ``release`` pays the contractor and settles the job, ``refund`` returns
        everything to the requester and cancels it, ``split`` refunds
        ``refund_amount`` and releases the rest.
        """
        if actor_id != self._platform_agent_id:
            raise NotAuthorizedError(
                "NOT_AUTHORIZED",
                "Only the platform adjudicator may resolve disputes",
            )
        parsed: DisputeOutcome = parse_enum(DisputeOutcome, outcome, "outcome")
        if parsed is DisputeOutcome.SPLIT:
            if not is_positive_int(refund_amount):
                raise ValidationError(
                    "INVALID_AMOUNT",
                    "refund_amount must be a positive integer for a split",
                )
        elif refund_amount is not None:
            raise ValidationError(
                "INVALID_AMOUNT",
                "refund_amount is only accepted for a split",
            )

        async with self._locks.for_job(job_id):
            job = self._registry.get(job_id)
            if job.status is not JobStatus.DISPUTED:
                raise InvalidStateError(
                    "JOB_NOT_DISPUTED",
                    "Only disputed jobs can be resolved",
                    details={"job_id": job_id, "status": job.status.value},
                )
            hold = self._require_hold(job)

            def _settle() -> None:
                self._registry.apply_transition(job, JobStatus.SETTLED, actor_id=actor_id)

            def _cancel() -> None:
                self._registry.apply_transition(job, JobStatus.CANCELLED, actor_id=actor_id)

            if parsed is DisputeOutcome.RELEASE:
                await self._ledger.release(hold.hold_id, manual_resolution=True, alongside=_settle)
            elif parsed is DisputeOutcome.REFUND:
                await self._ledger.refund(
                    hold.hold_id,
                    reference="refund:dispute",
                    manual_resolution=True,
                    alongside=_cancel,
                )
            else:
                split_refund = cast("int", refund_amount)
                earlier_split = self._store.get_ledger_entry(
                    hold.hold_id, "refund:dispute-split"
                )
                if earlier_split is not None and earlier_split.amount != split_refund:
                    raise ConflictError(
                        "REFUND_REFERENCE_MISMATCH",
                        "This dispute was already split with a different refund amount",
                        details={"refund_amount": earlier_split.amount},
                    )
                if split_refund >= hold.remaining and earlier_split is None:
                    raise ValidationError(
                        "INVALID_AMOUNT",
                        "A split must leave part of the hold for the contractor",
                        details={"remaining_amount": hold.remaining},
                    )
                await self._ledger.refund(
                    hold.hold_id,
                    split_refund,
                    reference="refund:dispute-split",
                    manual_resolution=True,
                )
                await self._ledger.release(hold.hold_id, manual_resolution=True, alongside=_settle)

        self._logger.info(
            "Dispute resolved",
            extra={"job_id": job_id, "outcome": parsed.value, "refund_amount": refund_amount},
        )
        return self.get_escrow_state(job_id)

    # ------------------------------------------------------------------
    # Capture and queries
    # ------------------------------------------------------------------

    async def capture_hold(self, job_id: str, actor_id: str) -> dict[str, Any]:
        """Charge the requester's authorized hold."""
        job = self._registry.get(job_id)
        if actor_id != job.requester_id:
            raise NotAuthorizedError("NOT_AUTHORIZED", "Only the requester may capture the hold")

        async with self._locks.for_job(job_id):
            job = self._registry.get(job_id)
            if job.status not in _CAPTURABLE_STATUSES:
                raise InvalidStateError(
                    "JOB_NOT_CAPTURABLE",
                    f"Cannot capture funds for a job in status '{job.status.value}'",
                )
            hold = self._require_hold(job)
            await self._ledger.capture(hold.hold_id)

        return self.get_escrow_state(job_id)

    def get_escrow_state(self, job_id: str) -> dict[str, Any]:
        """Hold, ledger entries, and confirmations for a job."""
        job = self._registry.get(job_id)
        hold = self._ledger.get_hold_for_job(job_id)
        confirmations = self._store.list_confirmations(job_id)
        return {
            "job_id": job_id,
            "job_status": job.status.value,
            "hold": hold.to_dict() if hold is not None else None,
            "entries": (
                [entry.to_dict() for entry in self._ledger.entries(hold.hold_id)]
                if hold is not None
                else []
            ),
            "confirmations": [record.to_dict() for record in confirmations],
        }

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    @staticmethod
    def _resolve_role(job: Job, actor_id: str, party: object) -> PartyRole:
        role = job.role_of(actor_id)
        if role is None:
            raise NotAuthorizedError(
                "NOT_AUTHORIZED",
                "Only the requester or the assigned contractor may confirm completion",
            )
        if party is not None and parse_enum(PartyRole, party, "party") is not role:
            raise NotAuthorizedError(
                "NOT_AUTHORIZED",
                f"Actor is the {role.value} on this job",
            )
        return role

    def _require_hold(self, job: Job) -> EscrowHold:
        hold = self._ledger.get_hold_for_job(job.job_id)
        if hold is None:
            raise InvalidStateError(
                "HOLD_NOT_FOUND",
                "Job has no escrow hold",
                details={"job_id": job.job_id},
            )
        return hold

    @staticmethod
    def _require_unchanged(observed: Job, current: Job) -> None:
        if observed.status is not current.status:
            raise ConflictError(
                "JOB_CHANGED",
                "Job status changed concurrently; re-read and retry",
                details={"job_id": current.job_id, "status": current.status.value},
            )
