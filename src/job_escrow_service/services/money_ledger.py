"""Escrow holds and their append-only ledger entries."""

from __future__ import annotations

import uuid
from dataclasses import replace
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from job_escrow_service.core.exceptions import (
    ConflictError,
    InvalidStateError,
    NotFoundError,
    PaymentFailure,
    ServiceError,
    ValidationError,
)
from job_escrow_service.logging import get_logger
from job_escrow_service.models import (
    MOVABLE_HOLD_STATUSES,
    EscrowHold,
    HoldStatus,
    JobStatus,
    PartyRole,
    is_positive_int,
)

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from job_escrow_service.clients.payment_processor_client import PaymentProcessorClient
    from job_escrow_service.models import Job, LedgerEntry
    from job_escrow_service.services.event_feed import EventFeed
    from job_escrow_service.services.store import EngineStore

FULL_REFUND_REFERENCE = "refund:full"


def _now_iso() -> str:
    return datetime.now(UTC).isoformat(timespec="microseconds").replace("+00:00", "Z")


class MoneyLedger:
    """
    Owns every escrow hold and the entries that move money out of it.

    Processor calls happen first; the ledger is written only after the
    processor succeeded, so a PaymentFailure leaves no trace here. Callers
    that must commit their own state together with a money movement pass an
    ``alongside`` callable, which runs inside the same store transaction.

    Conservation: released + refunded never exceeds the held amount, and
    platform_fee + contractor_payout always equals released.
    """

    def __init__(
        self,
        store: EngineStore,
        events: EventFeed,
        processor: PaymentProcessorClient,
        fee_bps: int,
    ) -> None:
        self._store = store
        self._events = events
        self._processor = processor
        self._fee_bps = fee_bps
        self._logger = get_logger(__name__)

    def set_processor(self, processor: PaymentProcessorClient) -> None:
        self._processor = processor

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_hold(self, hold_id: str) -> EscrowHold:
        hold = self._store.get_hold(hold_id)
        if hold is None:
            raise NotFoundError("HOLD_NOT_FOUND", "Escrow hold not found")
        return hold

    def get_hold_for_job(self, job_id: str) -> EscrowHold | None:
        return self._store.get_hold_for_job(job_id)

    def entries(self, hold_id: str) -> list[LedgerEntry]:
        return self._store.list_ledger_entries(hold_id)

    def compute_fee(self, amount: int) -> tuple[int, int]:
        """Split a released amount into (platform_fee, contractor_payout)."""
        fee = amount * self._fee_bps // 10000
        return fee, amount - fee

    # ------------------------------------------------------------------
    # Processor helpers
    # ------------------------------------------------------------------

    async def _call_processor(
        self,
        operation: str,
        call: Callable[..., Awaitable[dict[str, Any]]],
        *args: Any,
        **kwargs: Any,
    ) -> dict[str, Any]:
        try:
            return await call(*args, **kwargs)
        except ServiceError:
            raise
        except Exception as exc:
            raise PaymentFailure(
                "PROCESSOR_UNAVAILABLE",
                f"Payment processor {operation} failed",
                details={"operation": operation},
            ) from exc

    async def authorize(self, job_id: str, proposal_id: str, amount: int) -> str:
        """Authorize funds with the processor. Returns the processor reference."""
        reference = f"{job_id}:{proposal_id}"
        await self._call_processor("authorize", self._processor.authorize, reference, amount)
        return reference

    async def void_authorization(self, reference: str) -> None:
        """Drop an authorization that never became a hold. Failures are logged."""
        try:
            await self._call_processor("void", self._processor.void, reference)
        except ServiceError:
            self._logger.error(
                "Failed to void authorization during rollback",
                extra={"processor_reference": reference},
            )

    # ------------------------------------------------------------------
    # Money movements
    # ------------------------------------------------------------------

    def hold(self, job_id: str, amount: int, processor_reference: str) -> EscrowHold:
        """
        Record the hold for a job. Idempotent per job.

        A repeated call with the same amount returns the existing hold; a
        different amount is a conflict.
        """
        if not is_positive_int(amount):
            raise ValidationError("INVALID_AMOUNT", "Hold amount must be a positive integer")

        with self._store.transaction():
            existing = self._store.get_hold_for_job(job_id)
            if existing is not None:
                if existing.amount != amount:
                    raise ConflictError(
                        "HOLD_AMOUNT_MISMATCH",
                        "A hold with a different amount already exists for this job",
                        details={"hold_id": existing.hold_id, "amount": existing.amount},
                    )
                return existing

            now = _now_iso()
            hold = EscrowHold(
                hold_id=f"hold-{uuid.uuid4()}",
                job_id=job_id,
                amount=amount,
                status=HoldStatus.HELD,
                processor_reference=processor_reference,
                released_amount=0,
                refunded_amount=0,
                platform_fee=0,
                contractor_payout=0,
                created_at=now,
                updated_at=now,
            )
            self._store.insert_hold(hold)
            self._store.append_ledger_entry(hold.hold_id, "hold", amount, "hold", now)
            self._events.publish(job_id, "escrow.held", hold.to_dict())

        self._logger.info(
            "Escrow hold recorded",
            extra={"job_id": job_id, "hold_id": hold.hold_id, "amount": amount},
        )
        return hold

    async def capture(self, hold_id: str) -> EscrowHold:
        """Capture an authorized hold. Capturing twice is a no-op."""
        hold = self.get_hold(hold_id)
        if hold.status is HoldStatus.CAPTURED:
            return hold
        if hold.status is not HoldStatus.HELD:
            raise InvalidStateError(
                "HOLD_NOT_CAPTURABLE",
                f"Cannot capture a hold in status '{hold.status.value}'",
            )

        await self._call_processor("capture", self._processor.capture, hold.processor_reference)

        now = _now_iso()
        with self._store.transaction():
            changed = self._store.update_hold(
                hold_id,
                {"status": HoldStatus.CAPTURED, "updated_at": now},
                expected_status=HoldStatus.HELD,
            )
            if changed == 0:
                raise ConflictError("HOLD_CHANGED", "Escrow hold changed during capture")
            self._store.append_ledger_entry(hold_id, "capture", hold.amount, "capture", now)
            captured = replace(hold, status=HoldStatus.CAPTURED, updated_at=now)
            self._events.publish(hold.job_id, "escrow.captured", captured.to_dict())
        return captured

    async def release(
        self,
        hold_id: str,
        *,
        manual_resolution: bool = False,
        completing: PartyRole | None = None,
        alongside: Callable[[], object] | None = None,
    ) -> EscrowHold:
        """
        Release the remaining balance to the assigned contractor, minus the fee.

        Without ``manual_resolution`` both confirmation records must exist and
        the job must not be disputed. ``completing`` names a role whose record
        is written by ``alongside`` in the same transaction as the release.
        Releasing an already released hold returns it unchanged.
        """
        hold = self.get_hold(hold_id)
        if hold.status is HoldStatus.RELEASED:
            return hold
        if hold.status not in MOVABLE_HOLD_STATUSES:
            raise InvalidStateError(
                "HOLD_NOT_RELEASABLE",
                f"Cannot release a hold in status '{hold.status.value}'",
            )

        job = self._require_job(hold.job_id)
        self._check_not_frozen(job, manual_resolution)
        if not manual_resolution:
            roles = {record.role for record in self._store.list_confirmations(job.job_id)}
            if completing is not None:
                roles.add(completing)
            if len(roles) < len(PartyRole):
                raise InvalidStateError(
                    "CONFIRMATIONS_MISSING",
                    "Both parties must confirm completion before release",
                )
        if job.assignment is None:
            raise InvalidStateError("JOB_NOT_ASSIGNED", "Job has no assigned contractor")

        amount = hold.remaining
        fee, payout = self.compute_fee(amount)
        await self._call_processor(
            "release",
            self._processor.release,
            hold.processor_reference,
            amount=amount,
            contractor_payout=payout,
            platform_fee=fee,
            recipient_id=job.assignment.contractor_id,
            idempotency_key=f"{hold.processor_reference}:release",
        )

        now = _now_iso()
        with self._store.transaction():
            changed = self._store.update_hold(
                hold_id,
                {
                    "status": HoldStatus.RELEASED,
                    "released_amount": amount,
                    "platform_fee": fee,
                    "contractor_payout": payout,
                    "updated_at": now,
                },
                expected_status=hold.status,
            )
            if changed == 0:
                raise ConflictError("HOLD_CHANGED", "Escrow hold changed during release")
            self._store.append_ledger_entry(hold_id, "release", amount, "release", now)
            self._store.append_ledger_entry(hold_id, "platform_fee", fee, "release:fee", now)
            self._store.append_ledger_entry(hold_id, "payout", payout, "release:payout", now)
            released = replace(
                hold,
                status=HoldStatus.RELEASED,
                released_amount=amount,
                platform_fee=fee,
                contractor_payout=payout,
                updated_at=now,
            )
            if alongside is not None:
                alongside()
            self._events.publish(hold.job_id, "escrow.released", released.to_dict())

        self._logger.info(
            "Escrow released",
            extra={
                "job_id": hold.job_id,
                "hold_id": hold_id,
                "amount": amount,
                "platform_fee": fee,
                "contractor_payout": payout,
                "manual_resolution": manual_resolution,
            },
        )
        return released

    async def refund(
        self,
        hold_id: str,
        amount: int | None = None,
        *,
        reference: str | None = None,
        manual_resolution: bool = False,
        alongside: Callable[[], object] | None = None,
    ) -> EscrowHold:
        """
        Return funds to the requester; the whole remaining balance by default.

        ``reference`` makes the refund replay-safe: a second call with a
        reference already on the ledger returns the hold without moving money,
        and raises ConflictError if it names a different amount. Without a
        reference a full refund uses ``refund:full`` and each partial refund
        gets a fresh reference of its own, so it is not replay-safe.
        """
        if reference is None:
            if amount is None:
                reference = FULL_REFUND_REFERENCE
            else:
                reference = f"refund:{uuid.uuid4()}"

        hold = self.get_hold(hold_id)
        previous = self._store.get_ledger_entry(hold_id, reference)
        if previous is not None:
            if amount is not None and previous.amount != amount:
                raise ConflictError(
                    "REFUND_REFERENCE_MISMATCH",
                    "A refund with this reference was already made for a different amount",
                    details={"reference": reference, "amount": previous.amount},
                )
            return hold
        if hold.status not in MOVABLE_HOLD_STATUSES:
            raise InvalidStateError(
                "HOLD_NOT_REFUNDABLE",
                f"Cannot refund a hold in status '{hold.status.value}'",
            )

        job = self._require_job(hold.job_id)
        self._check_not_frozen(job, manual_resolution)

        remaining = hold.remaining
        refund_amount = remaining if amount is None else amount
        if not is_positive_int(refund_amount):
            raise ValidationError("INVALID_AMOUNT", "Refund amount must be a positive integer")
        if refund_amount > remaining:
            raise ValidationError(
                "INVALID_AMOUNT",
                "Refund amount exceeds the remaining held balance",
                details={"remaining_amount": remaining},
            )

        await self._call_processor(
            "refund",
            self._processor.refund,
            hold.processor_reference,
            amount=refund_amount,
            idempotency_key=f"{hold.processor_reference}:{reference}",
        )

        refunded_total = hold.refunded_amount + refund_amount
        new_status = (
            HoldStatus.REFUNDED
            if refunded_total == hold.amount
            else HoldStatus.PARTIALLY_REFUNDED
        )
        now = _now_iso()
        with self._store.transaction():
            changed = self._store.update_hold(
                hold_id,
                {"status": new_status, "refunded_amount": refunded_total, "updated_at": now},
                expected_status=hold.status,
            )
            if changed == 0:
                raise ConflictError("HOLD_CHANGED", "Escrow hold changed during refund")
            self._store.append_ledger_entry(hold_id, "refund", refund_amount, reference, now)
            refunded = replace(
                hold,
                status=new_status,
                refunded_amount=refunded_total,
                updated_at=now,
            )
            if alongside is not None:
                alongside()
            self._events.publish(
                hold.job_id,
                "escrow.refunded",
                {**refunded.to_dict(), "refund_amount": refund_amount},
            )

        self._logger.info(
            "Escrow refunded",
            extra={
                "job_id": hold.job_id,
                "hold_id": hold_id,
                "amount": refund_amount,
                "status": new_status.value,
            },
        )
        return refunded

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    def _require_job(self, job_id: str) -> Job:
        job = self._store.get_job(job_id)
        if job is None:
            raise NotFoundError("JOB_NOT_FOUND", "Job not found")
        return job

    @staticmethod
    def _check_not_frozen(job: Job, manual_resolution: bool) -> None:
        if job.status is JobStatus.DISPUTED and not manual_resolution:
            raise InvalidStateError(
                "HOLD_FROZEN",
                "Funds for a disputed job move only through dispute resolution",
            )
