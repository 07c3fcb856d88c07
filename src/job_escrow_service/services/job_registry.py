"""Job records and the job status machine."""

from __future__ import annotations

import uuid
from dataclasses import replace
from datetime import UTC, datetime
from typing import TYPE_CHECKING

from job_escrow_service.core.exceptions import (
    ConflictError,
    InvalidTransitionError,
    NotAuthorizedError,
    NotFoundError,
    ValidationError,
)
from job_escrow_service.logging import get_logger
from job_escrow_service.models import (
    Category,
    Job,
    JobStatus,
    Location,
    PartyRole,
    Priority,
    parse_enum,
)

if TYPE_CHECKING:
    from job_escrow_service.models import Assignment
    from job_escrow_service.services.event_feed import EventFeed
    from job_escrow_service.services.store import EngineStore

MAX_DESCRIPTION_LENGTH = 5000

# Every legal edge. Terminal statuses have no outgoing edges.
TRANSITIONS: dict[JobStatus, frozenset[JobStatus]] = {
    JobStatus.OPEN: frozenset({JobStatus.ASSIGNED, JobStatus.CANCELLED}),
    JobStatus.ASSIGNED: frozenset(
        {JobStatus.IN_PROGRESS, JobStatus.CANCELLED, JobStatus.DISPUTED}
    ),
    JobStatus.IN_PROGRESS: frozenset(
        {JobStatus.WORK_COMPLETE, JobStatus.CANCELLED, JobStatus.DISPUTED}
    ),
    JobStatus.WORK_COMPLETE: frozenset({JobStatus.SETTLED, JobStatus.DISPUTED}),
    JobStatus.DISPUTED: frozenset({JobStatus.SETTLED, JobStatus.CANCELLED}),
    JobStatus.SETTLED: frozenset(),
    JobStatus.CANCELLED: frozenset(),
}

# Targets only the engine itself reaches: assignment happens through
# proposal acceptance, settlement through the confirmation handshake.
SYSTEM_TARGETS = frozenset({JobStatus.ASSIGNED, JobStatus.SETTLED})

# Targets that carry a money effect and go through the settlement coordinator.
COORDINATED_TARGETS = frozenset({JobStatus.CANCELLED, JobStatus.DISPUTED})

_CONTRACTOR_ONLY_TARGETS = frozenset({JobStatus.IN_PROGRESS, JobStatus.WORK_COMPLETE})


def _now_iso() -> str:
    return datetime.now(UTC).isoformat(timespec="microseconds").replace("+00:00", "Z")


class JobRegistry:
    """
    Stores jobs and enforces which status edges are legal and who may take them.

    Writes use compare-and-swap on the current status, so a caller working
    from a stale snapshot gets a ConflictError instead of overwriting.
    """

    def __init__(self, store: EngineStore, events: EventFeed) -> None:
        self._store = store
        self._events = events
        self._logger = get_logger(__name__)

    def create_job(
        self,
        requester_id: str,
        category: object,
        priority: object,
        location: object,
        description: object,
    ) -> Job:
        """Validate and persist a new open job."""
        if not isinstance(requester_id, str) or not requester_id.strip():
            raise ValidationError("INVALID_ACTOR", "requester_id must be a non-empty string")
        parsed_category: Category = parse_enum(Category, category, "category")
        parsed_priority: Priority = parse_enum(Priority, priority, "priority")
        parsed_location = Location.parse(location)
        if not isinstance(description, str) or not description.strip():
            raise ValidationError("INVALID_DESCRIPTION", "description must be a non-empty string")
        if len(description) > MAX_DESCRIPTION_LENGTH:
            raise ValidationError(
                "INVALID_DESCRIPTION",
                f"description must be at most {MAX_DESCRIPTION_LENGTH} characters",
            )

        now = _now_iso()
        job = Job(
            job_id=f"job-{uuid.uuid4()}",
            requester_id=requester_id,
            category=parsed_category,
            priority=parsed_priority,
            location=parsed_location,
            description=description.strip(),
            status=JobStatus.OPEN,
            assignment=None,
            created_at=now,
            updated_at=now,
        )
        with self._store.transaction():
            self._store.insert_job(job)
            self._events.publish(job.job_id, "job.created", job.to_dict())

        self._logger.info(
            "Job created",
            extra={
                "job_id": job.job_id,
                "requester_id": requester_id,
                "category": parsed_category.value,
                "priority": parsed_priority.value,
            },
        )
        return job

    def get(self, job_id: str) -> Job:
        job = self._store.get_job(job_id)
        if job is None:
            raise NotFoundError("JOB_NOT_FOUND", "Job not found", details={"job_id": job_id})
        return job

    def list_jobs(
        self,
        status: str | None = None,
        requester_id: str | None = None,
        contractor_id: str | None = None,
        limit: int | None = None,
        offset: int | None = None,
    ) -> list[Job]:
        parsed_status = None if status is None else parse_enum(JobStatus, status, "status")
        return self._store.list_jobs(parsed_status, requester_id, contractor_id, limit, offset)

    def check_transition(self, job: Job, target: JobStatus, actor_id: str) -> None:
        """
        Check that ``actor_id`` may move ``job`` to ``target``.

        Raises InvalidTransitionError for an illegal edge and NotAuthorizedError
        when the actor does not hold the role the edge requires.
        """
        if target not in TRANSITIONS[job.status]:
            raise InvalidTransitionError(
                "INVALID_TRANSITION",
                f"Cannot move job from '{job.status.value}' to '{target.value}'",
                details={"from": job.status.value, "to": target.value},
            )
        if job.status is JobStatus.DISPUTED:
            raise InvalidTransitionError(
                "DISPUTE_PENDING",
                "A disputed job leaves that status only through dispute resolution",
                details={"from": job.status.value, "to": target.value},
            )
        if target in SYSTEM_TARGETS:
            raise InvalidTransitionError(
                "SYSTEM_TRANSITION",
                f"Status '{target.value}' is reached only through the engine",
                details={"from": job.status.value, "to": target.value},
            )

        role = job.role_of(actor_id)
        if target in _CONTRACTOR_ONLY_TARGETS:
            allowed = role is PartyRole.CONTRACTOR
        elif target is JobStatus.CANCELLED and job.status is JobStatus.OPEN:
            allowed = role is PartyRole.REQUESTER
        else:
            allowed = role is not None
        if not allowed:
            raise NotAuthorizedError(
                "NOT_AUTHORIZED",
                f"Actor may not move this job to '{target.value}'",
                details={"job_id": job.job_id, "actor_id": actor_id},
            )

    def transition(self, job_id: str, target: JobStatus, actor_id: str) -> Job:
        """
        Apply an actor-initiated edge that has no money effect.

        Cancellation and disputes move or freeze funds and are applied by the
        settlement coordinator instead.
        """
        job = self.get(job_id)
        self.check_transition(job, target, actor_id)
        if target in COORDINATED_TARGETS:
            raise InvalidTransitionError(
                "COORDINATED_TRANSITION",
                f"Status '{target.value}' must be applied by the settlement coordinator",
            )
        return self.apply_transition(job, target, actor_id=actor_id)

    def apply_transition(
        self,
        job: Job,
        target: JobStatus,
        *,
        actor_id: str | None = None,
        assignment: Assignment | None = None,
        dispute_reason: str | None = None,
    ) -> Job:
        """
        Write ``job.status -> target`` with compare-and-swap on ``job.status``.

        Called inside a store transaction by the component that owns the
        side effects of the edge.
        """
        if target not in TRANSITIONS[job.status]:
            raise InvalidTransitionError(
                "INVALID_TRANSITION",
                f"Cannot move job from '{job.status.value}' to '{target.value}'",
                details={"from": job.status.value, "to": target.value},
            )
        if target is JobStatus.ASSIGNED and assignment is None:
            raise ValueError("Assigning a job requires an assignment")

        now = _now_iso()
        with self._store.transaction():
            changed = self._store.update_job_status(
                job.job_id,
                expected_status=job.status,
                new_status=target,
                updated_at=now,
                assignment=assignment,
                dispute_reason=dispute_reason,
            )
            if changed == 0:
                raise ConflictError(
                    "JOB_CHANGED",
                    "Job status changed concurrently; re-read and retry",
                    details={"job_id": job.job_id, "expected_status": job.status.value},
                )
            updated = replace(
                job,
                status=target,
                updated_at=now,
                assignment=assignment if assignment is not None else job.assignment,
                dispute_reason=dispute_reason if dispute_reason is not None else job.dispute_reason,
            )
            self._events.publish(
                job.job_id,
                "job.status_changed",
                {
                    "from": job.status.value,
                    "to": target.value,
                    "actor_id": actor_id,
                    "job": updated.to_dict(),
                },
            )

        self._logger.info(
            "Job status changed",
            extra={
                "job_id": job.job_id,
                "from": job.status.value,
                "to": target.value,
                "actor_id": actor_id,
            },
        )
        return updated
