"""Domain types: closed status enumerations and immutable records."""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from job_escrow_service.core.exceptions import ValidationError


class Category(str, Enum):
    """Trades a job can be posted under."""

    PLUMBING = "Plumbing"
    ELECTRICAL = "Electrical"
    HVAC = "HVAC"
    LOCKSMITH = "Locksmith"
    GARAGE_DOOR = "Garage Door"
    GLASS_REPAIR = "Glass Repair"
    APPLIANCE_REPAIR = "Appliance Repair"
    HANDYMAN = "Handyman"
    ROOFING = "Roofing"
    FENCING = "Fencing"
    GAS = "Gas"
    SNOW_REMOVAL = "Snow Removal"
    SECURITY = "Security"
    WATER_DAMAGE = "Water Damage"
    DRYWALL = "Drywall"
    CARPENTRY = "Carpentry"
    GENERAL = "General"


class Priority(str, Enum):
    STANDARD = "standard"
    URGENT = "urgent"
    EMERGENCY = "emergency"


class JobStatus(str, Enum):
    OPEN = "open"
    ASSIGNED = "assigned"
    IN_PROGRESS = "in_progress"
    WORK_COMPLETE = "work_complete"
    SETTLED = "settled"
    CANCELLED = "cancelled"
    DISPUTED = "disputed"


class ProposalStatus(str, Enum):
    PENDING = "pending"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    WITHDRAWN = "withdrawn"


class ProposalOrigin(str, Enum):
    """Who authored a proposal and therefore who may accept it."""

    BID = "bid"
    DIRECT_OFFER = "direct_offer"
    COUNTER = "counter"


class HoldStatus(str, Enum):
    HELD = "held"
    CAPTURED = "captured"
    RELEASED = "released"
    REFUNDED = "refunded"
    PARTIALLY_REFUNDED = "partially_refunded"


class PartyRole(str, Enum):
    REQUESTER = "requester"
    CONTRACTOR = "contractor"


class DisputeOutcome(str, Enum):
    RELEASE = "release"
    REFUND = "refund"
    SPLIT = "split"


TERMINAL_JOB_STATUSES = frozenset({JobStatus.SETTLED, JobStatus.CANCELLED})
MOVABLE_HOLD_STATUSES = frozenset(
    {HoldStatus.HELD, HoldStatus.CAPTURED, HoldStatus.PARTIALLY_REFUNDED}
)

_POSTAL_CODE_RE = re.compile(r"^\d{5}(-\d{4})?$")


def parse_enum(enum_cls: type[Enum], value: object, field_name: str) -> Any:
    """Coerce a raw value into a closed enumeration or raise ValidationError."""
    try:
        return enum_cls(value)
    except ValueError as exc:
        allowed = ", ".join(str(member.value) for member in enum_cls)
        raise ValidationError(
            f"INVALID_{field_name.upper()}",
            f"{field_name} must be one of: {allowed}",
        ) from exc


def parse_postal_code(value: object) -> str:
    if not isinstance(value, str) or not _POSTAL_CODE_RE.match(value.strip()):
        raise ValidationError("INVALID_LOCATION", "postal_code must be a 5-digit ZIP or ZIP+4")
    return value.strip()


@dataclass(frozen=True)
class Location:
    """Postal code plus optional coordinates and an informational search radius."""

    postal_code: str
    latitude: float | None = None
    longitude: float | None = None
    radius_miles: float | None = None

    @property
    def has_coordinates(self) -> bool:
        return self.latitude is not None and self.longitude is not None

    @classmethod
    def parse(cls, raw: object) -> Location:
        """Build a Location from a request mapping, raising ValidationError when unparseable."""
        if not isinstance(raw, dict):
            raise ValidationError("INVALID_LOCATION", "location must be an object")

        postal_code = parse_postal_code(raw.get("postal_code"))
        latitude = raw.get("latitude")
        longitude = raw.get("longitude")
        radius = raw.get("radius_miles")

        if (latitude is None) != (longitude is None):
            raise ValidationError(
                "INVALID_LOCATION",
                "latitude and longitude must be given together",
            )
        if latitude is not None:
            if not _is_number(latitude) or not -90.0 <= float(latitude) <= 90.0:
                raise ValidationError("INVALID_LOCATION", "latitude must be within [-90, 90]")
            if not _is_number(longitude) or not -180.0 <= float(longitude) <= 180.0:
                raise ValidationError("INVALID_LOCATION", "longitude must be within [-180, 180]")
        if radius is not None and (not _is_number(radius) or float(radius) <= 0):
            raise ValidationError("INVALID_LOCATION", "radius_miles must be a positive number")

        return cls(
            postal_code=postal_code,
            latitude=None if latitude is None else float(latitude),
            longitude=None if longitude is None else float(longitude),
            radius_miles=None if radius is None else float(radius),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "postal_code": self.postal_code,
            "latitude": self.latitude,
            "longitude": self.longitude,
            "radius_miles": self.radius_miles,
        }


def _is_number(value: object) -> bool:
    return isinstance(value, int | float) and not isinstance(value, bool)


def is_positive_int(value: object) -> bool:
    """Check if value is a positive integer (not float, not bool)."""
    return isinstance(value, int) and not isinstance(value, bool) and value > 0


@dataclass(frozen=True)
class Assignment:
    """
    The assigned shape of a job.

    A job either has no Assignment or a complete one, so a contractor can
    never be recorded without the agreed amount.
    """

    contractor_id: str
    amount: int
    proposal_id: str


@dataclass(frozen=True)
class Job:
    job_id: str
    requester_id: str
    category: Category
    priority: Priority
    location: Location
    description: str
    status: JobStatus
    assignment: Assignment | None
    created_at: str
    updated_at: str
    dispute_reason: str | None = None

    def role_of(self, actor_id: str) -> PartyRole | None:
        """Return the party role an actor plays on this job, if any."""
        if actor_id == self.requester_id:
            return PartyRole.REQUESTER
        if self.assignment is not None and actor_id == self.assignment.contractor_id:
            return PartyRole.CONTRACTOR
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "job_id": self.job_id,
            "requester_id": self.requester_id,
            "category": self.category.value,
            "priority": self.priority.value,
            "location": self.location.to_dict(),
            "description": self.description,
            "status": self.status.value,
            "assigned_contractor_id": (
                self.assignment.contractor_id if self.assignment is not None else None
            ),
            "accepted_amount": self.assignment.amount if self.assignment is not None else None,
            "accepted_proposal_id": (
                self.assignment.proposal_id if self.assignment is not None else None
            ),
            "dispute_reason": self.dispute_reason,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


@dataclass(frozen=True)
class Proposal:
    proposal_id: str
    job_id: str
    contractor_id: str
    amount: int
    status: ProposalStatus
    origin: ProposalOrigin
    submitted_at: str
    decided_at: str | None
    counters_proposal_id: str | None = None

    @property
    def is_pending(self) -> bool:
        return self.status is ProposalStatus.PENDING

    def to_dict(self) -> dict[str, Any]:
        return {
            "proposal_id": self.proposal_id,
            "job_id": self.job_id,
            "contractor_id": self.contractor_id,
            "amount": self.amount,
            "status": self.status.value,
            "origin": self.origin.value,
            "counters_proposal_id": self.counters_proposal_id,
            "submitted_at": self.submitted_at,
            "decided_at": self.decided_at,
        }


@dataclass(frozen=True)
class EscrowHold:
    hold_id: str
    job_id: str
    amount: int
    status: HoldStatus
    processor_reference: str
    released_amount: int
    refunded_amount: int
    platform_fee: int
    contractor_payout: int
    created_at: str
    updated_at: str

    @property
    def remaining(self) -> int:
        """Funds still held: never negative while conservation holds."""
        return self.amount - self.released_amount - self.refunded_amount

    def to_dict(self) -> dict[str, Any]:
        return {
            "hold_id": self.hold_id,
            "job_id": self.job_id,
            "amount": self.amount,
            "status": self.status.value,
            "released_amount": self.released_amount,
            "refunded_amount": self.refunded_amount,
            "remaining_amount": self.remaining,
            "platform_fee": self.platform_fee,
            "contractor_payout": self.contractor_payout,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


@dataclass(frozen=True)
class LedgerEntry:
    hold_id: str
    sequence: int
    entry_type: str
    amount: int
    reference: str
    created_at: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "hold_id": self.hold_id,
            "sequence": self.sequence,
            "entry_type": self.entry_type,
            "amount": self.amount,
            "reference": self.reference,
            "created_at": self.created_at,
        }


@dataclass(frozen=True)
class ConfirmationRecord:
    job_id: str
    role: PartyRole
    actor_id: str
    confirmed_at: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "job_id": self.job_id,
            "role": self.role.value,
            "actor_id": self.actor_id,
            "confirmed_at": self.confirmed_at,
        }


@dataclass(frozen=True)
class Contractor:
    """A contractor as seen by the matching index."""

    contractor_id: str
    categories: frozenset[Category]
    postal_code: str | None
    latitude: float | None
    longitude: float | None
    service_radius_miles: float
    service_postal_codes: frozenset[str] = field(default_factory=frozenset)
    available: bool = True
    updated_at: str = ""

    @property
    def has_base_coordinates(self) -> bool:
        return self.latitude is not None and self.longitude is not None

    def to_dict(self) -> dict[str, Any]:
        return {
            "contractor_id": self.contractor_id,
            "categories": sorted(category.value for category in self.categories),
            "postal_code": self.postal_code,
            "latitude": self.latitude,
            "longitude": self.longitude,
            "service_radius_miles": self.service_radius_miles,
            "service_postal_codes": sorted(self.service_postal_codes),
            "available": self.available,
            "updated_at": self.updated_at,
        }
