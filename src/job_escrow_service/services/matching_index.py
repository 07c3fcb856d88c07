"""Contractor registry and service-area matching."""

from __future__ import annotations

import math
from datetime import UTC, datetime
from typing import TYPE_CHECKING, cast

from job_escrow_service.core.exceptions import NotFoundError, ValidationError
from job_escrow_service.logging import get_logger
from job_escrow_service.models import Category, Contractor, parse_enum, parse_postal_code

if TYPE_CHECKING:
    from job_escrow_service.models import Job, Location
    from job_escrow_service.services.store import EngineStore

EARTH_RADIUS_MILES = 3958.8


def _now_iso() -> str:
    return datetime.now(UTC).isoformat(timespec="microseconds").replace("+00:00", "Z")


def haversine_miles(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance between two points in miles."""
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lon2 - lon1)
    a = math.sin(d_phi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    return 2 * EARTH_RADIUS_MILES * math.asin(math.sqrt(a))


def covers(contractor: Contractor, location: Location) -> bool:
    """
    Whether a contractor's service area includes a job location.

    Covered when the job's postal code is one the contractor serves, or when
    both sides have coordinates and the job lies within the contractor's
    service radius of their base.
    """
    if location.postal_code in contractor.service_postal_codes:
        return True
    if not (contractor.has_base_coordinates and location.has_coordinates):
        return False
    distance = haversine_miles(
        cast("float", contractor.latitude),
        cast("float", contractor.longitude),
        cast("float", location.latitude),
        cast("float", location.longitude),
    )
    return distance <= contractor.service_radius_miles


class MatchingIndex:
    """
    Answers which contractors may bid on a job.

    Eligible means: registered for the job's category, currently available,
    and covering the job location. Results are computed on demand from the
    store, so they reflect the latest availability.
    """

    def __init__(self, store: EngineStore, default_service_radius_miles: float) -> None:
        self._store = store
        self._default_radius = default_service_radius_miles
        self._logger = get_logger(__name__)

    def register_contractor(
        self,
        contractor_id: str,
        categories: object,
        postal_code: object = None,
        latitude: object = None,
        longitude: object = None,
        service_radius_miles: object = None,
        service_postal_codes: object = None,
        available: object = True,
    ) -> Contractor:
        """Create or replace a contractor's matching profile."""
        if not isinstance(categories, list) or not categories:
            raise ValidationError("INVALID_CATEGORY", "categories must be a non-empty list")
        parsed_categories = frozenset(
            parse_enum(Category, value, "category") for value in categories
        )

        base_postal = None if postal_code is None else parse_postal_code(postal_code)

        if (latitude is None) != (longitude is None):
            raise ValidationError(
                "INVALID_LOCATION",
                "latitude and longitude must be given together",
            )
        if latitude is not None:
            if not _is_coordinate(latitude, 90.0) or not _is_coordinate(longitude, 180.0):
                raise ValidationError("INVALID_LOCATION", "coordinates are out of range")

        if service_radius_miles is None:
            radius = self._default_radius
        elif (
            isinstance(service_radius_miles, int | float)
            and not isinstance(service_radius_miles, bool)
            and service_radius_miles > 0
        ):
            radius = float(service_radius_miles)
        else:
            raise ValidationError(
                "INVALID_LOCATION",
                "service_radius_miles must be a positive number",
            )

        if service_postal_codes is None:
            codes: frozenset[str] = frozenset()
        elif isinstance(service_postal_codes, list):
            codes = frozenset(parse_postal_code(code) for code in service_postal_codes)
        else:
            raise ValidationError("INVALID_LOCATION", "service_postal_codes must be a list")

        if latitude is None and not codes:
            raise ValidationError(
                "INVALID_LOCATION",
                "A contractor needs base coordinates or at least one service postal code",
            )
        if not isinstance(available, bool):
            raise ValidationError("INVALID_AVAILABILITY", "available must be a boolean")

        contractor = Contractor(
            contractor_id=contractor_id,
            categories=parsed_categories,
            postal_code=base_postal,
            latitude=None if latitude is None else float(cast("float", latitude)),
            longitude=None if longitude is None else float(cast("float", longitude)),
            service_radius_miles=radius,
            service_postal_codes=codes,
            available=available,
            updated_at=_now_iso(),
        )
        self._store.upsert_contractor(contractor)
        self._logger.info(
            "Contractor registered",
            extra={
                "contractor_id": contractor_id,
                "categories": sorted(c.value for c in parsed_categories),
                "available": available,
            },
        )
        return contractor

    def set_availability(self, contractor_id: str, available: object) -> Contractor:
        if not isinstance(available, bool):
            raise ValidationError("INVALID_AVAILABILITY", "available must be a boolean")
        changed = self._store.set_contractor_availability(contractor_id, available, _now_iso())
        if changed == 0:
            raise NotFoundError("CONTRACTOR_NOT_FOUND", "Contractor not found")
        return self.get_contractor(contractor_id)

    def get_contractor(self, contractor_id: str) -> Contractor:
        contractor = self._store.get_contractor(contractor_id)
        if contractor is None:
            raise NotFoundError("CONTRACTOR_NOT_FOUND", "Contractor not found")
        return contractor

    def find_eligible(self, job: Job) -> frozenset[str]:
        """Contractor ids eligible to bid on ``job``. Empty when nobody matches."""
        candidates = self._store.list_available_contractors_in_category(job.category)
        return frozenset(
            candidate.contractor_id
            for candidate in candidates
            if covers(candidate, job.location)
        )

    def is_eligible(self, job: Job, contractor_id: str) -> bool:
        contractor = self._store.get_contractor(contractor_id)
        if contractor is None or not contractor.available:
            return False
        if job.category not in contractor.categories:
            return False
        return covers(contractor, job.location)


def _is_coordinate(value: object, bound: float) -> bool:
    return (
        isinstance(value, int | float)
        and not isinstance(value, bool)
        and -bound <= float(value) <= bound
    )
