"""API routers."""

from job_escrow_service.routers import contractors, events, health, jobs, proposals, settlement

__all__ = ["contractors", "events", "health", "jobs", "proposals", "settlement"]
