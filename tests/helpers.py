"""Shared test helpers: engine wiring, fake processors, and job setup."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any
from unittest.mock import AsyncMock

from job_escrow_service.core.locks import JobLocks
from job_escrow_service.models import JobStatus
from job_escrow_service.services.event_feed import EventFeed
from job_escrow_service.services.fulfillment_engine import FulfillmentEngine
from job_escrow_service.services.job_registry import JobRegistry
from job_escrow_service.services.matching_index import MatchingIndex
from job_escrow_service.services.money_ledger import MoneyLedger
from job_escrow_service.services.proposal_manager import ProposalManager
from job_escrow_service.services.settlement_coordinator import SettlementCoordinator
from job_escrow_service.services.store import EngineStore

if TYPE_CHECKING:
    from pathlib import Path

    from job_escrow_service.models import Job

PLATFORM_AGENT_ID = "a-platform-test-id"
REQUESTER_ID = "a-requester"
CONTRACTOR_ID = "a-contractor"
OTHER_CONTRACTOR_ID = "a-other-contractor"

# Downtown San Francisco, with a contractor based in Oakland (~8 miles away)
# and one based in Los Angeles (~350 miles away).
SF_LOCATION = {"postal_code": "94103", "latitude": 37.7749, "longitude": -122.4194}
OAKLAND = (37.8044, -122.2712)
LOS_ANGELES = (34.0522, -118.2437)


def make_processor() -> AsyncMock:
    """AsyncMock processor whose every call succeeds."""
    processor = AsyncMock()
    processor.authorize = AsyncMock(return_value={"status": "authorized"})
    processor.capture = AsyncMock(return_value={"status": "captured"})
    processor.release = AsyncMock(return_value={"status": "released"})
    processor.refund = AsyncMock(return_value={"status": "refunded"})
    processor.void = AsyncMock(return_value={"status": "voided"})
    processor.close = AsyncMock()
    return processor


async def _yield_then_succeed(*_args: Any, **_kwargs: Any) -> dict[str, Any]:
    await asyncio.sleep(0)
    return {"status": "ok"}


def make_yielding_processor() -> AsyncMock:
    """Processor that yields to the event loop on every call, so requests interleave."""
    processor = make_processor()
    for name in ("authorize", "capture", "release", "refund", "void"):
        setattr(processor, name, AsyncMock(side_effect=_yield_then_succeed))
    return processor


@dataclass
class Harness:
    store: EngineStore
    events: EventFeed
    registry: JobRegistry
    matching: MatchingIndex
    ledger: MoneyLedger
    proposals: ProposalManager
    settlement: SettlementCoordinator
    engine: FulfillmentEngine
    processor: AsyncMock


def build_harness(
    tmp_path: Path,
    processor: AsyncMock | None = None,
    fee_bps: int = 1000,
) -> Harness:
    """Wire every engine component around a temp database, as the lifespan does."""
    if processor is None:
        processor = make_processor()
    store = EngineStore(db_path=str(tmp_path / "engine.db"))
    locks = JobLocks()
    events = EventFeed(
        store,
        batch_size=50,
        poll_interval_seconds=0.01,
        keepalive_interval_seconds=0.05,
    )
    registry = JobRegistry(store, events)
    matching = MatchingIndex(store, 25.0)
    ledger = MoneyLedger(store, events, processor, fee_bps)
    proposals = ProposalManager(store, registry, matching, ledger, locks, events)
    settlement = SettlementCoordinator(
        store,
        registry,
        ledger,
        locks,
        events,
        platform_agent_id=PLATFORM_AGENT_ID,
    )
    engine = FulfillmentEngine(
        store=store,
        registry=registry,
        matching=matching,
        proposals=proposals,
        ledger=ledger,
        settlement=settlement,
        events=events,
    )
    return Harness(
        store=store,
        events=events,
        registry=registry,
        matching=matching,
        ledger=ledger,
        proposals=proposals,
        settlement=settlement,
        engine=engine,
        processor=processor,
    )


def register_contractor(
    harness: Harness,
    contractor_id: str = CONTRACTOR_ID,
    *,
    categories: list[str] | None = None,
    base: tuple[float, float] = OAKLAND,
    available: bool = True,
) -> None:
    harness.matching.register_contractor(
        contractor_id,
        categories=categories if categories is not None else ["Plumbing"],
        latitude=base[0],
        longitude=base[1],
        service_radius_miles=25.0,
        available=available,
    )


def create_job(harness: Harness, requester_id: str = REQUESTER_ID) -> Job:
    return harness.registry.create_job(
        requester_id,
        "Plumbing",
        "urgent",
        dict(SF_LOCATION),
        "Burst pipe under the kitchen sink",
    )


async def assigned_job(
    harness: Harness,
    amount: int = 10000,
    contractor_id: str = CONTRACTOR_ID,
) -> Job:
    """Create a job, bid on it, and accept the bid. Returns the assigned job."""
    register_contractor(harness, contractor_id)
    job = create_job(harness)
    proposal = harness.proposals.submit(job.job_id, contractor_id, amount)
    return await harness.proposals.accept(proposal.proposal_id, REQUESTER_ID)


async def completed_job(
    harness: Harness,
    amount: int = 10000,
    contractor_id: str = CONTRACTOR_ID,
) -> Job:
    """Advance a job to work_complete."""
    job = await assigned_job(harness, amount, contractor_id)
    harness.registry.transition(job.job_id, JobStatus.IN_PROGRESS, contractor_id)
    return harness.registry.transition(job.job_id, JobStatus.WORK_COMPLETE, contractor_id)


def event_types(harness: Harness, job_id: str) -> list[str]:
    return [event["event_type"] for event in harness.events.list_events(job_id, limit=500)]


CONFIG_TEMPLATE = """\
service:
  name: "job-escrow"
  version: "0.1.0"
server:
  host: "0.0.0.0"
  port: 8010
  log_level: "info"
logging:
  level: "WARNING"
  directory: "{log_dir}"
database:
  path: "{db_path}"
platform:
  agent_id: "{platform_agent_id}"
  private_key_path: "{key_path}"
  fee_bps: 1000
payment_processor:
  base_url: "http://localhost:8020"
  authorize_path: "/holds"
  capture_path: "/holds/{{reference}}/capture"
  release_path: "/holds/{{reference}}/release"
  refund_path: "/holds/{{reference}}/refund"
  void_path: "/holds/{{reference}}/void"
  timeout_seconds: 10
matching:
  default_service_radius_miles: 25.0
events:
  batch_size: 50
  poll_interval_seconds: 0.05
  keepalive_interval_seconds: 15.0
request:
  max_body_size: {max_body_size}
"""


def write_config(tmp_path: Path, *, max_body_size: int = 1048576) -> Path:
    """Write a complete service config rooted in ``tmp_path`` and return its path."""
    config_path = tmp_path / "config.yaml"
    config_path.write_text(
        CONFIG_TEMPLATE.format(
            log_dir=tmp_path / "logs",
            db_path=tmp_path / "engine.db",
            key_path=tmp_path / "platform.pem",
            platform_agent_id=PLATFORM_AGENT_ID,
            max_body_size=max_body_size,
        )
    )
    return config_path
