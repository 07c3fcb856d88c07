"""Application lifecycle management."""

from __future__ import annotations

from contextlib import asynccontextmanager
from pathlib import Path
from typing import TYPE_CHECKING

from job_escrow_service.clients.payment_processor_client import PaymentProcessorClient
from job_escrow_service.clients.platform_signer import PlatformSigner, ensure_private_key
from job_escrow_service.config import get_settings
from job_escrow_service.core.locks import JobLocks
from job_escrow_service.core.state import init_app_state
from job_escrow_service.logging import get_logger, setup_logging
from job_escrow_service.services.event_feed import EventFeed
from job_escrow_service.services.fulfillment_engine import FulfillmentEngine
from job_escrow_service.services.job_registry import JobRegistry
from job_escrow_service.services.matching_index import MatchingIndex
from job_escrow_service.services.money_ledger import MoneyLedger
from job_escrow_service.services.proposal_manager import ProposalManager
from job_escrow_service.services.settlement_coordinator import SettlementCoordinator
from job_escrow_service.services.store import EngineStore

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from fastapi import FastAPI


@asynccontextmanager
async def lifespan(_app: FastAPI) -> AsyncIterator[None]:
    """Manage application lifecycle."""
    # === STARTUP ===
    settings = get_settings()

    setup_logging(settings.logging.level, settings.service.name, settings.logging.directory)
    logger = get_logger(__name__)

    state = init_app_state()

    db_path = settings.database.path

    # Use the configured key path or fall back to one beside the database
    private_key_path = settings.platform.private_key_path
    if not private_key_path:
        private_key_path = str(Path(db_path).parent / "platform.pem")
    ensure_private_key(private_key_path)

    platform_signer = PlatformSigner(
        platform_agent_id=settings.platform.agent_id,
        private_key_path=private_key_path,
    )
    state.platform_signer = platform_signer

    processor_settings = settings.payment_processor
    payment_processor = PaymentProcessorClient(
        base_url=processor_settings.base_url,
        authorize_path=processor_settings.authorize_path,
        capture_path=processor_settings.capture_path,
        release_path=processor_settings.release_path,
        refund_path=processor_settings.refund_path,
        void_path=processor_settings.void_path,
        timeout_seconds=processor_settings.timeout_seconds,
        platform_signer=platform_signer,
    )

    # Wire the engine components around one store and one lock table
    store = EngineStore(db_path=db_path)
    locks = JobLocks()
    events = EventFeed(
        store,
        batch_size=settings.events.batch_size,
        poll_interval_seconds=settings.events.poll_interval_seconds,
        keepalive_interval_seconds=settings.events.keepalive_interval_seconds,
    )
    registry = JobRegistry(store, events)
    matching = MatchingIndex(store, settings.matching.default_service_radius_miles)
    ledger = MoneyLedger(store, events, payment_processor, settings.platform.fee_bps)
    proposals = ProposalManager(store, registry, matching, ledger, locks, events)
    settlement = SettlementCoordinator(
        store,
        registry,
        ledger,
        locks,
        events,
        platform_agent_id=settings.platform.agent_id,
    )
    state.engine = FulfillmentEngine(
        store=store,
        registry=registry,
        matching=matching,
        proposals=proposals,
        ledger=ledger,
        settlement=settlement,
        events=events,
    )
    state.payment_processor = payment_processor

    logger.info(
        "Service starting",
        extra={
            "service": settings.service.name,
            "version": settings.service.version,
            "port": settings.server.port,
            "db_path": db_path,
            "payment_processor_base_url": processor_settings.base_url,
            "platform_agent_id": settings.platform.agent_id,
            "fee_bps": settings.platform.fee_bps,
        },
    )

    yield  # Application runs here

    # === SHUTDOWN ===
    logger.info("Service shutting down", extra={"uptime_seconds": state.uptime_seconds})

    state.engine.close()
    await payment_processor.close()
