"""Engine components."""

from job_escrow_service.services.event_feed import EventFeed
from job_escrow_service.services.fulfillment_engine import FulfillmentEngine
from job_escrow_service.services.job_registry import JobRegistry
from job_escrow_service.services.matching_index import MatchingIndex
from job_escrow_service.services.money_ledger import MoneyLedger
from job_escrow_service.services.proposal_manager import ProposalManager
from job_escrow_service.services.settlement_coordinator import SettlementCoordinator
from job_escrow_service.services.store import EngineStore

__all__ = [
    "EngineStore",
    "EventFeed",
    "FulfillmentEngine",
    "JobRegistry",
    "MatchingIndex",
    "MoneyLedger",
    "ProposalManager",
    "SettlementCoordinator",
]
