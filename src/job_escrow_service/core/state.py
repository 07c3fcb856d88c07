"""Application state management."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from job_escrow_service.clients.payment_processor_client import PaymentProcessorClient
    from job_escrow_service.clients.platform_signer import PlatformSigner
    from job_escrow_service.services.fulfillment_engine import FulfillmentEngine


@dataclass
class AppState:
    """Runtime application state."""

    start_time: datetime = field(default_factory=lambda: datetime.now(UTC))
    engine: FulfillmentEngine | None = None
    payment_processor: PaymentProcessorClient | None = None
    platform_signer: PlatformSigner | None = None

    def __setattr__(self, name: str, value: Any) -> None:
        """Keep the engine's processor reference in sync with AppState fields."""
        super().__setattr__(name, value)

        engine = self.__dict__.get("engine")
        if engine is None or value is None:
            return

        if name == "payment_processor":
            engine.set_payment_processor(value)
        elif name == "engine":
            processor = self.__dict__.get("payment_processor")
            if processor is not None:
                value.set_payment_processor(processor)

    @property
    def uptime_seconds(self) -> float:
        """Calculate uptime in seconds."""
        return (datetime.now(UTC) - self.start_time).total_seconds()

    @property
    def started_at(self) -> str:
        """ISO format start time."""
        return self.start_time.isoformat(timespec="seconds").replace("+00:00", "Z")


# Global application state container
_state_container: dict[str, AppState | None] = {"app_state": None}


def get_app_state() -> AppState:
    """Get the current application state."""
    app_state = _state_container["app_state"]
    if app_state is None:
        msg = "Application state not initialized"
        raise RuntimeError(msg)
    return app_state


def init_app_state() -> AppState:
    """Initialize application state. Called during startup."""
    app_state = AppState()
    _state_container["app_state"] = app_state
    return app_state


def reset_app_state() -> None:
    """Reset application state. Used in testing."""
    _state_container["app_state"] = None
