"""HTTP client for the payment processor and platform signing."""

from job_escrow_service.clients.payment_processor_client import PaymentProcessorClient
from job_escrow_service.clients.platform_signer import PlatformSigner

__all__ = ["PaymentProcessorClient", "PlatformSigner"]
