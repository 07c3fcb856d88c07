"""Job Escrow Service - job fulfillment and escrow settlement for home-services work."""

__version__ = "0.1.0"
