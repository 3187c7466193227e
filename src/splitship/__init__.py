"""Split-shipment fulfillment orchestrator."""

__version__ = "0.1.0"
