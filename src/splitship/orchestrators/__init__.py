"""Split-shipment saga and its terminal event handlers."""

from __future__ import annotations

from splitship.orchestrators.errors import (
    HoldPersistenceError,
    PartialHoldFailure,
    SkipReason,
    SplitError,
    SplitInitError,
    SplitOutcome,
    TransientExternalFailure,
)
from splitship.orchestrators.payload import OrderPayload
from splitship.orchestrators.reconcile import SplitReconciler
from splitship.orchestrators.split import GatewayFactory, SplitOrchestrator

__all__ = [
    "GatewayFactory",
    "HoldPersistenceError",
    "OrderPayload",
    "PartialHoldFailure",
    "SkipReason",
    "SplitError",
    "SplitInitError",
    "SplitOrchestrator",
    "SplitOutcome",
    "SplitReconciler",
    "TransientExternalFailure",
]
