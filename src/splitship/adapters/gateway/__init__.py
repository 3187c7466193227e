"""Fulfillment gateway interface and implementations."""

from __future__ import annotations

from splitship.adapters.gateway.http import HttpFulfillmentGateway
from splitship.adapters.gateway.protocol import (
    CompletedOrder,
    DraftOrderLine,
    DraftOrderSpec,
    FulfillmentGateway,
    FulfillmentOrder,
    FulfillmentOrderLine,
    GatewayError,
    OperationResult,
    SplitLine,
    SplitResult,
    SplitSpec,
)
from splitship.adapters.gateway.rate_limited import RateLimitedGateway, RateLimiter

__all__ = [
    "CompletedOrder",
    "DraftOrderLine",
    "DraftOrderSpec",
    "FulfillmentGateway",
    "FulfillmentOrder",
    "FulfillmentOrderLine",
    "GatewayError",
    "HttpFulfillmentGateway",
    "OperationResult",
    "RateLimitedGateway",
    "RateLimiter",
    "SplitLine",
    "SplitResult",
    "SplitSpec",
]
